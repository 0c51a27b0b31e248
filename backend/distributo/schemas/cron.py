"""Scheduler sweep report schemas."""
import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class PostResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: uuid.UUID
    status: Literal["posted", "retrying", "failed", "skipped"]
    external_id: str | None = None
    external_url: str | None = None
    error: str | None = None
    retry_count: int | None = None


class SweepReport(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    processed: int
    succeeded: int
    failed: int
    skipped: int = 0
    results: list[PostResult]
    timestamp: datetime
    duration_ms: float
