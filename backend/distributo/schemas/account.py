"""Connected account response schemas (never exposes tokens)."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from distributo.models.connected_account import Platform


class ConnectedAccountResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    id: uuid.UUID
    platform: Platform
    platform_user_id: str
    platform_username: str
    platform_display_name: str | None = None
    platform_avatar_url: str | None = None
    scopes: list[str] | None = None
    is_active: bool
    connected_at: datetime | None = None
    last_used_at: datetime | None = None
    token_expires_at: datetime | None = None
