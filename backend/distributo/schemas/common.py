"""Shared response schemas."""
from typing import Any, Literal

from pydantic import BaseModel


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    has_next: bool


class APIResponse(BaseModel):
    status: Literal["success", "error"]
    data: Any = None
    message: str | None = None
    pagination: PaginationMeta | None = None


class ErrorDetail(BaseModel):
    """RFC 7807 Problem Details."""
    type: str = "about:blank"
    title: str
    status: int
    detail: str
    code: str | None = None
    instance: str | None = None
