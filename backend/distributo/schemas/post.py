"""Post request/response schemas."""
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from distributo.models.connected_account import Platform
from distributo.models.post import PostStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PostCreateRequest(_CamelModel):
    # Length is checked by the service so both entry points report it the same way.
    content: str
    scheduled_at: datetime | None = None
    post_now: bool = False
    reply_to_id: str | None = Field(default=None, max_length=100)
    community_id: str | None = Field(default=None, max_length=100)


class PublishRequest(_CamelModel):
    content: str
    post_id: uuid.UUID | None = None


class PublishResponse(_CamelModel):
    success: bool = True
    message: str = "Posted to X!"
    post_id: uuid.UUID
    external_id: str
    url: str


class PostResponse(_CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    platform: Platform
    content: str
    status: PostStatus
    scheduled_at: datetime | None = None
    community_id: str | None = None
    reply_to_id: str | None = None
    external_id: str | None = None
    external_url: str | None = None
    error_message: str | None = None
    retry_count: int
    posted_at: datetime | None = None
    created_at: datetime | None = None
