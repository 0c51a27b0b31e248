"""Post ORM model."""
import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distributo.models.base import Base, TimestampMixin, UUIDMixin, pg_enum
from distributo.models.connected_account import Platform


class PostStatus(str, enum.Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    POSTING = "posting"
    POSTED = "posted"
    FAILED = "failed"


class Post(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "posts"
    __table_args__ = (
        Index("ix_posts_status_scheduled_at", "status", "scheduled_at"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[Platform] = mapped_column(pg_enum(Platform, name="platform"), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # Grouping tag only; the X API cannot post into a community.
    community_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reply_to_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    status: Mapped[PostStatus] = mapped_column(
        pg_enum(PostStatus, name="post_status"), nullable=False, default=PostStatus.DRAFT
    )
    scheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    external_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    profile = relationship("Profile", back_populates="posts")
