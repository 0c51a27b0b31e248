"""Connected platform account ORM model."""
import enum
import uuid
from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distributo.models.base import Base, TimestampMixin, UUIDMixin, pg_enum
from distributo.utils.encryption import EncryptedText


class Platform(str, enum.Enum):
    X = "x"


class ConnectedAccount(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "connected_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_connected_accounts_user_platform"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[Platform] = mapped_column(pg_enum(Platform, name="platform"), nullable=False)

    # Credentials (encrypted at rest when ENCRYPTION_KEY is set)
    access_token: Mapped[str] = mapped_column(EncryptedText, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(EncryptedText, nullable=True)
    token_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scopes: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    # Snapshot of the provider profile at connect time
    platform_user_id: Mapped[str] = mapped_column(String(100), nullable=False)
    platform_username: Mapped[str] = mapped_column(String(100), nullable=False)
    platform_display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    platform_avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    connected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    profile = relationship("Profile", back_populates="connected_accounts")
