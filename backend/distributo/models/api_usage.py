"""Monthly API usage counter ORM model."""
import uuid

from sqlalchemy import ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from distributo.models.base import Base, TimestampMixin, UUIDMixin, pg_enum
from distributo.models.connected_account import Platform


class ApiUsage(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "api_usage"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", "action", "month_year", name="uq_api_usage_period"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False
    )
    platform: Mapped[Platform] = mapped_column(pg_enum(Platform, name="platform"), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    month_year: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM
    count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
