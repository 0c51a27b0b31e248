"""Profile ORM model (users of the hosted auth provider)."""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from distributo.models.base import Base, TimestampMixin, UUIDMixin


class Profile(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "profiles"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Relationships
    connected_accounts = relationship("ConnectedAccount", back_populates="profile", lazy="noload")
    posts = relationship("Post", back_populates="profile", lazy="noload")
