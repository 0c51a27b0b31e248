"""SQLAlchemy ORM models."""
from distributo.models.base import Base, TimestampMixin, UUIDMixin
from distributo.models.profile import Profile
from distributo.models.connected_account import ConnectedAccount, Platform
from distributo.models.post import Post, PostStatus
from distributo.models.api_usage import ApiUsage

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "Profile",
    "ConnectedAccount",
    "Platform",
    "Post",
    "PostStatus",
    "ApiUsage",
]
