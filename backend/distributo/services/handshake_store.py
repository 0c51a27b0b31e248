"""Short-lived server-side storage for OAuth handshake secrets.

The browser only holds an opaque session id (httpOnly cookie); the state and
PKCE verifier stay on the server and are removed on first read.
"""
import json
import logging
import time
import uuid
from abc import ABC, abstractmethod

from pydantic import BaseModel

from distributo.config import settings
from distributo.errors import HandshakeStoreUnavailable

logger = logging.getLogger(__name__)

_KEY_PREFIX = "oauth:x:"


class HandshakeState(BaseModel):
    state: str
    code_verifier: str
    user_id: uuid.UUID


class HandshakeStore(ABC):
    @abstractmethod
    async def save(self, session_id: str, handshake: HandshakeState, ttl: int) -> None:
        ...

    @abstractmethod
    async def pop(self, session_id: str) -> HandshakeState | None:
        """Return and delete the handshake; None when missing or expired."""


class RedisHandshakeStore(HandshakeStore):
    def __init__(self, redis):
        self.redis = redis

    async def save(self, session_id: str, handshake: HandshakeState, ttl: int) -> None:
        await self.redis.set(f"{_KEY_PREFIX}{session_id}", handshake.model_dump_json(), ex=ttl)

    async def pop(self, session_id: str) -> HandshakeState | None:
        raw = await self.redis.getdel(f"{_KEY_PREFIX}{session_id}")
        if raw is None:
            return None
        return HandshakeState.model_validate(json.loads(raw))


class InMemoryHandshakeStore(HandshakeStore):
    """Single-process fallback when Redis is unavailable."""

    def __init__(self):
        self._entries: dict[str, tuple[float, HandshakeState]] = {}

    async def save(self, session_id: str, handshake: HandshakeState, ttl: int) -> None:
        self._prune()
        self._entries[session_id] = (time.monotonic() + ttl, handshake)

    async def pop(self, session_id: str) -> HandshakeState | None:
        entry = self._entries.pop(session_id, None)
        if entry is None:
            return None
        expires_at, handshake = entry
        if expires_at <= time.monotonic():
            return None
        return handshake

    def _prune(self) -> None:
        now = time.monotonic()
        for key in [k for k, (exp, _) in self._entries.items() if exp <= now]:
            self._entries.pop(key, None)


class UnavailableHandshakeStore(HandshakeStore):
    """Stands in for Redis in production while it is down; every call raises."""

    async def save(self, session_id: str, handshake: HandshakeState, ttl: int) -> None:
        raise HandshakeStoreUnavailable()

    async def pop(self, session_id: str) -> HandshakeState | None:
        raise HandshakeStoreUnavailable()


_memory_store = InMemoryHandshakeStore()


async def get_handshake_store() -> HandshakeStore:
    """Redis-backed store; outside production, falls back to the in-process store."""
    try:
        from distributo.utils.redis_client import get_redis
        redis = await get_redis()
        return RedisHandshakeStore(redis)
    except Exception:
        if settings.is_production:
            logger.error("Redis unavailable for OAuth handshake, refusing to start or finish handshakes")
            return UnavailableHandshakeStore()
        logger.debug("Redis unavailable for OAuth handshake, using in-memory fallback")
    return _memory_store
