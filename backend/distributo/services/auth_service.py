"""Session token handling for the hosted auth provider's JWTs."""
from datetime import datetime, timedelta, timezone

from jose import jwt

from distributo.config import settings


def create_access_token(user_id: str, expires_minutes: int = 60) -> str:
    """Issue a session token in the auth provider's format (tests, local tooling)."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    if settings.JWT_AUDIENCE:
        payload["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    options = {} if settings.JWT_AUDIENCE else {"verify_aud": False}
    return jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )
