"""FastAPI dependency injection utilities."""
import uuid as _uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from distributo.config import settings
from distributo.database import async_session_factory
from distributo.integrations.x.client import XClient
from distributo.models.profile import Profile
from distributo.services.auth_service import decode_access_token

security = HTTPBearer(auto_error=False)


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


async def get_db(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_x_client() -> AsyncGenerator[XClient, None]:
    async with XClient() as client:
        yield client


def _session_token(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    if credentials is not None:
        return credentials.credentials
    # Browser navigations (OAuth connect/callback) carry the session cookie instead.
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Profile | None:
    """Current user, or None when the session is missing or invalid."""
    token = _session_token(request, credentials)
    if not token:
        return None
    try:
        payload = decode_access_token(token)
        user_id = _uuid.UUID(payload["sub"])
    except (JWTError, KeyError, ValueError, TypeError):
        return None
    return await db.get(Profile, user_id)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """Extract current user from the session JWT."""
    token = _session_token(request, credentials)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        payload = decode_access_token(token)
        user_id = payload.get("sub")
        if user_id is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
        user = await db.get(Profile, _uuid.UUID(user_id))
        if not user:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or unknown user")
        return user
    except JWTError as e:
        detail = "Token expired" if "expired" in str(e).lower() else "Invalid token"
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
