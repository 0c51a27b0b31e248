"""Connected-account storage and access-token lifecycle."""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from distributo.config import settings
from distributo.errors import DistributoError, NoRefreshToken, RefreshFailed, RefreshUnavailable
from distributo.integrations.x.client import TokenGrant, XClient, XProfile
from distributo.models.connected_account import ConnectedAccount, Platform
from distributo.utils.helpers import as_utc, utc_now

logger = logging.getLogger(__name__)


async def get_active_account(
    db: AsyncSession, user_id: uuid.UUID, platform: Platform = Platform.X,
) -> ConnectedAccount | None:
    result = await db.execute(
        select(ConnectedAccount).where(
            ConnectedAccount.user_id == user_id,
            ConnectedAccount.platform == platform,
            ConnectedAccount.is_active.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def list_accounts(db: AsyncSession, user_id: uuid.UUID) -> list[ConnectedAccount]:
    result = await db.execute(
        select(ConnectedAccount)
        .where(ConnectedAccount.user_id == user_id, ConnectedAccount.is_active.is_(True))
        .order_by(ConnectedAccount.connected_at.desc())
    )
    return list(result.scalars().all())


async def upsert_account(
    db: AsyncSession,
    user_id: uuid.UUID,
    platform: Platform,
    grant: TokenGrant,
    profile: XProfile,
    now: datetime | None = None,
) -> ConnectedAccount:
    """Create or overwrite the (user, platform) account after a handshake."""
    now = now or utc_now()
    account = (await db.execute(
        select(ConnectedAccount).where(
            ConnectedAccount.user_id == user_id,
            ConnectedAccount.platform == platform,
        )
    )).scalar_one_or_none()

    if account is None:
        account = ConnectedAccount(user_id=user_id, platform=platform)
        db.add(account)

    account.access_token = grant.access_token
    account.refresh_token = grant.refresh_token
    account.token_expires_at = now + timedelta(seconds=grant.expires_in)
    account.scopes = grant.scopes
    account.platform_user_id = profile.id
    account.platform_username = profile.username
    account.platform_display_name = profile.name
    account.platform_avatar_url = profile.profile_image_url
    account.is_active = True
    account.connected_at = now

    await db.flush()
    return account


async def disconnect_account(
    db: AsyncSession, user_id: uuid.UUID, platform: Platform = Platform.X,
) -> bool:
    """Soft-disconnect: keep the row (and its history), mark inactive."""
    account = await get_active_account(db, user_id, platform)
    if account is None:
        return False
    account.is_active = False
    await db.flush()
    logger.info("Disconnected %s account %s for user %s", platform.value, account.platform_username, user_id)
    return True


def is_token_expired(account: ConnectedAccount, now: datetime | None = None) -> bool:
    """True when the access token expires within the configured skew.

    An account without an expiry is treated as never expiring.
    """
    expires_at = as_utc(account.token_expires_at)
    if expires_at is None:
        return False
    now = now or utc_now()
    return expires_at <= now + timedelta(seconds=settings.TOKEN_EXPIRY_SKEW_SECONDS)


async def ensure_valid_access_token(
    db: AsyncSession,
    account: ConnectedAccount,
    x_client: XClient,
    now: datetime | None = None,
) -> str:
    """Return a usable access token, refreshing and persisting it if expired.

    The credential triple is written in a single UPDATE guarded on the stored
    expiry, so a concurrent refresh that already stored a later-expiring token
    is never overwritten. The write is committed immediately: providers that
    rotate refresh tokens invalidate the old one as soon as it is used.
    """
    now = now or utc_now()
    if not is_token_expired(account, now):
        return account.access_token

    return await refresh_account(db, account, x_client, now)


async def refresh_account(
    db: AsyncSession,
    account: ConnectedAccount,
    x_client: XClient,
    now: datetime | None = None,
) -> str:
    """Exchange the refresh token and persist the new credential triple."""
    now = now or utc_now()
    if not account.refresh_token:
        logger.warning("Account %s has an expired token and no refresh token", account.id)
        raise NoRefreshToken()

    try:
        grant = await x_client.refresh_access_token(account.refresh_token)
    except RefreshFailed as exc:
        logger.warning("Token refresh rejected for account %s: %s", account.id, exc.detail)
        if "reconnect" in exc.detail.lower():
            raise
        raise RefreshFailed(f"{exc.detail.rstrip('.')}. Please reconnect your X account.") from exc
    except RefreshUnavailable as exc:
        logger.warning("Token refresh for account %s failed, will retry: %s", account.id, exc.detail)
        raise
    new_expires_at = now + timedelta(seconds=grant.expires_in)

    result = await db.execute(
        update(ConnectedAccount)
        .where(
            ConnectedAccount.id == account.id,
            or_(
                ConnectedAccount.token_expires_at.is_(None),
                ConnectedAccount.token_expires_at < new_expires_at,
            ),
        )
        .values(
            access_token=grant.access_token,
            refresh_token=grant.refresh_token or account.refresh_token,
            token_expires_at=new_expires_at,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    if result.rowcount == 0:
        logger.info("Account %s was refreshed concurrently; using the stored token", account.id)
    else:
        logger.info("Refreshed access token for account %s (expires %s)", account.id, new_expires_at.isoformat())

    await db.refresh(account)
    return account.access_token


async def refresh_expiring_accounts(
    db: AsyncSession,
    x_client: XClient,
    window: timedelta = timedelta(hours=24),
    now: datetime | None = None,
) -> dict[str, int]:
    """Refresh tokens expiring within ``window`` so publishes don't have to.

    A failed refresh is logged and counted; the account is left as is and the
    next publish attempt reports it as needing reconnection.
    """
    now = now or utc_now()
    result = await db.execute(
        select(ConnectedAccount.id).where(
            ConnectedAccount.is_active.is_(True),
            ConnectedAccount.refresh_token.isnot(None),
            ConnectedAccount.token_expires_at.isnot(None),
            ConnectedAccount.token_expires_at < now + window,
        )
    )
    expiring = result.scalars().all()

    refreshed = failed = 0
    for account_id in expiring:
        account = await db.get(ConnectedAccount, account_id, populate_existing=True)
        try:
            await refresh_account(db, account, x_client, now=now)
            refreshed += 1
        except DistributoError as exc:
            await db.rollback()
            logger.warning("Token refresh failed for account %s: %s", account_id, exc.detail)
            failed += 1

    logger.info("Token refresh: %d refreshed, %d failed, out of %d expiring", refreshed, failed, len(expiring))
    return {"refreshed": refreshed, "failed": failed, "expiring": len(expiring)}
