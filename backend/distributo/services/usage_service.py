"""Monthly publish quota (X free tier: 500 posts/month)."""
import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from distributo.config import settings
from distributo.errors import UsageLimitExceeded
from distributo.models.api_usage import ApiUsage
from distributo.models.connected_account import Platform
from distributo.utils.helpers import month_key, utc_now

POST_ACTION = "post"

# sqlite backs the test suite
_UPSERT_INSERTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


async def _get_usage(
    db: AsyncSession, user_id: uuid.UUID, platform: Platform, period: str,
) -> ApiUsage | None:
    result = await db.execute(
        select(ApiUsage).where(
            ApiUsage.user_id == user_id,
            ApiUsage.platform == platform,
            ApiUsage.action == POST_ACTION,
            ApiUsage.month_year == period,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_post_count(
    db: AsyncSession, user_id: uuid.UUID, platform: Platform, now: datetime | None = None,
) -> int:
    usage = await _get_usage(db, user_id, platform, month_key(now or utc_now()))
    return usage.count if usage else 0


async def check_post_quota(
    db: AsyncSession, user_id: uuid.UUID, platform: Platform, now: datetime | None = None,
) -> None:
    """Raise UsageLimitExceeded when the monthly post limit is used up."""
    used = await get_post_count(db, user_id, platform, now)
    if used >= settings.MONTHLY_POST_LIMIT:
        raise UsageLimitExceeded(
            f"Monthly posting limit reached ({settings.MONTHLY_POST_LIMIT} posts/month)"
        )


async def record_post(
    db: AsyncSession, user_id: uuid.UUID, platform: Platform, now: datetime | None = None,
) -> None:
    """Count one post against the month, creating the counter row if needed.

    A single INSERT .. ON CONFLICT DO UPDATE, so concurrent first posts of
    the month both land on the same row.
    """
    insert = _UPSERT_INSERTS[db.get_bind().dialect.name]
    stmt = insert(ApiUsage).values(
        user_id=user_id,
        platform=platform,
        action=POST_ACTION,
        month_year=month_key(now or utc_now()),
        count=1,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id", "platform", "action", "month_year"],
        set_={"count": ApiUsage.count + 1, "updated_at": func.now()},
    )
    await db.execute(stmt)
