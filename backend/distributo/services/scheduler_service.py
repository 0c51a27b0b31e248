"""Scheduled-post sweep.

One sweep publishes up to ``SCHEDULER_BATCH_SIZE`` due posts, earliest first.
Failed posts go back to ``scheduled`` and are picked up again by the next
sweep until ``PUBLISH_MAX_ATTEMPTS`` is reached, after which they are
``failed`` for good.

Sweeps may overlap (at-least-once triggers): a post is claimed with a
conditional ``scheduled -> posting`` UPDATE, and a sweep that loses the claim
skips it.
"""
import logging
import time
import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from distributo.config import settings
from distributo.errors import DistributoError, NoAccountFound
from distributo.integrations.x.client import XClient
from distributo.models.connected_account import Platform
from distributo.models.post import Post, PostStatus
from distributo.schemas.cron import PostResult, SweepReport
from distributo.services import publish_service, token_service, usage_service
from distributo.utils.helpers import truncate, utc_now

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000


async def find_due_post_ids(db: AsyncSession, now: datetime, limit: int) -> list[uuid.UUID]:
    result = await db.execute(
        select(Post.id)
        .where(
            Post.status == PostStatus.SCHEDULED,
            Post.scheduled_at.isnot(None),
            Post.scheduled_at <= now,
            Post.platform == Platform.X,
        )
        .order_by(Post.scheduled_at.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def claim_post(db: AsyncSession, post_id: uuid.UUID) -> bool:
    """Move a post from scheduled to posting; False if someone else got it."""
    result = await db.execute(
        update(Post)
        .where(Post.id == post_id, Post.status == PostStatus.SCHEDULED)
        .values(status=PostStatus.POSTING)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def record_failure(db: AsyncSession, post_id: uuid.UUID, message: str) -> PostResult:
    """Count a failed attempt; requeue or give up at the attempt cap."""
    post = await db.get(Post, post_id, populate_existing=True)
    if post is None:
        return PostResult(id=post_id, status="failed", error=message)

    post.retry_count = (post.retry_count or 0) + 1
    post.error_message = truncate(message, MAX_ERROR_LENGTH)
    if post.retry_count >= settings.PUBLISH_MAX_ATTEMPTS:
        post.status = PostStatus.FAILED
    else:
        post.status = PostStatus.SCHEDULED
    await db.commit()

    result_status = "failed" if post.status == PostStatus.FAILED else "retrying"
    logger.warning(
        "Post %s failed (attempt %d/%d, %s): %s",
        post_id, post.retry_count, settings.PUBLISH_MAX_ATTEMPTS, result_status, message,
    )
    return PostResult(id=post_id, status=result_status, error=message, retry_count=post.retry_count)


async def process_post(db: AsyncSession, x_client: XClient, post_id: uuid.UUID) -> PostResult:
    if not await claim_post(db, post_id):
        logger.info("Post %s already claimed by another sweep", post_id)
        return PostResult(id=post_id, status="skipped")

    post = await db.get(Post, post_id, populate_existing=True)
    try:
        account = await token_service.get_active_account(db, post.user_id, post.platform)
        if account is None:
            raise NoAccountFound()

        access_token = await token_service.ensure_valid_access_token(db, account, x_client)
        result = await publish_service.publish(
            x_client, access_token, post.content, account.platform_username,
            reply_to_id=post.reply_to_id,
        )
    except DistributoError as exc:
        await db.rollback()
        return await record_failure(db, post_id, exc.detail)

    # The post is live on X now; persist that before any bookkeeping.
    publish_service.mark_posted(post, result)
    account.last_used_at = utc_now()
    await db.commit()

    logger.info("Posted %s -> %s", post_id, result.external_url)
    posted = PostResult(
        id=post_id,
        status="posted",
        external_id=result.external_id,
        external_url=result.external_url,
        retry_count=post.retry_count,
    )

    try:
        await usage_service.record_post(db, post.user_id, post.platform)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Could not record usage for posted post %s", post_id)
    return posted


async def run_sweep(
    session_factory: async_sessionmaker[AsyncSession],
    x_client: XClient,
    now: datetime | None = None,
) -> SweepReport:
    """Publish due posts, isolating each post's failure from the rest."""
    started = time.perf_counter()
    now = now or utc_now()

    async with session_factory() as db:
        due_ids = await find_due_post_ids(db, now, settings.SCHEDULER_BATCH_SIZE)

    if due_ids:
        logger.info("Processing %d scheduled posts", len(due_ids))

    results: list[PostResult] = []
    for post_id in due_ids:
        try:
            async with session_factory() as db:
                results.append(await process_post(db, x_client, post_id))
        except Exception as exc:
            logger.exception("Unexpected error while publishing post %s", post_id)
            try:
                async with session_factory() as db:
                    results.append(await record_failure(db, post_id, f"Unexpected error: {exc}"))
            except Exception:
                logger.exception("Could not record failure for post %s", post_id)
                results.append(PostResult(id=post_id, status="failed", error=str(exc)))

    report = SweepReport(
        success=True,
        processed=len([r for r in results if r.status != "skipped"]),
        succeeded=len([r for r in results if r.status == "posted"]),
        failed=len([r for r in results if r.status in ("failed", "retrying")]),
        skipped=len([r for r in results if r.status == "skipped"]),
        results=results,
        timestamp=now,
        duration_ms=round((time.perf_counter() - started) * 1000, 2),
    )
    logger.info(
        "Sweep done: %d processed, %d posted, %d failed, %d skipped in %.1fms",
        report.processed, report.succeeded, report.failed, report.skipped, report.duration_ms,
    )
    return report
