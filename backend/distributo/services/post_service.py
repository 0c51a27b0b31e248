"""Post composition: drafts, scheduled posts and post-now."""
import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from distributo.errors import DistributoError, InvalidSchedule
from distributo.integrations.x.client import XClient
from distributo.models.connected_account import Platform
from distributo.models.post import Post, PostStatus
from distributo.services import publish_service
from distributo.utils.helpers import as_utc, utc_now

logger = logging.getLogger(__name__)

# Accept schedule times slightly in the past (clock skew, slow form submits).
SCHEDULE_GRACE = timedelta(seconds=60)


async def create_post(
    db: AsyncSession,
    x_client: XClient,
    user_id: uuid.UUID,
    platform: Platform,
    content: str,
    scheduled_at: datetime | None = None,
    post_now: bool = False,
    reply_to_id: str | None = None,
    community_id: str | None = None,
) -> Post:
    """Create a draft, a scheduled post, or publish immediately.

    A failed post-now leaves the row in ``failed`` state with the error and
    re-raises so the caller can report it.
    """
    text = publish_service.validate_content(content)
    await publish_service.resolve_account(db, user_id, platform)

    if post_now:
        status = PostStatus.POSTING
        scheduled_at = None
    elif scheduled_at is not None:
        scheduled_at = as_utc(scheduled_at)
        if scheduled_at < utc_now() - SCHEDULE_GRACE:
            raise InvalidSchedule()
        status = PostStatus.SCHEDULED
    else:
        status = PostStatus.DRAFT

    post = Post(
        user_id=user_id,
        platform=platform,
        content=text,
        status=status,
        scheduled_at=scheduled_at,
        reply_to_id=reply_to_id,
        community_id=community_id,
        retry_count=0,
    )
    db.add(post)
    await db.flush()

    if not post_now:
        logger.info("Created %s post %s for user %s", status.value, post.id, user_id)
        return post

    try:
        post, _ = await publish_service.publish_post(db, x_client, user_id, platform, text, post)
    except DistributoError as exc:
        post.status = PostStatus.FAILED
        post.error_message = exc.detail
        post.retry_count += 1
        await db.commit()
        raise
    return post


async def list_posts(
    db: AsyncSession,
    user_id: uuid.UUID,
    platform: Platform,
    status: PostStatus | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[Post], int]:
    query = select(Post).where(Post.user_id == user_id, Post.platform == platform)
    if status:
        query = query.where(Post.status == status)

    count_q = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    query = query.order_by(Post.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all()), total
