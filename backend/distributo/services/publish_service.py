"""Publishing to X: content validation, the publish executor and "publish now"."""
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from distributo.config import settings
from distributo.errors import AccountNotConnected, ContentInvalid, PostNotFound, PostNotPublishable
from distributo.integrations.x.client import XClient
from distributo.models.connected_account import ConnectedAccount, Platform
from distributo.models.post import Post, PostStatus
from distributo.services import token_service, usage_service
from distributo.utils.helpers import utc_now

logger = logging.getLogger(__name__)

MAX_POST_LENGTH = 280

# Statuses an existing post may be published from; posting belongs to a sweep
PUBLISHABLE_STATUSES = (PostStatus.DRAFT, PostStatus.SCHEDULED, PostStatus.FAILED)


@dataclass(frozen=True)
class PublishResult:
    external_id: str
    external_url: str


def validate_content(content: str | None) -> str:
    """Return the trimmed content, or raise ContentInvalid."""
    text = (content or "").strip()
    if not text:
        raise ContentInvalid("Content is required")
    if len(text) > MAX_POST_LENGTH:
        raise ContentInvalid(f"Content exceeds {MAX_POST_LENGTH} characters")
    return text


def build_post_url(username: str, external_id: str) -> str:
    return f"{settings.X_WEB_URL.rstrip('/')}/{username}/status/{external_id}"


async def publish(
    x_client: XClient,
    access_token: str,
    content: str,
    username: str,
    reply_to_id: str | None = None,
) -> PublishResult:
    """Create the post on X. Never retries; the scheduler owns retry policy.

    Content is re-validated here because it may have been edited after the
    post was created.
    """
    text = validate_content(content)
    external_id = await x_client.create_post(access_token, text, reply_to_id=reply_to_id)
    return PublishResult(external_id=external_id, external_url=build_post_url(username, external_id))


def mark_posted(post: Post, result: PublishResult) -> None:
    post.status = PostStatus.POSTED
    post.posted_at = utc_now()
    post.external_id = result.external_id
    post.external_url = result.external_url
    post.error_message = None


async def resolve_account(db: AsyncSession, user_id: uuid.UUID, platform: Platform) -> ConnectedAccount:
    account = await token_service.get_active_account(db, user_id, platform)
    if account is None:
        raise AccountNotConnected()
    return account


async def publish_for_user(
    db: AsyncSession,
    x_client: XClient,
    user_id: uuid.UUID,
    platform: Platform,
    content: str,
    post_id: uuid.UUID | None = None,
) -> tuple[Post, PublishResult]:
    """Interactive "publish now": publish and record the post.

    Updates ``post_id`` when given (it must belong to the user and not be
    posted or claimed by a sweep), otherwise inserts a new post in ``posted``
    state.
    """
    text = validate_content(content)

    post: Post | None = None
    if post_id is not None:
        post = (await db.execute(
            select(Post).where(Post.id == post_id, Post.user_id == user_id)
        )).scalar_one_or_none()
        if post is None:
            raise PostNotFound()
        if post.status not in PUBLISHABLE_STATUSES:
            raise PostNotPublishable(f"Post is {post.status.value} and cannot be published again")

    return await publish_post(db, x_client, user_id, platform, text, post)


async def publish_post(
    db: AsyncSession,
    x_client: XClient,
    user_id: uuid.UUID,
    platform: Platform,
    text: str,
    post: Post | None = None,
) -> tuple[Post, PublishResult]:
    """Publish ``text`` for the user, marking ``post`` (or a new post) posted.

    The posted state is committed before usage is counted, so a bookkeeping
    failure never leaves a live post looking unpublished.
    """
    account = await resolve_account(db, user_id, platform)
    await usage_service.check_post_quota(db, user_id, platform)

    access_token = await token_service.ensure_valid_access_token(db, account, x_client)
    reply_to_id = post.reply_to_id if post is not None else None
    result = await publish(x_client, access_token, text, account.platform_username, reply_to_id=reply_to_id)

    if post is None:
        post = Post(user_id=user_id, platform=platform, content=text)
        db.add(post)
    post.content = text
    mark_posted(post, result)
    account.last_used_at = utc_now()
    await db.commit()
    logger.info("Published post %s for user %s -> %s", post.id, user_id, result.external_url)

    try:
        await usage_service.record_post(db, user_id, platform)
        await db.commit()
    except SQLAlchemyError:
        await db.rollback()
        await db.refresh(post)
        logger.exception("Could not record usage for published post %s", post.id)
    return post, result
