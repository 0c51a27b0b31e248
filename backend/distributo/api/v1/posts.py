"""Posts API: compose, list, publish now."""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from distributo.dependencies import get_current_user, get_db, get_x_client
from distributo.integrations.x.client import XClient
from distributo.models.connected_account import Platform
from distributo.models.post import PostStatus
from distributo.models.profile import Profile
from distributo.schemas.common import APIResponse, PaginationMeta
from distributo.schemas.post import PostCreateRequest, PostResponse, PublishRequest, PublishResponse
from distributo.services import post_service, publish_service

router = APIRouter()


# POST /posts/{platform}: draft, schedule, or post now
@router.post("/{platform}", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def create_post(
    platform: Platform,
    body: PostCreateRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    x_client: XClient = Depends(get_x_client),
):
    post = await post_service.create_post(
        db,
        x_client,
        current_user.id,
        platform,
        body.content,
        scheduled_at=body.scheduled_at,
        post_now=body.post_now,
        reply_to_id=body.reply_to_id,
        community_id=body.community_id,
    )
    if post.status == PostStatus.POSTED:
        message = "Post published!"
    elif post.status == PostStatus.SCHEDULED:
        message = "Post scheduled!"
    else:
        message = "Draft saved!"
    return APIResponse(
        status="success",
        data=PostResponse.model_validate(post).model_dump(mode="json", by_alias=True),
        message=message,
    )


# GET /posts/{platform}: current user's posts
@router.get("/{platform}", response_model=APIResponse)
async def list_posts(
    platform: Platform,
    status_filter: PostStatus | None = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    posts, total = await post_service.list_posts(
        db, current_user.id, platform, status=status_filter, limit=limit, offset=offset,
    )
    return APIResponse(
        status="success",
        data=[PostResponse.model_validate(p).model_dump(mode="json", by_alias=True) for p in posts],
        pagination=PaginationMeta(
            total=total, limit=limit, offset=offset,
            has_next=(offset + limit < total),
        ),
    )


# POST /posts/{platform}/publish: publish immediately
@router.post("/{platform}/publish", response_model=PublishResponse)
async def publish_now(
    platform: Platform,
    body: PublishRequest,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    x_client: XClient = Depends(get_x_client),
):
    post, result = await publish_service.publish_for_user(
        db, x_client, current_user.id, platform, body.content, post_id=body.post_id,
    )
    return PublishResponse(post_id=post.id, external_id=result.external_id, url=result.external_url)
