"""Platform connection API: X OAuth handshake, account listing, disconnect."""
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from distributo.config import settings
from distributo.dependencies import get_current_user, get_db, get_optional_user, get_x_client
from distributo.errors import DistributoError, Unauthenticated
from distributo.integrations.x.client import XClient
from distributo.models.connected_account import Platform
from distributo.models.profile import Profile
from distributo.schemas.account import ConnectedAccountResponse
from distributo.schemas.common import APIResponse
from distributo.services import oauth_service, token_service
from distributo.services.handshake_store import HandshakeStore, get_handshake_store

logger = logging.getLogger(__name__)

router = APIRouter()

HANDSHAKE_COOKIE = "x_oauth_session"
INTEGRATIONS_PATH = "/dashboard/settings/integrations"


def _frontend_redirect(path: str, **params: str) -> RedirectResponse:
    url = f"{settings.APP_URL.rstrip('/')}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url, status_code=302)


# GET /auth/x/connect: browser navigation, session cookie
@router.get("/x/connect")
async def connect_x(
    user: Profile | None = Depends(get_optional_user),
    store: HandshakeStore = Depends(get_handshake_store),
):
    try:
        session_id, authorization_url = await oauth_service.begin_authorization(store, user)
    except Unauthenticated:
        return _frontend_redirect("/login")
    except DistributoError as exc:
        logger.warning("X OAuth connect failed: %s", exc.code)
        return _frontend_redirect(INTEGRATIONS_PATH, error=exc.code)

    response = RedirectResponse(authorization_url, status_code=302)
    response.set_cookie(
        HANDSHAKE_COOKIE,
        session_id,
        max_age=settings.OAUTH_STATE_TTL_SECONDS,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    return response


# GET /auth/x/callback: redirect target registered with X
@router.get("/x/callback")
async def x_callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    user: Profile | None = Depends(get_optional_user),
    store: HandshakeStore = Depends(get_handshake_store),
    x_client: XClient = Depends(get_x_client),
    db: AsyncSession = Depends(get_db),
):
    try:
        await oauth_service.complete_authorization(
            db,
            store,
            x_client,
            user,
            session_id=request.cookies.get(HANDSHAKE_COOKIE),
            code=code,
            state=state,
            provider_error=error,
        )
        await db.commit()
        response = _frontend_redirect(INTEGRATIONS_PATH, success="x_connected")
    except DistributoError as exc:
        await db.rollback()
        error_code = exc.detail if exc.code == "provider_denied" else exc.code
        logger.info("X OAuth callback failed: %s", exc.code)
        response = _frontend_redirect(INTEGRATIONS_PATH, error=error_code)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to store connected X account")
        response = _frontend_redirect(INTEGRATIONS_PATH, error="db_error")

    response.delete_cookie(HANDSHAKE_COOKIE, path="/")
    return response


# GET /auth/accounts: connected accounts of the current user
@router.get("/accounts", response_model=APIResponse)
async def list_accounts(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    accounts = await token_service.list_accounts(db, current_user.id)
    return APIResponse(
        status="success",
        data=[ConnectedAccountResponse.model_validate(a).model_dump(by_alias=True) for a in accounts],
    )


# DELETE /auth/{platform}: soft disconnect
@router.delete("/{platform}", response_model=APIResponse)
async def disconnect(
    platform: Platform,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    disconnected = await token_service.disconnect_account(db, current_user.id, platform)
    if not disconnected:
        return APIResponse(status="error", message=f"No connected {platform.value} account")
    return APIResponse(status="success", message=f"Disconnected {platform.value} account")
