"""X OAuth 2.0 Authorization Code flow with PKCE.

    NotStarted -> AuthorizationRequested (state + verifier stored)
               -> Completed | Rejected (denied / mismatch / exchange error)
               -> Abandoned (handshake TTL expires)

The stored (state, verifier) pair is consumed on the first callback, whatever
the outcome, so a callback can never be replayed.
"""
import base64
import hashlib
import hmac
import logging
import secrets
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession

from distributo.config import settings
from distributo.errors import (
    MissingParameters,
    ProviderDenied,
    StateMismatch,
    Unauthenticated,
)
from distributo.integrations.x.client import XClient
from distributo.models.connected_account import ConnectedAccount, Platform
from distributo.models.profile import Profile
from distributo.services import token_service
from distributo.services.handshake_store import HandshakeState, HandshakeStore

logger = logging.getLogger(__name__)

# offline.access is what makes X return a refresh token
X_SCOPES = ["tweet.read", "tweet.write", "users.read", "offline.access"]


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def code_challenge_for(code_verifier: str) -> str:
    return _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_pkce_pair() -> tuple[str, str]:
    """Return (code_verifier, code_challenge) using S256."""
    code_verifier = secrets.token_urlsafe(32)
    return code_verifier, code_challenge_for(code_verifier)


def generate_state() -> str:
    return secrets.token_hex(16)


def build_authorization_url(state: str, code_challenge: str) -> str:
    params = {
        "response_type": "code",
        "client_id": settings.X_CLIENT_ID,
        "redirect_uri": settings.X_REDIRECT_URI,
        "scope": " ".join(X_SCOPES),
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{settings.X_AUTHORIZE_URL}?{urlencode(params)}"


async def begin_authorization(store: HandshakeStore, user: Profile | None) -> tuple[str, str]:
    """Start a handshake for ``user``.

    Returns (handshake_session_id, authorization_url). The session id goes
    into an httpOnly cookie; the secrets stay in ``store``.
    """
    if user is None:
        raise Unauthenticated()

    code_verifier, code_challenge = generate_pkce_pair()
    state = generate_state()
    session_id = secrets.token_urlsafe(32)

    await store.save(
        session_id,
        HandshakeState(state=state, code_verifier=code_verifier, user_id=user.id),
        ttl=settings.OAUTH_STATE_TTL_SECONDS,
    )
    logger.info("Started X authorization for user %s", user.id)
    return session_id, build_authorization_url(state, code_challenge)


async def complete_authorization(
    db: AsyncSession,
    store: HandshakeStore,
    x_client: XClient,
    user: Profile | None,
    session_id: str | None,
    code: str | None,
    state: str | None,
    provider_error: str | None = None,
) -> ConnectedAccount:
    """Finish the handshake and store the connected account."""
    pending = await store.pop(session_id) if session_id else None

    if provider_error:
        logger.warning("X authorization denied by provider: %s", provider_error)
        raise ProviderDenied(provider_error)

    if not state or pending is None or not hmac.compare_digest(state.encode(), pending.state.encode()):
        logger.warning("X OAuth state mismatch (session present: %s)", pending is not None)
        raise StateMismatch()

    if user is None:
        raise Unauthenticated()
    if pending.user_id != user.id:
        logger.warning("X OAuth callback for user %s used a handshake of user %s", user.id, pending.user_id)
        raise StateMismatch()

    if not code or not pending.code_verifier:
        raise MissingParameters()

    grant = await x_client.exchange_code(code, pending.code_verifier)
    profile = await x_client.get_me(grant.access_token)

    account = await token_service.upsert_account(db, user.id, Platform.X, grant, profile)
    logger.info("Connected X account @%s for user %s", profile.username, user.id)
    return account
