"""X (Twitter) API v2 client: OAuth 2.0 token endpoint, profile, post creation."""
import logging
from typing import Any

import httpx
from pydantic import BaseModel

from distributo.config import settings
from distributo.errors import (
    DistributoError,
    MalformedResponse,
    PlatformRejected,
    ProfileFetchFailed,
    RefreshFailed,
    RefreshUnavailable,
    TokenExchangeFailed,
)

logger = logging.getLogger(__name__)

TOKEN_PATH = "/oauth2/token"
ME_PATH = "/users/me"
POSTS_PATH = "/tweets"

# Token endpoint answers meaning the grant itself was rejected
GRANT_REJECTED_STATUSES = (400, 401)


class TokenGrant(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_in: int = 7200
    scope: str = ""

    @property
    def scopes(self) -> list[str]:
        return self.scope.split()


class XProfile(BaseModel):
    id: str
    username: str
    name: str | None = None
    profile_image_url: str | None = None


def extract_error_message(payload: Any, fallback: str) -> str:
    """Best-effort human message from an X error body.

    X answers with one of several shapes: problem details (``detail`` /
    ``title``), an ``errors`` list, or an OAuth error (``error_description`` /
    ``error``).
    """
    if not isinstance(payload, dict):
        return fallback
    for key in ("detail", "title", "error_description"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    errors = payload.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        message = errors[0].get("message")
        if isinstance(message, str) and message:
            return message
    error = payload.get("error")
    if isinstance(error, str) and error:
        return error
    return fallback


def _json_or_none(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None


class XClient:
    """Async client for the X API v2.

    Token endpoint calls use HTTP Basic auth with the app's client
    credentials; user calls take the user's bearer token per request.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id if client_id is not None else settings.X_CLIENT_ID
        self.client_secret = client_secret if client_secret is not None else settings.X_CLIENT_SECRET
        self._client = httpx.AsyncClient(
            base_url=settings.X_API_BASE_URL,
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def close(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def _send(
        self, method: str, url: str, failure: type[DistributoError], **kwargs: Any
    ) -> httpx.Response:
        """Send a request, mapping transport errors and timeouts to ``failure``."""
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("X API %s %s timed out: %s", method, url, exc)
            raise failure("X API request timed out") from exc
        except httpx.TransportError as exc:
            logger.warning("X API %s %s transport error: %s", method, url, exc)
            raise failure(f"X API unreachable: {exc}") from exc

    # ── OAuth ──

    async def _token_request(
        self,
        data: dict[str, str],
        failure: type[DistributoError],
        transient: type[DistributoError] | None = None,
    ) -> TokenGrant:
        """POST to the token endpoint.

        ``failure`` is raised when X rejects the grant (400/401). Timeouts,
        transport errors, 429 and 5xx raise ``transient`` instead, when given.
        """
        transient = transient or failure
        resp = await self._send(
            "POST",
            TOKEN_PATH,
            transient,
            data=data,
            auth=(self.client_id, self.client_secret),
        )
        payload = _json_or_none(resp)
        if resp.is_error:
            rejected = resp.status_code in GRANT_REJECTED_STATUSES
            error_class = failure if rejected else transient
            message = extract_error_message(payload, error_class.default_detail)
            logger.warning("X token endpoint %s (%s): %s", resp.status_code, data["grant_type"], message)
            raise error_class(message)
        try:
            return TokenGrant.model_validate(payload)
        except ValueError as exc:
            raise transient("Token endpoint returned an unreadable grant") from exc

    async def exchange_code(self, code: str, code_verifier: str, redirect_uri: str | None = None) -> TokenGrant:
        """Exchange an authorization code (PKCE) for tokens."""
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or settings.X_REDIRECT_URI,
                "code_verifier": code_verifier,
            },
            TokenExchangeFailed,
        )

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access (and maybe refresh) token."""
        return await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
            RefreshFailed,
            transient=RefreshUnavailable,
        )

    # ── Users ──

    async def get_me(self, access_token: str) -> XProfile:
        """Get the authenticated user's profile."""
        resp = await self._send(
            "GET",
            ME_PATH,
            ProfileFetchFailed,
            params={"user.fields": "profile_image_url,name,username"},
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if resp.is_error:
            raise ProfileFetchFailed(
                extract_error_message(_json_or_none(resp), ProfileFetchFailed.default_detail)
            )
        payload = _json_or_none(resp)
        try:
            return XProfile.model_validate(payload["data"])
        except (TypeError, KeyError, ValueError) as exc:
            raise ProfileFetchFailed("X returned an unreadable profile") from exc

    # ── Publishing ──

    async def create_post(self, access_token: str, text: str, reply_to_id: str | None = None) -> str:
        """Create a post and return its id."""
        body: dict[str, Any] = {"text": text}
        if reply_to_id:
            body["reply"] = {"in_reply_to_tweet_id": reply_to_id}

        resp = await self._send(
            "POST",
            POSTS_PATH,
            PlatformRejected,
            json=body,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        payload = _json_or_none(resp)
        if resp.is_error:
            raise PlatformRejected(
                extract_error_message(payload, PlatformRejected.default_detail),
                provider_status=resp.status_code,
            )
        try:
            post_id = payload["data"]["id"]
        except (TypeError, KeyError) as exc:
            raise MalformedResponse() from exc
        if not isinstance(post_id, str) or not post_id:
            raise MalformedResponse()
        return post_id
