"""Typed failures of the publishing pipeline.

Services raise these; HTTP routes and the scheduler sweep translate them.
The exception handler in ``distributo.middleware.error_handler`` renders any
uncaught ``DistributoError`` as RFC 7807 problem details.
"""


class DistributoError(Exception):
    status_code: int = 400
    code: str = "error"
    default_detail: str = "Request failed"
    reconnect_required: bool = False

    def __init__(self, detail: str | None = None, *, status_code: int | None = None):
        self.detail = detail or self.default_detail
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.detail)


# ── Caller errors ──

class ContentInvalid(DistributoError):
    code = "content_invalid"
    default_detail = "Content is required"


class InvalidSchedule(DistributoError):
    code = "invalid_schedule"
    default_detail = "scheduledAt must not be in the past"


class MissingParameters(DistributoError):
    code = "missing_params"
    default_detail = "Missing authorization code or verifier"


class PostNotFound(DistributoError):
    code = "post_not_found"
    default_detail = "Post not found"


class PostNotPublishable(DistributoError):
    status_code = 409
    code = "post_not_publishable"
    default_detail = "Post is already published or being published"


class AccountNotConnected(DistributoError):
    code = "account_not_connected"
    default_detail = "X account not connected. Please connect your account first."


class UsageLimitExceeded(DistributoError):
    status_code = 429
    code = "usage_limit_exceeded"
    default_detail = "Monthly posting limit reached"


# ── Auth / CSRF ──

class Unauthenticated(DistributoError):
    status_code = 401
    code = "unauthenticated"
    default_detail = "Not authenticated"


class Unauthorized(DistributoError):
    status_code = 401
    code = "unauthorized"
    default_detail = "Unauthorized"


class StateMismatch(DistributoError):
    code = "state_mismatch"
    default_detail = "OAuth state does not match"


class ProviderDenied(DistributoError):
    code = "provider_denied"
    default_detail = "Authorization was denied by the provider"


# ── Provider (transient) ──

class TokenExchangeFailed(DistributoError):
    status_code = 502
    code = "token_exchange_failed"
    default_detail = "Failed to exchange code for tokens"


class ProfileFetchFailed(DistributoError):
    status_code = 502
    code = "profile_fetch_failed"
    default_detail = "Failed to get X user info"


class PlatformRejected(DistributoError):
    status_code = 502
    code = "platform_rejected"
    default_detail = "Failed to post to X"

    def __init__(self, detail: str | None = None, *, provider_status: int | None = None):
        super().__init__(detail)
        self.provider_status = provider_status


class MalformedResponse(DistributoError):
    status_code = 502
    code = "malformed_response"
    default_detail = "Unexpected response from X"


class RefreshUnavailable(DistributoError):
    status_code = 502
    code = "refresh_unavailable"
    default_detail = "X token endpoint is unavailable, try again later"


class HandshakeStoreUnavailable(DistributoError):
    status_code = 503
    code = "handshake_unavailable"
    default_detail = "OAuth session storage is unavailable"


# ── Account (needs reconnection) ──

class NoRefreshToken(DistributoError):
    status_code = 401
    code = "no_refresh_token"
    default_detail = "Session expired and no refresh token is available. Please reconnect your X account."
    reconnect_required = True


class RefreshFailed(DistributoError):
    status_code = 401
    code = "refresh_failed"
    default_detail = "Failed to refresh token. Please reconnect your X account."
    reconnect_required = True


class NoAccountFound(DistributoError):
    code = "no_account_found"
    default_detail = "No active X account connected for this post's owner. Please reconnect your X account."
    reconnect_required = True
