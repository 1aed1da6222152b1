# Error taxonomy for claimwatch.
# Created: 2026-10-18

from __future__ import annotations


class ClaimWatchError(Exception):
    """Base class for all claimwatch errors."""


# -- credentials -------------------------------------------------------------


class AuthError(ClaimWatchError):
    """Something went wrong in the credential layer."""


class AuthRevoked(AuthError):
    """The refresh token was rejected (HTTP 400/401). Re-authorization required."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"Refresh token revoked or invalid (HTTP {status_code})")


class AuthTransientFailure(AuthError):
    """Network error, 5xx or malformed body from the token endpoint. Retry later."""


class NotAuthenticated(AuthError):
    """No usable credential is available."""


class AuthorizationError(AuthError):
    """The browser authorization step failed."""


class StateMismatch(AuthorizationError):
    """The callback ``state`` did not match the one we generated (possible CSRF)."""


class AuthorizationDenied(AuthorizationError):
    """The identity provider redirected back with an ``error`` parameter."""

    def __init__(self, error: str):
        self.error = error
        super().__init__(f"Authorization denied: {error}")


# -- live session ------------------------------------------------------------


class SessionError(ClaimWatchError):
    """Live session failure."""


class SessionTransportError(SessionError):
    """The streaming connection could not be opened or dropped."""


class SessionActiveError(SessionError):
    """A credential switch was attempted while a live session is open."""


# -- verification ------------------------------------------------------------


class VerificationError(ClaimWatchError):
    """A single verification attempt failed."""


class VerificationParseFailure(VerificationError):
    """The model's answer did not contain a usable verdict."""


class UpstreamError(VerificationError):
    """Non-quota HTTP or transport failure talking to the model API."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class QuotaExceeded(UpstreamError):
    """HTTP 429 or a quota / rate-limit message from the model API."""


class SourceResolutionFailure(ClaimWatchError):
    """A single citation could not be resolved. Never fatal for the batch."""
