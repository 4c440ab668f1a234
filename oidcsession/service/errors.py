from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions.

    Each exception class carries an HTTP status_code and a stable error_code.
    The HTTP layer never renders these as pages; they become a redirect to the
    configured error path carrying ``errorMessage``/``errorDescription``.
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ProviderResolutionError(ServiceError):
    """No OIDC client could be resolved for the requested policy (500)."""
    status_code = 500
    error_code = "provider_resolution_failed"


class ProviderRefreshError(ServiceError):
    """The identity provider rejected or failed a token refresh (502)."""
    status_code = 502
    error_code = "provider_refresh_failed"


class AuthorizationRejectedError(ServiceError):
    """The identity provider reported an error on the callback (401)."""
    status_code = 401
    error_code = "authorization_rejected"


class StateNotFoundError(AuthorizationRejectedError):
    """Callback state has no pending authorization attempt (401)."""
    error_code = "state_not_found"


class SessionAbsentError(ServiceError):
    """A session-requiring operation was called without a session (401)."""
    status_code = 401
    error_code = "session_absent"


__all__ = [
    "ServiceError",
    "ProviderResolutionError",
    "ProviderRefreshError",
    "AuthorizationRejectedError",
    "StateNotFoundError",
    "SessionAbsentError",
]
