"""Error types raised across the Xero sign-in flow."""

from __future__ import annotations


class OAuthFlowError(Exception):
    """Base class for failures in the authorization flow."""


class ForgeryError(OAuthFlowError):
    """Callback state did not match the state issued at login."""


class AuthorizationDeniedError(OAuthFlowError):
    """The authorization server returned an error instead of a code."""

    def __init__(self, error: str, description: str | None = None) -> None:
        super().__init__(description or error)
        self.error = error
        self.description = description


class TokenValidationError(OAuthFlowError):
    def __init__(self, token_kind: str, reason: str) -> None:
        super().__init__(f"{token_kind} token rejected: {reason}")
        self.token_kind = token_kind
        self.reason = reason


class _TokenEndpointError(OAuthFlowError):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class ExchangeError(_TokenEndpointError):
    """The authorization code was rejected (invalid, expired or reused)."""


class RefreshError(_TokenEndpointError):
    """The refresh token was rejected; the user must log in again."""


class TransientNetworkError(OAuthFlowError):
    """The remote service could not be reached. Never retried internally."""


class RemoteApiError(OAuthFlowError):
    def __init__(self, status_code: int, body: str = "", url: str | None = None) -> None:
        super().__init__(f"Remote API returned {status_code}")
        self.status_code = status_code
        self.body = body
        self.url = url

    @property
    def is_access_revoked(self) -> bool:
        return self.status_code == 403


class NoTenantsError(OAuthFlowError):
    """The token carries no authorized tenants."""
