"""Error taxonomy for the authentication session."""

from __future__ import annotations


class AuthSessionError(Exception):
    """Base exception for authentication session errors."""


class DiscoveryError(AuthSessionError):
    """Raised when the provider discovery document cannot be obtained.

    Fatal: no flow operation can run without provider metadata.
    """


class StateMismatchError(AuthSessionError):
    """Raised when a redirect return carries an unknown or expired state."""


class _ProtocolError(AuthSessionError):
    """Protocol error carrying the OAuth2 error code and description."""

    def __init__(self, error: str, error_description: str | None = None) -> None:
        self.error = error
        self.error_description = error_description
        message = f"{error}: {error_description}" if error_description else error
        super().__init__(message)


class TokenExchangeError(_ProtocolError):
    """Raised when the authorization code cannot be exchanged for tokens."""


class RefreshFailure(_ProtocolError):
    """Raised when a refresh token exchange fails.

    Terminal for the session: the user must log in interactively again.
    """
