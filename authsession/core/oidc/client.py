"""OIDC client implementation.

Talks to the provider's authorization, token and end-session endpoints
for the Authorization Code flow with PKCE and refresh token renewal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from authsession.core.logging import LoggingClient, ProtocolLogger, get_protocol_logger

if TYPE_CHECKING:
    from authsession.core.config import ClientSettings
    from authsession.core.oidc.discovery import ProviderMetadata
    from authsession.core.oidc.pkce import PkceState

# Longest token lifetime accepted from a provider (one year)
MAX_EXPIRES_IN_SECONDS = 365 * 24 * 3600


@dataclass
class OIDCClientConfig:
    """Configuration for an OIDC client."""

    client_id: str
    client_secret: str | None = None
    redirect_uri: str = ""
    scopes: list[str] = field(default_factory=lambda: ["openid", "profile", "email"])
    post_logout_redirect_uri: str | None = None

    # IdP endpoints
    authorization_endpoint: str = ""
    token_endpoint: str = ""
    jwks_uri: str = ""
    issuer: str = ""
    end_session_endpoint: str | None = None

    @classmethod
    def from_metadata(cls, metadata: ProviderMetadata, settings: ClientSettings) -> OIDCClientConfig:
        """Create client config from discovered metadata and client settings.

        Args:
            metadata: Resolved provider metadata.
            settings: Client registration settings.

        Returns:
            Configured OIDCClientConfig.
        """
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=settings.redirect_uri,
            scopes=list(settings.scopes),
            post_logout_redirect_uri=settings.post_logout_redirect_uri,
            authorization_endpoint=metadata.authorization_endpoint,
            token_endpoint=metadata.token_endpoint,
            jwks_uri=metadata.jwks_uri,
            issuer=metadata.issuer,
            end_session_endpoint=metadata.end_session_endpoint,
        )


@dataclass
class TokenResponse:
    """Represents an OAuth2 token response."""

    access_token: str
    token_type: str
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    # Raw response for debugging
    raw_response: dict[str, Any] = field(default_factory=dict)

    # Error information
    error: str | None = None
    error_description: str | None = None

    @property
    def is_success(self) -> bool:
        """Check if the token response is successful."""
        return self.error is None and bool(self.access_token)

    @classmethod
    def failure(cls, error: str, error_description: str, raw_response: dict[str, Any] | None = None) -> TokenResponse:
        """Build an error response."""
        return cls(
            access_token="",
            token_type="",
            error=error,
            error_description=error_description,
            raw_response=raw_response or {},
        )


class OIDCClient:
    """Client for the provider's OAuth2 endpoints."""

    def __init__(
        self,
        config: OIDCClientConfig,
        protocol_logger: ProtocolLogger | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        """Initialize the OIDC client.

        Args:
            config: Client configuration with endpoints and credentials.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            http_client: Optional HTTP client; a LoggingClient is created otherwise.
        """
        self.config = config
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._http_client = http_client
        self._owns_http_client = http_client is None

    @property
    def http_client(self) -> httpx.Client:
        """Get or create HTTP client with logging."""
        if self._http_client is None:
            self._http_client = LoggingClient(protocol_logger=self._protocol_logger, timeout=30.0)
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client if this client created it."""
        if self._owns_http_client and self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def create_authorization_url(
        self,
        pkce: PkceState,
        additional_params: dict[str, str] | None = None,
    ) -> str:
        """Build the authorization request URL for a login attempt.

        Args:
            pkce: PKCE secrets for this attempt; only the challenge is sent.
            additional_params: Additional query parameters (prompt, login_hint...).

        Returns:
            Full authorization endpoint URL.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": " ".join(self.config.scopes),
            "state": pkce.state,
            "nonce": pkce.nonce,
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": pkce.code_challenge_method,
        }

        if additional_params:
            params.update(additional_params)

        separator = "&" if "?" in self.config.authorization_endpoint else "?"
        return f"{self.config.authorization_endpoint}{separator}{urlencode(params)}"

    def exchange_code(self, code: str, code_verifier: str) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the redirect return.
            code_verifier: PKCE code verifier matching the sent challenge.

        Returns:
            TokenResponse with access token, id token, etc.
        """
        return self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
                "code_verifier": code_verifier,
            },
            action="token exchange",
        )

    def refresh(self, refresh_token: str) -> TokenResponse:
        """Renew tokens with a refresh token.

        Args:
            refresh_token: The current refresh token.

        Returns:
            TokenResponse; fields the provider omits are left empty.
        """
        return self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": " ".join(self.config.scopes),
            },
            action="token refresh",
        )

    def end_session_url(self, id_token_hint: str | None = None) -> str | None:
        """Build the RP-initiated logout URL, if the provider supports it."""
        if not self.config.end_session_endpoint:
            return None

        params: dict[str, str] = {"client_id": self.config.client_id}
        if id_token_hint:
            params["id_token_hint"] = id_token_hint
        if self.config.post_logout_redirect_uri:
            params["post_logout_redirect_uri"] = self.config.post_logout_redirect_uri

        separator = "&" if "?" in self.config.end_session_endpoint else "?"
        return f"{self.config.end_session_endpoint}{separator}{urlencode(params)}"

    def _token_request(self, data: dict[str, str], action: str) -> TokenResponse:
        data = {**data, "client_id": self.config.client_id}
        if self.config.client_secret:
            data["client_secret"] = self.config.client_secret

        try:
            response = self.http_client.post(
                self.config.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            return TokenResponse.failure("http_error", f"HTTP error during {action}: {e}")

        try:
            response_data = response.json()
        except ValueError:
            return TokenResponse.failure(
                "invalid_response",
                f"Non-JSON response during {action} (status {response.status_code})",
            )

        if not isinstance(response_data, dict):
            return TokenResponse.failure("invalid_response", f"Unexpected response body during {action}")

        if response.status_code != 200:
            return TokenResponse.failure(
                response_data.get("error", "token_error"),
                response_data.get(
                    "error_description",
                    f"Token request failed with status {response.status_code}",
                ),
                raw_response=response_data,
            )

        if not response_data.get("access_token"):
            return TokenResponse.failure(
                "invalid_response",
                f"No access_token in response during {action}",
                raw_response=response_data,
            )

        return TokenResponse(
            access_token=response_data["access_token"],
            token_type=response_data.get("token_type", "Bearer"),
            expires_in=_parse_expires_in(response_data.get("expires_in")),
            refresh_token=response_data.get("refresh_token"),
            id_token=response_data.get("id_token"),
            scope=response_data.get("scope"),
            raw_response=response_data,
        )


def _parse_expires_in(value: Any) -> int | None:
    """Parse ``expires_in``, which some providers send as a string.

    Values above ``MAX_EXPIRES_IN_SECONDS`` are clamped to it.
    """
    if isinstance(value, bool):
        return None
    try:
        seconds = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    if seconds <= 0:
        return None
    return min(seconds, MAX_EXPIRES_IN_SECONDS)
