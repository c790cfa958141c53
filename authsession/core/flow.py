"""Authorization Flow Controller.

Drives the Authorization Code flow with PKCE:
- Building the authorization redirect
- Validating the redirect return (state, nonce)
- Exchanging the code for tokens
- Logging out at the provider
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx

from authsession.core.errors import StateMismatchError, TokenExchangeError
from authsession.core.logging import ProtocolLogger, get_protocol_logger
from authsession.core.oidc.client import OIDCClient, OIDCClientConfig
from authsession.core.oidc.pkce import PkceState, generate_pkce
from authsession.core.oidc.utils import decode_jwt
from authsession.core.oidc.validation import IdTokenVerificationError, IdTokenVerifier
from authsession.core.timers import Clock, utc_now
from authsession.core.tokens import TokenSet, TokenStore

if TYPE_CHECKING:
    from authsession.core.config import ClientSettings
    from authsession.core.oidc.discovery import DiscoveryResolver
    from authsession.core.storage import MemoryStorage

logger = logging.getLogger(__name__)

# Pending login attempts older than this are treated as unknown
PKCE_STATE_TTL_SECONDS = 600

PKCE_KEY_PREFIX = "pkce:"
CONSUMED_KEY_PREFIX = "consumed:"

Navigator = Callable[[str], None]


class FlowState(StrEnum):
    """Where the session is in the login round-trip."""

    IDLE = "idle"
    AWAITING_REDIRECT_RETURN = "awaiting_redirect_return"
    EXCHANGING_CODE = "exchanging_code"
    AUTHENTICATED = "authenticated"


class AuthorizationFlowController:
    """Runs login, redirect return handling and logout.

    Pending PKCE secrets live in transient storage keyed by ``state`` so
    they survive the round-trip through the provider. Each state is
    consumed exactly once.
    """

    def __init__(
        self,
        resolver: DiscoveryResolver,
        settings: ClientSettings,
        store: TokenStore,
        storage: MemoryStorage,
        navigator: Navigator,
        clock: Clock = utc_now,
        http_client: httpx.Client | None = None,
        protocol_logger: ProtocolLogger | None = None,
        id_token_verifier: IdTokenVerifier | None = None,
    ) -> None:
        self._resolver = resolver
        self._settings = settings
        self._store = store
        self._storage = storage
        self._navigator = navigator
        self._clock = clock
        self._http_client = http_client
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._id_token_verifier = id_token_verifier

        self._client: OIDCClient | None = None
        self._lock = threading.RLock()
        self._state = FlowState.AUTHENTICATED if store.current else FlowState.IDLE
        self._unsubscribe_store = store.subscribe(self._on_token_set)

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def client(self) -> OIDCClient:
        """Protocol client bound to the resolved provider metadata.

        Raises:
            DiscoveryError: If discovery has not completed.
        """
        metadata = self._resolver.metadata
        with self._lock:
            if self._client is None or self._client.config.issuer != metadata.issuer:
                if self._client is not None:
                    self._client.close()
                config = OIDCClientConfig.from_metadata(metadata, self._settings)
                self._client = OIDCClient(config, protocol_logger=self._protocol_logger, http_client=self._http_client)
            return self._client

    def close(self) -> None:
        self._unsubscribe_store()
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def login(self, additional_params: dict[str, str] | None = None) -> None:
        """Start a login attempt by navigating to the authorization endpoint.

        Uses cached provider metadata only.

        Raises:
            DiscoveryError: If discovery has not completed.
        """
        client = self.client
        now = self._clock()
        self._prune(now)

        pkce = generate_pkce(now=now)
        self._storage.set(PKCE_KEY_PREFIX + pkce.state, pkce.to_dict())
        url = client.create_authorization_url(pkce, additional_params)

        self._state = FlowState.AWAITING_REDIRECT_RETURN
        logger.info("Redirecting to authorization endpoint")
        self._navigator(url)

    def handle_redirect_return(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> FlowState:
        """Complete a login attempt from the redirect return parameters.

        A state that was already consumed is ignored, so a duplicate return
        (reload, double delivery) never hits the token endpoint twice.

        Returns:
            The flow state after handling the return.

        Raises:
            StateMismatchError: If the state is missing, unknown or expired.
            TokenExchangeError: If the provider returned an error or the code
                could not be exchanged for valid tokens.
        """
        now = self._clock()

        if state and self._storage.get(CONSUMED_KEY_PREFIX + state) is not None:
            logger.debug("Ignoring redirect return for already consumed state")
            return self._state

        pkce = self._take_pending(state, now)
        if pkce is None:
            logger.warning("Redirect return with unknown or expired state; possible CSRF attempt")
            self._settle()
            raise StateMismatchError("Unknown or expired state parameter")

        if error:
            logger.warning(f"Provider returned error on redirect: {error}")
            self._settle()
            raise TokenExchangeError(error, error_description)
        if not code:
            self._settle()
            raise TokenExchangeError("invalid_request", "Redirect return carried no authorization code")

        self._state = FlowState.EXCHANGING_CODE
        try:
            token_set = self._exchange(code, pkce, now)
        except TokenExchangeError:
            self._settle()
            raise

        self._store.replace(token_set)
        self._state = FlowState.AUTHENTICATED
        logger.info("Login completed")
        return self._state

    def logout(self, redirect: bool = True) -> None:
        """End the session locally and, when possible, at the provider."""
        token_set = self._store.current
        pending = self._storage.keys(PKCE_KEY_PREFIX)
        if token_set is None and not pending:
            return

        for key in pending:
            self._storage.delete(key)
        if token_set is not None:
            self._store.clear()
        self._state = FlowState.IDLE
        logger.info("Logged out")

        if not redirect or not self._resolver.is_resolved:
            return
        url = self.client.end_session_url(token_set.id_token if token_set else None)
        if url:
            self._navigator(url)

    def _take_pending(self, state: str | None, now: datetime) -> PkceState | None:
        if not state:
            return None

        data = self._storage.pop(PKCE_KEY_PREFIX + state)
        if data is None:
            return None
        self._storage.set(CONSUMED_KEY_PREFIX + state, now.isoformat())

        try:
            pkce = PkceState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed pending login state: {e}")
            return None

        if pkce.is_expired(now, PKCE_STATE_TTL_SECONDS):
            logger.info("Pending login state expired")
            return None
        return pkce

    def _exchange(self, code: str, pkce: PkceState, now: datetime) -> TokenSet:
        response = self.client.exchange_code(code, pkce.code_verifier)
        if not response.is_success:
            logger.warning(f"Token exchange failed: {response.error}")
            raise TokenExchangeError(response.error or "token_error", response.error_description)

        if response.id_token:
            decoded = decode_jwt(response.id_token)
            if not decoded.is_valid_format:
                raise TokenExchangeError("invalid_id_token", decoded.error)
            if decoded.nonce is not None and decoded.nonce != pkce.nonce:
                logger.warning("ID token nonce does not match the login attempt")
                raise TokenExchangeError("nonce_mismatch", "ID token nonce does not match")

            verifier = self._verifier()
            if verifier is not None:
                try:
                    verifier.verify(response.id_token)
                except IdTokenVerificationError as e:
                    raise TokenExchangeError("invalid_id_token", str(e)) from e

        try:
            return TokenSet.from_response(response, issued_at=now)
        except (OverflowError, ValueError) as e:
            raise TokenExchangeError("invalid_token_response", f"Unusable token response: {e}") from e

    def _verifier(self) -> IdTokenVerifier | None:
        if self._id_token_verifier is None and self._settings.verify_id_token:
            metadata = self._resolver.metadata
            self._id_token_verifier = IdTokenVerifier(
                jwks_uri=metadata.jwks_uri,
                issuer=metadata.issuer,
                audience=self._settings.client_id,
            )
        return self._id_token_verifier

    def _prune(self, now: datetime) -> None:
        """Drop expired pending attempts and old consumed markers."""
        for key in self._storage.keys(PKCE_KEY_PREFIX):
            data = self._storage.get(key)
            try:
                expired = PkceState.from_dict(data).is_expired(now, PKCE_STATE_TTL_SECONDS)
            except (KeyError, TypeError, ValueError):
                expired = True
            if expired:
                self._storage.delete(key)

        for key in self._storage.keys(CONSUMED_KEY_PREFIX):
            try:
                consumed_at = datetime.fromisoformat(self._storage.get(key))
            except (TypeError, ValueError):
                self._storage.delete(key)
                continue
            if (now - consumed_at).total_seconds() > PKCE_STATE_TTL_SECONDS:
                self._storage.delete(key)

    def _settle(self) -> None:
        self._state = FlowState.AUTHENTICATED if self._store.current else FlowState.IDLE

    def _on_token_set(self, token_set: TokenSet | None) -> None:
        if token_set is None:
            if self._state == FlowState.AUTHENTICATED:
                self._state = FlowState.IDLE
        elif self._state == FlowState.IDLE:
            self._state = FlowState.AUTHENTICATED
