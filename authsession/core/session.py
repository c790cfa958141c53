"""Session facade.

Wires the discovery resolver, token store, flow controller, silent
refresh scheduler, auth state publisher and guard into the one object
UI collaborators hold.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

import httpx

from authsession.core.errors import DiscoveryError
from authsession.core.flow import AuthorizationFlowController, FlowState, Navigator
from authsession.core.guard import AuthorizationGuard, GuardDecision
from authsession.core.logging import ProtocolLogger, get_protocol_logger
from authsession.core.oidc.claims import IdentityClaims
from authsession.core.oidc.discovery import DiscoveryResolver, ProviderMetadata
from authsession.core.publisher import AuthListener, AuthStatePublisher
from authsession.core.refresh import DEFAULT_REFRESH_RATIO, SilentRefreshScheduler
from authsession.core.storage import MemoryStorage, create_storage
from authsession.core.timers import Clock, Scheduler, ThreadingScheduler, utc_now
from authsession.core.tokens import TokenStore

if TYPE_CHECKING:
    from authsession.core.config import AppConfig, ClientSettings
    from authsession.core.oidc.validation import IdTokenVerifier

logger = logging.getLogger(__name__)


def _log_navigation(url: str) -> None:
    logger.info(f"Navigate to {url}")


class AuthSession:
    """Authentication session for a single user agent.

    Construct it explicitly and pass it to whatever needs it. Call
    :meth:`start` before any flow operation.
    """

    def __init__(
        self,
        settings: ClientSettings,
        storage: MemoryStorage | None = None,
        navigator: Navigator | None = None,
        scheduler: Scheduler | None = None,
        clock: Clock = utc_now,
        http_client: httpx.Client | None = None,
        protocol_logger: ProtocolLogger | None = None,
        refresh_enabled: bool = True,
        refresh_ratio: float = DEFAULT_REFRESH_RATIO,
        id_token_verifier: IdTokenVerifier | None = None,
    ) -> None:
        self.settings = settings
        self.storage = storage if storage is not None else MemoryStorage()
        self._clock = clock
        self._scheduler = scheduler or ThreadingScheduler()
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._refresh_enabled = refresh_enabled
        self._started = False

        self.resolver = DiscoveryResolver(
            http_client=http_client,
            protocol_logger=self._protocol_logger,
            require_https=settings.require_https,
        )
        self.store = TokenStore(self.storage)
        self.flow = AuthorizationFlowController(
            resolver=self.resolver,
            settings=settings,
            store=self.store,
            storage=self.storage,
            navigator=navigator or _log_navigation,
            clock=clock,
            http_client=http_client,
            protocol_logger=self._protocol_logger,
            id_token_verifier=id_token_verifier,
        )
        self.refresher = SilentRefreshScheduler(
            store=self.store,
            client_provider=lambda: self.flow.client,
            scheduler=self._scheduler,
            clock=clock,
            ratio=refresh_ratio,
        )
        self.publisher = AuthStatePublisher(self.store, self._scheduler, clock=clock)
        self.guard = AuthorizationGuard(self.publisher, self.store, login=self.login)

    @property
    def metadata(self) -> ProviderMetadata:
        return self.resolver.metadata

    @property
    def flow_state(self) -> FlowState:
        return self.flow.state

    def start(self) -> ProviderMetadata:
        """Resolve the provider and restore any persisted session.

        Returns:
            The resolved provider metadata.

        Raises:
            DiscoveryError: If the provider cannot be discovered. Fatal; the
                session cannot run without metadata.
        """
        issuer = self.settings.issuer_url
        if not issuer:
            raise DiscoveryError("No issuer configured")

        metadata = self.resolver.resolve(issuer)

        if not self._started:
            restored = self.store.load()
            if restored is not None:
                logger.info("Restored persisted session")
            self.publisher.start()
            if self._refresh_enabled:
                # Schedules immediately when the restored set is past its deadline
                self.refresher.start()
            self._started = True

        return metadata

    def close(self) -> None:
        """Cancel timers and release HTTP resources. Tokens stay persisted."""
        self.refresher.stop()
        self.publisher.stop()
        self.flow.close()
        self._started = False

    # Flow operations

    def login(self) -> None:
        self.flow.login()

    def logout(self, redirect: bool = True) -> None:
        self.flow.logout(redirect=redirect)

    def handle_redirect_return(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> FlowState:
        return self.flow.handle_redirect_return(code, state, error=error, error_description=error_description)

    def can_enter(self, required_roles: Iterable[str] | None = None) -> GuardDecision:
        return self.guard.can_enter(required_roles)

    def subscribe(self, callback: AuthListener) -> Callable[[], None]:
        return self.publisher.subscribe(callback)

    # Accessors. These never raise.

    def is_authenticated(self) -> bool:
        return self.publisher.is_authenticated()

    def get_user_info(self) -> IdentityClaims | None:
        """Identity claims of the authenticated user, or ``None``."""
        if not self.is_authenticated():
            return None
        return self.store.claims

    def get_username(self) -> str:
        claims = self.get_user_info()
        return claims.preferred_username if claims else ""

    def get_email(self) -> str:
        claims = self.get_user_info()
        return claims.email if claims else ""

    def has_role(self, role: str) -> bool:
        claims = self.get_user_info()
        return claims.has_role(role) if claims else False

    def has_any_role(self, roles: Iterable[str]) -> bool:
        claims = self.get_user_info()
        return claims.has_any_role(list(roles)) if claims else False

    def get_access_token(self) -> str:
        """The access token while it is valid, otherwise an empty string."""
        token_set = self.store.current
        if token_set is None or not token_set.is_valid(self._clock()):
            return ""
        return token_set.access_token


def build_session(
    app_config: AppConfig,
    navigator: Navigator | None = None,
    scheduler: Scheduler | None = None,
    http_client: httpx.Client | None = None,
    storage: MemoryStorage | None = None,
) -> AuthSession:
    """Create an AuthSession from application configuration."""
    return AuthSession(
        settings=app_config.client,
        storage=storage if storage is not None else create_storage(app_config.storage),
        navigator=navigator,
        scheduler=scheduler,
        http_client=http_client,
        refresh_enabled=app_config.refresh.enabled,
        refresh_ratio=app_config.refresh.ratio,
    )
