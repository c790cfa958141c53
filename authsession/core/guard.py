"""Authorization Guard: role-based route admission."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from enum import StrEnum

from authsession.core.publisher import AuthStatePublisher
from authsession.core.tokens import TokenStore

logger = logging.getLogger(__name__)


class GuardDecision(StrEnum):
    """Outcome of a route admission check."""

    ALLOW = "allow"
    REDIRECT_TO_LOGIN = "redirect_to_login"
    REDIRECT_TO_UNAUTHORIZED = "redirect_to_unauthorized"


class AuthorizationGuard:
    """Decides whether the current session may enter a route.

    Reads only cached state. An unauthenticated check starts a login as a
    side effect.
    """

    def __init__(self, publisher: AuthStatePublisher, store: TokenStore, login: Callable[[], None]) -> None:
        self._publisher = publisher
        self._store = store
        self._login = login

    def can_enter(self, required_roles: Iterable[str] | None = None) -> GuardDecision:
        """Check a route's required realm roles.

        Args:
            required_roles: Roles of which the user needs at least one.
                Empty or ``None`` admits any authenticated user.
        """
        if not self._publisher.is_authenticated():
            logger.debug("Route requires login")
            self._login()
            return GuardDecision.REDIRECT_TO_LOGIN

        required = frozenset(required_roles or ())
        if not required:
            return GuardDecision.ALLOW

        claims = self._store.claims
        roles = claims.roles if claims is not None else frozenset()
        if roles.isdisjoint(required):
            logger.info(f"Access denied; route requires one of {sorted(required)}")
            return GuardDecision.REDIRECT_TO_UNAUTHORIZED
        return GuardDecision.ALLOW
