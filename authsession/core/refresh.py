"""Silent Refresh Scheduler.

Renews the token set with the refresh token grant before it expires,
at a fixed fraction of its lifetime. A failed renewal ends the session;
it is not retried because the user has to log in interactively again.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from authsession.core.errors import RefreshFailure
from authsession.core.timers import Clock, Scheduler, TimerHandle, utc_now
from authsession.core.tokens import TokenSet, TokenStore

if TYPE_CHECKING:
    from authsession.core.oidc.client import OIDCClient

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_RATIO = 0.8


class SilentRefreshScheduler:
    """Keeps the Token Store valid without user interaction.

    Every token set replacement cancels the pending renewal and schedules
    a new one from the new expiry. A generation counter turns any timer
    that fires after being superseded into a no-op.
    """

    def __init__(
        self,
        store: TokenStore,
        client_provider: Callable[[], OIDCClient],
        scheduler: Scheduler,
        clock: Clock = utc_now,
        ratio: float = DEFAULT_REFRESH_RATIO,
    ) -> None:
        if not 0 < ratio < 1:
            raise ValueError(f"Refresh ratio must be between 0 and 1, got {ratio}")

        self._store = store
        self._client_provider = client_provider
        self._scheduler = scheduler
        self._clock = clock
        self.ratio = ratio

        self._lock = threading.RLock()
        self._timer: TimerHandle | None = None
        self._generation = 0
        self._next_refresh_at: datetime | None = None
        self._unsubscribe_store: Callable[[], None] | None = None
        self.last_error: RefreshFailure | None = None

    @property
    def next_refresh_at(self) -> datetime | None:
        """When the pending renewal will run, if one is scheduled."""
        return self._next_refresh_at

    def renewal_deadline(self, token_set: TokenSet) -> datetime:
        """The point in the token lifetime at which renewal runs."""
        return token_set.issued_at + token_set.lifetime * self.ratio

    def start(self) -> None:
        """Follow the Token Store and schedule renewal of its current set."""
        if self._unsubscribe_store is None:
            self._unsubscribe_store = self._store.subscribe(self._schedule)
        self._schedule(self._store.current)

    def stop(self) -> None:
        """Stop following the Token Store and cancel any pending renewal."""
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None
        self.cancel()

    def cancel(self) -> None:
        """Cancel the pending renewal."""
        with self._lock:
            self._generation += 1
            self._next_refresh_at = None
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _schedule(self, token_set: TokenSet | None) -> None:
        with self._lock:
            self.cancel()

            if token_set is None:
                return
            if not token_set.refresh_token:
                logger.debug("No refresh token issued; session will expire without renewal")
                return

            deadline = self.renewal_deadline(token_set)
            delay = max(0.0, (deadline - self._clock()).total_seconds())
            generation = self._generation

            self._next_refresh_at = deadline
            self._timer = self._scheduler.call_later(delay, lambda: self._on_timer(generation))
            logger.debug(f"Silent refresh scheduled at {deadline.isoformat()} (in {delay:.0f}s)")

    def _on_timer(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._timer = None
            self._next_refresh_at = None

        try:
            self.refresh_now()
        except RefreshFailure as e:
            # Already recorded; the cleared store is the visible outcome.
            logger.debug(f"Scheduled refresh ended the session: {e}")

    def refresh_now(self) -> TokenSet | None:
        """Renew the current token set immediately.

        Returns:
            The new token set, or the current one if the session changed
            while the renewal was in flight.

        Raises:
            RefreshFailure: If there is nothing to renew or the provider
                rejects the refresh token or returns an unusable one.
        """
        token_set = self._store.current
        if token_set is None or not token_set.refresh_token:
            raise RefreshFailure("no_refresh_token", "No refresh token available")

        response = self._client_provider().refresh(token_set.refresh_token)

        if not response.is_success:
            failure = RefreshFailure(response.error or "refresh_failed", response.error_description)
            if not self._fail(token_set, failure):
                return self._store.current
            raise failure

        try:
            renewed = TokenSet.from_response(response, issued_at=self._clock(), previous=token_set)
        except (OverflowError, ValueError) as e:
            failure = RefreshFailure("invalid_token_response", f"Unusable token response: {e}")
            if not self._fail(token_set, failure):
                return self._store.current
            raise failure from e

        if not self._store.replace_if(token_set, renewed):
            logger.info("Session changed during refresh; discarding refresh result")
            return self._store.current

        self.last_error = None
        logger.info(f"Tokens refreshed; new expiry {renewed.expires_at.isoformat()}")
        return renewed

    def _fail(self, token_set: TokenSet, failure: RefreshFailure) -> bool:
        if not self._store.replace_if(token_set, None):
            logger.info("Session changed during refresh; discarding refresh result")
            return False
        logger.warning(f"Silent refresh failed, session ended: {failure}")
        self.last_error = failure
        return True
