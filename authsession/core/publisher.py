"""Auth State Publisher: a derived "has a valid access token" signal."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from authsession.core.timers import Clock, Scheduler, TimerHandle, utc_now
from authsession.core.tokens import TokenSet, TokenStore

logger = logging.getLogger(__name__)

AuthListener = Callable[[bool], None]


class AuthStatePublisher:
    """Publishes whether the session holds a currently valid access token.

    The value is never stored; it is computed from the Token Store on every
    query. Subscribers are notified on every token set replacement and once
    more when the current token set reaches its expiry.
    """

    def __init__(self, store: TokenStore, scheduler: Scheduler, clock: Clock = utc_now) -> None:
        self._store = store
        self._scheduler = scheduler
        self._clock = clock
        self._subscribers: list[AuthListener] = []
        self._expiry_timer: TimerHandle | None = None
        self._lock = threading.Lock()
        self._timer_lock = threading.RLock()
        self._unsubscribe_store: Callable[[], None] | None = None

    def start(self) -> None:
        """Follow the Token Store and arm the expiry timer for its current set."""
        if self._unsubscribe_store is None:
            self._unsubscribe_store = self._store.subscribe(self._on_token_set)
        self._arm_expiry(self._store.current)

    def stop(self) -> None:
        """Stop following the Token Store and cancel the expiry timer."""
        if self._unsubscribe_store is not None:
            self._unsubscribe_store()
            self._unsubscribe_store = None
        self._cancel_expiry()

    def is_authenticated(self) -> bool:
        token_set = self._store.current
        return token_set is not None and token_set.is_valid(self._clock())

    def subscribe(self, callback: AuthListener) -> Callable[[], None]:
        """Deliver the current value now and on every change.

        Returns:
            Callable that removes the subscription.
        """
        with self._lock:
            self._subscribers.append(callback)
        self._deliver(callback, self.is_authenticated())

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def _on_token_set(self, token_set: TokenSet | None) -> None:
        self._arm_expiry(token_set)
        self._emit()

    def _arm_expiry(self, token_set: TokenSet | None) -> None:
        with self._timer_lock:
            self._cancel_expiry()
            now = self._clock()
            if token_set is None or not token_set.is_valid(now):
                return

            delay = (token_set.expires_at - now).total_seconds()

            def on_expiry() -> None:
                with self._timer_lock:
                    if self._store.current is not token_set:
                        return
                    if token_set.is_valid(self._clock()):
                        # fired early
                        self._arm_expiry(token_set)
                        return
                    self._expiry_timer = None
                logger.info("Access token expired")
                self._emit()

            self._expiry_timer = self._scheduler.call_later(delay, on_expiry)

    def _cancel_expiry(self) -> None:
        with self._timer_lock:
            if self._expiry_timer is not None:
                self._expiry_timer.cancel()
                self._expiry_timer = None

    def _emit(self) -> None:
        value = self.is_authenticated()
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self._deliver(callback, value)

    def _deliver(self, callback: AuthListener, value: bool) -> None:
        try:
            callback(value)
        except Exception:
            logger.exception("Auth state subscriber failed")
