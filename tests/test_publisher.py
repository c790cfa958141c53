"""Tests for the auth state publisher."""

import threading
from datetime import timedelta

from authsession.core.publisher import AuthStatePublisher
from authsession.core.tokens import TokenSet, TokenStore

from conftest import START


def token_set(lifetime: int = 300, issued_at=START) -> TokenSet:
    return TokenSet(
        access_token="access-1",
        issued_at=issued_at,
        expires_at=issued_at + timedelta(seconds=lifetime),
    )


class TestAuthStatePublisher:
    """Tests for the derived authentication signal."""

    def test_unauthenticated_without_tokens(self, scheduler, clock):
        publisher = AuthStatePublisher(TokenStore(), scheduler, clock)
        assert not publisher.is_authenticated()

    def test_subscribe_delivers_current_value(self, scheduler, clock):
        store = TokenStore()
        store.replace(token_set())
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()

        seen = []
        publisher.subscribe(seen.append)

        assert seen == [True]

    def test_emits_on_every_replacement(self, scheduler, clock):
        store = TokenStore()
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()
        seen = []
        publisher.subscribe(seen.append)

        store.replace(token_set())
        store.replace(token_set(lifetime=600))
        store.clear()

        assert seen == [False, True, True, False]

    def test_emits_false_at_expiry(self, scheduler, clock):
        store = TokenStore()
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()
        seen = []
        publisher.subscribe(seen.append)
        store.replace(token_set(lifetime=60))

        scheduler.advance(59)
        assert seen == [False, True]
        assert publisher.is_authenticated()

        scheduler.advance(1)
        assert seen == [False, True, False]
        assert not publisher.is_authenticated()

    def test_replacement_cancels_expiry(self, scheduler, clock):
        store = TokenStore()
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()
        store.replace(token_set(lifetime=60))
        seen = []
        publisher.subscribe(seen.append)

        store.replace(token_set(lifetime=600))
        scheduler.advance(60)

        assert seen == [True, True]

    def test_expired_set_is_unauthenticated(self, scheduler, clock):
        store = TokenStore()
        store.replace(token_set(issued_at=START - timedelta(seconds=400)))
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()

        assert not publisher.is_authenticated()
        assert scheduler.pending == []

    def test_unsubscribe(self, scheduler, clock):
        store = TokenStore()
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()
        seen = []
        unsubscribe = publisher.subscribe(seen.append)

        unsubscribe()
        store.replace(token_set())

        assert seen == [False]

    def test_failing_subscriber_is_isolated(self, scheduler, clock):
        store = TokenStore()
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()

        def broken(_):
            raise RuntimeError("boom")

        seen = []
        publisher.subscribe(broken)
        publisher.subscribe(seen.append)
        store.replace(token_set())

        assert seen == [False, True]

    def test_stop(self, scheduler, clock):
        store = TokenStore()
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()
        store.replace(token_set())
        seen = []
        publisher.subscribe(seen.append)

        publisher.stop()
        store.clear()

        assert seen == [True]
        assert scheduler.pending == []

    def test_early_timer_rearms(self, scheduler, clock):
        store = TokenStore()
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()
        seen = []
        publisher.subscribe(seen.append)
        store.replace(token_set(lifetime=60))

        first = scheduler.pending[0]
        first.fired = True
        first.callback()

        assert len(scheduler.pending) == 1
        assert seen == [False, True]

        scheduler.advance(60)
        assert seen == [False, True, False]

    def test_concurrent_replacement_and_early_timers(self, scheduler, clock):
        store = TokenStore()
        publisher = AuthStatePublisher(store, scheduler, clock)
        publisher.start()
        seen = []
        publisher.subscribe(seen.append)
        done = threading.Event()

        def replace_many():
            for lifetime in range(100, 300):
                store.replace(token_set(lifetime=lifetime))
            done.set()

        def fire_early():
            while not done.is_set():
                for timer in list(scheduler.timers[-5:]):
                    timer.callback()

        threads = [threading.Thread(target=replace_many), threading.Thread(target=fire_early)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        pending = scheduler.pending
        assert len(pending) == 1
        assert pending[0].due == START + timedelta(seconds=299)

        scheduler.advance(299)
        assert seen[-1] is False
        assert not publisher.is_authenticated()
