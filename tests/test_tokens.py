"""Tests for the token set and Token Store."""

from datetime import timedelta

from authsession.core.oidc.client import TokenResponse
from authsession.core.storage import MemoryStorage
from authsession.core.tokens import STORAGE_KEY, TokenSet, TokenStore

from conftest import START, make_id_token


def response(**kwargs) -> TokenResponse:
    kwargs.setdefault("access_token", "access-1")
    kwargs.setdefault("token_type", "Bearer")
    return TokenResponse(**kwargs)


def token_set(**kwargs) -> TokenSet:
    kwargs.setdefault("access_token", "access-1")
    kwargs.setdefault("issued_at", START)
    kwargs.setdefault("expires_at", START + timedelta(seconds=300))
    return TokenSet(**kwargs)


class TestTokenSet:
    """Tests for building token sets from token responses."""

    def test_expiry_from_expires_in(self):
        tokens = TokenSet.from_response(response(expires_in=120), issued_at=START)
        assert tokens.expires_at == START + timedelta(seconds=120)
        assert tokens.lifetime == timedelta(seconds=120)

    def test_default_lifetime(self):
        tokens = TokenSet.from_response(response(expires_in=None), issued_at=START)
        assert tokens.expires_at == START + timedelta(seconds=300)

    def test_refresh_carries_values_forward(self):
        previous = token_set(refresh_token="refresh-1", id_token="id-1", scope="openid email")
        renewed = TokenSet.from_response(response(access_token="access-2"), issued_at=START, previous=previous)

        assert renewed.access_token == "access-2"
        assert renewed.refresh_token == "refresh-1"
        assert renewed.id_token == "id-1"
        assert renewed.scope == "openid email"

    def test_refresh_prefers_new_values(self):
        previous = token_set(refresh_token="refresh-1", id_token="id-1")
        renewed = TokenSet.from_response(
            response(refresh_token="refresh-2", id_token="id-2"), issued_at=START, previous=previous
        )
        assert renewed.refresh_token == "refresh-2"
        assert renewed.id_token == "id-2"

    def test_validity_boundary(self):
        tokens = token_set()
        assert tokens.is_valid(START + timedelta(seconds=299))
        assert not tokens.is_valid(START + timedelta(seconds=300))


class TestTokenStore:
    """Tests for atomic replacement and persistence."""

    def test_starts_empty(self):
        store = TokenStore()
        assert store.current is None
        assert store.claims is None

    def test_replace_derives_claims(self):
        store = TokenStore()
        store.replace(token_set(id_token=make_id_token(roles=["ADMIN"])))

        snapshot = store.snapshot
        assert snapshot.token_set is store.current
        assert snapshot.claims.preferred_username == "alice"
        assert snapshot.claims.has_role("ADMIN")

    def test_snapshot_never_mixes_sets(self):
        store = TokenStore()
        store.replace(token_set(access_token="a", id_token=make_id_token(preferred_username="first")))
        old = store.snapshot

        store.replace(token_set(access_token="b", id_token=make_id_token(preferred_username="second")))

        assert old.token_set.access_token == "a"
        assert old.claims.preferred_username == "first"
        assert store.snapshot.claims.preferred_username == "second"

    def test_malformed_id_token_yields_no_claims(self):
        store = TokenStore()
        store.replace(token_set(id_token="not-a-jwt"))
        assert store.current is not None
        assert store.claims is None

    def test_listeners_notified(self):
        store = TokenStore()
        seen = []
        unsubscribe = store.subscribe(seen.append)

        tokens = token_set()
        store.replace(tokens)
        store.clear()
        unsubscribe()
        store.replace(tokens)

        assert seen == [tokens, None]

    def test_failing_listener_does_not_block_others(self):
        store = TokenStore()
        seen = []

        def broken(_):
            raise RuntimeError("boom")

        store.subscribe(broken)
        store.subscribe(seen.append)
        store.replace(token_set())

        assert len(seen) == 1

    def test_persisted_and_cleared(self):
        storage = MemoryStorage()
        store = TokenStore(storage)

        store.replace(token_set(refresh_token="refresh-1"))
        assert storage.get(STORAGE_KEY)["refresh_token"] == "refresh-1"

        store.clear()
        assert storage.get(STORAGE_KEY) is None

    def test_load_rehydrates(self):
        storage = MemoryStorage()
        tokens = token_set(refresh_token="refresh-1", id_token=make_id_token())
        TokenStore(storage).replace(tokens)

        restored_store = TokenStore(storage)
        restored = restored_store.load()

        assert restored == tokens
        assert restored_store.claims.email == "alice@example.com"

    def test_load_discards_malformed(self):
        storage = MemoryStorage()
        storage.set(STORAGE_KEY, {"access_token": "a", "issued_at": "yesterday"})

        store = TokenStore(storage)
        assert store.load() is None
        assert storage.get(STORAGE_KEY) is None

    def test_replace_if_current(self):
        store = TokenStore()
        first = token_set(access_token="a")
        second = token_set(access_token="b")
        store.replace(first)

        assert store.replace_if(first, second)
        assert store.current is second

    def test_replace_if_superseded(self):
        store = TokenStore()
        seen = []
        first = token_set(access_token="a")
        store.replace(first)
        store.clear()
        store.subscribe(seen.append)

        assert not store.replace_if(first, token_set(access_token="b"))
        assert store.current is None
        assert seen == []
