"""Token Store: the single source of truth for the current token set.

The token set and the identity claims derived from it live in one immutable
snapshot that is swapped as a whole, so readers never observe a new access
token paired with an old expiry or stale claims.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from authsession.core.oidc.claims import IdentityClaims, claims_from_id_token

if TYPE_CHECKING:
    from authsession.core.oidc.client import TokenResponse
    from authsession.core.storage import MemoryStorage

logger = logging.getLogger(__name__)

# Lifetime assumed when the provider omits expires_in
DEFAULT_TOKEN_LIFETIME_SECONDS = 300

STORAGE_KEY = "token_set"

TokenListener = Callable[["TokenSet | None"], None]


@dataclass(frozen=True)
class TokenSet:
    """Tokens issued by the provider. Replaced wholesale, never mutated."""

    access_token: str
    issued_at: datetime
    expires_at: datetime
    token_type: str = "Bearer"
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str = ""

    @property
    def lifetime(self) -> timedelta:
        return self.expires_at - self.issued_at

    def is_valid(self, now: datetime) -> bool:
        return now < self.expires_at

    @classmethod
    def from_response(
        cls,
        response: TokenResponse,
        issued_at: datetime,
        previous: TokenSet | None = None,
    ) -> TokenSet:
        """Build a token set from a successful token response.

        A refresh response that omits the refresh token, ID token or scope
        carries those values forward from ``previous``.
        """
        lifetime = response.expires_in or DEFAULT_TOKEN_LIFETIME_SECONDS
        return cls(
            access_token=response.access_token,
            token_type=response.token_type or "Bearer",
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=lifetime),
            refresh_token=response.refresh_token or (previous.refresh_token if previous else None),
            id_token=response.id_token or (previous.id_token if previous else None),
            scope=response.scope or (previous.scope if previous else ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary for storage."""
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "issued_at": self.issued_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "refresh_token": self.refresh_token,
            "id_token": self.id_token,
            "scope": self.scope,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        """Reconstruct from dictionary."""
        return cls(
            access_token=data["access_token"],
            token_type=data.get("token_type", "Bearer"),
            issued_at=datetime.fromisoformat(data["issued_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]),
            refresh_token=data.get("refresh_token"),
            id_token=data.get("id_token"),
            scope=data.get("scope", ""),
        )


@dataclass(frozen=True)
class TokenSnapshot:
    """A token set together with the claims derived from it."""

    token_set: TokenSet | None = None
    claims: IdentityClaims | None = None


_EMPTY = TokenSnapshot()


class TokenStore:
    """Holds the current TokenSet and notifies listeners on replacement.

    Writes are serialized by a lock; reads take the current snapshot
    reference and never block.
    """

    def __init__(self, storage: MemoryStorage | None = None) -> None:
        self._storage = storage
        self._snapshot = _EMPTY
        self._write_lock = threading.RLock()
        self._listeners: list[TokenListener] = []

    @property
    def snapshot(self) -> TokenSnapshot:
        return self._snapshot

    @property
    def current(self) -> TokenSet | None:
        return self._snapshot.token_set

    @property
    def claims(self) -> IdentityClaims | None:
        return self._snapshot.claims

    def subscribe(self, listener: TokenListener) -> Callable[[], None]:
        """Register a listener called after every replacement.

        Returns:
            Callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def replace(self, token_set: TokenSet | None) -> None:
        """Atomically replace the token set (``None`` clears it)."""
        with self._write_lock:
            claims = claims_from_id_token(token_set.id_token) if token_set else None
            self._snapshot = TokenSnapshot(token_set=token_set, claims=claims)

            if self._storage is not None:
                if token_set is None:
                    self._storage.delete(STORAGE_KEY)
                else:
                    self._storage.set(STORAGE_KEY, token_set.to_dict())

            for listener in list(self._listeners):
                try:
                    listener(token_set)
                except Exception:
                    logger.exception("Token store listener failed")

    def replace_if(self, expected: TokenSet | None, token_set: TokenSet | None) -> bool:
        """Replace the token set only if it is still ``expected``.

        Returns:
            True if the replacement happened.
        """
        with self._write_lock:
            if self._snapshot.token_set is not expected:
                return False
            self.replace(token_set)
            return True

    def clear(self) -> None:
        """Drop the current token set."""
        self.replace(None)

    def load(self) -> TokenSet | None:
        """Rehydrate the token set persisted in storage, if any."""
        if self._storage is None:
            return None

        data = self._storage.get(STORAGE_KEY)
        if not data:
            return None

        try:
            token_set = TokenSet.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed stored token set: {e}")
            self._storage.delete(STORAGE_KEY)
            return None

        self.replace(token_set)
        return token_set
