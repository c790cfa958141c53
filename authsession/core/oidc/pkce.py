"""PKCE (RFC 7636) verifier/challenge generation.

The challenge travels on the authorization request; the verifier is only
revealed at code exchange, so an observer of the redirect cannot redeem
the code.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def generate_code_verifier(length: int = 64) -> str:
    """Generate a PKCE code verifier.

    The code verifier is a high-entropy cryptographic random string
    between 43 and 128 characters, using unreserved URI characters.

    Args:
        length: Length of the verifier (43-128, default 64).

    Returns:
        URL-safe base64-encoded random string.
    """
    length = max(43, min(128, length))
    num_bytes = (length * 3) // 4 + 1
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(num_bytes)).decode("ascii")
    return verifier.rstrip("=")[:length]


def generate_code_challenge(code_verifier: str, method: str = "S256") -> str:
    """Generate a PKCE code challenge from a code verifier.

    Args:
        code_verifier: The code verifier string.
        method: Challenge method - "S256" (recommended) or "plain".

    Returns:
        The code challenge string.

    Raises:
        ValueError: If method is not supported.
    """
    if method == "plain":
        return code_verifier
    elif method == "S256":
        digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
        return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
    else:
        raise ValueError(f"Unsupported code_challenge_method: {method}")


@dataclass(frozen=True)
class PkceState:
    """Secrets for one login round-trip, keyed by ``state``."""

    code_verifier: str
    code_challenge: str
    state: str
    nonce: str
    code_challenge_method: str = "S256"
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_expired(self, now: datetime, max_age_seconds: float) -> bool:
        return (now - self.created_at).total_seconds() > max_age_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary for transient storage."""
        return {
            "code_verifier": self.code_verifier,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "state": self.state,
            "nonce": self.nonce,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PkceState:
        """Reconstruct from dictionary."""
        return cls(
            code_verifier=data["code_verifier"],
            code_challenge=data["code_challenge"],
            code_challenge_method=data.get("code_challenge_method", "S256"),
            state=data["state"],
            nonce=data.get("nonce", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


def generate_pkce(method: str = "S256", now: datetime | None = None) -> PkceState:
    """Create a fresh PkceState for a login attempt.

    Args:
        method: Code challenge method.
        now: Creation time (defaults to the current UTC time).

    Returns:
        PkceState with random verifier, derived challenge, state and nonce.
    """
    verifier = generate_code_verifier()
    return PkceState(
        code_verifier=verifier,
        code_challenge=generate_code_challenge(verifier, method),
        code_challenge_method=method,
        state=secrets.token_urlsafe(32),
        nonce=secrets.token_urlsafe(32),
        created_at=now or datetime.now(UTC),
    )
