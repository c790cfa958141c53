"""JWT decoding utilities.

Decodes tokens for inspection only; signatures are not verified here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import jwt


@dataclass
class DecodedToken:
    """Represents a decoded JWT token."""

    header: dict[str, Any] = field(default_factory=dict)
    payload: dict[str, Any] = field(default_factory=dict)

    is_valid_format: bool = True
    error: str | None = None

    @property
    def expiration(self) -> datetime | None:
        """The ``exp`` claim as a UTC datetime."""
        return _timestamp(self.payload.get("exp"))

    @property
    def issued_at(self) -> datetime | None:
        """The ``iat`` claim as a UTC datetime."""
        return _timestamp(self.payload.get("iat"))

    @property
    def nonce(self) -> str | None:
        nonce = self.payload.get("nonce")
        return nonce if isinstance(nonce, str) else None

    @property
    def algorithm(self) -> str | None:
        """Get the signing algorithm from the header."""
        return self.header.get("alg")


def _timestamp(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        return datetime.fromtimestamp(value, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def decode_jwt(token: str) -> DecodedToken:
    """Decode a JWT token without verification.

    Args:
        token: JWT token string.

    Returns:
        DecodedToken with header and payload, or ``is_valid_format=False``
        and an error message when the token cannot be decoded.
    """
    try:
        header = jwt.get_unverified_header(token)
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.exceptions.DecodeError as e:
        return DecodedToken(is_valid_format=False, error=f"Failed to decode JWT: {e}")

    if not isinstance(payload, dict):
        return DecodedToken(is_valid_format=False, error="JWT payload is not a JSON object")

    return DecodedToken(header=header, payload=payload)
