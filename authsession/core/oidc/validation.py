"""Optional ID token verification against the provider JWKS.

The redirect contract already implies the ID token came from the provider,
so this is off by default and enabled with ``verify_id_token``.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt
from jwt import PyJWKClient, PyJWKClientError

logger = logging.getLogger(__name__)

# Asymmetric algorithms only - symmetric algs require a shared secret
SECURE_ALGORITHMS = frozenset(
    {
        "RS256",
        "RS384",
        "RS512",
        "ES256",
        "ES384",
        "ES512",
        "PS256",
        "PS384",
        "PS512",
        "EdDSA",
    }
)


class IdTokenVerificationError(Exception):
    """Raised when an ID token fails verification."""


class JWKSManager:
    """Fetches and caches signing keys from the provider JWKS."""

    def __init__(self, jwks_uri: str, timeout: float = 10.0) -> None:
        self.jwks_uri = jwks_uri
        self.timeout = timeout
        self._jwks_client: PyJWKClient | None = None

    def get_signing_key(self, token: str) -> Any:
        """Get the signing key for a token.

        Raises:
            PyJWKClientError: If the key cannot be found.
        """
        if not self._jwks_client:
            self._jwks_client = PyJWKClient(self.jwks_uri, timeout=int(self.timeout))
        return self._jwks_client.get_signing_key_from_jwt(token)


class IdTokenVerifier:
    """Verifies ID token signature, issuer and audience."""

    def __init__(
        self,
        jwks_uri: str,
        issuer: str,
        audience: str,
        clock_skew_seconds: int = 120,
        jwks_manager: JWKSManager | None = None,
    ) -> None:
        self.issuer = issuer
        self.audience = audience
        self.clock_skew_seconds = clock_skew_seconds
        self.jwks_manager = jwks_manager or JWKSManager(jwks_uri)

    def verify(self, token: str) -> dict[str, Any]:
        """Verify a token and return its payload.

        Raises:
            IdTokenVerificationError: On any signature or claim failure.
        """
        try:
            signing_key = self.jwks_manager.get_signing_key(token)
            payload: dict[str, Any] = jwt.decode(
                token,
                signing_key.key,
                algorithms=list(SECURE_ALGORITHMS),
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.clock_skew_seconds,
            )
        except PyJWKClientError as e:
            raise IdTokenVerificationError(f"Could not find matching key in JWKS: {e}") from e
        except jwt.exceptions.InvalidTokenError as e:
            raise IdTokenVerificationError(f"ID token rejected: {e}") from e

        logger.debug(f"Verified ID token signature with key '{signing_key.key_id or 'unknown'}'")
        return payload
