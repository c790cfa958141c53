"""OpenID Connect protocol pieces."""

from authsession.core.oidc.claims import IdentityClaims, claims_from_id_token
from authsession.core.oidc.client import OIDCClient, OIDCClientConfig, TokenResponse
from authsession.core.oidc.discovery import DiscoveryResolver, ProviderMetadata, discovery_url_for
from authsession.core.oidc.pkce import (
    PkceState,
    generate_code_challenge,
    generate_code_verifier,
    generate_pkce,
)
from authsession.core.oidc.utils import DecodedToken, decode_jwt
from authsession.core.oidc.validation import IdTokenVerificationError, IdTokenVerifier, JWKSManager

__all__ = [
    # Discovery
    "DiscoveryResolver",
    "ProviderMetadata",
    "discovery_url_for",
    # PKCE
    "PkceState",
    "generate_code_challenge",
    "generate_code_verifier",
    "generate_pkce",
    # Client
    "OIDCClient",
    "OIDCClientConfig",
    "TokenResponse",
    # Claims
    "DecodedToken",
    "IdentityClaims",
    "claims_from_id_token",
    "decode_jwt",
    # Verification
    "IdTokenVerificationError",
    "IdTokenVerifier",
    "JWKSManager",
]
