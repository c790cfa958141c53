"""OIDC provider discovery.

Fetches the provider's ``.well-known/openid-configuration`` document once
and caches it for the lifetime of the resolver.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

import httpx

from authsession.core.errors import DiscoveryError
from authsession.core.logging import LoggingClient, ProtocolLogger

logger = logging.getLogger(__name__)

WELL_KNOWN_SUFFIX = ".well-known/openid-configuration"


@dataclass(frozen=True)
class ProviderMetadata:
    """Endpoints published by the identity provider."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str = ""
    end_session_endpoint: str | None = None
    userinfo_endpoint: str | None = None
    code_challenge_methods_supported: tuple[str, ...] = ()
    grant_types_supported: tuple[str, ...] = ()
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_document(cls, document: Any) -> ProviderMetadata:
        """Build metadata from a parsed discovery document.

        Raises:
            DiscoveryError: If the document is not an object, lacks
                a required endpoint or has a malformed optional field.
        """
        if not isinstance(document, dict):
            raise DiscoveryError("Discovery document is not a JSON object")

        missing = [
            name
            for name in ("issuer", "authorization_endpoint", "token_endpoint")
            if not isinstance(document.get(name), str) or not document.get(name)
        ]
        if missing:
            raise DiscoveryError(f"Discovery document is missing: {', '.join(missing)}")

        return cls(
            issuer=document["issuer"],
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            jwks_uri=_optional_str(document, "jwks_uri") or "",
            end_session_endpoint=_optional_str(document, "end_session_endpoint"),
            userinfo_endpoint=_optional_str(document, "userinfo_endpoint"),
            code_challenge_methods_supported=_str_tuple(document, "code_challenge_methods_supported"),
            grant_types_supported=_str_tuple(document, "grant_types_supported"),
            raw=document,
        )

    def endpoints(self) -> dict[str, str]:
        """All endpoint URLs that are present, keyed by name."""
        candidates = {
            "authorization_endpoint": self.authorization_endpoint,
            "token_endpoint": self.token_endpoint,
            "jwks_uri": self.jwks_uri,
            "end_session_endpoint": self.end_session_endpoint,
            "userinfo_endpoint": self.userinfo_endpoint,
        }
        return {name: url for name, url in candidates.items() if url}


def _optional_str(document: dict[str, Any], name: str) -> str | None:
    value = document.get(name)
    if value is not None and not isinstance(value, str):
        raise DiscoveryError(f"Discovery document field {name} must be a string")
    return value or None


def _str_tuple(document: dict[str, Any], name: str) -> tuple[str, ...]:
    value = document.get(name)
    if value is None:
        return ()
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise DiscoveryError(f"Discovery document field {name} must be a list of strings")
    return tuple(value)


def discovery_url_for(issuer_or_url: str) -> str:
    """Build the discovery URL for an issuer, unless it already is one."""
    url = issuer_or_url.rstrip("/")
    if not url.endswith(WELL_KNOWN_SUFFIX):
        url = f"{url}/{WELL_KNOWN_SUFFIX}"
    return url


def _issuer_from(issuer_or_url: str) -> str:
    url = issuer_or_url.rstrip("/")
    if url.endswith(WELL_KNOWN_SUFFIX):
        url = url[: -len(WELL_KNOWN_SUFFIX)].rstrip("/")
    return url


class DiscoveryResolver:
    """Resolves and caches provider metadata.

    A failed resolution is never retried automatically; callers surface
    it as a fatal boot error.
    """

    def __init__(
        self,
        http_client: httpx.Client | None = None,
        protocol_logger: ProtocolLogger | None = None,
        require_https: bool = False,
        timeout: float = 10.0,
    ) -> None:
        self._http_client = http_client
        self._protocol_logger = protocol_logger
        self.require_https = require_https
        self.timeout = timeout
        self._metadata: ProviderMetadata | None = None
        self._issuer: str | None = None
        self._lock = threading.Lock()

    @property
    def metadata(self) -> ProviderMetadata:
        """Cached metadata. Never touches the network.

        Raises:
            DiscoveryError: If discovery has not completed.
        """
        metadata = self._metadata
        if metadata is None:
            raise DiscoveryError("Provider metadata has not been resolved")
        return metadata

    @property
    def is_resolved(self) -> bool:
        return self._metadata is not None

    def resolve(self, issuer_url: str) -> ProviderMetadata:
        """Resolve metadata for an issuer, fetching it on first call only.

        Args:
            issuer_url: Issuer URL or full discovery URL.

        Returns:
            The provider metadata.

        Raises:
            DiscoveryError: On network failure or a malformed document.
        """
        issuer = _issuer_from(issuer_url)
        with self._lock:
            if self._metadata is not None and self._issuer == issuer:
                return self._metadata

            metadata = self._fetch(issuer)
            self._metadata = metadata
            self._issuer = issuer
            return metadata

    def reconfigure(self, issuer_url: str) -> ProviderMetadata:
        """Drop the cached metadata and resolve again."""
        with self._lock:
            self._metadata = None
            self._issuer = None
        return self.resolve(issuer_url)

    def _fetch(self, issuer: str) -> ProviderMetadata:
        url = discovery_url_for(issuer)
        logger.debug(f"Fetching OIDC discovery from {url}")

        client = self._http_client or LoggingClient(protocol_logger=self._protocol_logger, timeout=self.timeout)
        try:
            response = client.get(url, headers={"Accept": "application/json"})
            response.raise_for_status()
            document = response.json()
        except httpx.TimeoutException as e:
            raise DiscoveryError(f"Timeout fetching OIDC configuration from {url}") from e
        except httpx.HTTPStatusError as e:
            raise DiscoveryError(
                f"HTTP {e.response.status_code} fetching OIDC configuration: {e.response.text[:200]}"
            ) from e
        except httpx.HTTPError as e:
            raise DiscoveryError(f"Request error fetching OIDC configuration: {e}") from e
        except ValueError as e:
            raise DiscoveryError(f"Invalid JSON in OIDC configuration: {e}") from e
        finally:
            if self._http_client is None:
                client.close()

        metadata = ProviderMetadata.from_document(document)

        if metadata.issuer.rstrip("/") != issuer:
            raise DiscoveryError(f"Issuer mismatch: requested {issuer}, document declares {metadata.issuer}")

        if self.require_https:
            insecure = [name for name, endpoint in metadata.endpoints().items() if urlparse(endpoint).scheme != "https"]
            if insecure:
                raise DiscoveryError(f"HTTPS required but not used by: {', '.join(insecure)}")

        logger.info(f"Resolved OIDC provider {metadata.issuer}")
        return metadata
