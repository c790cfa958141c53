"""Identity claims derived from the ID token.

Claims are read-only views over the ID token payload. Every accessor
degrades to an empty value when a claim is missing or has the wrong shape.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from authsession.core.oidc.utils import decode_jwt


def _string(payload: Mapping[str, Any], name: str) -> str:
    value = payload.get(name)
    return value if isinstance(value, str) else ""


def _role_set(container: Any) -> frozenset[str]:
    """Extract ``{"roles": [...]}`` as a set, ignoring malformed entries."""
    if not isinstance(container, Mapping):
        return frozenset()
    roles = container.get("roles")
    if not isinstance(roles, (list, tuple)):
        return frozenset()
    return frozenset(role for role in roles if isinstance(role, str))


@dataclass(frozen=True)
class IdentityClaims:
    """Decoded identity of the authenticated subject."""

    subject: str = ""
    preferred_username: str = ""
    email: str = ""
    name: str = ""
    given_name: str = ""
    family_name: str = ""
    roles: frozenset[str] = frozenset()
    client_roles: Mapping[str, frozenset[str]] = field(default_factory=dict)
    raw: Mapping[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> IdentityClaims:
        """Build claims from an ID token payload.

        Realm roles come from ``realm_access.roles`` and client roles from
        ``resource_access.<client>.roles`` (Keycloak layout).
        """
        resource_access = payload.get("resource_access")
        client_roles: dict[str, frozenset[str]] = {}
        if isinstance(resource_access, Mapping):
            for client, access in resource_access.items():
                roles = _role_set(access)
                if roles:
                    client_roles[str(client)] = roles

        return cls(
            subject=_string(payload, "sub"),
            preferred_username=_string(payload, "preferred_username"),
            email=_string(payload, "email"),
            name=_string(payload, "name"),
            given_name=_string(payload, "given_name"),
            family_name=_string(payload, "family_name"),
            roles=_role_set(payload.get("realm_access")),
            client_roles=client_roles,
            raw=dict(payload),
        )

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str] | frozenset[str] | list[str] | tuple[str, ...]) -> bool:
        return not self.roles.isdisjoint(roles)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-safe dictionary."""
        return {
            "sub": self.subject,
            "preferred_username": self.preferred_username,
            "email": self.email,
            "name": self.name,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "roles": sorted(self.roles),
            "client_roles": {client: sorted(roles) for client, roles in self.client_roles.items()},
        }


def claims_from_id_token(id_token: str | None) -> IdentityClaims | None:
    """Decode identity claims, or ``None`` when absent or malformed."""
    if not id_token:
        return None
    decoded = decode_jwt(id_token)
    if not decoded.is_valid_format:
        return None
    return IdentityClaims.from_payload(decoded.payload)
