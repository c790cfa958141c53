"""Keycloak IdP preset.

Keycloak uses a realm-based architecture where each realm is an isolated
authentication domain with its own users, clients and roles. The issuer
of a realm is ``{base_url}/realms/{realm}``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class KeycloakConfig:
    """Location of a Keycloak realm."""

    base_url: str
    realm: str

    @property
    def realm_url(self) -> str:
        """Get the full realm URL."""
        return f"{self.base_url.rstrip('/')}/realms/{self.realm}"

    @property
    def oidc_issuer(self) -> str:
        """Get the OIDC issuer URL."""
        return self.realm_url

    @property
    def oidc_discovery_url(self) -> str:
        """Get the OIDC well-known configuration URL."""
        return f"{self.realm_url}/.well-known/openid-configuration"

    @property
    def oidc_authorization_endpoint(self) -> str:
        """Get the OIDC authorization endpoint."""
        return f"{self.realm_url}/protocol/openid-connect/auth"

    @property
    def oidc_token_endpoint(self) -> str:
        """Get the OIDC token endpoint."""
        return f"{self.realm_url}/protocol/openid-connect/token"

    @property
    def oidc_logout_endpoint(self) -> str:
        """Get the OIDC end-session endpoint."""
        return f"{self.realm_url}/protocol/openid-connect/logout"


KEYCLOAK_SETUP_GUIDE = """
# Keycloak Realm Setup Guide

## 1. Create a Realm

1. Log into the Keycloak Admin Console
2. Open the realm dropdown (top-left) and click "Create Realm"
3. Enter a realm name (e.g., "demo") and click "Create"

## 2. Create a Public Client

1. Go to Clients -> Create Client
2. Select "OpenID Connect" and enter a Client ID (e.g., "authsession")
3. Client authentication: OFF (public client, PKCE protects the code)
4. Standard flow: ON
5. Valid redirect URIs: `http://localhost:4200/callback`
6. Valid post logout redirect URIs: `http://localhost:4200`
7. Web origins: `http://localhost:4200`
8. In Advanced -> Proof Key for Code Exchange, set the method to `S256`

## 3. Create Realm Roles

1. Go to Realm roles -> Create role
2. Create `USER` and `ADMIN`
3. Roles appear in the ID token under `realm_access.roles` when the
   `roles` client scope maps them into the ID token
   (Client scopes -> roles -> Mappers -> realm roles -> "Add to ID token": ON)

## 4. Create Users

1. Go to Users -> Add User, fill in username, email, first and last name
2. Set a non-temporary password in the Credentials tab
3. Assign `USER` (and `ADMIN` for administrators) in Role mapping

## Quick Reference URLs

| Endpoint | URL |
|----------|-----|
| OIDC Discovery | `{realm_url}/.well-known/openid-configuration` |
| OIDC Auth | `{realm_url}/protocol/openid-connect/auth` |
| OIDC Token | `{realm_url}/protocol/openid-connect/token` |
| OIDC Logout | `{realm_url}/protocol/openid-connect/logout` |
"""


def get_setup_guide(base_url: str | None = None, realm: str | None = None) -> str:
    """Get the Keycloak setup guide, optionally customized with URLs.

    Args:
        base_url: Optional Keycloak server URL to customize examples.
        realm: Optional realm name to customize examples.

    Returns:
        Markdown-formatted setup guide.
    """
    guide = KEYCLOAK_SETUP_GUIDE

    if base_url and realm:
        config = KeycloakConfig(base_url=base_url, realm=realm)
        guide = guide.replace("{realm_url}", config.realm_url)

    return guide
