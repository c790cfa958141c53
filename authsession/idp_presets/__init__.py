"""Identity Provider presets.

Available presets:
- keycloak: Red Hat Keycloak / RH-SSO realms
"""

from authsession.idp_presets.keycloak import (
    KEYCLOAK_SETUP_GUIDE,
    KeycloakConfig,
    get_setup_guide,
)

__all__ = [
    "KEYCLOAK_SETUP_GUIDE",
    "KeycloakConfig",
    "get_setup_guide",
]
