"""AuthSession - OIDC Authorization Code session manager with role-based route guarding."""

__version__ = "0.1.0"
