"""Application configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from authsession.idp_presets.keycloak import KeycloakConfig

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".authsession"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_STORAGE_PATH = DEFAULT_CONFIG_DIR / "state.json"

# Environment variable prefix
ENV_PREFIX = "AUTHSESSION_"

DEFAULT_SCOPES = ["openid", "profile", "email"]


@dataclass
class ClientSettings:
    """OIDC client registration and provider location.

    The provider is located either by ``issuer`` directly or by a Keycloak
    base URL and realm, from which the issuer is derived.
    """

    client_id: str = ""
    client_secret: str | None = None
    issuer: str = ""
    keycloak: KeycloakConfig | None = None
    redirect_uri: str = "http://localhost:4200/callback"
    post_logout_redirect_uri: str | None = "http://localhost:4200"
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    require_https: bool = False
    verify_id_token: bool = False

    @property
    def issuer_url(self) -> str:
        """The issuer URL, derived from the Keycloak realm when not set."""
        if self.issuer:
            return self.issuer.rstrip("/")
        if self.keycloak:
            return self.keycloak.oidc_issuer
        return ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientSettings:
        """Create ClientSettings from a dictionary."""
        keycloak_data = data.get("keycloak") or {}
        keycloak = None
        if keycloak_data.get("base_url") and keycloak_data.get("realm"):
            keycloak = KeycloakConfig(base_url=keycloak_data["base_url"], realm=keycloak_data["realm"])

        return cls(
            client_id=data.get("client_id", ""),
            client_secret=data.get("client_secret"),
            issuer=data.get("issuer", ""),
            keycloak=keycloak,
            redirect_uri=data.get("redirect_uri", "http://localhost:4200/callback"),
            post_logout_redirect_uri=data.get("post_logout_redirect_uri", "http://localhost:4200"),
            scopes=data.get("scopes") or list(DEFAULT_SCOPES),
            require_https=data.get("require_https", False),
            verify_id_token=data.get("verify_id_token", False),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        data: dict[str, Any] = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "issuer": self.issuer,
            "redirect_uri": self.redirect_uri,
            "post_logout_redirect_uri": self.post_logout_redirect_uri,
            "scopes": self.scopes,
            "require_https": self.require_https,
            "verify_id_token": self.verify_id_token,
        }
        if self.keycloak:
            data["keycloak"] = {"base_url": self.keycloak.base_url, "realm": self.keycloak.realm}
        return data


@dataclass
class RefreshSettings:
    """Silent refresh settings."""

    enabled: bool = True
    ratio: float = 0.8

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RefreshSettings:
        """Create RefreshSettings from a dictionary."""
        return cls(
            enabled=data.get("enabled", True),
            ratio=float(data.get("ratio", 0.8)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"enabled": self.enabled, "ratio": self.ratio}


@dataclass
class StorageSettings:
    """Where pending logins and tokens are kept across redirects."""

    path: Path | None = None
    encrypt: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StorageSettings:
        """Create StorageSettings from a dictionary."""
        return cls(
            path=Path(data["path"]).expanduser() if data.get("path") else None,
            encrypt=data.get("encrypt", True),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "path": str(self.path) if self.path else None,
            "encrypt": self.encrypt,
        }


@dataclass
class ServerSettings:
    """Web adapter server settings."""

    host: str = "127.0.0.1"
    port: int = 4200
    debug: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ServerSettings:
        """Create ServerSettings from a dictionary."""
        return cls(
            host=data.get("host", "127.0.0.1"),
            port=data.get("port", 4200),
            debug=data.get("debug", False),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"host": self.host, "port": self.port, "debug": self.debug}


@dataclass
class LoggingSettings:
    """Logging settings."""

    level: str = "INFO"
    trace_enabled: bool = False
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        """Create LoggingSettings from a dictionary."""
        return cls(
            level=str(data.get("level", "INFO")).upper(),
            trace_enabled=data.get("trace_enabled", False),
            log_file=data.get("log_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"level": self.level, "trace_enabled": self.trace_enabled, "log_file": self.log_file}


@dataclass
class AppConfig:
    """Main application configuration."""

    client: ClientSettings = field(default_factory=ClientSettings)
    refresh: RefreshSettings = field(default_factory=RefreshSettings)
    storage: StorageSettings = field(default_factory=StorageSettings)
    server: ServerSettings = field(default_factory=ServerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            client=ClientSettings.from_dict(data.get("client") or {}),
            refresh=RefreshSettings.from_dict(data.get("refresh") or {}),
            storage=StorageSettings.from_dict(data.get("storage") or {}),
            server=ServerSettings.from_dict(data.get("server") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            config_path=config_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "client": self.client.to_dict(),
            "refresh": self.refresh.to_dict(),
            "storage": self.storage.to_dict(),
            "server": self.server.to_dict(),
            "logging": self.logging.to_dict(),
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_int(key: str, default: int) -> int:
    """Get an integer from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_env_float(key: str, default: float) -> float:
    """Get a float from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.

    Raises:
        ValueError: If the config file exists but is not valid YAML.
    """
    config = AppConfig()

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid configuration file {file_path}: {e}") from e
        config = AppConfig.from_dict(data, config_path=file_path)

    client = config.client
    if os.environ.get(f"{ENV_PREFIX}ISSUER"):
        client.issuer = os.environ[f"{ENV_PREFIX}ISSUER"]

    if os.environ.get(f"{ENV_PREFIX}KEYCLOAK_URL") and os.environ.get(f"{ENV_PREFIX}KEYCLOAK_REALM"):
        client.keycloak = KeycloakConfig(
            base_url=os.environ[f"{ENV_PREFIX}KEYCLOAK_URL"],
            realm=os.environ[f"{ENV_PREFIX}KEYCLOAK_REALM"],
        )

    if os.environ.get(f"{ENV_PREFIX}CLIENT_ID"):
        client.client_id = os.environ[f"{ENV_PREFIX}CLIENT_ID"]

    if os.environ.get(f"{ENV_PREFIX}CLIENT_SECRET"):
        client.client_secret = os.environ[f"{ENV_PREFIX}CLIENT_SECRET"]

    if os.environ.get(f"{ENV_PREFIX}REDIRECT_URI"):
        client.redirect_uri = os.environ[f"{ENV_PREFIX}REDIRECT_URI"]

    if os.environ.get(f"{ENV_PREFIX}POST_LOGOUT_REDIRECT_URI"):
        client.post_logout_redirect_uri = os.environ[f"{ENV_PREFIX}POST_LOGOUT_REDIRECT_URI"]

    client.require_https = _get_env_bool(f"{ENV_PREFIX}REQUIRE_HTTPS", client.require_https)
    client.verify_id_token = _get_env_bool(f"{ENV_PREFIX}VERIFY_ID_TOKEN", client.verify_id_token)

    config.refresh.enabled = _get_env_bool(f"{ENV_PREFIX}REFRESH_ENABLED", config.refresh.enabled)
    config.refresh.ratio = _get_env_float(f"{ENV_PREFIX}REFRESH_RATIO", config.refresh.ratio)

    if os.environ.get(f"{ENV_PREFIX}STORAGE_PATH"):
        config.storage.path = Path(os.environ[f"{ENV_PREFIX}STORAGE_PATH"]).expanduser()
    config.storage.encrypt = _get_env_bool(f"{ENV_PREFIX}STORAGE_ENCRYPT", config.storage.encrypt)

    if os.environ.get(f"{ENV_PREFIX}HOST"):
        config.server.host = os.environ[f"{ENV_PREFIX}HOST"]
    config.server.port = _get_env_int(f"{ENV_PREFIX}PORT", config.server.port)
    config.server.debug = _get_env_bool(f"{ENV_PREFIX}DEBUG", config.server.debug)

    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"].upper()
    config.logging.trace_enabled = _get_env_bool(f"{ENV_PREFIX}LOG_TRACE", config.logging.trace_enabled)

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string.

    Useful for generating example configuration files.
    """
    return """\
# AuthSession Configuration File
# Environment variables override these settings (prefix: AUTHSESSION_)

client:
  # OAuth2 client ID registered at the identity provider
  client_id: ""

  # Issuer URL of the OpenID Connect provider
  # issuer: "http://localhost:8080/realms/demo"

  # Alternatively, derive the issuer from a Keycloak realm
  # keycloak:
  #   base_url: "http://localhost:8080"
  #   realm: "demo"

  # Callback URL the provider redirects back to after login
  redirect_uri: "http://localhost:4200/callback"

  # Where the provider sends the browser after logout
  post_logout_redirect_uri: "http://localhost:4200"

  scopes:
    - openid
    - profile
    - email

  # Reject provider endpoints that are not HTTPS
  require_https: false

  # Verify ID token signatures against the provider JWKS
  verify_id_token: false

refresh:
  # Renew tokens in the background before they expire
  enabled: true

  # Fraction of the token lifetime after which renewal runs
  ratio: 0.8

storage:
  # File holding pending logins and the current tokens
  # path: ~/.authsession/state.json

  # Encrypt the storage file (key in ~/.authsession/storage.key)
  encrypt: true

server:
  host: "127.0.0.1"
  port: 4200
  debug: false

logging:
  # ERROR, INFO, DEBUG or TRACE
  level: "INFO"

  # Allow TRACE to write tokens and secrets to the log
  trace_enabled: false
"""
