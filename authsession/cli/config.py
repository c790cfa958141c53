"""Configuration management CLI commands."""

from __future__ import annotations

from pathlib import Path

import click

from authsession.cli.output import error_result, json_option, output_result


@click.group()
def config() -> None:
    """Manage AuthSession configuration."""
    pass


@config.command("init")
@click.option(
    "--force",
    is_flag=True,
    help="Overwrite an existing configuration file.",
)
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Where to write the configuration file.",
)
@json_option
def config_init(force: bool, config_path: Path | None, output_json: bool) -> None:
    """Write a commented configuration template and a storage key.

    Examples:

        # Create ~/.authsession/config.yaml
        authsession config init

        # Overwrite an existing file
        authsession config init --force
    """
    from authsession.core.config import DEFAULT_CONFIG_FILE, get_default_config_yaml
    from authsession.core.storage import DEFAULT_KEY_PATH, generate_encryption_key, save_encryption_key

    path = config_path or DEFAULT_CONFIG_FILE

    if path.exists() and not force:
        if output_json:
            output_result({"status": "already_initialized", "config_file": str(path)}, as_json=True)
            return
        click.echo(f"Configuration already exists: {path}")
        click.echo("Use --force to overwrite it.")
        return

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_default_config_yaml())

    key_created = False
    if not DEFAULT_KEY_PATH.exists():
        save_encryption_key(generate_encryption_key(), DEFAULT_KEY_PATH)
        key_created = True

    if output_json:
        output_result(
            {
                "status": "initialized",
                "config_file": str(path),
                "key_file": str(DEFAULT_KEY_PATH),
                "key_created": key_created,
            },
            as_json=True,
        )
        return

    click.echo(f"Configuration written to: {path}")
    if key_created:
        click.echo(f"Storage encryption key saved to: {DEFAULT_KEY_PATH}")
    click.echo("")
    click.echo("Next steps:")
    click.echo("  1. Set client.client_id and client.issuer (or client.keycloak)")
    click.echo("  2. Run 'authsession serve'")


@config.command("show")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),  # type: ignore[type-var]
    default=None,
    help="Configuration file to read.",
)
@json_option
def config_show(config_path: Path | None, output_json: bool) -> None:
    """Show the effective configuration, including environment overrides."""
    from authsession.core.config import load_config

    try:
        app_config = load_config(config_path)
    except ValueError as e:
        error_result(str(e), output_json)

    data = app_config.to_dict()
    if data["client"].get("client_secret"):
        data["client"]["client_secret"] = "[REDACTED]"

    if output_json:
        output_result(data, as_json=True)
        return

    client = app_config.client
    click.echo(f"Config file: {app_config.config_path or '(defaults)'}")
    click.echo("")
    click.echo("Client:")
    click.echo(f"  Issuer: {client.issuer_url or '(not set)'}")
    click.echo(f"  Client ID: {client.client_id or '(not set)'}")
    click.echo(f"  Client secret: {'[REDACTED]' if client.client_secret else '(none)'}")
    click.echo(f"  Redirect URI: {client.redirect_uri}")
    click.echo(f"  Scopes: {' '.join(client.scopes)}")
    click.echo("")
    click.echo(f"Refresh: {'enabled' if app_config.refresh.enabled else 'disabled'} (ratio {app_config.refresh.ratio})")
    click.echo(f"Storage: {app_config.storage.path or '(default)'} (encrypted: {app_config.storage.encrypt})")
    click.echo(f"Server: {app_config.server.host}:{app_config.server.port}")
    click.echo(f"Log level: {app_config.logging.level}")


@config.command("path")
def config_path_cmd() -> None:
    """Print the default configuration file path."""
    from authsession.core.config import DEFAULT_CONFIG_FILE

    click.echo(str(DEFAULT_CONFIG_FILE))


@config.command("guide")
@click.option("--base-url", required=True, help="Keycloak base URL, e.g. http://localhost:8080")
@click.option("--realm", required=True, help="Keycloak realm name")
def config_guide(base_url: str, realm: str) -> None:
    """Print Keycloak client setup instructions for a realm."""
    from authsession.idp_presets import get_setup_guide

    click.echo(get_setup_guide(base_url, realm))
