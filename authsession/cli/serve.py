"""Server CLI commands."""

import click


@click.command()
@click.option(
    "--host",
    "-h",
    default=None,
    help="Host to bind to (default: from config or 127.0.0.1)",
)
@click.option(
    "--port",
    "-p",
    type=int,
    default=None,
    help="Port to bind to (default: from config or 4200)",
)
@click.option(
    "--debug",
    is_flag=True,
    help="Enable debug mode",
)
def serve(host: str | None, port: int | None, debug: bool) -> None:
    """Start the AuthSession web server.

    Discovers the configured provider first; the server does not start
    when discovery fails.

    Examples:

        # Start with settings from config.yaml
        authsession serve

        # Start on a custom port
        authsession serve --port 8000
    """
    from authsession.app import run_server
    from authsession.core.config import load_config
    from authsession.core.errors import DiscoveryError

    try:
        config = load_config()
    except ValueError as e:
        raise click.ClickException(str(e)) from None

    if debug:
        config.server.debug = True

    if not config.client.client_id:
        raise click.ClickException("client.client_id is not configured (or set AUTHSESSION_CLIENT_ID)")

    try:
        run_server(app_config=config, host=host, port=port)
    except DiscoveryError as e:
        raise click.ClickException(f"Provider discovery failed: {e}") from None
