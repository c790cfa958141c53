"""CLI entry point for AuthSession."""

import click

from authsession import __version__
from authsession.cli import config as config_commands
from authsession.cli import serve as serve_commands
from authsession.cli.output import error_result, json_option, output_result


@click.group()
@click.version_option(version=__version__, prog_name="authsession")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """AuthSession - OIDC Authorization Code + PKCE session manager."""
    ctx.ensure_object(dict)


@cli.command()
@click.argument("issuer")
@click.option("--require-https", is_flag=True, help="Reject endpoints that are not HTTPS.")
@json_option
def discover(issuer: str, require_https: bool, output_json: bool) -> None:
    """Fetch and show a provider's discovery document.

    ISSUER may be the issuer URL or the full discovery URL.

    Examples:

        authsession discover http://localhost:8080/realms/demo
    """
    from authsession.core.errors import DiscoveryError
    from authsession.core.oidc.discovery import DiscoveryResolver

    try:
        metadata = DiscoveryResolver(require_https=require_https).resolve(issuer)
    except DiscoveryError as e:
        error_result(str(e), output_json)

    data = {
        "issuer": metadata.issuer,
        **metadata.endpoints(),
        "code_challenge_methods_supported": list(metadata.code_challenge_methods_supported),
    }

    if output_json:
        output_result(data, as_json=True)
        return

    click.echo(f"Provider: {metadata.issuer}")
    output_result(data)
    if metadata.code_challenge_methods_supported and "S256" not in metadata.code_challenge_methods_supported:
        click.echo("")
        click.echo("WARNING: provider does not advertise PKCE S256 support")


@cli.command()
@click.argument("token")
@json_option
def claims(token: str, output_json: bool) -> None:
    """Decode an ID token and show its identity claims.

    The signature is not verified.
    """
    from authsession.core.oidc.claims import IdentityClaims
    from authsession.core.oidc.utils import decode_jwt

    decoded = decode_jwt(token)
    if not decoded.is_valid_format:
        error_result(decoded.error or "Invalid token", output_json)

    identity = IdentityClaims.from_payload(decoded.payload)
    data = identity.to_dict()
    data["expires"] = decoded.expiration.isoformat() if decoded.expiration else None

    if output_json:
        output_result(data, as_json=True)
        return

    click.echo(f"Algorithm: {decoded.algorithm or 'unknown'}")
    click.echo(f"Subject: {identity.subject or '(none)'}")
    click.echo(f"Username: {identity.preferred_username or '(none)'}")
    click.echo(f"Email: {identity.email or '(none)'}")
    click.echo(f"Roles: {', '.join(sorted(identity.roles)) or '(none)'}")
    for client, roles in sorted(identity.client_roles.items()):
        click.echo(f"Client roles ({client}): {', '.join(sorted(roles))}")
    if decoded.expiration:
        click.echo(f"Expires: {decoded.expiration.isoformat()}")


cli.add_command(config_commands.config)
cli.add_command(serve_commands.serve)
