"""Flask application factory."""

from __future__ import annotations

import os
import secrets
from typing import TYPE_CHECKING

from flask import Flask

if TYPE_CHECKING:
    from authsession.core.config import AppConfig
    from authsession.core.session import AuthSession


def create_app(config: dict | None = None, auth_session: AuthSession | None = None) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional configuration dictionary to override defaults.
        auth_session: Session to serve. Built from the loaded configuration
            when not provided; it is not started here.

    Returns:
        Configured Flask application instance.
    """
    app = Flask(__name__)

    app.config.from_mapping(
        SECRET_KEY=os.environ.get("AUTHSESSION_SECRET_KEY") or secrets.token_hex(32),
    )

    if config:
        app.config.from_mapping(config)

    if auth_session is None:
        from authsession.core.config import load_config
        from authsession.core.session import build_session
        from authsession.web.routes.auth import flask_navigator

        auth_session = build_session(load_config(), navigator=flask_navigator)

    app.config["AUTH_SESSION"] = auth_session

    from authsession.web import routes

    routes.init_app(app)

    return app


def run_server(
    app_config: AppConfig | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the Flask development server.

    Args:
        app_config: Application configuration. Loads from file/env if not provided.
        host: Override host from config.
        port: Override port from config.

    Raises:
        DiscoveryError: If the provider cannot be discovered.
    """
    from authsession.core.config import load_config
    from authsession.core.logging import configure_logging
    from authsession.core.session import build_session
    from authsession.web.routes.auth import flask_navigator

    if app_config is None:
        app_config = load_config()

    configure_logging(
        level=app_config.logging.level,
        trace_enabled=app_config.logging.trace_enabled,
        log_file=app_config.logging.log_file,
    )

    server_host = host or app_config.server.host
    server_port = port or app_config.server.port

    auth_session = build_session(app_config, navigator=flask_navigator)
    metadata = auth_session.start()

    app = create_app(auth_session=auth_session)
    app.debug = app_config.server.debug

    print("Starting AuthSession server...")
    print(f"  Provider: {metadata.issuer}")
    print(f"  URL: http://{server_host}:{server_port}")
    print("")

    try:
        app.run(host=server_host, port=server_port, use_reloader=False)
    finally:
        auth_session.close()
