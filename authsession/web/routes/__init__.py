"""Web routes for AuthSession."""

from typing import Any

from flask import Blueprint, Flask, redirect, url_for
from werkzeug.exceptions import NotFound
from werkzeug.wrappers import Response as WerkzeugResponse

from authsession.web.routes.auth import get_auth_session, route_guard

main_bp = Blueprint("main", __name__)


@main_bp.route("/")
def index() -> dict[str, Any]:
    """Public landing view."""
    auth_session = get_auth_session()
    return {
        "authenticated": auth_session.is_authenticated(),
        "username": auth_session.get_username(),
    }


@main_bp.route("/health")
def health() -> dict[str, str]:
    """Health check endpoint (unauthenticated)."""
    return {"status": "healthy"}


@main_bp.route("/dashboard")
@route_guard()
def dashboard() -> dict[str, Any]:
    auth_session = get_auth_session()
    return {
        "username": auth_session.get_username(),
        "email": auth_session.get_email(),
        "is_admin": auth_session.has_role("ADMIN"),
    }


@main_bp.route("/profile")
@route_guard()
def profile() -> dict[str, Any]:
    user_info = get_auth_session().get_user_info()
    return user_info.to_dict() if user_info else {}


@main_bp.route("/admin")
@route_guard("ADMIN")
def admin() -> dict[str, Any]:
    user_info = get_auth_session().get_user_info()
    return {
        "username": user_info.preferred_username if user_info else "",
        "roles": sorted(user_info.roles) if user_info else [],
    }


@main_bp.route("/unauthorized")
def unauthorized() -> tuple[dict[str, str], int]:
    return {"error": "forbidden", "error_description": "You do not have the role this page requires"}, 403


def _redirect_home(error: NotFound) -> WerkzeugResponse:
    """Unknown paths go back to the landing view."""
    return redirect(url_for("main.index"))


def init_app(app: Flask) -> None:
    """Register blueprints with the Flask app."""
    from authsession.web.routes.auth import auth_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_error_handler(404, _redirect_home)
