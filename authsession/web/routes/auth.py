"""Authentication routes: login, redirect return and logout."""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, Any, cast

from flask import (
    Blueprint,
    current_app,
    g,
    has_request_context,
    redirect,
    request,
    url_for,
)

from authsession.core.errors import DiscoveryError, StateMismatchError, TokenExchangeError
from authsession.core.guard import GuardDecision

if TYPE_CHECKING:
    from werkzeug.wrappers import Response as WerkzeugResponse

    from authsession.core.session import AuthSession

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)

# Request-scoped slot the session navigator writes into
PENDING_NAVIGATION_KEY = "auth_navigation"


def get_auth_session() -> AuthSession:
    """Get the auth session from the app context."""
    return cast("AuthSession", current_app.config["AUTH_SESSION"])


def flask_navigator(url: str) -> None:
    """Navigator that records the target for the current request to redirect to."""
    if not has_request_context():
        logger.warning(f"Navigation to {url} requested outside a request")
        return
    setattr(g, PENDING_NAVIGATION_KEY, url)


def pop_navigation() -> str | None:
    """Take the navigation target recorded during this request, if any."""
    return cast("str | None", g.pop(PENDING_NAVIGATION_KEY, None))


def route_guard(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator admitting authenticated users holding any of ``roles``.

    With no roles, any authenticated user is admitted.
    """

    def decorator(f: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(f)
        def decorated_function(*args: Any, **kwargs: Any) -> Any:
            auth_session = get_auth_session()
            try:
                decision = auth_session.can_enter(roles)
            except DiscoveryError as e:
                logger.error(f"Cannot start login: {e}")
                return {"error": "provider_unavailable", "error_description": str(e)}, 503

            if decision == GuardDecision.REDIRECT_TO_LOGIN:
                return redirect(pop_navigation() or url_for("auth.login"))
            if decision == GuardDecision.REDIRECT_TO_UNAUTHORIZED:
                return redirect(url_for("main.unauthorized"))
            return f(*args, **kwargs)

        return decorated_function

    return decorator


@auth_bp.route("/login")
def login() -> WerkzeugResponse | tuple[dict[str, str], int]:
    """Start the authorization code flow."""
    auth_session = get_auth_session()
    if auth_session.is_authenticated():
        return redirect(url_for("main.dashboard"))

    try:
        auth_session.login()
    except DiscoveryError as e:
        logger.error(f"Cannot start login: {e}")
        return {"error": "provider_unavailable", "error_description": str(e)}, 503

    target = pop_navigation()
    if target is None:
        return {"error": "login_failed", "error_description": "No authorization URL was produced"}, 500
    return redirect(target)


@auth_bp.route("/callback")
def callback() -> WerkzeugResponse | tuple[dict[str, str | None], int]:
    """Handle the redirect return from the provider."""
    auth_session = get_auth_session()
    try:
        auth_session.handle_redirect_return(
            code=request.args.get("code"),
            state=request.args.get("state"),
            error=request.args.get("error"),
            error_description=request.args.get("error_description"),
        )
    except StateMismatchError as e:
        return {"error": "state_mismatch", "error_description": str(e)}, 400
    except TokenExchangeError as e:
        return {"error": e.error, "error_description": e.error_description}, 400
    except DiscoveryError as e:
        return {"error": "provider_unavailable", "error_description": str(e)}, 503

    if not auth_session.is_authenticated():
        return redirect(url_for("main.index"))
    return redirect(url_for("main.dashboard"))


@auth_bp.route("/logout")
def logout() -> WerkzeugResponse:
    """End the session locally and at the provider."""
    get_auth_session().logout()
    return redirect(pop_navigation() or url_for("main.index"))
