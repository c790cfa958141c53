"""Tests for the Flask web adapter."""

from authsession.app import create_app
from authsession.web.routes.auth import flask_navigator

from conftest import AUTHORIZATION_ENDPOINT, END_SESSION_ENDPOINT, make_id_token, query_params


def web_login(client, provider, roles=None):
    """Log in through the web routes against the fake provider."""
    response = client.get("/login")
    params = query_params(response.headers["Location"])
    provider.queue_tokens(id_token=make_id_token(nonce=params["nonce"], roles=roles))
    return client.get(f"/callback?code=auth-code-1&state={params['state']}")


class TestPublicRoutes:
    """Tests for routes that need no session."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json == {"status": "healthy"}

    def test_index_unauthenticated(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json == {"authenticated": False, "username": ""}

    def test_unknown_path_redirects_home(self, client):
        response = client.get("/no/such/page")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/")

    def test_unauthorized_page(self, client):
        assert client.get("/unauthorized").status_code == 403


class TestLoginRoutes:
    """Tests for the login round-trip."""

    def test_login_redirects_to_provider(self, client):
        response = client.get("/login")
        assert response.status_code == 302
        assert response.headers["Location"].startswith(AUTHORIZATION_ENDPOINT + "?")

    def test_callback_completes_login(self, client, provider, web_session):
        response = web_login(client, provider)

        assert response.status_code == 302
        assert response.headers["Location"].endswith("/dashboard")
        assert web_session.is_authenticated()
        assert client.get("/").json == {"authenticated": True, "username": "alice"}

    def test_callback_state_mismatch(self, client, provider):
        client.get("/login")
        response = client.get("/callback?code=auth-code-1&state=forged")

        assert response.status_code == 400
        assert response.json["error"] == "state_mismatch"
        assert provider.token_requests == []

    def test_callback_provider_error(self, client):
        params = query_params(client.get("/login").headers["Location"])
        response = client.get(f"/callback?error=access_denied&error_description=Denied&state={params['state']}")

        assert response.status_code == 400
        assert response.json == {"error": "access_denied", "error_description": "Denied"}

    def test_login_when_authenticated(self, client, provider):
        web_login(client, provider)
        response = client.get("/login")
        assert response.headers["Location"].endswith("/dashboard")

    def test_login_without_discovery(self, make_session):
        app = create_app({"TESTING": True}, auth_session=make_session(navigator=flask_navigator))
        response = app.test_client().get("/login")

        assert response.status_code == 503
        assert response.json["error"] == "provider_unavailable"

    def test_logout(self, client, provider, web_session):
        web_login(client, provider)
        response = client.get("/logout")

        assert response.status_code == 302
        assert response.headers["Location"].startswith(END_SESSION_ENDPOINT + "?")
        assert not web_session.is_authenticated()

    def test_logout_without_session(self, client):
        response = client.get("/logout")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/")


class TestGuardedRoutes:
    """Tests for role-guarded routes."""

    def test_dashboard_requires_login(self, client):
        response = client.get("/dashboard")
        assert response.status_code == 302
        assert response.headers["Location"].startswith(AUTHORIZATION_ENDPOINT)

    def test_dashboard(self, client, provider):
        web_login(client, provider, roles=["USER"])
        response = client.get("/dashboard")

        assert response.status_code == 200
        assert response.json == {"username": "alice", "email": "alice@example.com", "is_admin": False}

    def test_profile(self, client, provider):
        web_login(client, provider, roles=["USER"])
        response = client.get("/profile")

        assert response.status_code == 200
        assert response.json["preferred_username"] == "alice"
        assert response.json["roles"] == ["USER"]

    def test_admin_denied_without_role(self, client, provider):
        web_login(client, provider, roles=["USER"])
        response = client.get("/admin")

        assert response.status_code == 302
        assert response.headers["Location"].endswith("/unauthorized")

    def test_admin_allowed(self, client, provider):
        web_login(client, provider, roles=["USER", "ADMIN"])
        response = client.get("/admin")

        assert response.status_code == 200
        assert response.json == {"username": "alice", "roles": ["ADMIN", "USER"]}
