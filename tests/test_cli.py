"""Tests for CLI commands."""

import json

import pytest
import yaml
from click.testing import CliRunner

import authsession.app
from authsession import __version__
from authsession.cli.main import cli
from authsession.core import config as config_module
from authsession.core import storage as storage_module
from authsession.core.errors import DiscoveryError
from authsession.core.oidc import discovery as discovery_module

from conftest import ISSUER, FakeProvider, make_id_token


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def isolated_home(monkeypatch, tmp_path):
    """Point default config and key paths into a temp directory."""
    monkeypatch.setattr(config_module, "DEFAULT_CONFIG_FILE", tmp_path / "config.yaml")
    monkeypatch.setattr(storage_module, "DEFAULT_KEY_PATH", tmp_path / "storage.key")
    for name in ("AUTHSESSION_CLIENT_ID", "AUTHSESSION_CLIENT_SECRET", "AUTHSESSION_ISSUER"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


class TestCLI:
    """Tests for top-level CLI behavior."""

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help(self, runner):
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "discover" in result.output
        assert "serve" in result.output


class TestConfigCommands:
    """Tests for configuration commands."""

    def test_path(self, runner, isolated_home):
        result = runner.invoke(cli, ["config", "path"])
        assert result.exit_code == 0
        assert str(isolated_home / "config.yaml") in result.output

    def test_init(self, runner, isolated_home):
        result = runner.invoke(cli, ["config", "init"])

        assert result.exit_code == 0
        assert (isolated_home / "config.yaml").exists()
        assert (isolated_home / "storage.key").exists()

        again = runner.invoke(cli, ["config", "init", "--json"])
        assert json.loads(again.output)["status"] == "already_initialized"

    def test_init_force(self, runner, isolated_home):
        (isolated_home / "config.yaml").write_text("client: {}\n")
        result = runner.invoke(cli, ["config", "init", "--force", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output)["status"] == "initialized"
        assert "redirect_uri" in (isolated_home / "config.yaml").read_text()

    def test_show_redacts_secret(self, runner, isolated_home):
        path = isolated_home / "custom.yaml"
        path.write_text(yaml.safe_dump({"client": {"client_id": "demo-app", "client_secret": "s3cret"}}))

        result = runner.invoke(cli, ["config", "show", "--path", str(path), "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["client"]["client_id"] == "demo-app"
        assert data["client"]["client_secret"] == "[REDACTED]"
        assert "s3cret" not in result.output

    def test_show_text(self, runner, isolated_home):
        result = runner.invoke(cli, ["config", "show"])
        assert result.exit_code == 0
        assert "Client ID: (not set)" in result.output

    def test_show_invalid_file(self, runner, isolated_home):
        path = isolated_home / "broken.yaml"
        path.write_text("client: [unclosed")
        result = runner.invoke(cli, ["config", "show", "--path", str(path)])
        assert result.exit_code != 0
        assert "Invalid configuration" in result.output

    def test_guide(self, runner):
        result = runner.invoke(cli, ["config", "guide", "--base-url", "http://kc:8080", "--realm", "demo"])
        assert result.exit_code == 0
        assert "http://kc:8080/realms/demo/.well-known/openid-configuration" in result.output


class TestDiscoverCommand:
    """Tests for the discover command."""

    @pytest.fixture
    def fake_resolver(self, monkeypatch):
        provider = FakeProvider()
        real_resolver = discovery_module.DiscoveryResolver

        def make(require_https=False):
            return real_resolver(http_client=provider.http_client(), require_https=require_https)

        monkeypatch.setattr(discovery_module, "DiscoveryResolver", make)
        return provider

    def test_discover_json(self, runner, fake_resolver):
        result = runner.invoke(cli, ["discover", ISSUER, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["issuer"] == ISSUER
        assert data["token_endpoint"].endswith("/token")

    def test_discover_text(self, runner, fake_resolver):
        result = runner.invoke(cli, ["discover", ISSUER])
        assert result.exit_code == 0
        assert f"Provider: {ISSUER}" in result.output

    def test_discover_failure(self, runner, fake_resolver):
        fake_resolver.discovery_status = 404
        result = runner.invoke(cli, ["discover", ISSUER])
        assert result.exit_code != 0
        assert "HTTP 404" in result.output


class TestClaimsCommand:
    """Tests for the claims command."""

    def test_claims_json(self, runner):
        token = make_id_token(roles=["USER", "ADMIN"])
        result = runner.invoke(cli, ["claims", token, "--json"])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["preferred_username"] == "alice"
        assert data["roles"] == ["ADMIN", "USER"]
        assert data["expires"].startswith("2024-01-01T12:05:00")

    def test_claims_text(self, runner):
        result = runner.invoke(cli, ["claims", make_id_token()])
        assert result.exit_code == 0
        assert "Username: alice" in result.output
        assert "Algorithm: HS256" in result.output

    def test_claims_invalid(self, runner):
        result = runner.invoke(cli, ["claims", "not-a-token"])
        assert result.exit_code != 0
        assert "Failed to decode" in result.output


class TestServeCommand:
    """Tests for the serve command."""

    def test_requires_client_id(self, runner, isolated_home):
        result = runner.invoke(cli, ["serve"])
        assert result.exit_code != 0
        assert "client_id" in result.output

    def test_discovery_failure(self, runner, isolated_home, monkeypatch):
        monkeypatch.setenv("AUTHSESSION_CLIENT_ID", "demo-app")

        def fail(app_config, host, port):
            raise DiscoveryError("connection refused")

        monkeypatch.setattr(authsession.app, "run_server", fail)
        result = runner.invoke(cli, ["serve"])

        assert result.exit_code != 0
        assert "Provider discovery failed" in result.output

    def test_passes_overrides(self, runner, isolated_home, monkeypatch):
        monkeypatch.setenv("AUTHSESSION_CLIENT_ID", "demo-app")
        calls = []
        monkeypatch.setattr(
            authsession.app,
            "run_server",
            lambda app_config, host, port: calls.append((app_config.server.debug, host, port)),
        )

        result = runner.invoke(cli, ["serve", "--port", "9000", "--debug"])

        assert result.exit_code == 0
        assert calls == [(True, None, 9000)]
