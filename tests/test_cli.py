"""Tests for the outlook-mcp CLI."""

from __future__ import annotations

import json

from pathlib import Path
from unittest.mock import patch

import pytest

from outlook_mcp.cli import build_parser, main


@pytest.fixture()
def credentials(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Set credentials and a temp token path in the environment."""
    token_path = tmp_path / "tokens.json"
    monkeypatch.setenv("OUTLOOK_CLIENT_ID", "cli-client")
    monkeypatch.setenv("OUTLOOK_CLIENT_SECRET", "cli-secret-value")
    monkeypatch.setenv("OUTLOOK_TOKEN_STORE_PATH", str(token_path))
    return token_path


class TestParser:
    """Tests for argument parsing."""

    def test_serve_flags(self) -> None:
        """serve accepts --start-auth."""
        args = build_parser().parse_args(["serve", "--start-auth"])
        assert args.command == "serve"
        assert args.start_auth is True

    def test_no_command(self, capsys: pytest.CaptureFixture[str]) -> None:
        """No subcommand prints help."""
        assert main([]) == 0
        assert "outlook-mcp" in capsys.readouterr().out


class TestConfigCommand:
    """Tests for the config command."""

    def test_redacts_secrets(self, credentials: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """The client secret is never printed."""
        assert main(["config"]) == 0
        out = capsys.readouterr().out
        assert "cli-client" in out
        assert "cli-secret-value" not in out
        assert "********" in out

    def test_env_format(self, credentials: Path, capsys: pytest.CaptureFixture[str]) -> None:
        """--env prints variables with secrets masked."""
        assert main(["config", "--env"]) == 0
        lines = dict(line.split("=", 1) for line in capsys.readouterr().out.splitlines())
        assert lines["OUTLOOK_CLIENT_ID"] == "cli-client"
        assert lines["OUTLOOK_CLIENT_SECRET"] == "********"
        assert lines["OUTLOOK_TOKEN_STORE_PATH"] == str(credentials)

    def test_invalid_configuration(
        self, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
    ) -> None:
        """Invalid settings exit with 1."""
        monkeypatch.setenv("OUTLOOK_CALLBACK_PORT", "not-a-port")
        assert main(["config"]) == 1
        assert "invalid configuration" in capsys.readouterr().err


class TestLogout:
    """Tests for the logout command."""

    def test_deletes_tokens(self, credentials: Path) -> None:
        """logout removes the token file."""
        credentials.write_text(json.dumps({"access_token": "a"}), encoding="utf-8")
        assert main(["logout"]) == 0
        assert not credentials.exists()

    def test_missing_tokens(self, credentials: Path) -> None:
        """logout without tokens succeeds."""
        assert main(["logout"]) == 0


class TestServeAndAuthServer:
    """Tests for the long-running commands."""

    def test_serve_dispatch(self, credentials: Path) -> None:
        """serve runs the MCP server with the requested supervision."""
        with patch("outlook_mcp.server.run_server") as run_server:
            assert main(["serve", "--start-auth"]) == 0
        config = run_server.call_args.args[0]
        assert config.client_id == "cli-client"
        assert run_server.call_args.kwargs["start_auth"] is True

    def test_auth_server_requires_credentials(self) -> None:
        """auth-server exits 1 without client credentials."""
        assert main(["auth-server"]) == 1

    def test_auth_server_port_in_use(self, credentials: Path) -> None:
        """auth-server exits 1 when the port cannot be bound."""
        with patch(
            "outlook_mcp.auth.callback_server._bind_socket",
            side_effect=OSError("Address already in use"),
        ):
            assert main(["auth-server"]) == 1
