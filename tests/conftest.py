"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import json
import os
import threading

from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import TYPE_CHECKING, Any
from urllib.parse import parse_qs

import pytest

from outlook_mcp.auth.token_store import FileTokenStore
from outlook_mcp.auth.types import TokenSet
from outlook_mcp.config import AuthConfig
from tests.constants import CLIENT_ID, CLIENT_SECRET, FIXED_NOW_MS, STATE_SECRET


if TYPE_CHECKING:
    from collections.abc import Callable, Generator


REPO_ROOT = Path(__file__).resolve().parent.parent


# =============================================================================
# Environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Run every test without OUTLOOK_* variables and away from any .env file."""
    for key in list(os.environ):
        if key.startswith("OUTLOOK_") or key == "USE_TEST_MODE":
            monkeypatch.delenv(key, raising=False)
    workdir = tmp_path / "cwd"
    workdir.mkdir()
    monkeypatch.chdir(workdir)


# =============================================================================
# Configuration and tokens
# =============================================================================


@pytest.fixture()
def token_path(tmp_path: Path) -> Path:
    """Token store location inside the test's temp directory."""
    return tmp_path / "tokens" / "outlook-mcp-tokens.json"


@pytest.fixture()
def make_config(token_path: Path) -> Callable[..., AuthConfig]:
    """Factory for AuthConfig with test credentials and a temp token store."""

    def _make(**overrides: Any) -> AuthConfig:
        values: dict[str, Any] = {
            "client_id": CLIENT_ID,
            "client_secret": CLIENT_SECRET,
            "tenant_id": "test-tenant",
            "token_store_path": token_path,
            "state_secret": STATE_SECRET,
        }
        values.update(overrides)
        return AuthConfig(**values)

    return _make


@pytest.fixture()
def config(make_config: Callable[..., AuthConfig]) -> AuthConfig:
    """Default test configuration."""
    return make_config()


@pytest.fixture()
def token_store(token_path: Path) -> FileTokenStore:
    """File token store at the test token path."""
    return FileTokenStore(token_path)


@pytest.fixture()
def sample_tokens() -> TokenSet:
    """Token set issued at FIXED_NOW that expires an hour later."""
    return TokenSet(
        access_token="at_test_123",
        refresh_token="rt_test_456",
        token_type="Bearer",
        scope="User.Read Mail.Read",
        expires_in=3600,
        expires_at=FIXED_NOW_MS + 3_600_000,
        extra={"ext_expires_in": 3600},
    )


def write_raw_tokens(path: Path, data: dict[str, Any]) -> bytes:
    """Write a token file directly and return its bytes."""
    path.parent.mkdir(parents=True, exist_ok=True)
    raw = json.dumps(data, indent=2).encode("utf-8")
    path.write_bytes(raw)
    return raw


# =============================================================================
# Stub token endpoint
# =============================================================================


class StubTokenEndpoint:
    """Token endpoint served from a background thread.

    Records every POSTed form and answers with ``status`` and ``body``.
    """

    def __init__(self) -> None:
        self.status = 200
        self.body: dict[str, Any] = {
            "access_token": "X",
            "refresh_token": "Y",
            "token_type": "Bearer",
            "expires_in": 3600,
        }
        self.requests: list[dict[str, str]] = []
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def url(self) -> str:
        assert self._server is not None
        host, port = self._server.server_address[:2]
        return f"http://{host}:{port}/oauth2/v2.0/token"

    def start(self) -> None:
        stub = self

        class Handler(BaseHTTPRequestHandler):
            def do_POST(self) -> None:  # noqa: N802
                length = int(self.headers.get("Content-Length", "0"))
                form = parse_qs(self.rfile.read(length).decode("utf-8"))
                stub.requests.append({k: v[0] for k, v in form.items()})
                payload = json.dumps(stub.body).encode("utf-8")
                self.send_response(stub.status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                self.wfile.write(payload)

            def log_message(self, *_args: Any) -> None:
                return

        self._server = ThreadingHTTPServer(("127.0.0.1", 0), Handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)


@pytest.fixture()
def stub_token_endpoint() -> Generator[StubTokenEndpoint, None, None]:
    """Running stub token endpoint."""
    stub = StubTokenEndpoint()
    stub.start()
    yield stub
    stub.stop()


@pytest.fixture()
def child_env() -> dict[str, str]:
    """Environment additions that let a child process import outlook_mcp."""
    existing = os.environ.get("PYTHONPATH")
    pythonpath = str(REPO_ROOT) if not existing else f"{REPO_ROOT}{os.pathsep}{existing}"
    return {
        "PYTHONPATH": pythonpath,
        "NO_PROXY": "127.0.0.1,localhost",
        "no_proxy": "127.0.0.1,localhost",
    }
