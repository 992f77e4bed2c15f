"""Auth callback server: the browser-facing half of the authorization-code flow.

Runs as its own process (``outlook-mcp auth-server``), normally spawned
and supervised by the MCP server. Routes:

- ``GET /auth`` redirects to the identity provider's authorize endpoint.
- ``GET /auth/callback`` exchanges the returned code for tokens and
  writes them to the token store before answering the browser.
- Anything else is a plain-text 404.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import html
import json
import logging
import os
import socket
import sys

from typing import TYPE_CHECKING, TextIO

import uvicorn

from fastapi import FastAPI, Request, Response
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..exceptions import TokenExchangeFailed
from .provider import MicrosoftIdentityProvider
from .state import generate_state, validate_state
from .token_store import FileTokenStore


if TYPE_CHECKING:
    from ..config import AuthConfig


logger = logging.getLogger("outlook_mcp.auth")

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>{title} - outlook-mcp</title>
<style>
  body {{ font-family: system-ui, sans-serif; max-width: 32rem;
         margin: 15vh auto; padding: 0 1rem; color: #222; }}
  h1 {{ font-size: 1.4rem; color: {accent}; }}
  p {{ line-height: 1.5; }}
</style>
</head>
<body>
  <h1>{title}</h1>
  {body}
</body>
</html>"""

_SECURITY_HEADERS = {
    "Cache-Control": "no-store",
    "Content-Security-Policy": "default-src 'none'; style-src 'unsafe-inline'",
    "X-Content-Type-Options": "nosniff",
}


def _html_page(title: str, paragraphs: list[str], status_code: int, accent: str) -> HTMLResponse:
    """Render a minimal page; ``paragraphs`` are escaped here."""
    body = "\n  ".join(f"<p>{html.escape(text, quote=True)}</p>" for text in paragraphs)
    content = _PAGE.format(title=title, body=body, accent=accent)
    return HTMLResponse(content=content, status_code=status_code, headers=_SECURITY_HEADERS)


def _success_page() -> HTMLResponse:
    return _html_page(
        "Authentication Successful",
        ["You are signed in to Microsoft. You can close this window and return to your assistant."],
        200,
        "#107c10",
    )


def _error_page(message: str, status_code: int) -> HTMLResponse:
    return _html_page("Authentication Failed", [message, "Ask your assistant to sign in again."], status_code, "#a4262c")


def _not_found() -> PlainTextResponse:
    return PlainTextResponse("Not Found", status_code=404)


def create_callback_app(
    config: AuthConfig,
    token_store: FileTokenStore | None = None,
    provider: MicrosoftIdentityProvider | None = None,
) -> FastAPI:
    """Create the auth callback application.

    Parameters
    ----------
    config : AuthConfig
        Process configuration.
    token_store : FileTokenStore, optional
        Store to write exchanged tokens to (default: the configured path).
    provider : MicrosoftIdentityProvider, optional
        Identity provider client (default: built from ``config``).

    Returns
    -------
    FastAPI
        Application with the ``/auth`` and ``/auth/callback`` routes.
    """
    store = token_store or FileTokenStore(config.token_store_path)
    idp = provider or MicrosoftIdentityProvider(config)

    app = FastAPI(
        title="outlook-mcp auth server",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.exception_handler(StarletteHTTPException)
    async def _plain_http_error(_request: Request, exc: StarletteHTTPException) -> Response:
        """Answer routing errors (404, 405) in plain text."""
        if exc.status_code == 404:
            return _not_found()
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @app.get("/auth")
    async def auth_start(client_id: str | None = None) -> Response:
        """Redirect the browser to the identity provider's sign-in page."""
        state = generate_state(config.state_secret)
        authorize_url = idp.build_authorize_url(state=state, client_id=client_id)
        logger.info("Redirecting browser to identity provider")
        return RedirectResponse(url=authorize_url, status_code=302)

    @app.get("/auth/callback")
    async def auth_callback(
        code: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> Response:
        """Exchange the authorization code and persist the token set."""
        if not code:
            if error:
                logger.warning(
                    "Identity provider returned an error: %s (%s)",
                    error,
                    error_description or "no description",
                )
            return _not_found()

        valid, reason = validate_state(state, config.state_secret, config.state_max_age_seconds)
        if not valid:
            logger.warning("Rejected auth callback: %s", reason)
            return _error_page(f"Invalid sign-in request: {reason}.", 400)

        # One attempt only: authorization codes are single-use.
        try:
            tokens = await idp.exchange_code(code)
        except TokenExchangeFailed as exc:
            logger.error("Authorization code exchange failed: %s", exc)
            return _error_page("The identity provider did not accept the sign-in.", 500)

        try:
            await store.write(tokens)
        except OSError as exc:
            logger.error("Could not write token store %s: %s", store.path, exc)
            return _error_page("Tokens could not be saved.", 500)

        logger.info("Authentication complete; tokens saved to %s", store.path)
        return _success_page()

    return app


def _bind_socket(host: str, port: int) -> socket.socket:
    """Bind and listen before announcing readiness."""
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen(128)
    except OSError:
        sock.close()
        raise
    return sock


def serve_callback_server(config: AuthConfig, ready_stream: TextIO | None = None) -> None:
    """Run the auth callback server until it receives SIGTERM/SIGINT.

    The listening socket is bound first; then a ready line
    ``{"type": "ready", "host": ..., "port": ..., "pid": ...}`` is
    written to ``ready_stream`` (stdout by default), which the supervisor
    waits for.

    Parameters
    ----------
    config : AuthConfig
        Process configuration.
    ready_stream : TextIO, optional
        Where to announce readiness.
    """
    config.require_credentials()

    sock = _bind_socket(config.callback_host, config.callback_port)
    host, port = sock.getsockname()[:2]

    app = create_callback_app(config)
    server = uvicorn.Server(
        uvicorn.Config(
            app,
            log_config=None,
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=max(1, int(config.shutdown_grace_seconds) - 1),
        )
    )

    logger.info("Auth server listening on http://%s:%s/auth", host, port)
    stream = ready_stream or sys.stdout
    stream.write(json.dumps({"type": "ready", "host": host, "port": port, "pid": os.getpid()}))
    stream.write("\n")
    stream.flush()

    server.run(sockets=[sock])
    logger.info("Auth server stopped")
