"""outlook-mcp MCP server.

Registers the authentication tools on a FastMCP server and runs it over
stdio:

- ``authenticate``: returns the URL that starts the interactive sign-in
- ``check-auth-status``: reports the stored token state without network calls
- ``about``: server name and version

Mail and calendar tools wrap their handlers with :func:`require_auth`,
which injects a Graph access token obtained from the :class:`AuthGate`.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import functools
import inspect
import logging

from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastmcp import FastMCP

from . import SERVER_NAME, __version__
from .auth.gate import AuthGate
from .auth.supervisor import AuthServerSupervisor
from .auth.types import now_ms
from .exceptions import AuthenticationRequired, ChildProcessUnavailable


if TYPE_CHECKING:
    from .config import AuthConfig


logger = logging.getLogger("outlook_mcp.server")

AUTH_REQUIRED_MESSAGE = "Authentication required. Please use the 'authenticate' tool first."

ToolHandler = Callable[..., Awaitable[str]]


def require_auth(gate: AuthGate) -> Callable[[ToolHandler], ToolHandler]:
    """Decorate a tool handler that needs a Graph access token.

    The handler receives the token as its first argument; the wrapped
    tool no longer exposes that parameter. When no token can be produced
    the tool answers with :data:`AUTH_REQUIRED_MESSAGE`.

    Parameters
    ----------
    gate : AuthGate
        Gate used to obtain the token on each call.

    Returns
    -------
    callable
        Decorator for ``async def handler(access_token, ...) -> str``.
    """

    def decorator(handler: ToolHandler) -> ToolHandler:
        @functools.wraps(handler)
        async def wrapper(*args: Any, **kwargs: Any) -> str:
            try:
                access_token = await gate.ensure_authenticated()
            except AuthenticationRequired as exc:
                logger.info("%s: %s", handler.__name__, exc)
                return AUTH_REQUIRED_MESSAGE
            return await handler(access_token, *args, **kwargs)

        sig = inspect.signature(handler)
        params = list(sig.parameters.values())[1:]
        wrapper.__signature__ = sig.replace(parameters=params)  # type: ignore[attr-defined]
        return wrapper

    return decorator


async def _probe_callback_server(host: str, port: int, timeout: float = 1.0) -> bool:
    """Check whether something accepts TCP connections on host:port."""
    try:
        _reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


def _format_expiry(expires_at_ms: int) -> str:
    return datetime.fromtimestamp(expires_at_ms / 1000, tz=timezone.utc).isoformat(timespec="seconds")


class AuthTools:
    """Handlers for the authentication tools.

    Parameters
    ----------
    config : AuthConfig
        Process configuration.
    gate : AuthGate
        Token gate; its store is read by ``check-auth-status``.
    supervisor : AuthServerSupervisor, optional
        Supervisor of the auth callback server, when this process runs
        it. Without one, the callback port is probed instead.
    """

    def __init__(
        self,
        config: AuthConfig,
        gate: AuthGate,
        supervisor: AuthServerSupervisor | None = None,
    ) -> None:
        """Initialize the tool handlers."""
        self.config = config
        self.gate = gate
        self.supervisor = supervisor

    async def authenticate(self, force: bool = False) -> str:
        """Authenticate with Microsoft using OAuth2.

        Returns the URL to open in a browser. Pass ``force`` to discard
        stored tokens and sign in again.
        """
        config = self.config
        if config.use_test_mode:
            return (
                "Test mode is enabled; authentication is simulated. "
                f"Interactive sign-in would start at {config.auth_url}"
            )

        if force:
            await self.gate.token_store.delete()
            logger.info("Stored tokens discarded before re-authentication")

        unavailable = await self._auth_server_unavailable()
        if unavailable:
            return unavailable

        return (
            "Authentication required. Please visit the following URL to "
            f"authenticate with Microsoft: {config.auth_url}\n\n"
            "After authentication, you will be redirected back to this application."
        )

    async def check_auth_status(self) -> str:
        """Check the current authentication status."""
        if self.config.use_test_mode:
            return "Test mode is enabled; a simulated access token is in use."

        tokens = await self.gate.peek()
        if tokens is None:
            return "Not authenticated. Use the 'authenticate' tool to sign in."

        if tokens.is_fresh(now_ms(), self.gate.skew_ms):
            return f"Authenticated. Access token valid until {_format_expiry(tokens.expires_at)}."
        if tokens.refresh_token:
            return "Access token expired; it will be refreshed on the next call."
        return "Access token expired and cannot be refreshed. Use the 'authenticate' tool."

    async def about(self) -> str:
        """Describe this server."""
        return f"{SERVER_NAME} MCP server, version {__version__}"

    async def _auth_server_unavailable(self) -> str | None:
        """Explain why sign-in cannot start, or None when it can."""
        if self.supervisor is not None:
            try:
                self.supervisor.ensure_running()
            except ChildProcessUnavailable as exc:
                logger.warning("authenticate: %s", exc)
                return (
                    f"The authentication server is not available ({exc.message}). "
                    "Restart the MCP server to enable sign-in."
                )
            return None

        host, port = self.config.callback_host, self.config.callback_port
        if not await _probe_callback_server(host, port):
            logger.warning("authenticate: nothing listening on %s:%s", host, port)
            return (
                "The authentication server is not running. Start it with "
                "'outlook-mcp auth-server' or run 'outlook-mcp serve --start-auth'."
            )
        return None


def _register_auth_tools(mcp: FastMCP, tools: AuthTools) -> None:
    """Register the authentication tools on ``mcp``."""
    mcp.tool(name="authenticate")(tools.authenticate)
    mcp.tool(name="check-auth-status")(tools.check_auth_status)
    mcp.tool(name="about")(tools.about)


def create_server(
    config: AuthConfig,
    supervisor: AuthServerSupervisor | None = None,
    gate: AuthGate | None = None,
) -> FastMCP:
    """Create the MCP server with the authentication tools registered.

    Parameters
    ----------
    config : AuthConfig
        Process configuration.
    supervisor : AuthServerSupervisor, optional
        Supervisor of the auth callback server, when this process runs it.
    gate : AuthGate, optional
        Token gate (default: built from ``config``).

    Returns
    -------
    FastMCP
        Configured FastMCP server instance.
    """
    mcp = FastMCP(name=SERVER_NAME, version=__version__)
    _register_auth_tools(mcp, AuthTools(config, gate or AuthGate(config), supervisor))
    return mcp


def run_server(config: AuthConfig, start_auth: bool = False) -> None:
    """Run the MCP server over stdio until stdin closes or a signal arrives.

    Parameters
    ----------
    config : AuthConfig
        Process configuration.
    start_auth : bool
        Spawn and supervise the auth callback server.
    """
    supervisor: AuthServerSupervisor | None = None
    if start_auth:
        supervisor = AuthServerSupervisor(config, env=config.to_env())
        supervisor.install_signal_handlers()
        try:
            supervisor.start()
        except ChildProcessUnavailable:
            logger.error("Continuing without the auth server; sign-in is unavailable")
        else:
            if not supervisor.wait_ready():
                logger.warning("Auth server did not report ready; sign-in may be unavailable")

    mcp = create_server(config, supervisor=supervisor)
    logger.info("%s %s starting on stdio", SERVER_NAME, __version__)
    try:
        mcp.run(transport="stdio")
    finally:
        if supervisor is not None:
            supervisor.shutdown()
