"""Command-line interface for outlook-mcp."""

from __future__ import annotations

import argparse
import asyncio
import sys

from typing import TYPE_CHECKING

from pydantic import ValidationError

from . import log
from .config import _SENSITIVE_FIELDS
from .exceptions import ConfigurationError


if TYPE_CHECKING:
    from collections.abc import Sequence

    from .config import AuthConfig


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="outlook-mcp",
        description="Outlook MCP server and its OAuth2 sign-in helper",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # serve command
    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the MCP server over stdio",
    )
    serve_parser.add_argument(
        "--start-auth",
        action="store_true",
        help="Also spawn and supervise the auth callback server",
    )

    # auth-server command
    subparsers.add_parser(
        "auth-server",
        help="Run the auth callback server in the foreground",
    )

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show the effective configuration (secrets redacted)",
    )
    config_parser.add_argument(
        "--env",
        action="store_true",
        help="Print as environment variables",
    )

    # logout command
    subparsers.add_parser(
        "logout",
        help="Delete the stored tokens",
    )

    return parser


def _load() -> AuthConfig | None:
    """Load configuration, reporting validation errors on stderr."""
    from .config import load_config

    try:
        return load_config()
    except ValidationError as e:
        print(f"Error: invalid configuration\n{e}", file=sys.stderr)
        return None


def main(argv: Sequence[str] | None = None) -> int:
    """Run the main CLI entry point.

    Parameters
    ----------
    argv : sequence of str, optional
        Arguments (default: ``sys.argv[1:]``).

    Returns
    -------
    int
        Exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    config = _load()
    if config is None:
        return 1

    if args.command == "serve":
        return handle_serve(args, config)
    if args.command == "auth-server":
        return handle_auth_server(args, config)
    if args.command == "config":
        return handle_config(args, config)
    if args.command == "logout":
        return handle_logout(args, config)
    parser.print_help()
    return 0


def handle_serve(args: argparse.Namespace, config: AuthConfig) -> int:
    """Handle the serve command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.
    config : AuthConfig
        Process configuration.

    Returns
    -------
    int
        Exit code.
    """
    from .server import run_server

    log.configure(config.log_level)
    try:
        run_server(config, start_auth=args.start_auth)
    except KeyboardInterrupt:
        print("\nMCP server stopped.", file=sys.stderr)
    return 0


def handle_auth_server(_args: argparse.Namespace, config: AuthConfig) -> int:
    """Handle the auth-server command.

    Returns
    -------
    int
        Exit code: 1 when credentials are missing or the port cannot be bound.
    """
    from .auth.callback_server import serve_callback_server

    logger = log.configure(config.log_level, share_with=("uvicorn", "uvicorn.error"))
    try:
        serve_callback_server(config)
    except ConfigurationError as e:
        logger.error("%s", e.message)
        return 1
    except OSError as e:
        logger.error(
            "Cannot listen on %s:%s: %s", config.callback_host, config.callback_port, e
        )
        return 1
    return 0


def handle_config(args: argparse.Namespace, config: AuthConfig) -> int:
    """Handle the config command."""
    values = config.redacted()
    if args.env:
        env = config.to_env()
        for name in _SENSITIVE_FIELDS:
            env[f"OUTLOOK_{name.upper()}"] = values[name]
        output = "\n".join(f"{k}={v}" for k, v in env.items())
    else:
        width = max(len(name) for name in values)
        output = "\n".join(
            f"{name:<{width}} = {' '.join(v) if isinstance(v, list) else v}"
            for name, v in values.items()
        )
    print(output)
    return 0


def handle_logout(_args: argparse.Namespace, config: AuthConfig) -> int:
    """Handle the logout command."""
    from .auth.token_store import FileTokenStore

    store = FileTokenStore(config.token_store_path)
    try:
        asyncio.run(store.delete())
    except OSError as e:
        print(f"Error: could not delete {store.path}: {e}", file=sys.stderr)
        return 1
    print(f"Removed stored tokens at {store.path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
