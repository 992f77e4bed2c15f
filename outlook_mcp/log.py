"""Logging for outlook-mcp.

Diagnostics always go to stderr. Stdout belongs to the MCP protocol in
the main process and to the ready handshake in the auth server child.
Module loggers are children of ``outlook_mcp`` (``outlook_mcp.auth``,
``outlook_mcp.supervisor``, ...) and share its handler.
"""

from __future__ import annotations

import logging
import sys

from typing import Any


LOG_FORMAT = "%(asctime)s %(name)s - %(levelname)s - %(message)s"

ROOT_LOGGER = "outlook_mcp"

_REDACTED = "[REDACTED]"

#: Token endpoint fields whose values never reach the log
_SECRET_FIELDS = frozenset(
    {
        "access_token",
        "refresh_token",
        "id_token",
        "client_secret",
        "code",
        "password",
        "assertion",
    }
)


class _Handler:
    """The process-wide stderr handler, created on first use."""

    stream: logging.Handler | None = None


def get_logger() -> logging.Logger:
    """Return the ``outlook_mcp`` logger, attaching the stderr handler once.

    Returns
    -------
    logging.Logger
        The package root logger.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    if _Handler.stream is None:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        _Handler.stream = handler
        logger.addHandler(handler)
        if logger.level == logging.NOTSET:
            logger.setLevel(logging.INFO)
    return logger


def set_level(level: int | str) -> None:
    """Set the level of the ``outlook_mcp`` logger.

    Parameters
    ----------
    level : int or str
        A logging level or its name ("DEBUG", "INFO", ...).
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    get_logger().setLevel(level)


def configure(level: int | str = "INFO", *, share_with: tuple[str, ...] = ()) -> logging.Logger:
    """Configure process-wide diagnostic logging.

    Parameters
    ----------
    level : int or str
        Level for the ``outlook_mcp`` logger.
    share_with : tuple[str, ...]
        Names of third-party loggers (e.g. ``"uvicorn"``) that should
        write through the same stderr handler.

    Returns
    -------
    logging.Logger
        The configured ``outlook_mcp`` logger.
    """
    logger = get_logger()
    set_level(level)
    for name in share_with:
        other = logging.getLogger(name)
        other.setLevel(logger.level)
        if _Handler.stream not in other.handlers:
            other.addHandler(_Handler.stream)  # type: ignore[arg-type]
        other.propagate = False
    return logger


def _is_secret(key: Any) -> bool:
    name = str(key).lower()
    return name in _SECRET_FIELDS or name.endswith(("_token", "_secret"))


def redact_sensitive_data(data: Any, max_depth: int = 5) -> Any:
    """Copy ``data`` with secret-bearing values masked.

    Dict values whose key is a known secret field, or ends in ``_token``
    or ``_secret``, become ``"[REDACTED]"``. Nested dicts and lists are
    walked up to ``max_depth`` levels.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH]"
    if isinstance(data, dict):
        return {
            key: _REDACTED if _is_secret(key) else redact_sensitive_data(value, max_depth - 1)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_sensitive_data(item, max_depth - 1) for item in data]
    return data
