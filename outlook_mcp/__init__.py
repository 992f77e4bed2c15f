"""outlook-mcp - Outlook MCP server with OAuth2 authentication.

Exposes Microsoft 365 mail and calendar tooling over the Model Context
Protocol. Tool handlers obtain Graph access tokens through
:class:`~outlook_mcp.auth.AuthGate`; interactive sign-in runs in a
supervised auth callback server.
"""

from __future__ import annotations

from .config import AuthConfig, load_config
from .exceptions import (
    AuthenticationError,
    AuthenticationRequired,
    ChildProcessUnavailable,
    ConfigurationError,
    OutlookMCPError,
    TokenExchangeFailed,
    TokenRefreshFailed,
    TokenStoreCorrupt,
    TokenStoreError,
    TokenStoreMissing,
)


__version__ = "1.0.0"

SERVER_NAME = "outlook-assistant"

__all__ = [
    "SERVER_NAME",
    "AuthConfig",
    "AuthenticationError",
    "AuthenticationRequired",
    "ChildProcessUnavailable",
    "ConfigurationError",
    "OutlookMCPError",
    "TokenExchangeFailed",
    "TokenRefreshFailed",
    "TokenStoreCorrupt",
    "TokenStoreError",
    "TokenStoreMissing",
    "__version__",
    "load_config",
]
