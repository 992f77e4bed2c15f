"""OAuth2 authentication for outlook-mcp.

Token storage, the identity provider client, the browser callback
server, its process supervisor, and the access-token gate used by tool
handlers.
"""

from __future__ import annotations

from .callback_server import create_callback_app, serve_callback_server
from .gate import TEST_ACCESS_TOKEN, AuthGate, ensure_authenticated, shared_gate
from .provider import MicrosoftIdentityProvider
from .state import generate_state, validate_state
from .supervisor import AuthServerSupervisor
from .token_store import FileTokenStore
from .types import ChildStatus, SupervisorState, TokenSet


__all__ = [
    "TEST_ACCESS_TOKEN",
    "AuthGate",
    "AuthServerSupervisor",
    "ChildStatus",
    "FileTokenStore",
    "MicrosoftIdentityProvider",
    "SupervisorState",
    "TokenSet",
    "create_callback_app",
    "ensure_authenticated",
    "generate_state",
    "serve_callback_server",
    "shared_gate",
    "validate_state",
]
