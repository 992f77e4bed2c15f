"""Configuration for outlook-mcp using pydantic-settings.

Values are read once from the environment (and an optional ``.env`` file
in the working directory) when :class:`AuthConfig` is constructed. The
resulting object is frozen; each process builds its own copy at startup
and passes it explicitly to the components that need it.

Environment variables use the ``OUTLOOK_`` prefix, except the test mode
flag which is read from ``USE_TEST_MODE``.
Example: OUTLOOK_CLIENT_ID, OUTLOOK_TENANT_ID, OUTLOOK_CALLBACK_PORT
"""

from __future__ import annotations

import re
import secrets

from pathlib import Path
from typing import Annotated, Any, Literal
from urllib.parse import urlparse

from pydantic import AliasChoices, Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .exceptions import ConfigurationError


MICROSOFT_LOGIN_BASE = "https://login.microsoftonline.com"

DEFAULT_SCOPES: list[str] = [
    "offline_access",
    "User.Read",
    "Mail.Read",
    "Mail.ReadWrite",
    "Mail.Send",
    "Calendars.Read",
    "Calendars.ReadWrite",
    "MailboxSettings.ReadWrite",
]

# Masked by redacted() and the `config` command.
_SENSITIVE_FIELDS: set[str] = {
    "client_secret",
    "state_secret",
}

_REDACTED = "********"


class AuthConfig(BaseSettings):
    """OAuth2 and process configuration shared by both processes.

    Environment prefix: OUTLOOK_
    Example: OUTLOOK_CLIENT_ID=your-client-id
    Example: OUTLOOK_TENANT_ID=contoso.onmicrosoft.com
    """

    model_config = SettingsConfigDict(
        env_prefix="OUTLOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
    )

    # Client credentials
    client_id: str = Field(
        default="",
        description="Azure AD application (client) ID",
    )
    client_secret: str = Field(
        default="",
        description="Azure AD client secret",
    )
    tenant_id: str = Field(
        default="common",
        description="Azure AD tenant ID ('common' for multi-tenant apps)",
    )

    # Flow parameters
    redirect_uri: str = Field(
        default="http://localhost:3333/auth/callback",
        description="Redirect URI registered with the identity provider",
    )
    scopes: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_SCOPES),
        description="OAuth2 scopes to request (space or comma separated in env)",
    )
    authorize_endpoint: str = Field(
        default="",
        validate_default=True,
        description="Authorization endpoint (derived from tenant_id when empty)",
    )
    token_endpoint: str = Field(
        default="",
        validate_default=True,
        description="Token endpoint (derived from tenant_id when empty)",
    )

    # Token storage
    token_store_path: Path = Field(
        default_factory=lambda: Path.home() / ".outlook-mcp-tokens.json",
        description="JSON file holding the current token set",
    )

    # Callback server
    callback_host: str = Field(default="127.0.0.1", description="Auth server bind address")
    callback_port: int = Field(
        default=3333,
        ge=0,
        le=65535,
        description="Auth server port (0 picks a free port)",
    )
    state_secret: str = Field(
        default_factory=lambda: secrets.token_hex(32),
        description="HMAC key for the anti-forgery state parameter",
    )
    state_max_age_seconds: int = Field(
        default=600,
        ge=30,
        description="Seconds a signed state value remains acceptable",
    )

    # Timing
    refresh_skew_seconds: int = Field(
        default=60,
        ge=0,
        description="Refresh tokens this many seconds before they expire",
    )
    shutdown_grace_seconds: float = Field(
        default=2.0,
        ge=0.1,
        description="Seconds to wait for the auth server after SIGTERM before SIGKILL",
    )
    startup_timeout_seconds: float = Field(
        default=10.0,
        ge=0.5,
        description="Seconds to wait for the auth server ready handshake",
    )
    http_timeout_seconds: float = Field(
        default=30.0,
        ge=1.0,
        description="Timeout for token endpoint requests",
    )

    # Misc
    use_test_mode: bool = Field(
        default=False,
        validation_alias=AliasChoices("USE_TEST_MODE", "use_test_mode"),
        description="Return a fixed test token instead of reading the token store",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    @field_validator("scopes", mode="before")
    @classmethod
    def _parse_scopes(cls, v: Any) -> list[str]:
        """Accept a space/comma separated string (from env var) or a list."""
        if isinstance(v, str):
            return [s for s in re.split(r"[\s,]+", v) if s]
        return v or list(DEFAULT_SCOPES)

    @field_validator("token_store_path", mode="after")
    @classmethod
    def _expand_token_store_path(cls, v: Path) -> Path:
        """Expand ``~`` in the token store path."""
        return v.expanduser()

    @field_validator("authorize_endpoint", "token_endpoint", mode="after")
    @classmethod
    def _derive_endpoint(cls, v: str, info: ValidationInfo) -> str:
        """Derive the Microsoft identity platform endpoints from the tenant."""
        if v:
            return v
        tenant = info.data.get("tenant_id") or "common"
        leaf = "authorize" if info.field_name == "authorize_endpoint" else "token"
        return f"{MICROSOFT_LOGIN_BASE}/{tenant}/oauth2/v2.0/{leaf}"

    @property
    def scope_string(self) -> str:
        """Scopes joined with spaces, as sent on the wire."""
        return " ".join(self.scopes)

    @property
    def auth_url(self) -> str:
        """URL a human opens to start the interactive flow."""
        parsed = urlparse(self.redirect_uri)
        return f"{parsed.scheme}://{parsed.netloc}/auth"

    def require_credentials(self) -> None:
        """Ensure the client ID and secret are configured.

        Raises
        ------
        ConfigurationError
            If either credential is missing.
        """
        if not self.client_id:
            msg = "OUTLOOK_CLIENT_ID is not set. Add it to your environment or .env file."
            raise ConfigurationError(msg, setting="OUTLOOK_CLIENT_ID")
        if not self.client_secret:
            msg = "OUTLOOK_CLIENT_SECRET is not set. Add it to your environment or .env file."
            raise ConfigurationError(msg, setting="OUTLOOK_CLIENT_SECRET")

    def redacted(self) -> dict[str, Any]:
        """Return the configuration as a dict with secrets masked.

        Returns
        -------
        dict[str, Any]
            Field name to value; sensitive fields show ``********`` when set.
        """
        result: dict[str, Any] = {}
        for name in type(self).model_fields:
            value = getattr(self, name)
            if name in _SENSITIVE_FIELDS:
                value = _REDACTED if value else ""
            elif isinstance(value, Path):
                value = str(value)
            result[name] = value
        return result

    def to_env(self) -> dict[str, str]:
        """Render the configuration as environment variables.

        Used to hand the parent's effective settings to the auth server
        child, which builds its own copy from its environment.

        Returns
        -------
        dict[str, str]
            ``OUTLOOK_*`` (and ``USE_TEST_MODE``) variables.
        """
        env: dict[str, str] = {}
        for name in type(self).model_fields:
            value = getattr(self, name)
            if name == "use_test_mode":
                env["USE_TEST_MODE"] = "true" if value else "false"
                continue
            if name == "scopes":
                value = self.scope_string
            env[f"OUTLOOK_{name.upper()}"] = str(value)
        return env


def load_config(**overrides: Any) -> AuthConfig:
    """Build the process-wide configuration.

    Call once at process start and pass the result to the components.

    Parameters
    ----------
    **overrides : Any
        Explicit values that take precedence over the environment.

    Returns
    -------
    AuthConfig
        A frozen configuration object.
    """
    return AuthConfig(**overrides)
