"""outlook-mcp exception hierarchy.

Every error raised by the package derives from OutlookMCPError. Keyword
context (paths, status codes, exit codes) is kept on ``context`` and shown
in ``str()``.
"""

from __future__ import annotations

from typing import Any


class OutlookMCPError(Exception):
    """Base exception for all outlook-mcp errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize outlook-mcp exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (path, status_code, exit_code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        if self.context:
            ctx = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx})"
        return self.message


class ConfigurationError(OutlookMCPError):
    """Required configuration is missing or invalid.

    Raised when an operation needs a value (client ID, client secret)
    that the environment did not provide.
    """

    def __init__(self, message: str, setting: str | None = None, **context: Any) -> None:
        """Initialize configuration error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        setting : str, optional
            The environment variable that is missing.
        **context : Any
            Additional context.
        """
        super().__init__(message, setting=setting, **context)
        self.setting = setting


class AuthenticationError(OutlookMCPError):
    """Base exception for all authentication failures."""


class AuthenticationRequired(AuthenticationError):
    """No usable access token is available.

    The only error the token gate lets through to its callers. The
    remedy is always the same: run the interactive ``authenticate`` flow.
    """


class TokenExchangeFailed(AuthenticationError):
    """The identity provider rejected an authorization code exchange."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize exchange error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the token endpoint, if any.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class TokenRefreshFailed(AuthenticationError):
    """A refresh-token grant failed (invalid, revoked, or unreachable)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        **context: Any,
    ) -> None:
        """Initialize refresh error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        status_code : int, optional
            HTTP status returned by the token endpoint, if any.
        **context : Any
            Additional context.
        """
        super().__init__(message, status_code=status_code, **context)
        self.status_code = status_code


class TokenStoreError(OutlookMCPError):
    """Base exception for token store I/O failures."""

    def __init__(self, message: str, path: str | None = None, **context: Any) -> None:
        """Initialize token store error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        path : str, optional
            The token store file involved.
        **context : Any
            Additional context.
        """
        super().__init__(message, path=path, **context)
        self.path = path


class TokenStoreMissing(TokenStoreError):
    """The token store file does not exist."""


class TokenStoreCorrupt(TokenStoreError):
    """The token store file exists but cannot be parsed as a token set.

    Recover by deleting the file (``outlook-mcp logout``) and
    re-authenticating.
    """


class ChildProcessUnavailable(OutlookMCPError):
    """The auth callback server is not running.

    Raised when the interactive flow is requested but the supervised
    callback server never started or has exited. It is not restarted
    automatically.
    """

    def __init__(self, message: str, exit_code: int | None = None, **context: Any) -> None:
        """Initialize child process error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        exit_code : int, optional
            The child exit code if it has exited.
        **context : Any
            Additional context.
        """
        super().__init__(message, exit_code=exit_code, **context)
        self.exit_code = exit_code
