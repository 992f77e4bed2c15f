"""Data types for the authentication subsystem."""

from __future__ import annotations

import time

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


#: Lifetime assumed when the provider omits ``expires_in``.
DEFAULT_EXPIRES_IN = 3600

_KNOWN_FIELDS = (
    "access_token",
    "refresh_token",
    "token_type",
    "scope",
    "expires_in",
    "expires_at",
)


def now_ms(clock: Any = time.time) -> int:
    """Current time in epoch milliseconds, read from ``clock``."""
    return int(clock() * 1000)


@dataclass(frozen=True)
class TokenSet:
    """OAuth2 token set as persisted in the token store.

    Attributes
    ----------
    access_token : str
        Bearer token for Microsoft Graph requests.
    refresh_token : str or None
        Long-lived token used to mint new access tokens.
    token_type : str
        Token type, typically "Bearer".
    scope : str
        Space-separated list of granted scopes.
    expires_in : int
        Token lifetime in seconds, as reported by the provider.
    expires_at : int
        Expiry as epoch milliseconds, computed when the token was issued.
    extra : dict[str, Any]
        Any other fields of the provider's token response.
    """

    access_token: str
    refresh_token: str | None = None
    token_type: str = "Bearer"  # noqa: S105
    scope: str = ""
    expires_in: int = DEFAULT_EXPIRES_IN
    expires_at: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_token_response(
        cls,
        raw: dict[str, Any],
        issued_at_ms: int,
        previous_refresh_token: str | None = None,
    ) -> TokenSet:
        """Build a token set from a token endpoint JSON response.

        ``expires_at`` is always recomputed from ``issued_at_ms`` and the
        response's ``expires_in``; an ``expires_at`` in the response is
        ignored.

        Parameters
        ----------
        raw : dict[str, Any]
            Parsed JSON body of a successful token response.
        issued_at_ms : int
            Epoch milliseconds at which the response was received.
        previous_refresh_token : str, optional
            Refresh token to keep when the response does not carry one.

        Returns
        -------
        TokenSet
            The new token set.

        Raises
        ------
        KeyError
            If the response has no ``access_token``.
        """
        try:
            expires_in = int(raw.get("expires_in", DEFAULT_EXPIRES_IN))
        except (TypeError, ValueError):
            expires_in = DEFAULT_EXPIRES_IN
        return cls(
            access_token=raw["access_token"],
            refresh_token=raw.get("refresh_token") or previous_refresh_token,
            token_type=raw.get("token_type", "Bearer"),
            scope=raw.get("scope", ""),
            expires_in=expires_in,
            expires_at=issued_at_ms + expires_in * 1000,
            extra={k: v for k, v in raw.items() if k not in _KNOWN_FIELDS},
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenSet:
        """Rebuild a token set from its stored JSON form.

        Raises
        ------
        KeyError
            If ``access_token`` is missing.
        TypeError, ValueError
            If ``access_token`` is not a non-empty string, ``refresh_token``
            is neither a string nor null, or ``expires_in`` or
            ``expires_at`` is not numeric.
        """
        access_token = data["access_token"]
        if not isinstance(access_token, str) or not access_token:
            msg = "access_token must be a non-empty string"
            raise ValueError(msg)
        refresh_token = data.get("refresh_token")
        if refresh_token is not None and not isinstance(refresh_token, str):
            msg = "refresh_token must be a string or null"
            raise TypeError(msg)
        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=data.get("token_type", "Bearer"),
            scope=data.get("scope", ""),
            expires_in=int(data.get("expires_in", DEFAULT_EXPIRES_IN)),
            expires_at=int(data.get("expires_at", 0)),
            extra={k: v for k, v in data.items() if k not in _KNOWN_FIELDS},
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the token store JSON shape."""
        return {
            **self.extra,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "scope": self.scope,
            "expires_in": self.expires_in,
            "expires_at": self.expires_at,
        }

    def is_fresh(self, at_ms: int, skew_ms: int) -> bool:
        """Whether the access token is usable at ``at_ms`` with ``skew_ms`` margin."""
        return at_ms < self.expires_at - skew_ms


class ChildStatus(str, Enum):
    """Lifecycle of the supervised auth server process."""

    STARTING = "starting"
    RUNNING = "running"
    EXITED = "exited"


@dataclass
class SupervisorState:
    """State of the supervised auth server child.

    Attributes
    ----------
    child_pid : int or None
        PID of the child process.
    child_status : ChildStatus
        Current lifecycle status.
    exit_code : int or None
        Exit code once the child has exited.
    host : str or None
        Address the child reported in its ready message.
    port : int or None
        Port the child reported in its ready message.
    """

    child_pid: int | None = None
    child_status: ChildStatus = ChildStatus.STARTING
    exit_code: int | None = None
    host: str | None = None
    port: int | None = None
