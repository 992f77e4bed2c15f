"""Access-token gate for tool handlers.

Every tool that talks to Microsoft Graph first asks the gate for an
access token. The gate re-reads the token store on each call, returns the
stored token while it is fresh, and refreshes it once it is within the
skew window of expiry. Any failure along the way surfaces as
:class:`AuthenticationRequired`; the details only go to the log.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import time

from collections.abc import Callable
from typing import TYPE_CHECKING

from ..exceptions import (
    AuthenticationRequired,
    ConfigurationError,
    TokenRefreshFailed,
    TokenStoreCorrupt,
    TokenStoreError,
    TokenStoreMissing,
)
from .provider import MicrosoftIdentityProvider
from .token_store import FileTokenStore
from .types import TokenSet, now_ms


if TYPE_CHECKING:
    from ..config import AuthConfig


logger = logging.getLogger("outlook_mcp.auth")

#: Token handed out when test mode is enabled.
TEST_ACCESS_TOKEN = "test_access_token"  # noqa: S105

_REFRESH_KEY = "refresh"


class AuthGate:
    """Hands out a valid access token or raises AuthenticationRequired.

    Parameters
    ----------
    config : AuthConfig
        Process configuration.
    token_store : FileTokenStore, optional
        Token store (default: the configured path).
    provider : MicrosoftIdentityProvider, optional
        Identity provider client used for refreshes.
    clock : callable
        Returns the current time in seconds.
    """

    def __init__(
        self,
        config: AuthConfig,
        token_store: FileTokenStore | None = None,
        provider: MicrosoftIdentityProvider | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the gate."""
        self.config = config
        self.token_store = token_store or FileTokenStore(config.token_store_path)
        self.provider = provider or MicrosoftIdentityProvider(config, clock=clock)
        self._clock = clock
        self._inflight: dict[str, asyncio.Task[TokenSet]] = {}

    @property
    def skew_ms(self) -> int:
        """Refresh margin in milliseconds."""
        return self.config.refresh_skew_seconds * 1000

    async def ensure_authenticated(self) -> str:
        """Return a usable access token.

        Returns
        -------
        str
            The stored access token if it is still fresh, otherwise the
            freshly refreshed one.

        Raises
        ------
        AuthenticationRequired
            If there are no stored tokens, the store is unreadable, or the
            refresh fails.
        """
        if self.config.use_test_mode:
            logger.debug("Test mode: returning fixed access token")
            return TEST_ACCESS_TOKEN

        tokens = await self._load()
        if tokens.is_fresh(now_ms(self._clock), self.skew_ms):
            return tokens.access_token

        if not tokens.refresh_token:
            logger.info("Access token expired and no refresh token is stored")
            msg = "Access token expired and no refresh token is available"
            raise AuthenticationRequired(msg)

        refreshed = await self._refresh_once(tokens.refresh_token)
        return refreshed.access_token

    async def peek(self) -> TokenSet | None:
        """Read the stored token set without refreshing it.

        Returns
        -------
        TokenSet or None
            The stored tokens, or None when the store is missing or corrupt.
        """
        try:
            return await self.token_store.read()
        except TokenStoreError:
            return None

    async def _load(self) -> TokenSet:
        try:
            return await self.token_store.read()
        except TokenStoreMissing as exc:
            logger.info("No stored tokens at %s", self.token_store.path)
            msg = "No stored tokens"
            raise AuthenticationRequired(msg) from exc
        except TokenStoreCorrupt as exc:
            logger.error("%s; run 'outlook-mcp logout' and re-authenticate", exc)
            msg = "Stored tokens are unreadable"
            raise AuthenticationRequired(msg) from exc

    async def _refresh_once(self, refresh_token: str) -> TokenSet:
        """Join the in-flight refresh, or start one.

        The task is dropped from the in-flight map as soon as it finishes,
        so a later expiry triggers a new refresh.
        """
        task = self._inflight.get(_REFRESH_KEY)
        if task is None:
            task = asyncio.ensure_future(self._refresh(refresh_token))
            self._inflight[_REFRESH_KEY] = task
            task.add_done_callback(lambda _t: self._inflight.pop(_REFRESH_KEY, None))
        else:
            logger.debug("Joining in-flight token refresh")
        return await asyncio.shield(task)

    async def _refresh(self, refresh_token: str) -> TokenSet:
        try:
            self.config.require_credentials()
            tokens = await self.provider.refresh_tokens(refresh_token)
        except (ConfigurationError, TokenRefreshFailed) as exc:
            logger.warning("Token refresh failed: %s", exc)
            msg = "Token refresh failed; interactive authentication is required"
            raise AuthenticationRequired(msg) from exc

        try:
            await self.token_store.write(tokens)
        except OSError as exc:
            logger.error("Could not persist refreshed tokens to %s: %s", self.token_store.path, exc)
            msg = "Refreshed tokens could not be saved"
            raise AuthenticationRequired(msg) from exc

        logger.info("Access token refreshed")
        return tokens


# Keyed by id(config); the config is held alongside so its id stays unique.
_shared_gates: dict[int, tuple[AuthConfig, AuthGate]] = {}


def shared_gate(config: AuthConfig) -> AuthGate:
    """Return the process-wide gate for ``config``, creating it once."""
    entry = _shared_gates.get(id(config))
    if entry is None:
        entry = (config, AuthGate(config))
        _shared_gates[id(config)] = entry
    return entry[1]


async def ensure_authenticated(config: AuthConfig) -> str:
    """Return a usable access token using the shared gate for ``config``.

    Callers passing the same configuration object share one gate, so
    concurrent refreshes collapse into a single token request.

    Parameters
    ----------
    config : AuthConfig
        Process configuration.

    Returns
    -------
    str
        The access token.

    Raises
    ------
    AuthenticationRequired
        If no usable token can be produced.
    """
    return await shared_gate(config).ensure_authenticated()
