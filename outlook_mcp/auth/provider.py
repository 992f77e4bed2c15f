"""Microsoft identity platform client.

Builds the authorize redirect and performs the two back-channel calls of
the authorization-code flow: code exchange and refresh-token grant. Each
call is a single attempt; nothing here retries.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import time

from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from ..exceptions import AuthenticationError, TokenExchangeFailed, TokenRefreshFailed
from ..log import redact_sensitive_data
from .types import TokenSet, now_ms


if TYPE_CHECKING:
    from ..config import AuthConfig


logger = logging.getLogger("outlook_mcp.auth")


class MicrosoftIdentityProvider:
    """OAuth2 confidential client for one authorize/token endpoint pair.

    Parameters
    ----------
    config : AuthConfig
        Client credentials, endpoints, scopes and redirect URI.
    transport : httpx.AsyncBaseTransport, optional
        Transport override for the HTTP client (tests use
        ``httpx.MockTransport``).
    clock : callable
        Returns the current time in seconds; used to stamp ``expires_at``.
    """

    def __init__(
        self,
        config: AuthConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the provider client."""
        self.config = config
        self._transport = transport
        self._clock = clock

    def build_authorize_url(self, state: str, client_id: str | None = None) -> str:
        """Build the full authorization URL.

        Parameters
        ----------
        state : str
            Signed anti-forgery value, echoed back on the callback.
        client_id : str, optional
            Overrides the configured client ID.

        Returns
        -------
        str
            The authorization URL to redirect the browser to.
        """
        params: dict[str, str] = {
            "client_id": client_id or self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.config.redirect_uri,
            "scope": self.config.scope_string,
            "response_mode": "query",
            "state": state,
        }
        return f"{self.config.authorize_endpoint}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenSet:
        """Exchange an authorization code for tokens.

        Parameters
        ----------
        code : str
            The authorization code from the callback.

        Returns
        -------
        TokenSet
            The new token set with ``expires_at`` computed now.

        Raises
        ------
        TokenExchangeFailed
            If the provider rejects the code or cannot be reached.
        """
        data = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code,
            "redirect_uri": self.config.redirect_uri,
            "grant_type": "authorization_code",
            "scope": self.config.scope_string,
        }
        raw = await self._post_token(data, TokenExchangeFailed, "Token exchange")
        return self._to_token_set(raw, TokenExchangeFailed, "Token exchange")

    async def refresh_tokens(self, refresh_token: str) -> TokenSet:
        """Redeem a refresh token for a new token set.

        When the response carries no ``refresh_token`` the one passed in
        is kept.

        Parameters
        ----------
        refresh_token : str
            The stored refresh token.

        Returns
        -------
        TokenSet
            The replacement token set.

        Raises
        ------
        TokenRefreshFailed
            If the provider rejects the refresh token or cannot be reached.
        """
        data = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
            "scope": self.config.scope_string,
        }
        raw = await self._post_token(data, TokenRefreshFailed, "Token refresh")
        return self._to_token_set(
            raw,
            TokenRefreshFailed,
            "Token refresh",
            previous_refresh_token=refresh_token,
        )

    async def _post_token(
        self,
        data: dict[str, str],
        error_cls: type[AuthenticationError],
        action: str,
    ) -> dict[str, Any]:
        """POST a form to the token endpoint and return the parsed JSON body."""
        try:
            async with httpx.AsyncClient(
                timeout=self.config.http_timeout_seconds,
                transport=self._transport,
            ) as client:
                resp = await client.post(
                    self.config.token_endpoint,
                    data=data,
                    headers={"Accept": "application/json"},
                )
                resp.raise_for_status()
                raw = resp.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            logger.warning("%s rejected by identity provider: HTTP %s", action, status)
            msg = f"{action} failed: {status}"
            raise error_cls(msg, status_code=status) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s request failed: %s", action, exc)
            msg = f"{action} request failed: {exc}"
            raise error_cls(msg) from exc
        except ValueError as exc:
            msg = f"{action} returned an invalid JSON body"
            raise error_cls(msg) from exc

        if not isinstance(raw, dict):
            msg = f"{action} returned an unexpected response"
            raise error_cls(msg)

        logger.debug("%s response: %s", action, redact_sensitive_data(raw))
        return raw

    def _to_token_set(
        self,
        raw: dict[str, Any],
        error_cls: type[AuthenticationError],
        action: str,
        previous_refresh_token: str | None = None,
    ) -> TokenSet:
        """Convert a token response into a TokenSet stamped with the current time."""
        if not raw.get("access_token"):
            msg = f"{action} response has no access_token"
            raise error_cls(msg)
        return TokenSet.from_token_response(
            raw,
            issued_at_ms=now_ms(self._clock),
            previous_refresh_token=previous_refresh_token,
        )
