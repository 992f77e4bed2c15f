"""Signed anti-forgery ``state`` values for the authorization redirect.

The auth server signs a random nonce and the issue time with an HMAC key
that never leaves the process. The callback verifies the signature and
age before exchanging a code, so a callback the server did not initiate
is rejected without touching the token endpoint.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time


def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode(), payload.encode(), hashlib.sha256).hexdigest()


def generate_state(secret: str, issued_at: float | None = None) -> str:
    """Generate a signed state value.

    Parameters
    ----------
    secret : str
        HMAC key.
    issued_at : float, optional
        Issue timestamp (defaults to now).

    Returns
    -------
    str
        State in the form ``nonce.timestamp.signature``.
    """
    nonce = secrets.token_urlsafe(16)
    timestamp = int(issued_at if issued_at is not None else time.time())
    payload = f"{nonce}.{timestamp}"
    return f"{payload}.{_sign(payload, secret)}"


def validate_state(
    state: str | None,
    secret: str,
    max_age: float,
    now: float | None = None,
) -> tuple[bool, str | None]:
    """Validate a state value produced by :func:`generate_state`.

    Parameters
    ----------
    state : str or None
        The ``state`` query parameter from the callback.
    secret : str
        HMAC key used to sign it.
    max_age : float
        Maximum accepted age in seconds.
    now : float, optional
        Current timestamp (defaults to now).

    Returns
    -------
    tuple[bool, str | None]
        (is_valid, error_message)
    """
    if not state:
        return (False, "Missing state parameter")

    parts = state.split(".")
    if len(parts) != 3:
        return (False, "Invalid state format")

    nonce, timestamp_str, signature = parts
    try:
        timestamp = int(timestamp_str)
    except ValueError:
        return (False, "Invalid state timestamp")

    expected = _sign(f"{nonce}.{timestamp_str}", secret)
    if not hmac.compare_digest(signature, expected):
        return (False, "Invalid state signature")

    current = now if now is not None else time.time()
    if current - timestamp > max_age:
        return (False, "State expired")

    return (True, None)
