"""
CSRF protection for the OAuth login flow.

The OAuth `state` parameter is `nonce:provider:return-url`. The same nonce is
stored in a short-lived cookie named `<prefix>_<first 6 chars of nonce>`; the
callback only proceeds when the cookie value equals the nonce in `state`.
"""
from __future__ import annotations

import secrets
import time
from datetime import datetime, timezone
from typing import Mapping, Optional, Tuple

from forwardauth.auth.config import AuthConfig
from forwardauth.auth.domains import csrf_cookie_domain
from forwardauth.auth.errors import CSRFError, FormatError
from forwardauth.auth.models import Cookie

NONCE_LENGTH = 32
# nonce + ":" + at least one provider char
MIN_STATE_LENGTH = NONCE_LENGTH + 2
CSRF_COOKIE_TTL_SECONDS = 3600


def make_nonce() -> str:
    """32 hex chars (16 random bytes)."""
    return secrets.token_hex(NONCE_LENGTH // 2)


def make_state(return_url: str, provider_name: str, nonce: str) -> str:
    return f"{nonce}:{provider_name}:{return_url}"


def validate_state(state: str) -> None:
    if len(state or "") < MIN_STATE_LENGTH:
        raise FormatError("Invalid CSRF state value")


def csrf_cookie_name(cfg: AuthConfig, nonce: str) -> str:
    return f"{cfg.csrf_cookie_name}_{nonce[:6]}"


def make_csrf_cookie(cfg: AuthConfig, host: str, nonce: str, *, now: Optional[float] = None) -> Cookie:
    """
    CSRF cookie for a login in progress.

    Lives a fixed 1h regardless of the session lifetime: abandoned login flows
    never reach the callback that would clear it.
    """
    ts = int(now if now is not None else time.time())
    return Cookie(
        name=csrf_cookie_name(cfg, nonce),
        value=nonce,
        domain=csrf_cookie_domain(cfg, host),
        expires=datetime.fromtimestamp(ts + CSRF_COOKIE_TTL_SECONDS, tz=timezone.utc),
        secure=cfg.cookie_secure,
    )


def clear_csrf_cookie(cfg: AuthConfig, host: str, name: str, *, now: Optional[float] = None) -> Cookie:
    ts = int(now if now is not None else time.time())
    return Cookie(
        name=name,
        value="",
        domain=csrf_cookie_domain(cfg, host),
        expires=datetime.fromtimestamp(ts - 3600, tz=timezone.utc),
        secure=cfg.cookie_secure,
    )


def find_csrf_cookie(cfg: AuthConfig, cookies: Mapping[str, str], state: str) -> Tuple[str, Optional[str]]:
    """Return (cookie name, value or None) of the CSRF cookie belonging to `state`."""
    name = csrf_cookie_name(cfg, state)
    return name, cookies.get(name)


def validate_csrf_cookie(value: str, state: str) -> Tuple[str, str]:
    """
    Check the CSRF cookie against `state`; return (provider name, return url).

    Call `validate_state` first.
    """
    if len(value or "") != NONCE_LENGTH:
        raise CSRFError("Invalid CSRF cookie value")

    # Check nonce match
    if not secrets.compare_digest(value.encode("utf-8"), state[:NONCE_LENGTH].encode("utf-8")):
        raise CSRFError("CSRF cookie does not match state")

    # Extract provider
    params = state[NONCE_LENGTH + 1 :]
    provider, sep, redirect = params.partition(":")
    if not sep:
        raise FormatError("Invalid CSRF state format")

    return provider, redirect
