"""
Auth cookie protocol.

Cookie value: `base64url(mac)|expires|identity-uuid`, where
mac = HMAC-SHA256(secret, cookie domain || uuid bytes || expires).
Nothing about issued cookies is stored server-side; every request re-derives
the MAC and checks it against the cookie.
"""
from __future__ import annotations

import base64
import binascii
import hmac
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from forwardauth.auth.cache import IdentityCache
from forwardauth.auth.config import AuthConfig
from forwardauth.auth.domains import cookie_domain
from forwardauth.auth.errors import DecodeError, ExpiredError, FormatError, SignatureError, UnknownIdentityError
from forwardauth.auth.models import Cookie, Identity
from forwardauth.auth.signature import cookie_signature, verify_signature


def encode_mac(mac: bytes) -> str:
    return base64.urlsafe_b64encode(mac).decode("ascii")


def decode_mac(value: str) -> bytes:
    try:
        return base64.b64decode(value.encode("ascii"), altchars=b"-_", validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise DecodeError("Unable to decode cookie mac") from None


def _expiry(now: Optional[float], seconds: int) -> int:
    return int(now if now is not None else time.time()) + seconds


def make_cookie(cfg: AuthConfig, host: str, identity: Identity, *, now: Optional[float] = None) -> Cookie:
    """Build a signed auth cookie for `identity`, scoped to the cookie domain of `host`."""
    domain = cookie_domain(cfg, host)
    expires = _expiry(now, cfg.lifetime_seconds)
    mac = cookie_signature(cfg.secret, domain, identity.id, str(expires))
    return Cookie(
        name=cfg.cookie_name,
        value=f"{encode_mac(mac)}|{expires}|{identity.id}",
        domain=domain,
        expires=datetime.fromtimestamp(expires, tz=timezone.utc),
        secure=cfg.cookie_secure,
    )


def validate_cookie(
    cfg: AuthConfig,
    cache: IdentityCache,
    host: str,
    value: str,
    *,
    now: Optional[float] = None,
) -> Identity:
    """
    Verify an auth cookie value and return the identity it was issued for.

    Raises a `CookieError` subclass on any failure; there is no partial trust.
    """
    parts = (value or "").split("|")
    if len(parts) != 3:
        raise FormatError("Invalid cookie format")

    mac = decode_mac(parts[0])

    try:
        identity_id = uuid.UUID(parts[2])
    except ValueError:
        raise FormatError("Invalid cookie identity") from None

    identity = cache.lookup(identity_id)
    if identity is None:
        raise UnknownIdentityError("Identity is unknown")

    # Sign the expiry string verbatim; parsing comes after the MAC check.
    # Only the canonical encoding of the MAC is accepted: the standard-alphabet
    # "+" and "/" and non-zero trailing pad bits decode to the same bytes.
    if not hmac.compare_digest(encode_mac(mac), parts[0]) or not verify_signature(
        cfg.secret, cookie_domain(cfg, host), identity_id, parts[1], mac
    ):
        raise SignatureError("Invalid cookie mac")

    try:
        expires = int(parts[1])
    except ValueError:
        raise FormatError("Unable to parse cookie expiry") from None

    current = now if now is not None else time.time()
    if current >= expires:
        raise ExpiredError("Cookie has expired")

    return identity


def clear_cookie(cfg: AuthConfig, host: str, *, now: Optional[float] = None) -> Cookie:
    """An already-expired auth cookie; setting it makes the browser drop the session."""
    return Cookie(
        name=cfg.cookie_name,
        value="",
        domain=cookie_domain(cfg, host),
        expires=datetime.fromtimestamp(_expiry(now, -3600), tz=timezone.utc),
        secure=cfg.cookie_secure,
    )
