from __future__ import annotations

import hashlib
import hmac
import uuid


def cookie_signature(secret: bytes, domain: str, identity_id: uuid.UUID, expires: str) -> bytes:
    """
    HMAC-SHA256 over domain || identity id (16 raw bytes) || expires.

    No delimiters: the fixed-width id keeps domain and expiry unambiguous.
    `expires` is the decimal unix timestamp exactly as it appears in the cookie.
    """
    mac = hmac.new(secret, digestmod=hashlib.sha256)
    mac.update(domain.encode("utf-8"))
    mac.update(identity_id.bytes)
    mac.update(expires.encode("utf-8"))
    return mac.digest()


def verify_signature(secret: bytes, domain: str, identity_id: uuid.UUID, expires: str, candidate: bytes) -> bool:
    expected = cookie_signature(secret, domain, identity_id, expires)
    return hmac.compare_digest(expected, candidate)
