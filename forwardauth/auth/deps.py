from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request

from forwardauth.auth.cache import IdentityCache, get_identity_cache
from forwardauth.auth.config import AuthConfig, load_auth_config
from forwardauth.auth.errors import CookieError
from forwardauth.auth.models import Identity
from forwardauth.auth.session import validate_cookie

logger = logging.getLogger(__name__)


def forwarded_host(request: Request) -> str:
    return (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").strip()


def forwarded_proto(request: Request) -> str:
    return (request.headers.get("x-forwarded-proto") or request.url.scheme or "https").strip()


def forwarded_uri(request: Request) -> str:
    return (request.headers.get("x-forwarded-uri") or request.url.path or "/").strip()


def authenticate_request(
    request: Request,
    *,
    cfg: Optional[AuthConfig] = None,
    cache: Optional[IdentityCache] = None,
) -> Optional[Identity]:
    """
    Authenticate a forwarded request and return its Identity if the auth cookie is valid.

    Every failure (missing, malformed, unknown, tampered, expired) returns None.
    """
    if cfg is None:
        cfg = load_auth_config()
    if cache is None:
        cache = get_identity_cache()

    value = request.cookies.get(cfg.cookie_name)
    if not value:
        return None

    try:
        return validate_cookie(cfg, cache, forwarded_host(request), value)
    except CookieError as e:
        # Reason stays in the logs; the client only sees "not authenticated".
        logger.info("Invalid auth cookie (%s): %s", type(e).__name__, str(e))
        return None
