"""
Gateway configuration (env driven, ConfigMap/Secret friendly).

Recommended vars:
- SECRET=<random string>            (required; signs auth cookies)
- COOKIE_DOMAIN=example.com,example.org
- AUTH_HOST=auth.example.com
- LIFETIME=43200
- INSECURE_COOKIE=0
- PROVIDERS_OIDC_ISSUER_URL=https://accounts.google.com
- PROVIDERS_OIDC_CLIENT_ID=...
- PROVIDERS_OIDC_CLIENT_SECRET=...
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import List, Optional, Tuple

from forwardauth.auth.domains import CookieDomain


@dataclass(frozen=True)
class AuthConfig:
    # Cookie signing
    secret: bytes

    # Cookies
    cookie_name: str
    csrf_cookie_name: str  # prefix; the full name embeds 6 chars of the nonce
    lifetime_seconds: int
    insecure_cookie: bool
    cookie_domains: Tuple[CookieDomain, ...]  # checked in order, first match wins

    # Central auth host (optional); must share a cookie domain with protected hosts
    auth_host: Optional[str]
    url_path: str  # OAuth callback path
    logout_redirect: Optional[str]

    # Identity provider
    default_provider: str
    oidc_issuer_url: Optional[str]
    oidc_client_id: Optional[str]
    oidc_client_secret: Optional[str]
    oidc_roles_claim: str

    @property
    def cookie_secure(self) -> bool:
        return not self.insecure_cookie

    @property
    def oidc_enabled(self) -> bool:
        """OIDC is enabled if issuer URL and credentials are configured."""
        return bool(self.oidc_issuer_url and self.oidc_client_id and self.oidc_client_secret)


def _env_str(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "y", "on")


def split_csv(value: str) -> List[str]:
    return [x.strip() for x in (value or "").split(",") if x.strip()]


def parse_cookie_domains(value: str) -> Tuple[CookieDomain, ...]:
    return tuple(CookieDomain(domain=d.lower()) for d in split_csv(value))


def _normalize_path(value: Optional[str]) -> str:
    p = (value or "/_oauth").strip()
    if not p.startswith("/"):
        p = "/" + p
    return p.rstrip("/") or "/_oauth"


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load gateway configuration from environment variables.

    Raises ValueError when SECRET is missing: unsigned cookies are never issued.
    """
    secret = os.getenv("SECRET", "") or ""
    if not secret.strip():
        raise ValueError("SECRET is required to sign auth cookies")

    raw_lifetime = (os.getenv("LIFETIME", "") or "43200").strip() or "43200"
    try:
        lifetime = int(float(raw_lifetime))
    except ValueError:
        raise ValueError(f"Invalid LIFETIME: {raw_lifetime!r}") from None
    if lifetime < 60:
        lifetime = 60

    auth_host = _env_str("AUTH_HOST")

    return AuthConfig(
        secret=secret.encode("utf-8"),
        cookie_name=_env_str("COOKIE_NAME") or "_forward_auth",
        csrf_cookie_name=_env_str("CSRF_COOKIE_NAME") or "_forward_auth_csrf",
        lifetime_seconds=lifetime,
        insecure_cookie=_env_bool("INSECURE_COOKIE", False),
        cookie_domains=parse_cookie_domains(os.getenv("COOKIE_DOMAIN", "")),
        auth_host=auth_host.lower() if auth_host else None,
        url_path=_normalize_path(_env_str("URL_PATH")),
        logout_redirect=_env_str("LOGOUT_REDIRECT"),
        default_provider=(_env_str("DEFAULT_PROVIDER") or "oidc").lower(),
        oidc_issuer_url=_env_str("PROVIDERS_OIDC_ISSUER_URL"),
        oidc_client_id=_env_str("PROVIDERS_OIDC_CLIENT_ID"),
        oidc_client_secret=_env_str("PROVIDERS_OIDC_CLIENT_SECRET"),
        oidc_roles_claim=_env_str("PROVIDERS_OIDC_ROLES_CLAIM") or "roles",
    )
