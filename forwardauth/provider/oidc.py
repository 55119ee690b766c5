from __future__ import annotations

import json
import time
import uuid
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

import jwt  # PyJWT
import requests

from forwardauth.auth.config import AuthConfig
from forwardauth.auth.models import Identity

_discovery_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}
_jwks_cache: Dict[str, Tuple[float, Optional[Dict[str, Any]]]] = {}

_CACHE_TTL_SECONDS = 3600


def discovery_url(issuer_url: str) -> str:
    return issuer_url.rstrip("/") + "/.well-known/openid-configuration"


def _get_discovery(url: str) -> Dict[str, Any]:
    """
    Fetch OIDC discovery document from provider.
    Caches result for 1 hour per discovery URL.
    """
    ts, cached = _discovery_cache.get(url, (0.0, None))
    now = time.time()
    if cached is not None and now - ts < _CACHE_TTL_SECONDS:
        return cached
    r = requests.get(url, timeout=10)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid OIDC discovery document")
    _discovery_cache[url] = (now, data)
    return data


def _get_jwks(jwks_uri: str) -> Dict[str, Any]:
    """
    Fetch JWKS (JSON Web Key Set) from provider.
    Caches result for 1 hour per JWKS URI.
    """
    ts, cached = _jwks_cache.get(jwks_uri, (0.0, None))
    now = time.time()
    if cached is not None and now - ts < _CACHE_TTL_SECONDS:
        return cached
    r = requests.get(jwks_uri, timeout=10)
    r.raise_for_status()
    data = r.json()
    if not isinstance(data, dict):
        raise ValueError("Invalid JWKS")
    _jwks_cache[jwks_uri] = (now, data)
    return data


def _roles_from_claims(claims: Dict[str, Any], claim: str) -> frozenset:
    raw = claims.get(claim)
    if isinstance(raw, str):
        return frozenset(x.strip() for x in raw.split(",") if x.strip())
    if isinstance(raw, list):
        return frozenset(str(x) for x in raw if str(x).strip())
    return frozenset()


class OIDCProvider:
    """Generic OpenID Connect provider (authorization code flow)."""

    name = "oidc"

    def __init__(self, cfg: AuthConfig):
        if not cfg.oidc_issuer_url:
            raise ValueError("OIDC issuer URL not configured")
        if not cfg.oidc_client_id or not cfg.oidc_client_secret:
            raise ValueError("OIDC client ID/secret not configured")
        self.cfg = cfg

    def _discovery(self) -> Dict[str, Any]:
        return _get_discovery(discovery_url(self.cfg.oidc_issuer_url or ""))

    def login_url(self, *, redirect_uri: str, state: str, nonce: str) -> str:
        """Build the provider's authorization URL for this login attempt."""
        disc = self._discovery()
        auth_endpoint = str(disc.get("authorization_endpoint") or "")
        if not auth_endpoint:
            raise ValueError("OIDC discovery missing authorization_endpoint")

        params = {
            "client_id": self.cfg.oidc_client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "nonce": nonce,
        }
        return f"{auth_endpoint}?{urlencode(params)}"

    def exchange_code(self, *, redirect_uri: str, code: str) -> Dict[str, Any]:
        """Exchange authorization code for tokens (id_token, access_token)."""
        disc = self._discovery()
        token_endpoint = str(disc.get("token_endpoint") or "")
        if not token_endpoint:
            raise ValueError("OIDC discovery missing token_endpoint")

        payload = {
            "client_id": self.cfg.oidc_client_id,
            "client_secret": self.cfg.oidc_client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri,
        }
        r = requests.post(token_endpoint, data=payload, timeout=10)
        if r.status_code >= 400:
            # Avoid leaking sensitive info; include minimal context.
            raise ValueError(f"Token exchange failed (status={r.status_code})")
        data = r.json()
        if not isinstance(data, dict):
            raise ValueError("Invalid token response")
        return data

    def validate_id_token(self, *, id_token: str, expected_nonce: str) -> Dict[str, Any]:
        """
        Validate ID token from OIDC provider.
        - Verifies JWT signature using provider's public keys
        - Validates issuer, audience, nonce
        - Checks email verification status
        """
        disc = self._discovery()
        issuer = str(disc.get("issuer") or "")
        jwks_uri = str(disc.get("jwks_uri") or "")
        if not issuer or not jwks_uri:
            raise ValueError("OIDC discovery missing issuer/jwks_uri")

        hdr = jwt.get_unverified_header(id_token)
        kid = str(hdr.get("kid") or "")
        if not kid:
            raise ValueError("ID token missing kid")

        keys = _get_jwks(jwks_uri).get("keys")
        if not isinstance(keys, list):
            raise ValueError("Invalid JWKS keys")

        jwk = None
        for k in keys:
            if isinstance(k, dict) and str(k.get("kid") or "") == kid:
                jwk = k
                break
        if jwk is None:
            raise ValueError("Unknown signing key (kid)")

        key = jwt.algorithms.RSAAlgorithm.from_jwk(json.dumps(jwk))

        claims = jwt.decode(
            id_token,
            key=key,
            algorithms=["RS256"],
            audience=self.cfg.oidc_client_id,
            issuer=issuer,
            options={"require": ["exp", "iat", "iss", "aud"]},
        )
        if not isinstance(claims, dict):
            raise ValueError("Invalid ID token claims")

        nonce = str(claims.get("nonce") or "")
        if not nonce or nonce != expected_nonce:
            raise ValueError("Nonce mismatch")

        # Some providers may not include email_verified claim; treat as optional
        email_verified = claims.get("email_verified")
        if email_verified is not None and email_verified is not True:
            raise ValueError("Email not verified")

        return claims

    def identity_from_claims(self, claims: Dict[str, Any]) -> Identity:
        email = str(claims.get("email") or "").strip().lower()
        if "@" not in email:
            raise ValueError("Missing email claim")
        return Identity(
            id=uuid.uuid4(),
            name=str(claims.get("name") or "").strip() or None,
            email=email,
            roles=_roles_from_claims(claims, self.cfg.oidc_roles_claim),
        )

    def fetch_identity(self, *, redirect_uri: str, code: str, nonce: str) -> Identity:
        """Complete the login: code -> tokens -> verified claims -> Identity."""
        tokens = self.exchange_code(redirect_uri=redirect_uri, code=code)
        id_token = str(tokens.get("id_token") or "").strip()
        if not id_token:
            raise ValueError("Missing id_token in token response")
        claims = self.validate_id_token(id_token=id_token, expected_nonce=nonce)
        return self.identity_from_claims(claims)


def get_providers(cfg: AuthConfig) -> Dict[str, OIDCProvider]:
    """Configured providers by name."""
    providers: Dict[str, OIDCProvider] = {}
    if cfg.oidc_enabled:
        providers[OIDCProvider.name] = OIDCProvider(cfg)
    return providers
