"""
Forward-auth server.

The reverse proxy forwards every inbound request here (with X-Forwarded-Proto,
X-Forwarded-Host and X-Forwarded-Uri) and lets it through only on a 2xx answer.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlsplit

import jwt
import requests
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response

from forwardauth.auth.cache import get_identity_cache
from forwardauth.auth.config import AuthConfig, load_auth_config
from forwardauth.auth.csrf import (
    clear_csrf_cookie,
    find_csrf_cookie,
    make_csrf_cookie,
    make_nonce,
    make_state,
    validate_csrf_cookie,
    validate_state,
)
from forwardauth.auth.deps import authenticate_request, forwarded_host, forwarded_proto, forwarded_uri
from forwardauth.auth.errors import CookieError
from forwardauth.auth.session import clear_cookie, make_cookie
from forwardauth.auth.util import is_safe_return_url, redirect_uri, return_url
from forwardauth.authz.policy import ACTION_ALLOW, authorize, load_authz_policy, select_rule
from forwardauth.provider.oidc import get_providers

logger = logging.getLogger(__name__)

app = FastAPI(title="Forward auth gateway")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log all incoming HTTP requests."""
    start_time = time.time()
    try:
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.debug(
            "%s %s%s - %d (%.3fs)",
            request.headers.get("x-forwarded-method") or request.method,
            forwarded_host(request),
            forwarded_uri(request),
            response.status_code,
            process_time,
        )
        return response
    except Exception as e:
        process_time = time.time() - start_time
        logger.exception("%s %s - ERROR after %.3fs: %s", request.method, request.url.path, process_time, str(e))
        raise


@app.get("/healthz")
def healthz() -> Dict[str, Any]:
    return {"ok": True}


@app.api_route("/", methods=["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
async def forward_auth(request: Request) -> Response:
    cfg = load_auth_config()
    path = urlsplit(forwarded_uri(request)).path or "/"

    if path == cfg.url_path:
        return _auth_callback(cfg, request)
    if path == cfg.url_path + "/logout":
        return _logout(cfg, request)
    return _check_auth(cfg, request, path)


def _check_auth(cfg: AuthConfig, request: Request, path: str) -> Response:
    host = forwarded_host(request)
    policy = load_authz_policy()
    rule = select_rule(policy, host, path)
    if rule is not None and rule.action == ACTION_ALLOW:
        return PlainTextResponse("OK", status_code=200)

    identity = authenticate_request(request, cfg=cfg)
    if identity is None:
        return _start_login(cfg, request)

    if not authorize(policy, identity, rule.name if rule else None):
        logger.info("Unauthorized user %s for %s%s", identity.email, host, path)
        return PlainTextResponse("Not authorized", status_code=401)

    resp = PlainTextResponse("OK", status_code=200)
    resp.headers["X-Forwarded-User"] = identity.email
    return resp


def _start_login(cfg: AuthConfig, request: Request) -> Response:
    """Redirect to the provider with a fresh nonce bound to a CSRF cookie."""
    providers = get_providers(cfg)
    provider = providers.get(cfg.default_provider)
    if provider is None:
        raise HTTPException(status_code=503, detail="No identity provider configured")

    host = forwarded_host(request)
    proto = forwarded_proto(request)
    nonce = make_nonce()
    state = make_state(return_url(proto, host, forwarded_uri(request)), provider.name, nonce)

    try:
        url = provider.login_url(redirect_uri=redirect_uri(cfg, proto, host), state=state, nonce=nonce)
    except (ValueError, requests.RequestException) as e:
        logger.warning("Failed to build login URL for provider %s: %s", provider.name, str(e))
        raise HTTPException(status_code=503, detail="Identity provider unavailable")

    resp = RedirectResponse(url=url, status_code=307)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**make_csrf_cookie(cfg, host, nonce).set_cookie_kwargs())
    logger.debug("Set CSRF cookie and redirected to provider login url")
    return resp


def _auth_callback(cfg: AuthConfig, request: Request) -> Response:
    """Handle the provider callback: CSRF check, code exchange, auth cookie."""
    host = forwarded_host(request)
    proto = forwarded_proto(request)
    query = parse_qs(urlsplit(forwarded_uri(request)).query)
    state = _first(query, "state") or request.query_params.get("state") or ""
    code = _first(query, "code") or request.query_params.get("code") or ""

    try:
        validate_state(state)
    except CookieError as e:
        logger.warning("Error validating state: %s", str(e))
        raise HTTPException(status_code=400, detail="Invalid state")

    name, value = find_csrf_cookie(cfg, request.cookies, state)
    if not value:
        logger.info("Missing CSRF cookie %s", name)
        raise HTTPException(status_code=401, detail="Not authorized")

    try:
        provider_name, redirect = validate_csrf_cookie(value, state)
    except CookieError as e:
        logger.warning("Error validating CSRF cookie: %s", str(e))
        raise HTTPException(status_code=401, detail="Not authorized")

    provider = get_providers(cfg).get(provider_name)
    if provider is None:
        logger.warning("Invalid provider in CSRF state: %s", provider_name)
        raise HTTPException(status_code=400, detail="Invalid provider")

    if not is_safe_return_url(cfg, host, redirect):
        logger.warning("Refusing unsafe return URL host in state")
        raise HTTPException(status_code=400, detail="Invalid redirect")

    if not code:
        raise HTTPException(status_code=400, detail="Missing code")

    try:
        identity = provider.fetch_identity(redirect_uri=redirect_uri(cfg, proto, host), code=code, nonce=value)
    except (ValueError, jwt.PyJWTError, requests.RequestException) as e:
        logger.warning("Failed to fetch identity from provider %s: %s", provider_name, str(e))
        raise HTTPException(status_code=503, detail="Service unavailable")

    get_identity_cache().ensure(identity)

    resp = RedirectResponse(url=redirect, status_code=307)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**make_cookie(cfg, host, identity).set_cookie_kwargs())
    resp.set_cookie(**clear_csrf_cookie(cfg, host, name).set_cookie_kwargs())
    logger.info("Successfully generated auth cookie for %s (provider=%s)", identity.email, provider_name)
    return resp


def _logout(cfg: AuthConfig, request: Request) -> Response:
    host = forwarded_host(request)
    resp: Response
    if cfg.logout_redirect:
        resp = RedirectResponse(url=cfg.logout_redirect, status_code=307)
    else:
        resp = PlainTextResponse("You have been logged out", status_code=401)
    resp.headers["Cache-Control"] = "no-store"
    resp.set_cookie(**clear_cookie(cfg, host).set_cookie_kwargs())
    logger.info("Logged out user on %s", host)
    return resp


def _first(query: Dict[str, Any], key: str) -> Optional[str]:
    values = query.get(key) or []
    return values[0] if values else None


def run(host: str = "0.0.0.0", port: int = 4181) -> None:
    import uvicorn

    # Configure logging for the application
    log_level = os.getenv("LOG_LEVEL", "info").upper()
    level = getattr(logging, log_level, logging.INFO)
    logging.basicConfig(level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    # basicConfig is a no-op once main.py has configured the root logger.
    logging.getLogger().setLevel(level)

    # Fail fast on missing SECRET / bad rules rather than on the first request.
    cfg = load_auth_config()
    load_authz_policy()

    # Map Python logging levels to uvicorn log levels
    uvicorn_log_level = (
        log_level.lower() if log_level.lower() in ["critical", "error", "warning", "info", "debug", "trace"] else "info"
    )

    logger.info(
        "Starting forward-auth server on %s:%d (cookie_domains=%s auth_host=%s log_level=%s)",
        host,
        port,
        ",".join(d.domain for d in cfg.cookie_domains) or "-",
        cfg.auth_host or "-",
        log_level,
    )
    uvicorn.run(app, host=host, port=port, log_level=uvicorn_log_level)
