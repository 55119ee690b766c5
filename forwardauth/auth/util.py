from __future__ import annotations

from urllib.parse import urlsplit

from forwardauth.auth.config import AuthConfig
from forwardauth.auth.domains import match_cookie_domains, strip_port, use_auth_domain


def redirect_base(proto: str, host: str) -> str:
    return f"{proto or 'https'}://{host}"


def return_url(proto: str, host: str, uri: str) -> str:
    """URL the user originally asked for (restored after login)."""
    p = (uri or "/").replace("\r", "").replace("\n", "")
    if not p.startswith("/"):
        p = "/" + p
    return f"{redirect_base(proto, host)}{p}"


def redirect_uri(cfg: AuthConfig, proto: str, host: str) -> str:
    """OAuth callback URL: on the central auth host when it shares the cookie domain."""
    use, _ = use_auth_domain(cfg, host)
    if use and cfg.auth_host:
        return f"{redirect_base(proto, cfg.auth_host)}{cfg.url_path}"
    return f"{redirect_base(proto, host)}{cfg.url_path}"


def is_safe_return_url(cfg: AuthConfig, host: str, url: str) -> bool:
    """
    Prevent open-redirects after the callback.

    The return URL must be absolute http(s) and point at the callback host or a
    host sharing its cookie domain.
    """
    try:
        parts = urlsplit(url or "")
    except ValueError:
        return False
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return False

    target = parts.hostname
    if target == strip_port(host):
        return True
    target_match, target_domain = match_cookie_domains(cfg.cookie_domains, target)
    host_match, host_domain = match_cookie_domains(cfg.cookie_domains, host)
    return target_match and host_match and target_domain == host_domain
