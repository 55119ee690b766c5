"""
Cookie scope resolution.

A request host is matched against the configured cookie domains in order; the
first match decides the cookie's Domain attribute. Hosts matching nothing fall
back to their own (port-stripped) name, so a cookie never spans unrelated hosts.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence, Tuple

if TYPE_CHECKING:
    from forwardauth.auth.config import AuthConfig


def strip_port(host: str) -> str:
    """Host name without its port, lower-cased."""
    return (host or "").split(":", 1)[0].lower()


@dataclass(frozen=True)
class CookieDomain:
    """A configured cookie scope: the domain itself plus any of its subdomains."""

    domain: str

    @property
    def subdomain(self) -> str:
        return "." + self.domain

    def match(self, host: str) -> bool:
        host = strip_port(host)

        # Exact domain match?
        if host == self.domain:
            return True

        # Subdomain match? The leading dot keeps "evilexample.com" out of "example.com".
        sub = self.subdomain
        return len(host) >= len(sub) and host[len(host) - len(sub) :] == sub


def match_cookie_domains(cookie_domains: Sequence[CookieDomain], host: str) -> Tuple[bool, str]:
    """Return (matched, domain): the first matching scope, else the port-stripped host."""
    bare = strip_port(host)
    for d in cookie_domains:
        if d.match(bare):
            return True, d.domain
    return False, bare


def cookie_domain(cfg: "AuthConfig", host: str) -> str:
    _, domain = match_cookie_domains(cfg.cookie_domains, host)
    return domain


def use_auth_domain(cfg: "AuthConfig", host: str) -> Tuple[bool, str]:
    """
    Should the login flow go through the central auth host?

    Only when the request host and the auth host resolve to the same cookie
    domain; otherwise the browser would never send the CSRF cookie back.
    """
    if not cfg.auth_host:
        return False, ""

    req_match, req_domain = match_cookie_domains(cfg.cookie_domains, host)
    auth_match, auth_domain = match_cookie_domains(cfg.cookie_domains, cfg.auth_host)
    return req_match and auth_match and req_domain == auth_domain, req_domain


def csrf_cookie_domain(cfg: "AuthConfig", host: str) -> str:
    use, domain = use_auth_domain(cfg, host)
    return strip_port(domain if use else host)
