"""
Pytest config.

Pins the repo root on sys.path so `import forwardauth` works when invoking a
global `pytest` entrypoint without installing the package, and resets the
memoized env config between tests.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

_ENV_VARS = (
    "SECRET",
    "COOKIE_NAME",
    "CSRF_COOKIE_NAME",
    "LIFETIME",
    "INSECURE_COOKIE",
    "COOKIE_DOMAIN",
    "AUTH_HOST",
    "URL_PATH",
    "LOGOUT_REDIRECT",
    "WHITELIST",
    "DOMAIN",
    "ALLOWED_ROLES",
    "DEFAULT_PROVIDER",
    "PROVIDERS_OIDC_ISSUER_URL",
    "PROVIDERS_OIDC_CLIENT_ID",
    "PROVIDERS_OIDC_CLIENT_SECRET",
    "PROVIDERS_OIDC_ROLES_CLAIM",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):
    """Each test starts from an empty gateway environment and fresh memoized config."""
    import os

    from forwardauth.auth.config import load_auth_config
    from forwardauth.authz.policy import load_authz_policy

    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("RULE_"):
            monkeypatch.delenv(name, raising=False)
    load_auth_config.cache_clear()
    load_authz_policy.cache_clear()
    yield
    load_auth_config.cache_clear()
    load_authz_policy.cache_clear()


@pytest.fixture
def make_cfg():
    """Build an AuthConfig directly (no env)."""
    from forwardauth.auth.config import AuthConfig, parse_cookie_domains

    def _make(**overrides):
        values = dict(
            secret=b"test-secret-key-for-testing-purposes-only",
            cookie_name="_forward_auth",
            csrf_cookie_name="_forward_auth_csrf",
            lifetime_seconds=43200,
            insecure_cookie=False,
            cookie_domains=parse_cookie_domains(overrides.pop("cookie_domains", "")),
            auth_host=None,
            url_path="/_oauth",
            logout_redirect=None,
            default_provider="oidc",
            oidc_issuer_url=None,
            oidc_client_id=None,
            oidc_client_secret=None,
            oidc_roles_claim="roles",
        )
        values.update(overrides)
        return AuthConfig(**values)

    return _make
