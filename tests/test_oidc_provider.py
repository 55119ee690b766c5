from __future__ import annotations

from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest

from forwardauth.provider.oidc import OIDCProvider, discovery_url, get_providers

DISCOVERY = {
    "issuer": "https://issuer.example.com",
    "authorization_endpoint": "https://issuer.example.com/authorize",
    "token_endpoint": "https://issuer.example.com/token",
    "jwks_uri": "https://issuer.example.com/jwks",
}


@pytest.fixture
def cfg(make_cfg):
    return make_cfg(
        oidc_issuer_url="https://issuer.example.com/",
        oidc_client_id="client-id",
        oidc_client_secret="client-secret",
        oidc_roles_claim="groups",
    )


def test_discovery_url() -> None:
    assert discovery_url("https://issuer.example.com/") == "https://issuer.example.com/.well-known/openid-configuration"


def test_get_providers(make_cfg, cfg) -> None:
    assert get_providers(make_cfg()) == {}
    providers = get_providers(cfg)
    assert list(providers) == ["oidc"]


def test_provider_requires_credentials(make_cfg) -> None:
    with pytest.raises(ValueError):
        OIDCProvider(make_cfg(oidc_issuer_url="https://issuer.example.com"))


def test_login_url(cfg) -> None:
    with patch("forwardauth.provider.oidc._get_discovery", return_value=DISCOVERY):
        url = OIDCProvider(cfg).login_url(
            redirect_uri="https://auth.example.com/_oauth", state="n:oidc:/", nonce="n"
        )
    parts = urlsplit(url)
    assert f"{parts.scheme}://{parts.netloc}{parts.path}" == DISCOVERY["authorization_endpoint"]
    q = parse_qs(parts.query)
    assert q["client_id"] == ["client-id"]
    assert q["redirect_uri"] == ["https://auth.example.com/_oauth"]
    assert q["response_type"] == ["code"]
    assert q["state"] == ["n:oidc:/"]
    assert q["nonce"] == ["n"]


def test_exchange_code_failure(cfg) -> None:
    resp = MagicMock(status_code=400)
    with patch("forwardauth.provider.oidc._get_discovery", return_value=DISCOVERY), patch(
        "forwardauth.provider.oidc.requests.post", return_value=resp
    ):
        with pytest.raises(ValueError):
            OIDCProvider(cfg).exchange_code(redirect_uri="https://a/_oauth", code="c")


def test_identity_from_claims(cfg) -> None:
    ident = OIDCProvider(cfg).identity_from_claims(
        {"email": "Alice@Example.com ", "name": "Alice", "groups": ["admin", "dev"]}
    )
    assert ident.email == "alice@example.com"
    assert ident.name == "Alice"
    assert ident.roles == frozenset({"admin", "dev"})

    other = OIDCProvider(cfg).identity_from_claims({"email": "alice@example.com"})
    assert other.id != ident.id
    assert other.roles == frozenset()


def test_identity_requires_email(cfg) -> None:
    with pytest.raises(ValueError):
        OIDCProvider(cfg).identity_from_claims({"name": "Nobody"})


def test_fetch_identity(cfg) -> None:
    provider = OIDCProvider(cfg)
    with patch.object(provider, "exchange_code", return_value={"id_token": "tok"}) as ex, patch.object(
        provider, "validate_id_token", return_value={"email": "a@x.com", "groups": "ops, sre"}
    ) as val:
        ident = provider.fetch_identity(redirect_uri="https://a/_oauth", code="c", nonce="n")
    ex.assert_called_once_with(redirect_uri="https://a/_oauth", code="c")
    val.assert_called_once_with(id_token="tok", expected_nonce="n")
    assert ident.email == "a@x.com"
    assert ident.roles == frozenset({"ops", "sre"})


def test_fetch_identity_missing_id_token(cfg) -> None:
    provider = OIDCProvider(cfg)
    with patch.object(provider, "exchange_code", return_value={"access_token": "x"}):
        with pytest.raises(ValueError):
            provider.fetch_identity(redirect_uri="https://a/_oauth", code="c", nonce="n")


def test_validate_id_token_round_trip(cfg) -> None:
    import json
    import time

    import jwt
    from cryptography.hazmat.primitives.asymmetric import rsa

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(key.public_key()))
    jwk["kid"] = "k1"
    now = int(time.time())
    token = jwt.encode(
        {
            "iss": DISCOVERY["issuer"],
            "aud": "client-id",
            "iat": now,
            "exp": now + 300,
            "nonce": "n",
            "email": "a@x.com",
            "email_verified": True,
        },
        key,
        algorithm="RS256",
        headers={"kid": "k1"},
    )
    with patch("forwardauth.provider.oidc._get_discovery", return_value=DISCOVERY), patch(
        "forwardauth.provider.oidc._get_jwks", return_value={"keys": [jwk]}
    ):
        provider = OIDCProvider(cfg)
        claims = provider.validate_id_token(id_token=token, expected_nonce="n")
        assert claims["email"] == "a@x.com"
        with pytest.raises(ValueError):
            provider.validate_id_token(id_token=token, expected_nonce="other")
