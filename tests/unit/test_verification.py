"""Unit tests — shopgate.verification protocol verifiers

Verified:
* ProxySignatureVerifier — reference HMAC over the sorted message accepts;
  another secret, a mutated parameter, an added parameter and a missing
  signature reject; duplicate keys join with ","; any candidate secret
  accepts; tenant from the ``shop`` parameter
* WebhookHmacVerifier — digest over the raw body accepts; a re-serialised
  body with identical JSON semantics rejects; missing header rejects
* SessionTokenVerifier — valid token; expired, not-yet-valid, wrong
  audience, wrong secret, wrong algorithm, foreign dest, missing bearer;
  leeway; configured-ness
* SharedSecretVerifier — exact match, same- and different-length mismatch
* InstallHmacVerifier — RFC 3986 message, sorted keys, invalid shop
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from urllib.parse import urlencode

from jose import jwt
import pytest

from shopgate.core.types import AuthProtocol, FailureKind
from shopgate.verification.install import (
    InstallHmacVerifier,
    build_install_message,
    sign_install_query,
)
from shopgate.verification.proxy import (
    ProxySignatureVerifier,
    build_proxy_message,
    sign_proxy_query,
)
from shopgate.verification.session_token import SessionTokenVerifier, normalize_dest
from shopgate.verification.shared_secret import SharedSecretVerifier
from shopgate.verification.webhook import WebhookHmacVerifier, compute_webhook_digest

pytestmark = pytest.mark.unit

_S = "proxy-secret"
_NOW = 1_700_000_000


def _hex(secret: str, message: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


# ──────────────────────────── Proxy signature ────────────────────────────────


class TestProxySignature:
    def test_scenario_reference_signature(self, request_factory):
        sig = _hex(_S, "a=1b=2")
        req = request_factory("/proxy/run", query=f"a=1&b=2&signature={sig}")
        assert ProxySignatureVerifier([_S]).verify(req).verified is True

    def test_other_secret_rejects(self, request_factory):
        sig = _hex(_S, "a=1b=2")
        req = request_factory("/proxy/run", query=f"a=1&b=2&signature={sig}")
        outcome = ProxySignatureVerifier(["other-secret"]).verify(req)
        assert outcome.verified is False
        assert outcome.failure == FailureKind.UNAUTHORIZED

    def test_mutated_parameter_rejects(self, request_factory):
        sig = _hex(_S, "a=1b=2")
        req = request_factory("/proxy/run", query=f"a=1&b=3&signature={sig}")
        assert ProxySignatureVerifier([_S]).verify(req).verified is False

    def test_added_parameter_rejects(self, request_factory):
        sig = _hex(_S, "a=1b=2")
        req = request_factory("/proxy/run", query=f"a=1&b=2&c=0&signature={sig}")
        assert ProxySignatureVerifier([_S]).verify(req).verified is False

    def test_parameter_order_is_irrelevant(self, request_factory):
        sig = _hex(_S, "a=1b=2")
        req = request_factory("/proxy/run", query=f"signature={sig}&b=2&a=1")
        assert ProxySignatureVerifier([_S]).verify(req).verified is True

    def test_missing_signature_rejects(self, request_factory):
        outcome = ProxySignatureVerifier([_S]).verify(request_factory("/proxy/run", query="a=1"))
        assert outcome.verified is False
        assert "missing" in (outcome.failure_reason or "")

    def test_uppercase_hex_rejects(self, request_factory):
        sig = _hex(_S, "a=1b=2").upper()
        req = request_factory("/proxy/run", query=f"a=1&b=2&signature={sig}")
        assert ProxySignatureVerifier([_S]).verify(req).verified is False

    def test_duplicate_keys_joined_with_comma(self):
        assert build_proxy_message([("ids", "1"), ("b", "x"), ("ids", "2")]) == "b=xids=1,2"

    def test_signature_excluded_from_message(self):
        assert build_proxy_message([("a", "1"), ("signature", "zz")]) == "a=1"

    def test_any_candidate_secret_accepts(self, request_factory):
        pairs = [("shop", "foo.myshopify.com"), ("path_prefix", "/apps/x")]
        sig = sign_proxy_query(pairs, "second")
        req = request_factory("/proxy/run", query=urlencode([*pairs, ("signature", sig)]))
        outcome = ProxySignatureVerifier(["first", "second"]).verify(req)
        assert outcome.verified is True
        assert outcome.protocol == AuthProtocol.PROXY_SIGNATURE
        assert outcome.tenant is not None
        assert outcome.tenant.shop == "foo.myshopify.com"

    def test_unconfigured(self):
        assert ProxySignatureVerifier([]).is_configured() is False
        assert ProxySignatureVerifier([""]).is_configured() is False


# ──────────────────────────── Webhook HMAC ───────────────────────────────────


class TestWebhookHmac:
    _SECRET = "whsec"

    def _request(self, request_factory, body: bytes, digest: str):
        return request_factory(
            "/webhooks/app-uninstalled",
            method="POST",
            headers={
                "X-Shopify-Hmac-Sha256": digest,
                "X-Shopify-Shop-Domain": "foo.myshopify.com",
                "X-Shopify-Topic": "app/uninstalled",
            },
            body=body,
        )

    def test_raw_body_accepts(self, request_factory):
        body = b'{"id":1,"domain":"foo.myshopify.com"}'
        digest = base64.b64encode(hmac.new(b"whsec", body, hashlib.sha256).digest()).decode()
        outcome = WebhookHmacVerifier([self._SECRET]).verify(self._request(request_factory, body, digest))
        assert outcome.verified is True
        assert outcome.tenant is not None
        assert outcome.tenant.shop == "foo.myshopify.com"

    def test_reserialised_body_rejects(self, request_factory):
        raw = b'{"id": 1, "domain": "foo.myshopify.com"}'
        digest = compute_webhook_digest(raw, self._SECRET)
        reserialised = json.dumps(json.loads(raw), separators=(",", ":")).encode()
        assert reserialised != raw
        outcome = WebhookHmacVerifier([self._SECRET]).verify(
            self._request(request_factory, reserialised, digest)
        )
        assert outcome.verified is False

    def test_missing_header_rejects(self, request_factory):
        req = request_factory("/webhooks/gdpr", method="POST", body=b"{}")
        assert WebhookHmacVerifier([self._SECRET]).verify(req).verified is False

    def test_wrong_secret_rejects(self, request_factory):
        body = b"{}"
        digest = compute_webhook_digest(body, "other")
        outcome = WebhookHmacVerifier([self._SECRET]).verify(self._request(request_factory, body, digest))
        assert outcome.verified is False


# ──────────────────────────── Session token ──────────────────────────────────


class TestSessionToken:
    _SECRET = "session-secret"
    _AUD = "api-key"

    def _verifier(self, **kw) -> SessionTokenVerifier:
        return SessionTokenVerifier(self._SECRET, self._AUD, clock=lambda: float(_NOW), **kw)

    def _token(self, **overrides) -> str:
        claims = {
            "dest": "https://foo.myshopify.com",
            "aud": self._AUD,
            "exp": _NOW + 60,
            "nbf": _NOW - 5,
        }
        secret = overrides.pop("secret", self._SECRET)
        algorithm = overrides.pop("algorithm", "HS256")
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, secret, algorithm=algorithm)

    def _request(self, request_factory, token: str | None):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        return request_factory("/whoami", headers=headers)

    def test_valid_token(self, request_factory):
        outcome = self._verifier().verify(self._request(request_factory, self._token()))
        assert outcome.verified is True
        assert outcome.protocol == AuthProtocol.SESSION_TOKEN
        assert outcome.tenant is not None
        assert outcome.tenant.shop == "foo.myshopify.com"

    def test_expired_token(self, request_factory):
        token = self._token(exp=_NOW - 1)
        outcome = self._verifier().verify(self._request(request_factory, token))
        assert outcome.verified is False
        assert outcome.failure_reason == "token expired"

    def test_expiry_boundary_is_exclusive(self, request_factory):
        token = self._token(exp=_NOW)
        assert self._verifier().verify(self._request(request_factory, token)).verified is False

    def test_not_yet_valid(self, request_factory):
        token = self._token(nbf=_NOW + 30)
        outcome = self._verifier().verify(self._request(request_factory, token))
        assert outcome.verified is False
        assert outcome.failure_reason == "token not yet valid"

    def test_leeway_tolerates_skew(self, request_factory):
        token = self._token(exp=_NOW - 3)
        assert self._verifier(leeway=5).verify(self._request(request_factory, token)).verified is True

    def test_wrong_audience(self, request_factory):
        token = self._token(aud="someone-else")
        assert self._verifier().verify(self._request(request_factory, token)).verified is False

    def test_wrong_secret(self, request_factory):
        token = self._token(secret="forged")
        assert self._verifier().verify(self._request(request_factory, token)).verified is False

    def test_wrong_algorithm(self, request_factory):
        token = self._token(algorithm="HS512")
        assert self._verifier().verify(self._request(request_factory, token)).verified is False

    def test_foreign_dest(self, request_factory):
        token = self._token(dest="https://evil.example.com")
        outcome = self._verifier().verify(self._request(request_factory, token))
        assert outcome.verified is False
        assert "dest" in (outcome.failure_reason or "")

    def test_missing_dest(self, request_factory):
        token = self._token(dest=None)
        assert self._verifier().verify(self._request(request_factory, token)).verified is False

    def test_missing_bearer(self, request_factory):
        outcome = self._verifier().verify(self._request(request_factory, None))
        assert outcome.verified is False
        assert outcome.failure_reason == "missing bearer token"

    def test_non_bearer_scheme(self, request_factory):
        req = request_factory("/whoami", headers={"Authorization": f"Basic {self._token()}"})
        assert self._verifier().verify(req).verified is False

    def test_configured_needs_secret_and_audience(self):
        assert SessionTokenVerifier("s", "a").is_configured() is True
        assert SessionTokenVerifier(None, "a").is_configured() is False
        assert SessionTokenVerifier("s", None).is_configured() is False

    def test_normalize_dest(self):
        assert normalize_dest("HTTPS://Foo.myshopify.com/") == "foo.myshopify.com"


# ──────────────────────────── Shared secret ──────────────────────────────────


class TestSharedSecret:
    def test_exact_match(self, request_factory):
        req = request_factory("/tokens", headers={"X-Forward-Secret": "backend-secret"})
        outcome = SharedSecretVerifier("backend-secret").verify(req)
        assert outcome.verified is True
        assert outcome.tenant is None

    def test_same_length_mismatch(self, request_factory):
        req = request_factory("/tokens", headers={"X-Forward-Secret": "backend-secreX"})
        assert SharedSecretVerifier("backend-secret").verify(req).verified is False

    def test_different_length_mismatch(self, request_factory):
        req = request_factory("/tokens", headers={"X-Forward-Secret": "b"})
        assert SharedSecretVerifier("backend-secret").verify(req).verified is False

    def test_missing_header(self, request_factory):
        outcome = SharedSecretVerifier("backend-secret").verify(request_factory("/tokens"))
        assert outcome.verified is False
        assert outcome.failure_reason == "missing shared secret header"

    def test_custom_header_and_tenant(self, request_factory):
        req = request_factory(
            "/tokens",
            query="shop=foo.myshopify.com",
            headers={"X-Internal-Key": "k"},
        )
        outcome = SharedSecretVerifier("k", header_name="X-Internal-Key").verify(req)
        assert outcome.verified is True
        assert outcome.tenant is not None
        assert outcome.tenant.shop == "foo.myshopify.com"


# ──────────────────────────── Install HMAC ───────────────────────────────────


class TestInstallHmac:
    def test_message_sorted_and_encoded(self):
        pairs = [
            ("timestamp", "1700000000"),
            ("shop", "foo.myshopify.com"),
            ("hmac", "zz"),
            ("code", "a b/c"),
        ]
        assert build_install_message(pairs) == "code=a%20b%2Fc&shop=foo.myshopify.com&timestamp=1700000000"

    def test_valid_callback(self, request_factory):
        pairs = [("code", "abc"), ("shop", "foo.myshopify.com"), ("state", "n1"), ("timestamp", "1")]
        digest = sign_install_query(pairs, "app-secret")
        req = request_factory("/auth/callback", query=urlencode([*pairs, ("hmac", digest)]))
        outcome = InstallHmacVerifier(["app-secret"]).verify(req)
        assert outcome.verified is True
        assert outcome.tenant is not None
        assert outcome.tenant.shop == "foo.myshopify.com"

    def test_tampered_code_rejects(self, request_factory):
        pairs = [("code", "abc"), ("shop", "foo.myshopify.com")]
        digest = sign_install_query(pairs, "app-secret")
        req = request_factory(
            "/auth/callback", query=urlencode([("code", "abd"), ("shop", "foo.myshopify.com"), ("hmac", digest)])
        )
        assert InstallHmacVerifier(["app-secret"]).verify(req).verified is False

    def test_invalid_shop_rejects(self, request_factory):
        pairs = [("code", "abc"), ("shop", "evil.example.com")]
        digest = sign_install_query(pairs, "app-secret")
        req = request_factory("/auth/callback", query=urlencode([*pairs, ("hmac", digest)]))
        outcome = InstallHmacVerifier(["app-secret"]).verify(req)
        assert outcome.verified is False
        assert outcome.failure_reason == "invalid shop parameter"
