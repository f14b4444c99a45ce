"""Unit tests — shopgate.core.config.GateConfig

Verified:
* defaults — production, dev mode off, canonical suffixes
* dev mode and skip_state_check refused in production, allowed elsewhere
* session secret and api key must be configured together
* vault_key must be base64 of 32 bytes; vault_key_bytes decodes it
* blank secrets are dropped / treated as unset
* unknown database scheme rejected; sync driver warns
* suffixes normalised and required to differ
* workflow URLs and app_url must be http(s); blank means unset
* webhook secrets fall back to app secrets
* environment variables with the SHOPGATE_ prefix
* __str__ masks secrets
"""

from __future__ import annotations

import base64

from pydantic import ValidationError
import pytest

from shopgate.core.config import GateConfig

pytestmark = pytest.mark.unit

_DB = "sqlite+aiosqlite:///:memory:"
_KEY = base64.b64encode(b"k" * 32).decode()


def _config(**kw) -> GateConfig:
    return GateConfig(database_url=_DB, **kw)


# ──────────────────────────── Defaults ───────────────────────────────────────


class TestDefaults:
    def test_defaults(self):
        c = _config()
        assert c.environment == "production"
        assert c.allow_unsigned_dev_mode is False
        assert c.storefront_suffix == ".myshopify.com"
        assert c.alternate_suffix == ".shopify.com"
        assert c.backend_secret_header == "X-Forward-Secret"
        assert c.vault_key_bytes() is None

    def test_database_url_required(self, monkeypatch):
        monkeypatch.delenv("SHOPGATE_DATABASE_URL", raising=False)
        with pytest.raises(ValidationError):
            GateConfig()


# ──────────────────────────── Dev mode ───────────────────────────────────────


class TestDevMode:
    def test_refused_in_production(self):
        with pytest.raises(ValidationError, match="allow_unsigned_dev_mode"):
            _config(allow_unsigned_dev_mode=True)

    def test_allowed_in_development(self):
        assert _config(environment="development", allow_unsigned_dev_mode=True).allow_unsigned_dev_mode

    def test_state_check_skip_refused_in_production(self):
        with pytest.raises(ValidationError, match="skip_state_check"):
            _config(skip_state_check=True)

    def test_state_check_skip_allowed_outside_production(self):
        assert _config(environment="test", skip_state_check=True).skip_state_check is True


# ──────────────────────────── Secrets ────────────────────────────────────────


class TestSecrets:
    def test_session_secret_requires_api_key(self):
        with pytest.raises(ValidationError, match="configured together"):
            _config(session_token_secret="s")

    def test_api_key_requires_session_secret(self):
        with pytest.raises(ValidationError, match="configured together"):
            _config(api_key="k")

    def test_blank_secrets_dropped(self):
        c = _config(app_secrets=["", "  ", "real"], backend_shared_secret="  ")
        assert c.proxy_secrets() == ["real"]
        assert c.backend_shared_secret is None

    def test_webhook_secrets_fall_back(self):
        assert _config(app_secrets=["a"]).webhook_secrets_effective() == ["a"]
        assert _config(app_secrets=["a"], webhook_secrets=["w"]).webhook_secrets_effective() == ["w"]


# ──────────────────────────── Vault key ──────────────────────────────────────


class TestVaultKey:
    def test_valid_key(self):
        assert _config(vault_key=_KEY).vault_key_bytes() == b"k" * 32

    def test_short_key(self):
        with pytest.raises(ValidationError, match="32 bytes"):
            _config(vault_key=base64.b64encode(b"k" * 16).decode())

    def test_not_base64(self):
        with pytest.raises(ValidationError, match="base64"):
            _config(vault_key="***not-base64***")


# ──────────────────────────── Database / suffixes ────────────────────────────


class TestDatabaseAndSuffixes:
    def test_unknown_scheme(self):
        with pytest.raises(ValidationError, match="Unrecognised"):
            GateConfig(database_url="mysql://u:p@h/db")

    def test_sync_driver_warns(self):
        with pytest.warns(UserWarning, match="synchronous driver"):
            GateConfig(database_url="sqlite:///./x.db")

    def test_suffix_normalised(self):
        assert _config(storefront_suffix=" .Store.Example ").storefront_suffix == ".store.example"

    def test_suffix_must_start_with_dot(self):
        with pytest.raises(ValidationError):
            _config(storefront_suffix="store.example")

    def test_suffixes_must_differ(self):
        with pytest.raises(ValidationError, match="must differ"):
            _config(storefront_suffix=".a.example", alternate_suffix=".a.example")

    def test_workflow_url_must_be_http(self):
        with pytest.raises(ValidationError, match="workflow URLs"):
            _config(workflow_base_url="ftp://engine.example/run")

    def test_blank_workflow_url_is_unset(self):
        assert _config(workflow_uninstall_url="  ").workflow_uninstall_url is None


# ──────────────────────────── Environment / masking ──────────────────────────


class TestEnvironment:
    def test_reads_prefixed_env(self, monkeypatch):
        monkeypatch.setenv("SHOPGATE_DATABASE_URL", _DB)
        monkeypatch.setenv("SHOPGATE_APP_SECRETS", '["env-secret"]')
        monkeypatch.setenv("SHOPGATE_BACKEND_SHARED_SECRET", "env-backend")
        c = GateConfig()
        assert c.proxy_secrets() == ["env-secret"]
        assert c.backend_shared_secret == "env-backend"

    def test_str_masks_secrets(self):
        c = _config(app_secrets=["top-secret-1"], backend_shared_secret="hidden-2", vault_key=_KEY)
        text = str(c)
        assert "top-secret-1" not in text
        assert "hidden-2" not in text
        assert _KEY not in text
