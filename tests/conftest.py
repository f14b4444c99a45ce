"""Shared pytest fixtures for the shopgate test suite.

Hierarchy
---------
request_factory         callable that builds InboundRequest objects
resolver                default ShopDomainResolver
cipher                  TokenCipher over a fixed test key
mem_store               fresh InMemoryCredentialStore per test
vault                   CredentialVault over cipher + mem_store
sqlite_store            SQLAlchemyCredentialStore backed by SQLite :memory:
gate_config             GateConfig with every protocol configured
upstream_calls          list of httpx.Request objects seen by the mock upstream
manager                 GateManager with InMemoryCredentialStore + MockTransport
app / http_client       create_app(manager) behind httpx ASGITransport
session_token           callable minting session tokens for the embedded admin
"""

from __future__ import annotations

import base64
from typing import TYPE_CHECKING, Any

import httpx
from httpx import ASGITransport, AsyncClient
from jose import jwt
import pytest
import pytest_asyncio

from shopgate.app import create_app
from shopgate.cache.flags import StaticFlagLoader
from shopgate.core.config import GateConfig
from shopgate.core.types import InboundRequest
from shopgate.manager import ENGINE_PROXY_FLAG, GateManager
from shopgate.resolution.shop_domain import ShopDomainResolver
from shopgate.vault.cipher import TokenCipher
from shopgate.vault.database import SQLAlchemyCredentialStore
from shopgate.vault.memory import InMemoryCredentialStore
from shopgate.vault.vault import CredentialVault

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

APP_SECRET = "shpss_app_secret"
WEBHOOK_SECRET = "whsec_webhook_secret"
BACKEND_SECRET = "backend-shared-secret"
SESSION_SECRET = "session-signing-secret"
API_KEY = "api-key-123"
VAULT_KEY_RAW = bytes(range(32))
VAULT_KEY = base64.b64encode(VAULT_KEY_RAW).decode("ascii")
NOW = 1_700_000_000.0
SHOP = "foo.myshopify.com"


###################
# Request factory #
###################


@pytest.fixture
def request_factory():
    """Return a factory that produces InboundRequest objects."""

    def _make(
        path: str = "/",
        *,
        query: str = "",
        method: str = "GET",
        headers: dict[str, str] | None = None,
        body: bytes = b"",
    ) -> InboundRequest:
        url = f"https://gate.test{path}"
        if query:
            url = f"{url}?{query}"
        return InboundRequest(method=method, url=url, headers=headers or {}, body=body)

    return _make


@pytest.fixture
def resolver() -> ShopDomainResolver:
    return ShopDomainResolver()


#########
# Vault #
#########


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher(VAULT_KEY_RAW)


@pytest.fixture
def mem_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture
def vault(cipher: TokenCipher, mem_store: InMemoryCredentialStore) -> CredentialVault:
    return CredentialVault(cipher, mem_store)


################
# SQLite store #
################


@pytest_asyncio.fixture
async def sqlite_store() -> AsyncIterator[SQLAlchemyCredentialStore]:
    s = SQLAlchemyCredentialStore("sqlite+aiosqlite:///:memory:")
    await s.initialize()
    yield s
    await s.close()


##########
# Config #
##########


@pytest.fixture
def gate_config() -> GateConfig:
    return GateConfig(
        database_url="sqlite+aiosqlite:///:memory:",
        environment="test",
        app_secrets=[APP_SECRET],
        webhook_secrets=[WEBHOOK_SECRET],
        backend_shared_secret=BACKEND_SECRET,
        session_token_secret=SESSION_SECRET,
        api_key=API_KEY,
        vault_key=VAULT_KEY,
        workflow_base_url="https://engine.test/webhook",
        workflow_uninstall_url="https://engine.test/webhook/uninstall",
    )


############
# Upstream #
############


@pytest.fixture
def upstream_calls() -> list[httpx.Request]:
    return []


@pytest.fixture
def upstream_transport(upstream_calls: list[httpx.Request]) -> httpx.MockTransport:
    """Mock workflow engine + platform: records every request, answers JSON."""

    def _handler(request: httpx.Request) -> httpx.Response:
        upstream_calls.append(request)
        if request.url.path.endswith("/admin/oauth/access_token"):
            return httpx.Response(200, json={"access_token": "shpat_installed", "scope": "read_orders"})
        return httpx.Response(200, json={"ok": True, "path": request.url.path})

    return httpx.MockTransport(_handler)


###########
# Manager #
###########


@pytest_asyncio.fixture
async def manager(
    gate_config: GateConfig,
    mem_store: InMemoryCredentialStore,
    upstream_transport: httpx.MockTransport,
) -> AsyncIterator[GateManager]:
    m = GateManager(
        gate_config,
        store=mem_store,
        flag_loader=StaticFlagLoader({ENGINE_PROXY_FLAG: "true"}),
        upstream_transport=upstream_transport,
        clock=lambda: NOW,
    )
    await m.initialize()
    yield m
    await m.close()


@pytest.fixture
def app(manager: GateManager):
    return create_app(manager)


@pytest_asyncio.fixture
async def http_client(app) -> AsyncIterator[AsyncClient]:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://gate.test") as client:
        yield client


##################
# Session tokens #
##################


@pytest.fixture
def session_token():
    """Return a factory minting HS256 session tokens valid at ``NOW``."""

    def _mint(
        *,
        dest: str = f"https://{SHOP}",
        aud: str = API_KEY,
        secret: str = SESSION_SECRET,
        algorithm: str = "HS256",
        exp: float | None = NOW + 60,
        nbf: float | None = NOW - 5,
        **extra: Any,
    ) -> str:
        claims: dict[str, Any] = {"dest": dest, "aud": aud, "iss": f"{dest}/admin", "sub": "42"}
        if exp is not None:
            claims["exp"] = int(exp)
        if nbf is not None:
            claims["nbf"] = int(nbf)
        claims.update(extra)
        return jwt.encode(claims, secret, algorithm=algorithm)

    return _mint

