"""Integration tests — shopgate.middleware.verification.VerificationMiddleware

Tests the middleware in front of a minimal FastAPI app using httpx
AsyncClient over ASGITransport.  No network, no database.

Verified:
* excluded paths bypass verification
* a path no policy covers fails closed with 401
* a verified request reaches the handler with GateContext populated and
  the raw body replayed byte for byte
* rejection → 401 generic body; misconfiguration → 500 generic body
* every rejection is handed to the error recorder with the shop hint
* optional policies let unverified requests through
* oversize bodies → 413
* X-Request-Id echoed when well-formed, generated otherwise
* GateError raised by a handler without an exception handler is mapped
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from httpx import ASGITransport, AsyncClient
import pytest
import pytest_asyncio

from shopgate.core.config import GateConfig
from shopgate.core.context import GateContext
from shopgate.core.exceptions import CredentialNotFoundError
from shopgate.core.types import AuthProtocol, RoutePolicy
from shopgate.manager import GateManager
from shopgate.middleware.verification import VerificationMiddleware
from shopgate.vault.memory import InMemoryCredentialStore
from shopgate.verification.webhook import compute_webhook_digest

pytestmark = pytest.mark.integration

_SECRET = "backend-secret"
_WEBHOOK_SECRET = "whsec"
_POLICIES = [
    RoutePolicy(prefix="/internal", protocols=(AuthProtocol.SHARED_SECRET,)),
    RoutePolicy(prefix="/hooks", protocols=(AuthProtocol.WEBHOOK_HMAC,)),
    RoutePolicy(prefix="/info", protocols=(AuthProtocol.SHARED_SECRET,), optional=True),
    RoutePolicy(prefix="/session", protocols=(AuthProtocol.SESSION_TOKEN,)),
]


class _MemoryWriter:
    def __init__(self) -> None:
        self.entries = []

    async def write(self, entry) -> None:
        self.entries.append(entry)


def _manager(writer: _MemoryWriter, **config) -> GateManager:
    cfg = GateConfig(database_url="sqlite+aiosqlite:///:memory:", environment="test", **config)
    return GateManager(cfg, store=InMemoryCredentialStore(), error_writer=writer)


def _build_app(manager: GateManager, max_body_bytes: int = 1024) -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        VerificationMiddleware,
        manager=manager,
        policies=_POLICIES,
        excluded_paths=["/health", "/public/"],
        max_body_bytes=max_body_bytes,
    )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/public/page")
    async def public_page():
        return {"public": True}

    @app.get("/internal/whoami")
    async def internal_whoami():
        outcome = GateContext.outcome()
        return {
            "protocol": outcome.protocol,
            "shop": outcome.tenant.shop if outcome.tenant else None,
            "request_id": GateContext.request_id(),
        }

    @app.post("/hooks/echo")
    async def hooks_echo(request: Request):
        body = await request.body()
        return {"length": len(body), "raw": body.decode()}

    @app.get("/info")
    async def info():
        outcome = GateContext.outcome_optional()
        return {"verified": bool(outcome and outcome.verified)}

    @app.get("/internal/missing")
    async def internal_missing():
        raise CredentialNotFoundError("nobody.myshopify.com")

    return app


@pytest.fixture
def writer() -> _MemoryWriter:
    return _MemoryWriter()


@pytest.fixture
def manager(writer) -> GateManager:
    return _manager(
        writer, backend_shared_secret=_SECRET, webhook_secrets=[_WEBHOOK_SECRET]
    )


@pytest_asyncio.fixture
async def client(manager):
    app = _build_app(manager)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://gate.test") as c:
        yield c


# ──────────────────────────── Routing ────────────────────────────────────────


class TestRouting:
    async def test_excluded_exact_path(self, client):
        assert (await client.get("/health")).status_code == 200

    async def test_excluded_prefix(self, client):
        assert (await client.get("/public/page")).status_code == 200

    async def test_unmatched_path_fails_closed(self, client):
        response = await client.get("/not-declared")
        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized", "code": "E_UNAUTHORIZED"}


# ──────────────────────────── Admission ──────────────────────────────────────


class TestAdmission:
    async def test_verified_request_sets_context(self, client):
        response = await client.get(
            "/internal/whoami",
            params={"shop": "FOO.myshopify.com"},
            headers={"X-Forward-Secret": _SECRET},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["protocol"] == "shared_secret"
        assert body["shop"] == "foo.myshopify.com"
        assert body["request_id"] == response.headers["x-request-id"]

    async def test_raw_body_replayed(self, client):
        raw = b'{"id": 1,   "note": "spaces kept"}'
        response = await client.post(
            "/hooks/echo",
            content=raw,
            headers={
                "X-Shopify-Hmac-Sha256": compute_webhook_digest(raw, _WEBHOOK_SECRET),
                "Content-Type": "application/json",
            },
        )
        assert response.status_code == 200
        assert response.json() == {"length": len(raw), "raw": raw.decode()}

    async def test_rejection_is_generic(self, client):
        response = await client.get("/internal/whoami", headers={"X-Forward-Secret": "wrong"})
        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized", "code": "E_UNAUTHORIZED"}
        assert "wrong" not in response.text

    async def test_tampered_webhook_body_rejected(self, client):
        digest = compute_webhook_digest(b'{"id":1}', _WEBHOOK_SECRET)
        response = await client.post(
            "/hooks/echo", content=b'{"id":2}', headers={"X-Shopify-Hmac-Sha256": digest}
        )
        assert response.status_code == 401

    async def test_misconfigured_protocol_is_500(self, client):
        response = await client.get("/session")
        assert response.status_code == 500
        assert response.json() == {"detail": "Internal server error", "code": "E_CONFIG"}

    async def test_optional_policy_lets_unverified_through(self, client):
        response = await client.get("/info")
        assert response.status_code == 200
        assert response.json() == {"verified": False}

        response = await client.get("/info", headers={"X-Forward-Secret": _SECRET})
        assert response.json() == {"verified": True}

    async def test_body_too_large(self, manager):
        app = _build_app(manager, max_body_bytes=8)
        async with AsyncClient(transport=ASGITransport(app=app), base_url="https://gate.test") as c:
            response = await c.post("/hooks/echo", content=b"x" * 64)
        assert response.status_code == 413

    async def test_gate_error_from_handler_mapped(self, client):
        response = await client.get("/internal/missing", headers={"X-Forward-Secret": _SECRET})
        assert response.status_code == 404
        assert response.json()["code"] == "E_NOT_FOUND"


# ──────────────────────────── Error recording ────────────────────────────────


class TestErrorRecording:
    async def test_rejection_recorded_with_shop_hint(self, client, manager, writer):
        await client.get(
            "/internal/whoami",
            params={"shop": "foo.myshopify.com"},
            headers={"X-Forward-Secret": "wrong", "X-Request-Id": "trace-0001"},
        )
        await manager.recorder.drain()
        assert len(writer.entries) == 1
        entry = writer.entries[0]
        assert entry.route == "/internal/whoami"
        assert entry.code == "E_UNAUTHORIZED"
        assert entry.status == 401
        assert entry.shop == "foo.myshopify.com"
        assert entry.request_id == "trace-0001"
        assert "wrong" not in (entry.detail or "")

    async def test_misconfiguration_recorded_as_error(self, client, manager, writer):
        await client.get("/session")
        await manager.recorder.drain()
        assert writer.entries[0].level == "error"
        assert writer.entries[0].code == "E_CONFIG"


# ──────────────────────────── Request id ─────────────────────────────────────


class TestRequestId:
    async def test_well_formed_id_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-Id": "abc-12345"})
        assert response.headers["x-request-id"] == "abc-12345"

    async def test_malformed_id_replaced(self, client):
        response = await client.get("/health", headers={"X-Request-Id": "bad id!"})
        assert response.headers["x-request-id"] != "bad id!"
        assert len(response.headers["x-request-id"]) == 16

    async def test_id_on_rejections(self, client):
        response = await client.get("/not-declared")
        assert response.headers.get("x-request-id")
