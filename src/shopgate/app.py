"""FastAPI application: the HTTP surface over the verifier and the vault.

:func:`create_app` builds a FastAPI app around a
:class:`~shopgate.manager.GateManager`: it installs the verification
middleware, the exception handlers, the lifespan, and these routes:

+----------------------------------+--------------------+----------------------------+
| Route                            | Protocols          | Behaviour                  |
+==================================+====================+============================+
| ``GET /health``                  | none               | liveness                   |
+----------------------------------+--------------------+----------------------------+
| ``GET /introspect``              | shared secret, opt | public info; flags if auth |
+----------------------------------+--------------------+----------------------------+
| ``GET /whoami``                  | session token      | ``{ok, connected, shop}``  |
+----------------------------------+--------------------+----------------------------+
| ``POST /tokens``                 | shared secret      | vault encrypt              |
+----------------------------------+--------------------+----------------------------+
| ``POST /tokens/lookup``          | shared secret      | vault decrypt              |
+----------------------------------+--------------------+----------------------------+
| ``POST /tokens/delete``          | shared secret      | vault delete (idempotent)  |
+----------------------------------+--------------------+----------------------------+
| ``GET /vault/_alive``            | shared secret      | vault liveness             |
+----------------------------------+--------------------+----------------------------+
| ``POST /webhooks/app-uninstalled``| webhook HMAC      | purge token, notify engine |
+----------------------------------+--------------------+----------------------------+
| ``POST /webhooks/gdpr``          | webhook HMAC       | acknowledge                |
+----------------------------------+--------------------+----------------------------+
| ``GET /auth/start``              | none               | state cookie, redirect     |
+----------------------------------+--------------------+----------------------------+
| ``GET /auth/callback``           | install HMAC       | state, exchange, encrypt   |
+----------------------------------+--------------------+----------------------------+
| ``* /proxy/{path}``              | proxy signature    | forward (flag-gated)       |
+----------------------------------+--------------------+----------------------------+
| ``GET /proxy/_alive``            | none               | liveness                   |
+----------------------------------+--------------------+----------------------------+

Error bodies are ``{"detail": ..., "code": ...}``.  5xx bodies are generic;
the operator detail goes to the log and the error recorder.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response
from pydantic import BaseModel, Field

from shopgate import __version__
from shopgate.core.context import GateContext
from shopgate.core.exceptions import ConfigurationError, GateError, MalformedInputError, UnauthorizedError
from shopgate.core.types import AuthProtocol, TenantIdentity
from shopgate.dependencies import (
    IdentityDep,
    OutcomeDep,
    OutcomeOptionalDep,
    RequestIdDep,
    make_platform_dependency,
    make_relay_dependency,
    make_vault_dependency,
)
from shopgate.manager import DEFAULT_EXCLUDED_PATHS, ENGINE_PROXY_FLAG, GateManager
from shopgate.middleware.verification import VerificationMiddleware
from shopgate.resolution.shop_domain import derive_client_id
from shopgate.upstream.client import PlatformClient, WorkflowRelay
from shopgate.utils.security import constant_time_equals, mask_sensitive_data
from shopgate.vault.vault import CredentialVault

logger = logging.getLogger(__name__)

_GENERIC_DETAIL: dict[int, str] = {
    400: "Malformed request",
    401: "Unauthorized",
    404: "Not found",
    500: "Internal server error",
    502: "Upstream failure",
    504: "Upstream timeout",
}

_FORWARDED_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class TokenStoreBody(BaseModel):
    shop: str = Field(..., min_length=1, max_length=255)
    token: str = Field(..., min_length=1)
    client_id: str | None = Field(default=None, max_length=255)


class TokenLookupBody(BaseModel):
    shop: str | None = Field(default=None, max_length=255)
    client_id: str | None = Field(default=None, max_length=255)


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _error_body(exc: GateError) -> dict[str, str]:
    if exc.status_code == 400:
        return {"detail": exc.message, "code": exc.code}
    return {"detail": _GENERIC_DETAIL.get(exc.status_code, "Internal server error"), "code": exc.code}


def _install_exception_handlers(app: FastAPI, manager: GateManager) -> None:
    @app.exception_handler(GateError)
    async def _gate_error_handler(request: Request, exc: GateError) -> JSONResponse:
        outcome = GateContext.outcome_optional()
        tenant = outcome.tenant if outcome else None
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        manager.recorder.record_exception(
            exc,
            route=request.url.path,
            shop=tenant.shop if tenant else None,
            client_id=tenant.client_id if tenant else None,
            request_id=GateContext.request_id(),
        )
        return JSONResponse(status_code=exc.status_code, content=_error_body(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()]
        return await _gate_error_handler(
            request, MalformedInputError(", ".join(fields) or "body", "failed validation")
        )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _build_router(manager: GateManager) -> APIRouter:  # noqa: PLR0915
    router = APIRouter()
    get_vault = make_vault_dependency(manager)
    get_relay = make_relay_dependency(manager)
    get_platform = make_platform_dependency(manager)

    ##########
    # Public #
    ##########

    @router.get("/health")
    async def health() -> dict[str, Any]:
        return {"status": "ok", "service": "shopgate", "version": __version__}

    @router.get("/proxy/_alive")
    async def proxy_alive() -> dict[str, Any]:
        return {"ok": True, "service": "engine-proxy", "version": __version__}

    @router.get("/introspect")
    async def introspect(outcome: OutcomeOptionalDep) -> dict[str, Any]:
        body: dict[str, Any] = {
            "ok": True,
            "service": "shopgate",
            "version": __version__,
            "vault": manager.has_vault,
            "protocols": {p.value: manager.verifier.is_configured(p) for p in AuthProtocol},
        }
        if outcome is not None and outcome.verified:
            snapshot = await manager.flags.current()
            body["environment"] = manager.config.environment
            body["dev_mode"] = manager.config.allow_unsigned_dev_mode
            body["flags"] = dict(snapshot.flags)
        return body

    #################
    # Embedded admin #
    #################

    @router.get("/whoami")
    async def whoami(identity: IdentityDep) -> dict[str, Any]:
        connected = await manager.vault.has_credential(identity.shop) if manager.has_vault else False
        return {"ok": True, "connected": connected, "shop": identity.shop}

    ###################
    # Backend → vault #
    ###################

    @router.post("/tokens")
    async def store_token(
        payload: TokenStoreBody,
        vault: CredentialVault = Depends(get_vault),
    ) -> dict[str, Any]:
        row = await vault.encrypt(payload.shop, payload.token, client_id=payload.client_id)
        return {
            "ok": True,
            "shop": row.shop,
            "client_id": row.client_id,
            "updated_at": row.updated_at.isoformat(),
        }

    @router.post("/tokens/lookup")
    async def lookup_token(
        payload: TokenLookupBody,
        vault: CredentialVault = Depends(get_vault),
    ) -> dict[str, Any]:
        row = await vault.fetch(shop=payload.shop, client_id=payload.client_id)
        token = vault.decrypt_row(row)
        return {"ok": True, "shop": row.shop, "token": token}

    @router.post("/tokens/delete")
    async def delete_token(
        payload: TokenLookupBody,
        vault: CredentialVault = Depends(get_vault),
    ) -> dict[str, Any]:
        deleted = await vault.delete(shop=payload.shop, client_id=payload.client_id)
        return {"ok": True, "deleted": deleted}

    @router.get("/vault/_alive")
    async def vault_alive() -> dict[str, Any]:
        return {"ok": True, "service": "vault"}

    ############
    # Webhooks #
    ############

    async def _notify_uninstall(relay: WorkflowRelay, tenant: TenantIdentity, request_id: str) -> None:
        url = manager.config.workflow_uninstall_url or ""
        try:
            await relay.notify(
                url,
                {"shop": tenant.shop, "event": "app_uninstalled"},
                tenant=tenant,
                request_id=request_id,
            )
        except GateError as exc:
            logger.warning("Uninstall notification failed shop=%s: %s", tenant.shop, exc)
            manager.recorder.record_exception(
                exc, route="/webhooks/app-uninstalled", shop=tenant.shop, request_id=request_id
            )

    @router.post("/webhooks/app-uninstalled")
    async def app_uninstalled(
        outcome: OutcomeDep,
        request_id: RequestIdDep,
        background_tasks: BackgroundTasks,
        relay: WorkflowRelay = Depends(get_relay),
    ) -> dict[str, Any]:
        tenant = outcome.tenant
        if tenant is None:
            raise MalformedInputError("x-shopify-shop-domain", "missing or invalid shop header")

        purged = False
        if manager.has_vault:
            try:
                purged = await manager.vault.delete(shop=tenant.shop)
            except GateError as exc:
                logger.warning("Token purge failed shop=%s: %s", tenant.shop, exc)
                manager.recorder.record_exception(
                    exc, route="/webhooks/app-uninstalled", shop=tenant.shop, request_id=request_id
                )

        if manager.config.workflow_uninstall_url:
            background_tasks.add_task(_notify_uninstall, relay, tenant, request_id)
        logger.info("App uninstalled shop=%s purged=%s", tenant.shop, purged)
        return {"ok": True, "shop": tenant.shop, "purged": purged}

    @router.post("/webhooks/gdpr")
    async def gdpr(outcome: OutcomeDep, request: Request) -> dict[str, Any]:
        topic = request.headers.get("x-shopify-topic")
        logger.info(
            "GDPR webhook topic=%s shop=%s",
            topic,
            outcome.tenant.shop if outcome.tenant else None,
        )
        return {"ok": True, "topic": topic}

    ###########
    # Install #
    ###########

    @router.get("/auth/start")
    async def auth_start(request: Request) -> RedirectResponse:
        config = manager.config
        if not config.api_key:
            raise ConfigurationError("api_key", "required to start an install")
        tenant = manager.resolver.identity(request.query_params.get("shop"))
        if tenant is None:
            raise MalformedInputError("shop", "missing or not a canonical shop domain")

        base = config.app_url or str(request.base_url).rstrip("/")
        state = secrets.token_urlsafe(24)
        params = {"client_id": config.api_key, "redirect_uri": f"{base}/auth/callback", "state": state}
        if config.install_scopes:
            params["scope"] = config.install_scopes

        response = RedirectResponse(
            f"https://{tenant.shop}/admin/oauth/authorize?{urlencode(params)}", status_code=302
        )
        response.set_cookie(
            config.oauth_state_cookie,
            state,
            max_age=config.oauth_state_ttl_seconds,
            path="/auth",
            secure=True,
            httponly=True,
            samesite="lax",
        )
        logger.info("Install started shop=%s", tenant.shop)
        return response

    @router.get("/auth/callback")
    async def auth_callback(
        identity: IdentityDep,
        request: Request,
        platform: PlatformClient = Depends(get_platform),
        vault: CredentialVault = Depends(get_vault),
    ) -> dict[str, Any]:
        state = request.query_params.get("state") or ""
        if not manager.config.skip_state_check:
            expected = request.cookies.get(manager.config.oauth_state_cookie) or ""
            if not expected or not constant_time_equals(expected, state):
                raise UnauthorizedError("oauth state mismatch", protocol=AuthProtocol.INSTALL_HMAC.value)

        code = request.query_params.get("code") or ""
        if not code:
            raise MalformedInputError("code", "missing authorization code")

        grant = await platform.exchange_code(identity.shop, code)
        client_id = derive_client_id(identity.shop, storefront_suffix=manager.config.storefront_suffix)
        await vault.encrypt(identity.shop, grant["access_token"], client_id=client_id)
        logger.info(
            "Installed shop=%s client_id=%s grant=%s", identity.shop, client_id, mask_sensitive_data(grant)
        )
        return {"ok": True, "shop": identity.shop, "client_id": client_id, "installed": True}

    ###############
    # App proxy   #
    ###############

    @router.api_route("/proxy/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def engine_proxy(
        path: str,
        request: Request,
        outcome: OutcomeDep,
        request_id: RequestIdDep,
        relay: WorkflowRelay = Depends(get_relay),
    ) -> Response:
        if not await manager.flag_enabled(ENGINE_PROXY_FLAG):
            return JSONResponse(
                status_code=503, content={"detail": "Engine proxy disabled", "code": "E_DISABLED"}
            )

        method = request.method.upper()
        body = await request.body() if method in _FORWARDED_BODY_METHODS else None
        params = [(k, v) for k, v in request.query_params.multi_items() if k != "signature"]
        upstream = await relay.forward(
            path or "run",
            tenant=outcome.tenant,
            request_id=request_id,
            method=method,
            body=body,
            params=params,
            headers={
                "Content-Type": request.headers.get("content-type", "application/json"),
                "X-Channel": "shopify-proxy",
            },
        )
        return Response(
            content=upstream.content,
            status_code=upstream.status_code,
            media_type=upstream.headers.get("content-type", "application/json"),
        )

    return router


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(manager: GateManager, *, title: str = "shopgate") -> FastAPI:
    """Build the FastAPI application for *manager*.

    Example::

        manager = GateManager(GateConfig())
        app = create_app(manager)
    """
    app = FastAPI(title=title, version=__version__, lifespan=manager.create_lifespan())
    app.state.manager = manager
    _install_exception_handlers(app, manager)
    app.include_router(_build_router(manager))
    app.add_middleware(
        VerificationMiddleware,
        manager=manager,
        excluded_paths=list(DEFAULT_EXCLUDED_PATHS),
    )
    return app


__all__ = ["TokenLookupBody", "TokenStoreBody", "create_app"]
