"""Raw ASGI verification middleware — raw-body capture and fail-closed gate.

Why raw ASGI instead of ``BaseHTTPMiddleware``
----------------------------------------------
Webhook HMACs are computed over the exact bytes the platform sent.  The
middleware therefore reads the request body straight off the ASGI
``receive`` channel *before* anything parses it, verifies it, and then
replays the very same bytes to the application.  Raw ASGI also keeps
``ContextVar`` mutations visible to the handler and its background tasks
(Starlette issue #1001).

ASGI lifecycle
--------------
::

    Client                        Middleware                     App
      │── HTTP request ──────────────►│                           │
      │                           buffer raw body                 │
      │                           match RoutePolicy               │
      │                           SignatureVerifier.verify()      │
      │◄── 401 / 500 (on failure) ────│                           │
      │                           GateContext.set()               │
      │                               ├── replay body, await app ►│
      │◄── response (+X-Request-Id) ──│◄──────────────────────────│
      │                           GateContext.reset()             │

Routing
-------
Each request path is matched against the configured
:class:`~shopgate.core.types.RoutePolicy` list (longest prefix wins).  A path
that matches no policy and no excluded prefix is rejected with ``401``:
the gate fails closed for routes nobody declared.

Error handling
--------------
- ``unauthorized`` outcome → ``401 {"detail": "Unauthorized"}``
- ``configuration`` outcome → ``500 {"detail": "Internal server error"}``
- body larger than ``max_body_bytes`` → ``413``

Bodies never echo expected or received signatures.  Every failure is handed
to the :class:`~shopgate.errlog.ErrorRecorder` without waiting on it.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from shopgate.core.context import GateContext
from shopgate.core.exceptions import ConfigurationError, GateError, UnauthorizedError
from shopgate.core.types import InboundRequest, VerificationOutcome, outcome_log_fields
from shopgate.utils.security import generate_request_id

if TYPE_CHECKING:
    from collections.abc import Awaitable, Sequence

    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from shopgate.core.types import RoutePolicy

logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_BYTES = 1024 * 1024
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._\-]{8,64}$")


class _BodyTooLargeError(Exception):
    pass


def _json_response(
    send: Send,
    status_code: int,
    detail: str,
    code: str,
    request_id: str,
) -> Awaitable[None]:
    """Build and send a minimal JSON error response."""
    body = json.dumps({"detail": detail, "code": code}).encode("utf-8")
    headers: list[tuple[bytes, bytes]] = [
        (b"content-type", b"application/json"),
        (b"content-length", str(len(body)).encode()),
        (b"x-request-id", request_id.encode("latin-1")),
    ]

    async def _send() -> None:
        await send({"type": "http.response.start", "status": status_code, "headers": headers})
        await send({"type": "http.response.body", "body": body, "more_body": False})

    return _send()


def _generic_failure(outcome: VerificationOutcome) -> GateError:
    if outcome.is_configuration_error:
        return ConfigurationError(
            parameter=outcome.protocol.value if outcome.protocol else "protocols",
            reason=outcome.failure_reason or "unconfigured",
        )
    return UnauthorizedError(
        outcome.failure_reason or "verification failed",
        protocol=outcome.protocol.value if outcome.protocol else None,
    )


class VerificationMiddleware:
    """Raw ASGI middleware that verifies every request before the app sees it.

    Args:
        app: The downstream ASGI application.
        manager: The configured :class:`~shopgate.manager.GateManager`.
        policies: Route policies.  Defaults to ``manager.route_policies``.
        excluded_paths: Exact paths or ``/``-terminated prefixes that bypass
            verification (e.g. ``["/health", "/docs"]``).
        max_body_bytes: Largest request body accepted.

    Example::

        app.add_middleware(
            VerificationMiddleware,
            manager=manager,
            excluded_paths=["/health", "/proxy/_alive"],
        )
    """

    def __init__(
        self,
        app: ASGIApp,
        manager: Any,  # GateManager; Any avoids a circular import
        policies: Sequence[RoutePolicy] | None = None,
        excluded_paths: list[str] | None = None,
        max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
    ) -> None:
        self._app = app
        self._manager = manager
        chosen = list(policies if policies is not None else manager.route_policies)
        # Longest prefix first so "/proxy/_alive" beats "/proxy".
        self._policies = sorted(chosen, key=lambda p: len(p.prefix), reverse=True)
        self._excluded: list[str] = excluded_paths or []
        self._max_body = max_body_bytes

    def _is_excluded(self, path: str) -> bool:
        for prefix in self._excluded:
            if prefix.endswith("/"):
                if path.startswith(prefix):
                    return True
            elif path == prefix:
                return True
        return False

    def _policy_for(self, path: str) -> RoutePolicy | None:
        for policy in self._policies:
            if policy.matches(path):
                return policy
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Process an ASGI connection.

        ``lifespan`` passes through.  Non-excluded websockets are closed with
        policy-violation code ``1008``; no protocol here signs a websocket.
        """
        if scope["type"] == "websocket":
            if self._is_excluded(scope.get("path", "/")):
                await self._app(scope, receive, send)
            else:
                await send({"type": "websocket.close", "code": 1008})
            return
        if scope["type"] != "http":
            await self._app(scope, receive, send)
            return
        await self._handle(scope, receive, send)

    # ------------------------------------------------------------------
    # Request capture
    # ------------------------------------------------------------------

    async def _read_body(self, receive: Receive) -> bytes:
        chunks: list[bytes] = []
        size = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                break
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self._max_body:
                raise _BodyTooLargeError
            chunks.append(chunk)
            if not message.get("more_body", False):
                break
        return b"".join(chunks)

    @staticmethod
    def _build_request(scope: Scope, body: bytes) -> InboundRequest:
        headers: dict[str, str] = {}
        for raw_name, raw_value in scope.get("headers", []):
            name = raw_name.decode("latin-1").lower()
            value = raw_value.decode("latin-1")
            # Repeated headers fold with ", " (RFC 7230 §3.2.2).
            headers[name] = f"{headers[name]}, {value}" if name in headers else value

        host = headers.get("host")
        if host is None and scope.get("server"):
            server_host, server_port = scope["server"]
            host = f"{server_host}:{server_port}"
        path = scope.get("root_path", "") + scope.get("path", "/")
        query = scope.get("query_string", b"").decode("latin-1")
        url = f"{scope.get('scheme', 'http')}://{host or 'localhost'}{path}"
        if query:
            url = f"{url}?{query}"
        return InboundRequest(method=scope.get("method", "GET"), url=url, headers=headers, body=body)

    # ------------------------------------------------------------------
    # Main flow
    # ------------------------------------------------------------------

    async def _handle(self, scope: Scope, receive: Receive, send: Send) -> None:  # noqa: PLR0912
        """Capture, verify, set context, delegate, restore context."""
        path: str = scope.get("path", "/")
        request_id = self._request_id(scope)

        async def _send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message.get("type") == "http.response.start":
                response_started = True
                headers = list(message.get("headers", []))
                headers.append((b"x-request-id", request_id.encode("latin-1")))
                message = {**message, "headers": headers}
            await send(message)

        response_started = False

        if self._is_excluded(path):
            tokens = GateContext.set(VerificationOutcome(verified=False), request_id)
            try:
                await self._app(scope, receive, _send_wrapper)
            finally:
                GateContext.reset(tokens)
            return

        try:
            body = await self._read_body(receive)
        except _BodyTooLargeError:
            logger.warning("Rejected %s: body exceeds %d bytes", path, self._max_body)
            await _json_response(send, 413, "Request body too large", "E_MALFORMED", request_id)
            return

        request = self._build_request(scope, body)
        policy = self._policy_for(path)
        if policy is None:
            logger.warning("No route policy for %s %s; failing closed", request.method, path)
            outcome = VerificationOutcome.reject(None, "no route policy")
        else:
            outcome = self._manager.verifier.verify_policy(request, policy)

        if not outcome.verified and not (policy is not None and policy.optional):
            await self._reject(send, request, outcome, request_id)
            return

        logger.debug("Request %s admitted %s", request_id, outcome_log_fields(outcome))

        replayed = False

        async def _replay_receive() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        tokens = GateContext.set(outcome, request_id)
        try:
            if "state" not in scope:
                from starlette.datastructures import State  # noqa: PLC0415

                scope["state"] = State()
            state = scope["state"]
            if isinstance(state, dict):
                state["verification"] = outcome
            else:
                state.verification = outcome

            await self._app(scope, _replay_receive, _send_wrapper)
        except GateError as exc:
            self._manager.recorder.record_exception(
                exc,
                route=path,
                shop=outcome.tenant.shop if outcome.tenant else None,
                request_id=request_id,
            )
            if not response_started:
                detail = "Internal server error" if exc.status_code >= 500 else exc.message
                await _json_response(send, exc.status_code, detail, exc.code, request_id)
            else:
                logger.exception(
                    "GateError raised after response already started for %s", path
                )
        finally:
            GateContext.reset(tokens)

    async def _reject(
        self,
        send: Send,
        request: InboundRequest,
        outcome: VerificationOutcome,
        request_id: str,
    ) -> None:
        error = _generic_failure(outcome)
        if outcome.is_configuration_error:
            status, detail = 500, "Internal server error"
        else:
            status, detail = 401, "Unauthorized"

        # Unverified: the shop is logged as a hint only, never trusted.
        hint = self._manager.resolver.resolve(request)
        self._manager.recorder.record(
            route=request.path,
            code=error.code,
            status=status,
            message=detail,
            detail=outcome.failure_reason,
            shop=hint.shop if hint else None,
            request_id=request_id,
            level="error" if status >= 500 else "warning",
        )
        await _json_response(send, status, detail, error.code, request_id)

    @staticmethod
    def _request_id(scope: Scope) -> str:
        for raw_name, raw_value in scope.get("headers", []):
            if raw_name.lower() == b"x-request-id":
                candidate = raw_value.decode("latin-1")
                if _REQUEST_ID_RE.match(candidate):
                    return candidate
        return generate_request_id()


__all__ = ["DEFAULT_MAX_BODY_BYTES", "VerificationMiddleware"]
