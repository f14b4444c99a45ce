"""Async-safe request context using :mod:`contextvars`.

Each async task (i.e. each HTTP request handled by FastAPI) automatically
receives its own copy of every :class:`~contextvars.ContextVar`, so the
verification outcome set in the middleware is isolated from every other
concurrent request without any explicit locking.

Public surface
--------------
:class:`GateContext`
    Static-method namespace holding the current
    :class:`~shopgate.core.types.VerificationOutcome` and the request's
    correlation id.

:func:`get_verified_identity`
    FastAPI-compatible dependency returning the verified
    :class:`~shopgate.core.types.TenantIdentity` or raising.

:func:`get_request_id`
    FastAPI-compatible dependency returning the correlation id.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from typing import TYPE_CHECKING

from shopgate.core.exceptions import MalformedInputError, UnauthorizedError

if TYPE_CHECKING:
    from shopgate.core.types import TenantIdentity, VerificationOutcome

# ---------------------------------------------------------------------------
# Module-level context variables
# ---------------------------------------------------------------------------

_outcome_ctx: ContextVar[VerificationOutcome | None] = ContextVar("outcome", default=None)
_request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)


class GateContext:
    """Namespace for async-safe per-request verification context.

    All methods are static; this class is never instantiated.

    Usage in middleware::

        token = GateContext.set(outcome, request_id)
        try:
            await app(scope, receive, send)
        finally:
            GateContext.reset(token)
    """

    @staticmethod
    def set(
        outcome: VerificationOutcome,
        request_id: str,
    ) -> tuple[Token[VerificationOutcome | None], Token[str | None]]:
        """Make *outcome* and *request_id* current for this request.

        Returns:
            Tokens for :meth:`reset`.
        """
        return _outcome_ctx.set(outcome), _request_id_ctx.set(request_id)

    @staticmethod
    def reset(tokens: tuple[Token[VerificationOutcome | None], Token[str | None]]) -> None:
        """Restore the context captured in *tokens*."""
        outcome_token, request_id_token = tokens
        _outcome_ctx.reset(outcome_token)
        _request_id_ctx.reset(request_id_token)

    @staticmethod
    def outcome() -> VerificationOutcome:
        """Return the current outcome, raising if the request was never verified.

        Raises:
            UnauthorizedError: When called outside a verified request.
        """
        outcome = _outcome_ctx.get()
        if outcome is None or not outcome.verified:
            raise UnauthorizedError("no verified request in the current context")
        return outcome

    @staticmethod
    def outcome_optional() -> VerificationOutcome | None:
        return _outcome_ctx.get()

    @staticmethod
    def request_id() -> str | None:
        return _request_id_ctx.get()


# ---------------------------------------------------------------------------
# FastAPI dependency functions
# ---------------------------------------------------------------------------


def get_verified_identity() -> TenantIdentity:
    """FastAPI dependency — return the verified tenant.

    Raises:
        UnauthorizedError: When the request was not verified.
        MalformedInputError: When the request was verified but carried no
            tenant (e.g. a shared-secret call without a shop).
    """
    outcome = GateContext.outcome()
    if outcome.tenant is None:
        raise MalformedInputError("shop", "request does not identify a tenant")
    return outcome.tenant


def get_request_id() -> str:
    """FastAPI dependency — return the correlation id (empty when unset)."""
    return GateContext.request_id() or ""


__all__ = [
    "GateContext",
    "get_request_id",
    "get_verified_identity",
]
