"""Domain types, enumerations, and data models for shopgate.

This module is the single source of truth for the library's public domain
vocabulary.  All other modules import *from* this module — never the reverse —
to keep the dependency graph acyclic.

Design notes
------------
* Enumerations use :class:`~enum.StrEnum` so values serialise to plain
  strings in JSON, logs, and database rows without extra conversion.
* Every model is a Pydantic ``frozen=True`` model.  Verification outcomes and
  credential records are shared across awaits within one request; immutability
  rules out accidental mutation between the verifier and the handler.
* :class:`InboundRequest` is the verifier's whole input contract.  It carries
  the *raw* body bytes exactly as received; nothing in this package ever
  re-serialises a parsed body to rebuild it.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from urllib.parse import parse_qsl, urlsplit

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class AuthProtocol(StrEnum):
    """Trust protocol under which an inbound request may be authorised.

    Protocols
    ---------
    PROXY_SIGNATURE
        Platform app-proxy requests: hex HMAC over the sorted query string.
    WEBHOOK_HMAC
        Platform webhooks: base64 HMAC over the raw request body.
    SESSION_TOKEN
        Embedded admin UI: a symmetrically signed compact JWT.
    SHARED_SECRET
        Backend-to-backend calls: a static header secret.
    INSTALL_HMAC
        OAuth install callback: hex HMAC over the RFC 3986 encoded query.
    """

    PROXY_SIGNATURE = "proxy_signature"
    WEBHOOK_HMAC = "webhook_hmac"
    SESSION_TOKEN = "session_token"
    SHARED_SECRET = "shared_secret"
    INSTALL_HMAC = "install_hmac"


class FailureKind(StrEnum):
    """Why a verification outcome is negative.

    ``UNAUTHORIZED`` maps to HTTP 401; ``CONFIGURATION`` maps to HTTP 500.
    """

    UNAUTHORIZED = "unauthorized"
    CONFIGURATION = "configuration"


# ---------------------------------------------------------------------------
# Domain models
# ---------------------------------------------------------------------------


class TenantIdentity(BaseModel):
    """A verified tenant.

    Attributes:
        shop: Canonical shop domain (e.g. ``"foo.myshopify.com"``).
        client_id: Optional secondary client identifier.
    """

    model_config = ConfigDict(frozen=True)

    shop: str = Field(..., min_length=1, max_length=255, description="Canonical shop domain.")
    client_id: str | None = Field(
        default=None,
        max_length=255,
        description="Secondary client identifier.",
    )


class VerificationOutcome(BaseModel):
    """Result of verifying one request.  Ephemeral, scoped to that request.

    Construct through :meth:`accept`, :meth:`reject` or
    :meth:`misconfigured` rather than directly.

    Attributes:
        verified: ``True`` when the request is authorised.
        protocol: The protocol that accepted (or last rejected) the request.
        tenant: The tenant resolved during verification, when available.
        failure: ``None`` on success; otherwise the :class:`FailureKind`.
        failure_reason: Operator-facing reason.  Never contains signatures.
        dev_mode: ``True`` only for the explicit unsigned development mode.
    """

    model_config = ConfigDict(frozen=True)

    verified: bool
    protocol: AuthProtocol | None = None
    tenant: TenantIdentity | None = None
    failure: FailureKind | None = None
    failure_reason: str | None = None
    dev_mode: bool = False

    @classmethod
    def accept(
        cls,
        protocol: AuthProtocol | None,
        tenant: TenantIdentity | None = None,
        *,
        dev_mode: bool = False,
    ) -> VerificationOutcome:
        return cls(verified=True, protocol=protocol, tenant=tenant, dev_mode=dev_mode)

    @classmethod
    def reject(cls, protocol: AuthProtocol | None, reason: str) -> VerificationOutcome:
        return cls(
            verified=False,
            protocol=protocol,
            failure=FailureKind.UNAUTHORIZED,
            failure_reason=reason,
        )

    @classmethod
    def misconfigured(cls, protocol: AuthProtocol | None, reason: str) -> VerificationOutcome:
        return cls(
            verified=False,
            protocol=protocol,
            failure=FailureKind.CONFIGURATION,
            failure_reason=reason,
        )

    @property
    def is_configuration_error(self) -> bool:
        return self.failure == FailureKind.CONFIGURATION


class EncryptedCredential(BaseModel):
    """An encrypted platform access token as stored at rest.

    Attributes:
        shop: Canonical shop domain; unique across the store.
        client_id: Secondary client identifier, when known.
        token_ciphertext_b64: Base64 of ``ciphertext || tag``.
        nonce_b64: Base64 of the AEAD nonce used for this ciphertext.
        updated_at: Last write timestamp (UTC).
    """

    model_config = ConfigDict(frozen=True)

    shop: str = Field(..., min_length=1, max_length=255)
    client_id: str | None = Field(default=None, max_length=255)
    token_ciphertext_b64: str = Field(..., min_length=1)
    nonce_b64: str = Field(..., min_length=1)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def __repr__(self) -> str:
        return (
            f"EncryptedCredential(shop={self.shop!r}, client_id={self.client_id!r}, "
            f"updated_at={self.updated_at.isoformat()!r})"
        )


class InboundRequest(BaseModel):
    """Everything the verifier needs from one HTTP request.

    Header names are lower-cased on construction so lookups are
    case-insensitive (RFC 7230 §3.2).

    Attributes:
        method: HTTP method, upper-case.
        url: Full request URL including the query string.
        headers: Header mapping with lower-cased names.
        body: Raw, unparsed body bytes.
    """

    model_config = ConfigDict(frozen=True)

    method: str = "GET"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: bytes = b""

    @field_validator("method")
    @classmethod
    def _upper_method(cls, v: str) -> str:
        return v.upper()

    @field_validator("headers")
    @classmethod
    def _lower_header_names(cls, v: dict[str, str]) -> dict[str, str]:
        return {str(k).lower(): str(val) for k, val in v.items()}

    @property
    def path(self) -> str:
        return urlsplit(self.url).path or "/"

    @property
    def query_string(self) -> str:
        return urlsplit(self.url).query

    @property
    def query_pairs(self) -> list[tuple[str, str]]:
        """Decoded query parameters in order of appearance, duplicates kept."""
        return parse_qsl(self.query_string, keep_blank_values=True)

    def query_param(self, name: str) -> str | None:
        """Return the first value of query parameter *name*, or ``None``."""
        for key, value in self.query_pairs:
            if key == name:
                return value
        return None

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


class ErrorLogEntry(BaseModel):
    """Immutable row for the append-only error log.

    Field lengths mirror the ``function_errors`` table; the recorder trims
    values before constructing an entry.

    Attributes:
        route: Route path that failed.
        shop: Tenant shop domain, when known.
        client_id: Secondary client id, when known.
        request_id: Correlation id of the failing request.
        code: Stable error code (e.g. ``"E_UNAUTHORIZED"``).
        status: HTTP status returned to the caller.
        message: Short operator message.
        detail: Longer operator detail (truncated).
        level: ``"error"``, ``"warning"`` or ``"info"``.
        timestamp: Event timestamp (UTC).
    """

    model_config = ConfigDict(frozen=True)

    route: str = ""
    shop: str = ""
    client_id: str = ""
    request_id: str = ""
    code: str = ""
    status: int = 0
    message: str = ""
    detail: str | None = None
    level: str = "error"
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class RoutePolicy(BaseModel):
    """Binds a URL path prefix to the protocols it accepts.

    Attributes:
        prefix: Path prefix (e.g. ``"/webhooks"``).
        protocols: Accepted protocols in the order they are tried.
        optional: When ``True`` an unverified request still reaches the
            handler, which sees the failed outcome and serves a reduced
            response.
    """

    model_config = ConfigDict(frozen=True)

    prefix: str = Field(..., min_length=1)
    protocols: tuple[AuthProtocol, ...] = Field(..., min_length=1)
    optional: bool = False

    def matches(self, path: str) -> bool:
        if path == self.prefix:
            return True
        return path.startswith(self.prefix.rstrip("/") + "/")


def outcome_log_fields(outcome: VerificationOutcome) -> dict[str, Any]:
    """Return the subset of *outcome* that is safe to put in a log line."""
    return {
        "verified": outcome.verified,
        "protocol": outcome.protocol.value if outcome.protocol else None,
        "shop": outcome.tenant.shop if outcome.tenant else None,
        "failure": outcome.failure.value if outcome.failure else None,
        "dev_mode": outcome.dev_mode,
    }


__all__ = [
    "AuthProtocol",
    "EncryptedCredential",
    "ErrorLogEntry",
    "FailureKind",
    "InboundRequest",
    "RoutePolicy",
    "TenantIdentity",
    "VerificationOutcome",
    "outcome_log_fields",
]
