"""Custom exceptions for shopgate.

All exceptions derive from ``GateError`` so callers can catch the entire
family with a single ``except GateError`` clause while still being able to
handle individual sub-types for fine-grained error recovery.

Exception hierarchy::

    GateError
    ├── UnauthorizedError
    ├── ConfigurationError
    ├── CredentialNotFoundError
    ├── CredentialIntegrityError
    ├── UpstreamTimeoutError
    ├── UpstreamFailureError
    └── MalformedInputError

Design decisions:
    - Every exception carries a structured ``details`` dict that is safe to
      log or include in internal error reports.  It must never contain raw
      secrets, signatures, access tokens, or plaintext credentials.
    - Every exception carries a stable ``code`` (``E_TIMEOUT``, …) written to
      the error log, and the ``status_code`` the HTTP layer maps it to.
    - Error messages are operator-focused.  Client-facing messages are
      constructed by the middleware and the app, never copied from here.
"""

from __future__ import annotations

from typing import Any, ClassVar


class GateError(Exception):
    """Base exception for all shopgate errors.

    Attributes:
        message: Human-readable description of the error.
        details: Supplementary key-value context.  Safe to log; must never
            contain raw secrets, signatures, or plaintext tokens.
    """

    code: ClassVar[str] = "E_INTERNAL"
    status_code: ClassVar[int] = 500

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.details: dict[str, Any] = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return ``human-readable`` string."""
        if self.details:
            return f"{self.message} | details={self.details}"
        return self.message

    def __repr__(self) -> str:
        """Return ``repr`` string for debugging purpose."""
        return f"{type(self).__name__}(message={self.message!r})"


class UnauthorizedError(GateError):
    """Raised when every protocol check enabled for a route failed.

    The HTTP layer answers ``401`` with a generic body.  The ``reason`` is for
    operators only and never contains expected or received signature values.

    Attributes:
        reason: Concise operator-readable explanation.
        protocol: The protocol that produced the final rejection, if any.
    """

    code = "E_UNAUTHORIZED"
    status_code = 401

    def __init__(
        self,
        reason: str,
        protocol: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"Unauthorized: {reason}"
        if protocol:
            message += f" (protocol: {protocol})"
        super().__init__(message, details)
        self.reason = reason
        self.protocol = protocol


class ConfigurationError(GateError):
    """Raised when required secret material or settings are absent or invalid.

    Never silently defaults to allow.  Surfaces as ``500`` with a generic
    body; the operator log carries the parameter name.

    Attributes:
        parameter: The name of the missing or invalid configuration field.
        reason: Why the current value is unusable.
    """

    code = "E_CONFIG"
    status_code = 500

    def __init__(
        self,
        parameter: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Invalid configuration for {parameter!r}: {reason}", details)
        self.parameter = parameter
        self.reason = reason


class CredentialNotFoundError(GateError):
    """Raised when no credential row exists for the requested tenant.

    Attributes:
        identifier: The shop domain or client id that was looked up.
    """

    code = "E_NOT_FOUND"
    status_code = 404

    def __init__(
        self,
        identifier: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = (
            f"Credential not found: {identifier!r}" if identifier else "Credential not found"
        )
        super().__init__(message, details)
        self.identifier = identifier


class CredentialIntegrityError(GateError):
    """Raised when the AEAD authentication tag does not verify on decrypt.

    This is a hard failure: no truncated or best-effort plaintext is ever
    returned alongside it.

    Attributes:
        shop: The tenant whose stored record failed verification.
    """

    code = "E_INTEGRITY"
    status_code = 500

    def __init__(
        self,
        shop: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = "Credential integrity check failed"
        if shop:
            message += f" (shop: {shop!r})"
        super().__init__(message, details)
        self.shop = shop


class UpstreamTimeoutError(GateError):
    """Raised when persistence or an upstream HTTP call exceeds its time budget.

    Retryable, and never conflated with a security failure.

    Attributes:
        operation: The operation that timed out (e.g. ``"store.upsert"``).
        timeout: The budget that was exceeded, in seconds.
    """

    code = "E_TIMEOUT"
    status_code = 504

    def __init__(
        self,
        operation: str,
        timeout: float,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Upstream operation {operation!r} timed out after {timeout}s", details)
        self.operation = operation
        self.timeout = timeout


class UpstreamFailureError(GateError):
    """Raised when persistence or an upstream HTTP call fails.

    Attributes:
        operation: The operation that failed.
        status: HTTP status returned by the upstream, when there was one.
    """

    code = "E_UPSTREAM"
    status_code = 502

    def __init__(
        self,
        operation: str,
        reason: str,
        status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        message = f"Upstream operation {operation!r} failed: {reason}"
        if status is not None:
            message += f" (status: {status})"
        super().__init__(message, details)
        self.operation = operation
        self.reason = reason
        self.status = status


class MalformedInputError(GateError):
    """Raised when request input cannot be parsed or fails validation.

    Attributes:
        field: The offending input field.
        reason: Why the value was rejected.  Never echoes the raw value.
    """

    code = "E_MALFORMED"
    status_code = 400

    def __init__(
        self,
        field: str,
        reason: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(f"Malformed input for {field!r}: {reason}", details)
        self.field = field
        self.reason = reason


__all__ = [
    "ConfigurationError",
    "CredentialIntegrityError",
    "CredentialNotFoundError",
    "GateError",
    "MalformedInputError",
    "UnauthorizedError",
    "UpstreamFailureError",
    "UpstreamTimeoutError",
]
