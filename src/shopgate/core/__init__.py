"""Core abstractions — types, config, context, and exceptions."""

from shopgate.core.config import GateConfig
from shopgate.core.context import GateContext, get_request_id, get_verified_identity
from shopgate.core.exceptions import (
    ConfigurationError,
    CredentialIntegrityError,
    CredentialNotFoundError,
    GateError,
    MalformedInputError,
    UnauthorizedError,
    UpstreamFailureError,
    UpstreamTimeoutError,
)
from shopgate.core.types import (
    AuthProtocol,
    EncryptedCredential,
    ErrorLogEntry,
    FailureKind,
    InboundRequest,
    RoutePolicy,
    TenantIdentity,
    VerificationOutcome,
)

__all__ = [
    # Config
    "GateConfig",
    # Context
    "GateContext",
    "get_request_id",
    "get_verified_identity",
    # Exceptions
    "ConfigurationError",
    "CredentialIntegrityError",
    "CredentialNotFoundError",
    "GateError",
    "MalformedInputError",
    "UnauthorizedError",
    "UpstreamFailureError",
    "UpstreamTimeoutError",
    # Types
    "AuthProtocol",
    "EncryptedCredential",
    "ErrorLogEntry",
    "FailureKind",
    "InboundRequest",
    "RoutePolicy",
    "TenantIdentity",
    "VerificationOutcome",
]
