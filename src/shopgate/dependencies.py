"""FastAPI dependency factories for verified identity, vault and upstreams.

Closure-based factories
-----------------------
The :class:`~shopgate.manager.GateManager` that owns the vault and the
upstream clients is captured in a closure when the app is built; no
``app.state`` lookup happens at request time.

Usage pattern::

    from shopgate.dependencies import IdentityDep, make_vault_dependency

    get_vault = make_vault_dependency(manager)

    @app.post("/tokens")
    async def store_token(
        identity: IdentityDep,
        vault: Annotated[CredentialVault, Depends(get_vault)],
    ):
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any

from fastapi import Depends

from shopgate.core.context import GateContext, get_request_id, get_verified_identity
from shopgate.core.types import TenantIdentity, VerificationOutcome

if TYPE_CHECKING:
    from shopgate.manager import GateManager
    from shopgate.upstream.client import PlatformClient, WorkflowRelay
    from shopgate.vault.vault import CredentialVault


def get_outcome() -> VerificationOutcome:
    """Return the verified outcome for this request (raises when unverified)."""
    return GateContext.outcome()


def get_outcome_optional() -> VerificationOutcome | None:
    """Return the outcome for this request, verified or not."""
    return GateContext.outcome_optional()


#: Annotated alias for the verified tenant.
IdentityDep = Annotated[TenantIdentity, Depends(get_verified_identity)]

#: Annotated alias for the verified outcome.
OutcomeDep = Annotated[VerificationOutcome, Depends(get_outcome)]

#: Annotated alias for an outcome that may be unverified (optional routes).
OutcomeOptionalDep = Annotated[VerificationOutcome | None, Depends(get_outcome_optional)]

#: Annotated alias for the correlation id.
RequestIdDep = Annotated[str, Depends(get_request_id)]


####################################
# Closure-based dependency factory #
####################################


def make_vault_dependency(manager: GateManager) -> Any:
    """Create a dependency returning the manager's :class:`CredentialVault`.

    The dependency raises ``ConfigurationError`` (→ 500) when no vault key
    is configured.
    """

    async def _get_vault() -> CredentialVault:
        return manager.vault

    return _get_vault


def make_relay_dependency(manager: GateManager) -> Any:
    """Create a dependency returning the manager's :class:`WorkflowRelay`."""

    async def _get_relay() -> WorkflowRelay:
        return manager.relay

    return _get_relay


def make_platform_dependency(manager: GateManager) -> Any:
    """Create a dependency returning the manager's :class:`PlatformClient`."""

    async def _get_platform() -> PlatformClient:
        return manager.platform

    return _get_platform


__all__ = [
    "IdentityDep",
    "OutcomeDep",
    "OutcomeOptionalDep",
    "RequestIdDep",
    "get_outcome",
    "get_outcome_optional",
    "make_platform_dependency",
    "make_relay_dependency",
    "make_vault_dependency",
]
