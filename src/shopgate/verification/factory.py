"""Factory for building the protocol dispatcher from configuration.

:class:`VerifierFactory` is a pure factory — it has no instance state and
all logic lives in the static :meth:`VerifierFactory.create` method.

Custom verifiers
----------------
Applications that need a different verifier for one protocol build the
dispatcher directly and pass it to
:class:`~shopgate.manager.GateManager`::

    verifier = SignatureVerifier({
        AuthProtocol.SHARED_SECRET: MyVaultBackedSecretVerifier(...),
    })
    manager = GateManager(config, verifier=verifier)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING

from shopgate.core.types import AuthProtocol
from shopgate.resolution.shop_domain import ShopDomainResolver
from shopgate.verification.install import InstallHmacVerifier
from shopgate.verification.proxy import ProxySignatureVerifier
from shopgate.verification.session_token import SessionTokenVerifier
from shopgate.verification.shared_secret import SharedSecretVerifier
from shopgate.verification.verifier import SignatureVerifier
from shopgate.verification.webhook import WebhookHmacVerifier

if TYPE_CHECKING:
    from shopgate.core.config import GateConfig
    from shopgate.verification.base import BaseProtocolVerifier


class VerifierFactory:
    """Static factory that constructs a :class:`SignatureVerifier` from config."""

    @staticmethod
    def resolver(config: GateConfig) -> ShopDomainResolver:
        return ShopDomainResolver(
            storefront_suffix=config.storefront_suffix,
            alternate_suffix=config.alternate_suffix,
        )

    @staticmethod
    def create(
        config: GateConfig,
        *,
        clock: Callable[[], float] | None = None,
        resolver: ShopDomainResolver | None = None,
    ) -> SignatureVerifier:
        """Build every protocol verifier from *config* and wrap them.

        Verifiers are always registered, even without secrets; an
        unconfigured verifier reports ``is_configured() == False`` and the
        dispatcher fails closed on it.

        Args:
            config: Application configuration.
            clock: Optional clock for session-token time checks.
            resolver: Optional shared resolver.  Built from *config* when omitted.
        """
        resolver = resolver or VerifierFactory.resolver(config)
        verifiers: dict[AuthProtocol, BaseProtocolVerifier] = {
            AuthProtocol.PROXY_SIGNATURE: ProxySignatureVerifier(
                config.proxy_secrets(), resolver
            ),
            AuthProtocol.WEBHOOK_HMAC: WebhookHmacVerifier(
                config.webhook_secrets_effective(), resolver
            ),
            AuthProtocol.SESSION_TOKEN: SessionTokenVerifier(
                config.session_token_secret,
                config.api_key,
                config.session_token_algorithm,
                leeway=config.session_token_leeway_seconds,
                clock=clock,
                resolver=resolver,
            ),
            AuthProtocol.SHARED_SECRET: SharedSecretVerifier(
                config.backend_shared_secret,
                config.backend_secret_header,
                resolver,
            ),
            AuthProtocol.INSTALL_HMAC: InstallHmacVerifier(
                config.proxy_secrets(), resolver
            ),
        }
        return SignatureVerifier(
            verifiers,
            allow_unsigned_dev_mode=config.allow_unsigned_dev_mode,
            resolver=resolver,
        )


__all__ = ["VerifierFactory"]
