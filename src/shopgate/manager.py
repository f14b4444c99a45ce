"""``GateManager`` — the central orchestrator for shopgate.

The manager wires together every component — verifier, vault, credential
store, error recorder, feature flags and upstream clients — and provides:

1. A FastAPI lifespan context manager for clean startup/shutdown.
2. Construction of each component from ``GateConfig`` without manual wiring.
3. The default route policy table consumed by
   :class:`~shopgate.middleware.verification.VerificationMiddleware`.

Typical setup::

    from fastapi import FastAPI
    from shopgate import GateConfig, GateManager
    from shopgate.app import create_app

    config = GateConfig()          # reads SHOPGATE_* from the environment
    manager = GateManager(config)
    app = create_app(manager)      # routes, middleware, lifespan

Minimal setup — in-memory store::

    from shopgate.vault.memory import InMemoryCredentialStore
    manager = GateManager(config, store=InMemoryCredentialStore())

Custom error-log writer::

    class DatadogErrorWriter:
        async def write(self, entry: ErrorLogEntry) -> None:
            ...

    manager = GateManager(config, error_writer=DatadogErrorWriter())
"""

from __future__ import annotations

from collections.abc import Callable
import logging
from typing import TYPE_CHECKING, Any

from shopgate.cache.flags import FlagCache, SQLFlagLoader, StaticFlagLoader
from shopgate.core.exceptions import ConfigurationError
from shopgate.core.types import AuthProtocol, RoutePolicy
from shopgate.errlog import ErrorRecorder, LoggingErrorLogWriter, SQLErrorLogWriter
from shopgate.upstream.client import PlatformClient, UpstreamClient, WorkflowRelay
from shopgate.vault.cipher import TokenCipher
from shopgate.vault.database import SQLAlchemyCredentialStore
from shopgate.vault.vault import CredentialVault
from shopgate.verification.factory import VerifierFactory

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    import httpx

    from shopgate.cache.flags import FlagLoader
    from shopgate.core.config import GateConfig
    from shopgate.vault.store import CredentialStore
    from shopgate.verification.verifier import SignatureVerifier

logger = logging.getLogger(__name__)

ENGINE_PROXY_FLAG = "engine_proxy_enabled"

#: Routes and the protocols each accepts, in the order they are tried.
DEFAULT_ROUTE_POLICIES: tuple[RoutePolicy, ...] = (
    RoutePolicy(prefix="/introspect", protocols=(AuthProtocol.SHARED_SECRET,), optional=True),
    RoutePolicy(prefix="/whoami", protocols=(AuthProtocol.SESSION_TOKEN,)),
    RoutePolicy(prefix="/tokens", protocols=(AuthProtocol.SHARED_SECRET,)),
    RoutePolicy(prefix="/vault", protocols=(AuthProtocol.SHARED_SECRET,)),
    RoutePolicy(prefix="/webhooks", protocols=(AuthProtocol.WEBHOOK_HMAC,)),
    RoutePolicy(prefix="/auth/callback", protocols=(AuthProtocol.INSTALL_HMAC,)),
    RoutePolicy(prefix="/proxy", protocols=(AuthProtocol.PROXY_SIGNATURE,)),
)

#: Paths served without verification.
DEFAULT_EXCLUDED_PATHS: tuple[str, ...] = (
    "/health",
    "/proxy/_alive",
    "/auth/start",
    "/docs",
    "/redoc",
    "/openapi.json",
)


##############
# GateManager #
##############


class GateManager:
    """Central orchestrator wiring verifier, vault, recorder and upstreams.

    Args:
        config: Application configuration.
        store: Credential store.  A :class:`SQLAlchemyCredentialStore` on
            ``config.database_url`` is built when omitted.
        verifier: Pre-built dispatcher.  Built from *config* when omitted.
        error_writer: Error-log writer.  Defaults to the ``function_errors``
            table for SQL stores, and to the logger otherwise.
        flag_loader: Feature-flag loader.  Defaults to the ``app_config``
            table for SQL stores, and to an empty static map otherwise.
        upstream_transport: Optional httpx transport for outbound calls.
        clock: Optional clock for session-token time checks.
        route_policies: Route policy table.

    Attributes:
        config: The ``GateConfig`` this manager was constructed with.
        store: The credential store.
        verifier: The protocol dispatcher.
        resolver: The shared shop-domain resolver.
        recorder: The fire-and-forget error recorder.
        flags: The feature-flag holder.
        relay: The workflow-engine relay.
        platform: The platform API client.
    """

    def __init__(
        self,
        config: GateConfig,
        *,
        store: CredentialStore | None = None,
        verifier: SignatureVerifier | None = None,
        error_writer: Any | None = None,
        flag_loader: FlagLoader | None = None,
        upstream_transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] | None = None,
        route_policies: tuple[RoutePolicy, ...] = DEFAULT_ROUTE_POLICIES,
    ) -> None:
        self.config = config
        self.resolver = VerifierFactory.resolver(config)
        self.verifier: SignatureVerifier = verifier or VerifierFactory.create(
            config, clock=clock, resolver=self.resolver
        )
        self.route_policies = route_policies

        self.store: CredentialStore = store or SQLAlchemyCredentialStore(
            config.database_url,
            pool_size=config.database_pool_size,
            max_overflow=config.database_max_overflow,
            echo=config.database_echo,
            timeout=config.database_timeout_seconds,
        )
        sql_store = self.store if isinstance(self.store, SQLAlchemyCredentialStore) else None

        key = config.vault_key_bytes()
        self._vault: CredentialVault | None = (
            CredentialVault(TokenCipher(key), self.store, self.resolver) if key else None
        )

        if error_writer is None:
            error_writer = (
                SQLErrorLogWriter(sql_store.session_factory) if sql_store else LoggingErrorLogWriter()
            )
        self.recorder = ErrorRecorder(error_writer, timeout=config.error_log_timeout_seconds)

        if flag_loader is None:
            flag_loader = (
                SQLFlagLoader(sql_store.session_factory, timeout=config.database_timeout_seconds)
                if sql_store
                else StaticFlagLoader()
            )
        self.flags = FlagCache(flag_loader, ttl=config.flag_cache_ttl)

        self.upstream = UpstreamClient(config.upstream_timeout_seconds, upstream_transport)
        self.relay = WorkflowRelay(
            self.upstream,
            config.workflow_base_url,
            config.backend_shared_secret,
            config.backend_secret_header,
        )
        secrets = config.proxy_secrets()
        self.platform = PlatformClient(
            self.upstream,
            config.api_key,
            secrets[0] if secrets else None,
            config.platform_api_version,
            vault=self._vault,
        )
        logger.info(
            "GateManager created store=%s vault=%s error_writer=%s dev_mode=%s",
            type(self.store).__name__,
            "on" if self._vault else "off",
            type(error_writer).__name__,
            config.allow_unsigned_dev_mode,
        )

    @property
    def vault(self) -> CredentialVault:
        """The credential vault.

        Raises:
            ConfigurationError: When no ``vault_key`` is configured.
        """
        if self._vault is None:
            raise ConfigurationError(parameter="vault_key", reason="vault_key is not configured.")
        return self._vault

    @property
    def has_vault(self) -> bool:
        return self._vault is not None

    #############
    # Lifecycle #
    #############

    async def initialize(self) -> None:
        """Initialise all components.

        Creates tables for SQL stores.  Safe to call multiple times.
        """
        await self.store.initialize()
        logger.info("Store initialised: %s", type(self.store).__name__)
        logger.info("GateManager initialised")

    async def close(self) -> None:
        """Flush pending error-log writes and release every resource."""
        await self.recorder.drain()
        await self.upstream.close()
        await self.store.close()
        logger.info("GateManager shut down cleanly")

    ###########################
    # FastAPI lifespan helper #
    ###########################

    def create_lifespan(self) -> Any:
        """Return an async context manager suitable for FastAPI's ``lifespan`` parameter.

        Example::

            app = FastAPI(lifespan=manager.create_lifespan())
        """
        from contextlib import asynccontextmanager  # noqa: PLC0415

        @asynccontextmanager
        async def _lifespan(app: Any) -> AsyncIterator[None]:
            await self.initialize()
            try:
                yield
            finally:
                await self.close()

        return _lifespan

    #################
    # Feature flags #
    #################

    async def flag_enabled(self, key: str, default: bool = False) -> bool:
        snapshot = await self.flags.current()
        return snapshot.enabled(key, default)


__all__ = [
    "DEFAULT_EXCLUDED_PATHS",
    "DEFAULT_ROUTE_POLICIES",
    "ENGINE_PROXY_FLAG",
    "GateManager",
]
