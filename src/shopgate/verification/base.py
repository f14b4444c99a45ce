"""Abstract base class for request-verification protocols.

Every trust protocol — proxy signature, webhook HMAC, session token, shared
secret and install HMAC — derives from :class:`BaseProtocolVerifier` and
implements two methods: :meth:`~BaseProtocolVerifier.is_configured` and
:meth:`~BaseProtocolVerifier.verify`.  The dispatcher in
:mod:`shopgate.verification.verifier` decides which protocols a route
accepts; individual verifiers know nothing about routes.

Verification is a pure function of the request bytes and the configured
secrets.  It never raises on an ordinary mismatch: it returns a
:class:`~shopgate.core.types.VerificationOutcome`.

Extension pattern::

    from shopgate.verification.base import BaseProtocolVerifier

    class StaticTokenVerifier(BaseProtocolVerifier):
        protocol = AuthProtocol.SHARED_SECRET

        def __init__(self, token: str | None) -> None:
            super().__init__()
            self._token = token

        def is_configured(self) -> bool:
            return bool(self._token)

        def verify(self, request: InboundRequest) -> VerificationOutcome:
            provided = request.header("x-token") or ""
            if constant_time_equals(self._token, provided):
                return VerificationOutcome.accept(self.protocol)
            return VerificationOutcome.reject(self.protocol, "token mismatch")
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging
from typing import TYPE_CHECKING, ClassVar

from shopgate.core.types import VerificationOutcome
from shopgate.resolution.shop_domain import ShopDomainResolver

if TYPE_CHECKING:
    from shopgate.core.types import AuthProtocol, InboundRequest

logger = logging.getLogger(__name__)


class BaseProtocolVerifier(ABC):
    """Abstract base class for one trust protocol.

    Subclasses set the :attr:`protocol` class attribute and implement
    :meth:`is_configured` and :meth:`verify`.

    Args:
        resolver: Resolver used to canonicalise the tenant carried by the
            request.  A default :class:`ShopDomainResolver` is created when
            omitted.
    """

    protocol: ClassVar[AuthProtocol]

    def __init__(self, resolver: ShopDomainResolver | None = None) -> None:
        self._resolver = resolver or ShopDomainResolver()
        logger.debug("Initialised %s", type(self).__name__)

    # ------------------------------------------------------------------
    # Abstract interface
    # ------------------------------------------------------------------

    @abstractmethod
    def is_configured(self) -> bool:
        """Return ``True`` when the secret material this protocol needs is present."""

    @abstractmethod
    def verify(self, request: InboundRequest) -> VerificationOutcome:
        """Verify *request* under this protocol.

        Only called when :meth:`is_configured` returned ``True``.

        Args:
            request: The captured inbound request, including its raw body.

        Returns:
            An accepted or rejected :class:`VerificationOutcome`.  Never a
            configuration failure; that is the dispatcher's concern.
        """

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _reject(self, reason: str) -> VerificationOutcome:
        logger.debug("%s rejected request: %s", self.protocol.value, reason)
        return VerificationOutcome.reject(self.protocol, reason)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(configured={self.is_configured()})"


__all__ = ["BaseProtocolVerifier"]
