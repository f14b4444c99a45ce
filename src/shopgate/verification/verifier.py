"""Protocol dispatcher: verify a request under the protocols its route accepts.

:class:`SignatureVerifier` owns one :class:`BaseProtocolVerifier` per
:class:`~shopgate.core.types.AuthProtocol`.  A route declares an ordered
tuple of acceptable protocols (via a
:class:`~shopgate.core.types.RoutePolicy`); configured protocols are tried in
that order and the first acceptance wins.

Failing closed
--------------
+----------------------------------------------+-------------------------+
| Declared protocols                           | Outcome when none pass  |
+==============================================+=========================+
| all configured                               | ``unauthorized`` (401)  |
+----------------------------------------------+-------------------------+
| some unconfigured                            | ``configuration`` (500) |
+----------------------------------------------+-------------------------+
| all unconfigured                             | ``configuration`` (500) |
+----------------------------------------------+-------------------------+
| all unconfigured, ``allow_unsigned_dev_mode``| verified, ``dev_mode``  |
+----------------------------------------------+-------------------------+

Unsigned dev mode is logged at ``WARNING`` on every request it admits so it
can never pass unnoticed.  :class:`~shopgate.core.config.GateConfig` refuses
to enable it in production.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from typing import TYPE_CHECKING

from shopgate.core.types import AuthProtocol, RoutePolicy, VerificationOutcome
from shopgate.resolution.shop_domain import ShopDomainResolver

if TYPE_CHECKING:
    from shopgate.core.types import InboundRequest
    from shopgate.verification.base import BaseProtocolVerifier

logger = logging.getLogger(__name__)


class SignatureVerifier:
    """Dispatch verification across the protocols a route accepts.

    Args:
        verifiers: Protocol verifiers keyed by protocol.  A protocol with no
            entry is treated as unconfigured.
        allow_unsigned_dev_mode: Admit requests on routes whose every
            declared protocol is unconfigured.
        resolver: Resolver used for the best-effort tenant in dev mode.
    """

    def __init__(
        self,
        verifiers: Mapping[AuthProtocol, BaseProtocolVerifier],
        *,
        allow_unsigned_dev_mode: bool = False,
        resolver: ShopDomainResolver | None = None,
    ) -> None:
        self._verifiers = dict(verifiers)
        self._dev_mode = allow_unsigned_dev_mode
        self._resolver = resolver or ShopDomainResolver()
        if allow_unsigned_dev_mode:
            logger.warning(
                "Unsigned dev mode is ENABLED: routes with no configured secrets "
                "accept unauthenticated requests. NON-PRODUCTION ONLY."
            )

    @property
    def allow_unsigned_dev_mode(self) -> bool:
        return self._dev_mode

    def get(self, protocol: AuthProtocol) -> BaseProtocolVerifier | None:
        return self._verifiers.get(protocol)

    def is_configured(self, protocol: AuthProtocol) -> bool:
        verifier = self._verifiers.get(protocol)
        return verifier is not None and verifier.is_configured()

    def verify_policy(self, request: InboundRequest, policy: RoutePolicy) -> VerificationOutcome:
        return self.verify(request, policy.protocols)

    def verify(
        self,
        request: InboundRequest,
        protocols: Sequence[AuthProtocol],
    ) -> VerificationOutcome:
        """Verify *request* under *protocols*, tried in order.

        Args:
            request: The captured inbound request.
            protocols: The protocols the route accepts.

        Returns:
            The first accepting outcome, or a failure outcome classified as
            ``unauthorized`` or ``configuration`` per the module table.

        Raises:
            ValueError: When *protocols* is empty.
        """
        if not protocols:
            msg = "A route must declare at least one protocol."
            raise ValueError(msg)

        configured = [p for p in protocols if self.is_configured(p)]
        unconfigured = [p for p in protocols if p not in configured]

        if not configured:
            names = ", ".join(p.value for p in protocols)
            if self._dev_mode:
                logger.warning(
                    "NON-PRODUCTION unsigned dev mode: admitting %s %s without "
                    "verification (no secrets configured for: %s)",
                    request.method,
                    request.path,
                    names,
                )
                return VerificationOutcome.accept(
                    None, self._resolver.resolve(request), dev_mode=True
                )
            logger.error(
                "No secret material configured for any protocol of %s (%s); failing closed",
                request.path,
                names,
            )
            return VerificationOutcome.misconfigured(
                protocols[0], f"no secret material configured for: {names}"
            )

        rejections: list[VerificationOutcome] = []
        for protocol in configured:
            outcome = self._verifiers[protocol].verify(request)
            if outcome.verified:
                logger.debug("Verified %s %s via %s", request.method, request.path, protocol.value)
                return outcome
            rejections.append(outcome)

        reasons = "; ".join(
            f"{o.protocol.value if o.protocol else '?'}: {o.failure_reason}" for o in rejections
        )
        if unconfigured:
            names = ", ".join(p.value for p in unconfigured)
            logger.error(
                "Rejected %s %s and protocols %s are unconfigured; failing closed (%s)",
                request.method,
                request.path,
                names,
                reasons,
            )
            return VerificationOutcome.misconfigured(
                unconfigured[0], f"protocols unconfigured: {names}"
            )

        logger.warning("Rejected %s %s (%s)", request.method, request.path, reasons)
        return VerificationOutcome.reject(rejections[-1].protocol, reasons)


__all__ = ["SignatureVerifier"]
