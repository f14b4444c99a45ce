"""Backend shared-secret header verification.

Service-to-service callers (the workflow engine, internal jobs) present a
static backend-only secret in a header.  The comparison hashes both sides to
fixed-length digests before comparing, so a wrong value of the same length
and a wrong value of a different length take the same time to reject.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from shopgate.core.types import AuthProtocol, VerificationOutcome
from shopgate.utils.security import constant_time_equals
from shopgate.verification.base import BaseProtocolVerifier

if TYPE_CHECKING:
    from shopgate.core.types import InboundRequest
    from shopgate.resolution.shop_domain import ShopDomainResolver

logger = logging.getLogger(__name__)

DEFAULT_SECRET_HEADER = "X-Forward-Secret"


class SharedSecretVerifier(BaseProtocolVerifier):
    """Verify a static secret header.

    Args:
        secret: The backend shared secret.
        header_name: Header carrying the secret.
        resolver: Resolver for the optional tenant (``shop`` query, then
            ``X-Shop`` / ``X-Shopify-Shop-Domain``).
    """

    protocol = AuthProtocol.SHARED_SECRET

    def __init__(
        self,
        secret: str | None,
        header_name: str = DEFAULT_SECRET_HEADER,
        resolver: ShopDomainResolver | None = None,
    ) -> None:
        super().__init__(resolver)
        self._secret = secret
        self._header = header_name.lower()

    def is_configured(self) -> bool:
        return bool(self._secret)

    def verify(self, request: InboundRequest) -> VerificationOutcome:
        provided = request.header(self._header)
        if provided is None:
            return self._reject("missing shared secret header")
        if not constant_time_equals(self._secret or "", provided):
            return self._reject("shared secret mismatch")
        return VerificationOutcome.accept(self.protocol, self._resolver.resolve(request))


__all__ = ["DEFAULT_SECRET_HEADER", "SharedSecretVerifier"]
