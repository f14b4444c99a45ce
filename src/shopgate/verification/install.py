"""OAuth install-callback HMAC verification.

The platform redirects the merchant to the install callback with
``shop``, ``code``, ``state``, ``timestamp`` and ``hmac`` query parameters.
``hmac`` is the lower-case hex HMAC-SHA256 of the *install message*:

1. Drop ``hmac`` and ``signature``.
2. Sort the remaining pairs by key (stable for repeated keys).
3. RFC 3986 encode each key and value (only ``A-Z a-z 0-9 - _ . ~`` stay
   literal).
4. Join ``key=value`` with ``&``.

The ``shop`` parameter must canonicalise to a valid storefront domain.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

from shopgate.core.types import AuthProtocol, VerificationOutcome
from shopgate.utils.security import constant_time_equals, hmac_sha256
from shopgate.verification.base import BaseProtocolVerifier

if TYPE_CHECKING:
    from shopgate.core.types import InboundRequest
    from shopgate.resolution.shop_domain import ShopDomainResolver

logger = logging.getLogger(__name__)

_EXCLUDED = frozenset({"hmac", "signature"})
_RFC3986_SAFE = "-_.~"


def build_install_message(pairs: Iterable[tuple[str, str]]) -> str:
    """Return the canonical install message for decoded query *pairs*."""
    kept = sorted(((k, v) for k, v in pairs if k not in _EXCLUDED), key=lambda kv: kv[0])
    return "&".join(
        f"{quote(k, safe=_RFC3986_SAFE)}={quote(v, safe=_RFC3986_SAFE)}" for k, v in kept
    )


def sign_install_query(pairs: Iterable[tuple[str, str]], secret: str) -> str:
    """Return the lower-case hex ``hmac`` value for *pairs* under *secret*."""
    return hmac_sha256(secret, build_install_message(pairs)).hex()


class InstallHmacVerifier(BaseProtocolVerifier):
    """Verify the ``hmac`` query parameter of the OAuth install callback.

    Args:
        secrets: Candidate app secrets, tried in order.
        resolver: Shop-domain resolver for ``shop``.
    """

    protocol = AuthProtocol.INSTALL_HMAC

    def __init__(
        self,
        secrets: Sequence[str],
        resolver: ShopDomainResolver | None = None,
    ) -> None:
        super().__init__(resolver)
        self._secrets = [s for s in secrets if s]

    def is_configured(self) -> bool:
        return bool(self._secrets)

    def verify(self, request: InboundRequest) -> VerificationOutcome:
        provided = (request.query_param("hmac") or "").strip()
        if not provided:
            return self._reject("missing hmac parameter")

        tenant = self._resolver.identity(request.query_param("shop"))
        if tenant is None:
            return self._reject("invalid shop parameter")

        message = build_install_message(request.query_pairs)
        matched = False
        for secret in self._secrets:
            if constant_time_equals(hmac_sha256(secret, message).hex(), provided):
                matched = True
        if not matched:
            return self._reject("install hmac mismatch")
        return VerificationOutcome.accept(self.protocol, tenant)


__all__ = [
    "InstallHmacVerifier",
    "build_install_message",
    "sign_install_query",
]
