"""App-proxy message signature verification.

Requests forwarded by the platform's app proxy carry a ``signature`` query
parameter: the lower-case hex HMAC-SHA256 of the *proxy message* built from
every other query parameter.

Building the proxy message
--------------------------
1. Drop ``signature``.
2. Group the remaining parameters by key; repeated keys keep every value in
   order of appearance, joined with ``,``.
3. Sort keys lexicographically.
4. Concatenate ``key=value`` with no separator between pairs.

Example::

    ?shop=foo.myshopify.com&b=2&a=1&a=3&signature=…
    → "a=1,3b=2shop=foo.myshopify.com"

Several app secrets (e.g. a public and a confidential variant) may be
configured; the request is accepted when any one of them reproduces the
signature.  Hex comparison is strict: an upper-case signature does not match.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import logging
from typing import TYPE_CHECKING

from shopgate.core.types import AuthProtocol, VerificationOutcome
from shopgate.utils.security import constant_time_equals, hmac_sha256
from shopgate.verification.base import BaseProtocolVerifier

if TYPE_CHECKING:
    from shopgate.core.types import InboundRequest
    from shopgate.resolution.shop_domain import ShopDomainResolver

logger = logging.getLogger(__name__)

SIGNATURE_PARAM = "signature"


def build_proxy_message(pairs: Iterable[tuple[str, str]]) -> str:
    """Return the canonical proxy message for decoded query *pairs*."""
    grouped: dict[str, list[str]] = {}
    for key, value in pairs:
        if key == SIGNATURE_PARAM:
            continue
        grouped.setdefault(key, []).append(value)
    return "".join(f"{key}={','.join(grouped[key])}" for key in sorted(grouped))


def sign_proxy_query(pairs: Iterable[tuple[str, str]], secret: str) -> str:
    """Return the lower-case hex signature of *pairs* under *secret*."""
    return hmac_sha256(secret, build_proxy_message(pairs)).hex()


class ProxySignatureVerifier(BaseProtocolVerifier):
    """Verify the ``signature`` query parameter of app-proxy requests.

    Args:
        secrets: Candidate app secrets, tried in order.
        resolver: Shop-domain resolver for the ``shop`` parameter.
    """

    protocol = AuthProtocol.PROXY_SIGNATURE

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
        provided = request.query_param(SIGNATURE_PARAM)
        if not provided:
            return self._reject("missing signature parameter")

        pairs = request.query_pairs
        message = build_proxy_message(pairs)
        matched = False
        # No early exit across candidates.
        for secret in self._secrets:
            expected = hmac_sha256(secret, message).hex()
            if constant_time_equals(expected, provided):
                matched = True
        if not matched:
            return self._reject("signature mismatch")

        tenant = self._resolver.identity(
            request.query_param("shop"),
            request.query_param("client_id"),
        )
        return VerificationOutcome.accept(self.protocol, tenant)


__all__ = [
    "ProxySignatureVerifier",
    "build_proxy_message",
    "sign_proxy_query",
]
