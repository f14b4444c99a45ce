"""Webhook body HMAC verification.

Platform webhooks carry ``X-Shopify-Hmac-Sha256``: the base64 HMAC-SHA256 of
the *exact raw request body*.  The digest is computed over
:attr:`InboundRequest.body <shopgate.core.types.InboundRequest.body>`, the
bytes captured by the middleware before any parsing.  Decoding the JSON and
re-encoding it (even with identical content) changes whitespace or key order
and breaks the signature, so nothing here ever touches a parsed body.
"""

from __future__ import annotations

import base64
from collections.abc import Sequence
import logging
from typing import TYPE_CHECKING

from shopgate.core.types import AuthProtocol, VerificationOutcome
from shopgate.utils.security import constant_time_equals, hmac_sha256
from shopgate.verification.base import BaseProtocolVerifier

if TYPE_CHECKING:
    from shopgate.core.types import InboundRequest
    from shopgate.resolution.shop_domain import ShopDomainResolver

logger = logging.getLogger(__name__)

HMAC_HEADER = "x-shopify-hmac-sha256"
SHOP_HEADER = "x-shopify-shop-domain"
TOPIC_HEADER = "x-shopify-topic"


def compute_webhook_digest(body: bytes, secret: str) -> str:
    """Return the base64 HMAC-SHA256 of raw *body* under *secret*."""
    return base64.b64encode(hmac_sha256(secret, body)).decode("ascii")


class WebhookHmacVerifier(BaseProtocolVerifier):
    """Verify the body HMAC header of platform webhooks.

    Args:
        secrets: Candidate webhook secrets, tried in order.
        resolver: Shop-domain resolver for ``X-Shopify-Shop-Domain``.
    """

    protocol = AuthProtocol.WEBHOOK_HMAC

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
        provided = (request.header(HMAC_HEADER) or "").strip()
        if not provided:
            return self._reject("missing webhook hmac header")

        matched = False
        for secret in self._secrets:
            if constant_time_equals(compute_webhook_digest(request.body, secret), provided):
                matched = True
        if not matched:
            return self._reject("webhook hmac mismatch")

        tenant = self._resolver.from_header(request, SHOP_HEADER)
        logger.debug(
            "Webhook verified topic=%r shop=%r",
            request.header(TOPIC_HEADER),
            tenant.shop if tenant else None,
        )
        return VerificationOutcome.accept(self.protocol, tenant)


__all__ = [
    "HMAC_HEADER",
    "SHOP_HEADER",
    "TOPIC_HEADER",
    "WebhookHmacVerifier",
    "compute_webhook_digest",
]
