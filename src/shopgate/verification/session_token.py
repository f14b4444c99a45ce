"""Embedded-admin session-token verification.

The embedded admin UI sends a compact, symmetrically signed JWT in
``Authorization: Bearer <token>``.  A token is accepted only when **all** of
the following hold:

* the signature verifies under the configured key, with the algorithm
  restricted to exactly one value (the token header cannot choose it);
* ``aud`` is present and equals the platform's public API key;
* ``now >= nbf`` when ``nbf`` is present;
* ``now < exp`` when ``exp`` is present;
* ``dest`` is present and, with its scheme and trailing slashes stripped,
  ends with the canonical storefront suffix.

The tenant is the canonicalised ``dest``.

Signature and audience checks are delegated to python-jose.  Time checks run
here against an injectable clock so tests can pin "now" without patching the
library.

Security notes
--------------
* Failure reasons are logged at ``DEBUG`` for operators and never returned
  to callers.  The token itself is never logged.
"""

from __future__ import annotations

from collections.abc import Callable
import logging
import re
import time
from typing import TYPE_CHECKING, Any

from jose import JWTError, jwt as _jose_jwt

from shopgate.core.types import AuthProtocol, VerificationOutcome
from shopgate.verification.base import BaseProtocolVerifier

if TYPE_CHECKING:
    from shopgate.core.types import InboundRequest
    from shopgate.resolution.shop_domain import ShopDomainResolver

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)

# Signature and audience only; time claims are checked against our clock.
_DECODE_OPTIONS: dict[str, Any] = {
    "verify_signature": True,
    "verify_aud": True,
    "require_aud": True,
    "verify_exp": False,
    "verify_nbf": False,
}


def normalize_dest(dest: str) -> str:
    """Strip the scheme and trailing slashes from a ``dest`` claim."""
    return _SCHEME_RE.sub("", dest.strip()).rstrip("/").lower()


class SessionTokenVerifier(BaseProtocolVerifier):
    """Verify ``Authorization: Bearer`` session tokens.

    Args:
        secret: Symmetric signing key.
        api_key: Required ``aud`` value.
        algorithm: The single accepted algorithm.  Defaults to ``"HS256"``.
        leeway: Seconds of clock skew tolerated on ``exp`` / ``nbf``.
        clock: Returns the current UNIX time.  Defaults to :func:`time.time`.
        resolver: Shop-domain resolver used for ``dest``.

    Example::

        verifier = SessionTokenVerifier(secret=key, api_key="abc123")
        outcome = verifier.verify(request)
        if outcome.verified:
            shop = outcome.tenant.shop
    """

    protocol = AuthProtocol.SESSION_TOKEN

    def __init__(
        self,
        secret: str | None,
        api_key: str | None,
        algorithm: str = "HS256",
        *,
        leeway: int = 0,
        clock: Callable[[], float] | None = None,
        resolver: ShopDomainResolver | None = None,
    ) -> None:
        super().__init__(resolver)
        self._secret = secret
        self._api_key = api_key
        self._algorithm = algorithm
        self._leeway = leeway
        self._clock = clock or time.time

    def is_configured(self) -> bool:
        return bool(self._secret) and bool(self._api_key)

    @staticmethod
    def _bearer_token(request: InboundRequest) -> str | None:
        auth_header = request.header("authorization")
        if not auth_header:
            return None
        parts = auth_header.split(maxsplit=1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return None
        return parts[1].strip() or None

    def verify(self, request: InboundRequest) -> VerificationOutcome:
        token = self._bearer_token(request)
        if token is None:
            return self._reject("missing bearer token")

        try:
            claims: dict[str, Any] = _jose_jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                audience=self._api_key,
                options=_DECODE_OPTIONS,
            )
        except JWTError as exc:
            return self._reject(f"token validation failed: {type(exc).__name__}")

        reason = self._check_times(claims)
        if reason is not None:
            return self._reject(reason)

        dest = claims.get("dest")
        if not isinstance(dest, str) or not dest:
            return self._reject("missing dest claim")
        if not normalize_dest(dest).endswith(self._resolver.storefront_suffix):
            return self._reject("dest claim outside storefront domain")

        tenant = self._resolver.from_claim(dest)
        if tenant is None:
            return self._reject("dest claim is not a valid shop")
        return VerificationOutcome.accept(self.protocol, tenant)

    def _check_times(self, claims: dict[str, Any]) -> str | None:
        """Return a rejection reason for ``exp`` / ``nbf``, or ``None``."""
        now = self._clock()
        exp = claims.get("exp")
        if exp is not None:
            if not isinstance(exp, int | float) or isinstance(exp, bool):
                return "exp claim is not numeric"
            if not now < exp + self._leeway:
                return "token expired"
        nbf = claims.get("nbf")
        if nbf is not None:
            if not isinstance(nbf, int | float) or isinstance(nbf, bool):
                return "nbf claim is not numeric"
            if now + self._leeway < nbf:
                return "token not yet valid"
        return None


__all__ = ["SessionTokenVerifier", "normalize_dest"]
