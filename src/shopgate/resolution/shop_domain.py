"""Shop-domain canonicalisation and tenant resolution.

Every tenant identity in shopgate is a *canonical shop domain*: lower-case,
no scheme, no path, query, fragment or port, and carrying the canonical
storefront suffix.  Shops arrive in many shapes::

    https://Foo.myshopify.com/admin?x=1   →  foo.myshopify.com
    foo.myshopify.com:443                 →  foo.myshopify.com
    admin.shopify.com                     →  admin.myshopify.com

:func:`canonicalize_shop_domain` is idempotent:
``canonicalize(canonicalize(x)) == canonicalize(x)`` for every input.

:class:`ShopDomainResolver` pulls the raw value out of a request (query
parameter, then headers) or out of a verified session-token claim and
returns a :class:`~shopgate.core.types.TenantIdentity`.
"""

from __future__ import annotations

import hashlib
import logging
import re
from typing import TYPE_CHECKING

from shopgate.core.types import TenantIdentity
from shopgate.utils.validation import validate_client_id, validate_shop_domain

if TYPE_CHECKING:
    from shopgate.core.types import InboundRequest

logger = logging.getLogger(__name__)

DEFAULT_STOREFRONT_SUFFIX = ".myshopify.com"
DEFAULT_ALTERNATE_SUFFIX = ".shopify.com"

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://")
_TRAILING_RE = re.compile(r"[\s.]+$")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def canonicalize_shop_domain(
    raw: str | None,
    *,
    storefront_suffix: str = DEFAULT_STOREFRONT_SUFFIX,
    alternate_suffix: str = DEFAULT_ALTERNATE_SUFFIX,
) -> str:
    """Return the canonical form of a raw shop-domain representation.

    Steps, in order: trim, lower-case, strip scheme, cut at the first
    ``/``, ``?`` or ``#``, strip user-info and every ``:port`` segment, drop
    trailing dots and whitespace, then map *alternate_suffix* onto
    *storefront_suffix*.

    Args:
        raw: Any shop representation (bare host, URL, host with port …).
        storefront_suffix: The canonical suffix.
        alternate_suffix: A platform host suffix that denotes the same shop.

    Returns:
        The canonical shop domain, or ``""`` for empty input.  The result is
        *not* validated; see :func:`is_valid_shop_domain`.
    """
    if not raw:
        return ""
    s = str(raw).strip().lower()
    s = _SCHEME_RE.sub("", s)
    s = re.split(r"[/?#]", s, maxsplit=1)[0]
    s = s.rsplit("@", 1)[-1]
    # Everything from the first colon on is port material, however repeated.
    s = s.split(":", 1)[0]
    s = _TRAILING_RE.sub("", s).lstrip()
    if s.endswith(alternate_suffix) and not s.endswith(storefront_suffix):
        s = s[: -len(alternate_suffix)] + storefront_suffix
    return s


def is_valid_shop_domain(
    shop: str | None,
    *,
    storefront_suffix: str = DEFAULT_STOREFRONT_SUFFIX,
) -> bool:
    """Return ``True`` when *shop* is a canonical storefront domain.

    For the default suffix this is ``^[a-z0-9][a-z0-9-]*\\.myshopify\\.com$``.
    """
    if not shop:
        return False
    if storefront_suffix == DEFAULT_STOREFRONT_SUFFIX:
        return validate_shop_domain(shop)
    pattern = r"^[a-z0-9][a-z0-9\-]*" + re.escape(storefront_suffix) + "$"
    return len(shop) <= 255 and bool(re.match(pattern, shop))


def derive_client_id(shop: str, *, storefront_suffix: str = DEFAULT_STOREFRONT_SUFFIX) -> str:
    """Return the deterministic client id assigned to *shop* at install.

    ``cli_<slug>_<hash>`` where *slug* is the shop's subdomain reduced to
    ``[a-z0-9_]`` and *hash* is the first six hex digits of the SHA-1 of the
    canonical shop.  The same shop always gets the same id.

    Example::

        derive_client_id("foo-bar.myshopify.com")  # → "cli_foo_bar_<6 hex>"
    """
    subdomain = shop[: -len(storefront_suffix)] if shop.endswith(storefront_suffix) else shop
    slug = _SLUG_RE.sub("_", subdomain.lower()).strip("_") or "shop"
    digest = hashlib.sha1(shop.encode(), usedforsecurity=False).hexdigest()[:6]
    return f"cli_{slug}_{digest}"


class ShopDomainResolver:
    """Resolve a :class:`TenantIdentity` from request data or token claims.

    Args:
        storefront_suffix: Canonical storefront suffix.
        alternate_suffix: Alternate platform suffix mapped onto the canonical one.
        query_param: Query parameter carrying the shop.
        header_names: Headers consulted, in order, when the query has no shop.
        client_id_param: Query parameter carrying the secondary client id.

    Example::

        resolver = ShopDomainResolver()
        tenant = resolver.resolve(request)            # may be None
        tenant = resolver.from_claim("https://foo.myshopify.com/admin")
    """

    def __init__(
        self,
        storefront_suffix: str = DEFAULT_STOREFRONT_SUFFIX,
        alternate_suffix: str = DEFAULT_ALTERNATE_SUFFIX,
        *,
        query_param: str = "shop",
        header_names: tuple[str, ...] = ("x-shop", "x-shopify-shop-domain"),
        client_id_param: str = "client_id",
    ) -> None:
        self.storefront_suffix = storefront_suffix
        self.alternate_suffix = alternate_suffix
        self._query_param = query_param
        self._header_names = header_names
        self._client_id_param = client_id_param

    def canonicalize(self, raw: str | None) -> str:
        return canonicalize_shop_domain(
            raw,
            storefront_suffix=self.storefront_suffix,
            alternate_suffix=self.alternate_suffix,
        )

    def is_valid(self, shop: str | None) -> bool:
        return is_valid_shop_domain(shop, storefront_suffix=self.storefront_suffix)

    def identity(self, raw_shop: str | None, client_id: str | None = None) -> TenantIdentity | None:
        """Canonicalise *raw_shop* and wrap it, or return ``None`` if invalid.

        An invalid *client_id* is dropped rather than failing the identity.
        """
        shop = self.canonicalize(raw_shop)
        if not self.is_valid(shop):
            if raw_shop:
                logger.debug("Rejected non-canonical shop value (len=%d)", len(raw_shop))
            return None
        if client_id is not None and not validate_client_id(client_id):
            client_id = None
        return TenantIdentity(shop=shop, client_id=client_id)

    def resolve(self, request: InboundRequest) -> TenantIdentity | None:
        """Return the tenant named by *request*, or ``None`` when absent.

        The ``shop`` query parameter wins over headers.
        """
        raw = request.query_param(self._query_param)
        if not raw:
            for name in self._header_names:
                raw = request.header(name)
                if raw:
                    break
        client_id = request.query_param(self._client_id_param) or request.header("x-client-id")
        return self.identity(raw, client_id)

    def from_header(self, request: InboundRequest, name: str) -> TenantIdentity | None:
        return self.identity(request.header(name))

    def from_claim(self, dest: str | None) -> TenantIdentity | None:
        """Return the tenant named by a verified session-token ``dest`` claim."""
        return self.identity(dest)


__all__ = [
    "DEFAULT_ALTERNATE_SUFFIX",
    "DEFAULT_STOREFRONT_SUFFIX",
    "ShopDomainResolver",
    "canonicalize_shop_domain",
    "derive_client_id",
    "is_valid_shop_domain",
]
