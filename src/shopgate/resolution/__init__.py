"""Tenant resolution — shop-domain canonicalisation."""

from shopgate.resolution.shop_domain import (
    ShopDomainResolver,
    canonicalize_shop_domain,
    is_valid_shop_domain,
)

__all__ = [
    "ShopDomainResolver",
    "canonicalize_shop_domain",
    "is_valid_shop_domain",
]
