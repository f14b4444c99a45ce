"""Input validation utilities.

Every shop domain that reaches the vault, the error log or an upstream URL
passes through :func:`validate_shop_domain` first.  A shop domain that fails
this check is never interpolated into an outbound request URL.

Security model
--------------
- Input length is capped *before* the regex runs to prevent ReDoS attacks
  on pathologically long strings.
- All patterns are compiled once at module load time.
"""

from __future__ import annotations

import re

################################
# Compiled regular expressions #
################################

# Canonical storefront host: alphanumeric first label character, then
# letters/digits/hyphens, then the canonical suffix.
_SHOP_DOMAIN_RE = re.compile(r"^[a-z0-9][a-z0-9\-]*\.myshopify\.com$")

# Secondary client identifier: opaque, but printable and header-safe.
_CLIENT_ID_RE = re.compile(r"^[A-Za-z0-9._:\-]{1,255}$")

# HTTP/HTTPS URL.
_URL_RE = re.compile(r"^https?://[a-zA-Z0-9.\-]+(:[0-9]{1,5})?(/.*)?$")

# Hard cap applied before any regex to prevent ReDoS.
_MAX_INPUT_LEN: int = 255


#####################
# Tenant validation #
#####################


def validate_shop_domain(shop: str) -> bool:
    """Return ``True`` if *shop* is a canonical storefront domain.

    Args:
        shop: The value to validate.  Must already be canonicalised.

    Returns:
        ``True`` when valid; ``False`` otherwise.

    Examples::

        validate_shop_domain("foo.myshopify.com")    # True
        validate_shop_domain("FOO.myshopify.com")    # False  (not canonical)
        validate_shop_domain("foo.example.com")      # False
        validate_shop_domain("-foo.myshopify.com")   # False
    """
    if not shop or not isinstance(shop, str):
        return False
    if len(shop) > _MAX_INPUT_LEN:
        return False
    return bool(_SHOP_DOMAIN_RE.match(shop))


def validate_client_id(client_id: str) -> bool:
    """Return ``True`` if *client_id* is a header-safe opaque identifier."""
    if not client_id or not isinstance(client_id, str):
        return False
    return bool(_CLIENT_ID_RE.match(client_id))


############################
# Miscellaneous validators #
############################


def validate_url(url: str) -> bool:
    """Return ``True`` if *url* is a well-formed HTTP or HTTPS URL.

    Args:
        url: The string to validate.

    Returns:
        ``True`` when the value looks like a valid HTTP/HTTPS URL.
    """
    if not url or not isinstance(url, str):
        return False
    return bool(_URL_RE.match(url))


def truncate(value: str | None, limit: int) -> str:
    """Return *value* cut to at most *limit* characters (``""`` for ``None``)."""
    if not value:
        return ""
    return value[:limit]


__all__ = [
    "truncate",
    "validate_client_id",
    "validate_shop_domain",
    "validate_url",
]
