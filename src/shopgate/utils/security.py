"""Security primitives for shopgate.

All randomness comes from :mod:`secrets` / :func:`os.urandom`, which are
backed by the operating system's CSPRNG.  Do **not** replace calls here with
``random``.

Public API
----------
``hmac_sha256``
    Raw HMAC-SHA256 digest of a message under a text secret.

``constant_time_equals``
    Length-independent, constant-time equality of two secrets or digests.

``generate_vault_key``
    A fresh base64-encoded 32-byte key for the credential vault.

``generate_request_id``
    A short URL-safe correlation id.

``mask_sensitive_data``
    Redact sensitive keys from a dictionary before logging.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from typing import Any


def _as_bytes(value: str | bytes) -> bytes:
    return value if isinstance(value, bytes) else value.encode("utf-8")


def hmac_sha256(secret: str | bytes, message: str | bytes) -> bytes:
    """Return the raw HMAC-SHA256 of *message* keyed with *secret*.

    Text inputs are encoded as UTF-8.

    Example::

        hmac_sha256("shpss_x", "a=1b=2").hex()
    """
    return hmac.new(_as_bytes(secret), _as_bytes(message), hashlib.sha256).digest()


def constant_time_equals(expected: str | bytes, provided: str | bytes) -> bool:
    """Compare two secret values in time independent of their contents.

    Both sides are first reduced to fixed-length SHA-256 digests, then compared
    with :func:`hmac.compare_digest`.  The comparison therefore always runs over
    two 32-byte buffers: it neither short-circuits on the first differing byte
    nor reveals whether the lengths matched.

    Args:
        expected: The locally computed or configured value.
        provided: The value supplied by the caller.

    Returns:
        ``True`` when both values are byte-for-byte identical.
    """
    a = hashlib.sha256(_as_bytes(expected)).digest()
    b = hashlib.sha256(_as_bytes(provided)).digest()
    return hmac.compare_digest(a, b)


def generate_vault_key() -> str:
    """Generate a base64-encoded 256-bit key suitable for ``vault_key``.

    Example::

        SHOPGATE_VAULT_KEY=$(python -c "from shopgate.utils.security import generate_vault_key; print(generate_vault_key())")
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def generate_request_id() -> str:
    """Generate a URL-safe correlation id (16 characters)."""
    return secrets.token_urlsafe(12)


def mask_sensitive_data(
    data: dict[str, Any],
    sensitive_keys: list[str] | None = None,
    mask: str = "***MASKED***",
) -> dict[str, Any]:
    """Return a copy of *data* with sensitive values replaced by *mask*.

    Key matching is case-insensitive substring search.

    Example::

        mask_sensitive_data({"shop": "a.myshopify.com", "token": "shpat_x"})
        # → {"shop": "a.myshopify.com", "token": "***MASKED***"}
    """
    if sensitive_keys is None:
        sensitive_keys = [
            "password",
            "secret",
            "token",
            "api_key",
            "apikey",
            "access_token",
            "signature",
            "hmac",
            "vault_key",
            "authorization",
        ]

    result = dict(data)
    for key in result:
        key_lower = key.lower()
        if any(sensitive in key_lower for sensitive in sensitive_keys):
            result[key] = mask
    return result


__all__ = [
    "constant_time_equals",
    "generate_request_id",
    "generate_vault_key",
    "hmac_sha256",
    "mask_sensitive_data",
]
