"""Utility functions — validation, security helpers, and DB compatibility."""

from shopgate.utils.db_compat import DbDialect, build_upsert, detect_dialect
from shopgate.utils.security import (
    constant_time_equals,
    generate_request_id,
    generate_vault_key,
    hmac_sha256,
    mask_sensitive_data,
)
from shopgate.utils.validation import (
    truncate,
    validate_client_id,
    validate_shop_domain,
    validate_url,
)

__all__ = [
    # DB compatibility
    "DbDialect",
    "build_upsert",
    "detect_dialect",
    # Security
    "constant_time_equals",
    "generate_request_id",
    "generate_vault_key",
    "hmac_sha256",
    "mask_sensitive_data",
    # Validation
    "truncate",
    "validate_client_id",
    "validate_shop_domain",
    "validate_url",
]
