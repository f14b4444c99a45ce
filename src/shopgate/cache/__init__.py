"""Caching layer — feature-flag snapshots."""

from shopgate.cache.flags import (
    FlagCache,
    FlagSnapshot,
    SQLFlagLoader,
    StaticFlagLoader,
    refresh_snapshot,
)

__all__ = [
    "FlagCache",
    "FlagSnapshot",
    "SQLFlagLoader",
    "StaticFlagLoader",
    "refresh_snapshot",
]
