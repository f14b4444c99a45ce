"""Time-bounded snapshot of coarse feature flags.

Flags (e.g. ``engine_proxy_enabled``) live in the ``app_config`` key-value
table.  They change rarely and tolerate staleness, so each process serves
them from a :class:`FlagSnapshot`: an immutable value holding the flag map,
the time it was fetched and its TTL.

There is no process-global cache.  A snapshot is refreshed explicitly::

    snapshot = FlagSnapshot.empty(ttl=60)
    snapshot = await refresh_snapshot(snapshot, loader)
    if snapshot.enabled("engine_proxy_enabled"):
        ...

:func:`refresh_snapshot` returns the same snapshot while it is fresh, and a
new one once it has expired.  When the loader fails the stale snapshot is
kept (and logged) for another TTL window, so a flaky config table neither
takes routes down nor makes every request wait on a retry.

:class:`FlagCache` is a small holder the manager owns so request handlers
can share one snapshot; it serialises refreshes with an ``asyncio.Lock``.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping
import logging
import time

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shopgate.db import AppConfigModel

logger = logging.getLogger(__name__)

FlagLoader = Callable[[], Awaitable[Mapping[str, str]]]
Clock = Callable[[], float]

_TRUTHY = frozenset({"1", "true", "yes", "on", "enabled"})


class FlagSnapshot(BaseModel):
    """Immutable flag map with its fetch time and TTL.

    Attributes:
        flags: Flag values as stored (strings).
        fetched_at: Clock reading when the flags were loaded; ``None`` for a
            snapshot that was never loaded.
        ttl: Seconds the snapshot stays fresh.
    """

    model_config = ConfigDict(frozen=True)

    flags: dict[str, str] = Field(default_factory=dict)
    fetched_at: float | None = None
    ttl: float = Field(default=60.0, gt=0)

    @classmethod
    def empty(cls, ttl: float = 60.0) -> FlagSnapshot:
        return cls(ttl=ttl)

    def is_fresh(self, now: float) -> bool:
        return self.fetched_at is not None and now - self.fetched_at < self.ttl

    def get(self, key: str, default: str | None = None) -> str | None:
        return self.flags.get(key, default)

    def enabled(self, key: str, default: bool = False) -> bool:
        """Interpret flag *key* as a boolean (``1/true/yes/on/enabled``)."""
        value = self.flags.get(key)
        if value is None:
            return default
        return value.strip().lower() in _TRUTHY


async def refresh_snapshot(
    snapshot: FlagSnapshot,
    loader: FlagLoader,
    *,
    clock: Clock = time.monotonic,
    force: bool = False,
) -> FlagSnapshot:
    """Return *snapshot* if fresh, otherwise a newly loaded snapshot.

    Args:
        snapshot: The current snapshot.
        loader: Coroutine function returning the flag map.
        clock: Monotonic clock.
        force: Reload even when *snapshot* is fresh.

    Returns:
        A fresh snapshot; *snapshot* itself when it is still fresh; or, when the
        loader failed, *snapshot*'s flags restamped with the current time.
    """
    now = clock()
    if not force and snapshot.is_fresh(now):
        return snapshot
    try:
        flags = await loader()
    except Exception:
        logger.warning(
            "Feature-flag refresh failed; serving stale snapshot (age=%s)",
            None if snapshot.fetched_at is None else round(now - snapshot.fetched_at, 1),
            exc_info=True,
        )
        # Restart the TTL so the next retry waits a full window.
        return snapshot.model_copy(update={"fetched_at": now})
    logger.debug("Feature flags refreshed keys=%d", len(flags))
    return FlagSnapshot(
        flags={str(k): str(v) for k, v in flags.items()},
        fetched_at=now,
        ttl=snapshot.ttl,
    )


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------


class StaticFlagLoader:
    """Loader returning a fixed mapping (tests and local development)."""

    def __init__(self, flags: Mapping[str, str] | None = None) -> None:
        self.flags: dict[str, str] = dict(flags or {})

    async def __call__(self) -> Mapping[str, str]:
        return dict(self.flags)


class SQLFlagLoader:
    """Load flags from the ``app_config`` table.

    Args:
        session_factory: Async session factory bound to the shopgate engine.
        keys: Restrict the load to these keys.  All rows when ``None``.
        timeout: Upper bound in seconds for one load.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        keys: Iterable[str] | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._session_factory = session_factory
        self._keys = tuple(keys) if keys is not None else None
        self._timeout = timeout

    async def __call__(self) -> Mapping[str, str]:
        query = select(AppConfigModel.key, AppConfigModel.value)
        if self._keys is not None:
            query = query.where(AppConfigModel.key.in_(self._keys))
        async with asyncio.timeout(self._timeout), self._session_factory() as session:
            result = await session.execute(query)
            return {key: value or "" for key, value in result.all()}


# ---------------------------------------------------------------------------
# Shared holder
# ---------------------------------------------------------------------------


class FlagCache:
    """Holds the current :class:`FlagSnapshot` for one process.

    Args:
        loader: Flag loader.
        ttl: Snapshot TTL in seconds.
        clock: Monotonic clock.
    """

    def __init__(self, loader: FlagLoader, ttl: float = 60.0, clock: Clock = time.monotonic) -> None:
        self._loader = loader
        self._clock = clock
        self._snapshot = FlagSnapshot.empty(ttl)
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> FlagSnapshot:
        return self._snapshot

    async def current(self, *, force: bool = False) -> FlagSnapshot:
        """Return a fresh snapshot, refreshing at most once concurrently."""
        if not force and self._snapshot.is_fresh(self._clock()):
            return self._snapshot
        async with self._lock:
            self._snapshot = await refresh_snapshot(
                self._snapshot, self._loader, clock=self._clock, force=force
            )
        return self._snapshot


__all__ = [
    "FlagCache",
    "FlagLoader",
    "FlagSnapshot",
    "SQLFlagLoader",
    "StaticFlagLoader",
    "refresh_snapshot",
]
