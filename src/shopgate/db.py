"""SQLAlchemy async schema and engine construction — multi-database compatible.

Three tables back shopgate:

+---------------------------+------------------------------------------------+
| Table                     | Purpose                                        |
+===========================+================================================+
| ``encrypted_shop_tokens`` | one AEAD-encrypted access token per shop       |
+---------------------------+------------------------------------------------+
| ``app_config``            | coarse feature flags (``key`` → ``value``)     |
+---------------------------+------------------------------------------------+
| ``function_errors``       | append-only error log                          |
+---------------------------+------------------------------------------------+

The ORM models use only portable SQLAlchemy 2.0 ``Mapped[T]`` column
declarations and standard SQL types, so the same schema works on PostgreSQL
and SQLite.

Connection-pool behaviour
-------------------------
* **SQLite** — ``StaticPool`` with ``check_same_thread=False``.  All
  in-memory SQLite operations share a single connection, which is mandatory
  for databases that must persist across multiple async tasks.
* **PostgreSQL** — ``QueuePool`` with configurable ``pool_size``,
  ``max_overflow`` and ``pool_recycle``.  ``pool_pre_ping=True`` is always on
  so stale connections are detected and replaced transparently.

Timezone handling
-----------------
Timestamp columns use ``DateTime(timezone=True)``.  On SQLite the driver
returns naive datetimes; :func:`ensure_utc` coerces them to UTC-aware.
"""

from __future__ import annotations

from datetime import UTC, datetime
import logging
from typing import Any

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool

from shopgate.utils.db_compat import detect_dialect, requires_static_pool

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ORM layer
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Declarative base shared by every shopgate table."""


class CredentialModel(Base):
    """ORM model for ``encrypted_shop_tokens``.

    Column notes
    ------------
    * ``shop`` is the primary key, so the table is unique per tenant and the
      upsert conflict target is the primary key.
    * ``token_ciphertext_b64`` holds ``ciphertext || tag``; the plaintext is
      never stored.
    """

    __tablename__ = "encrypted_shop_tokens"

    shop: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Canonical shop domain.",
    )
    client_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        index=True,
        comment="Secondary client identifier.",
    )
    token_ciphertext_b64: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Base64 of ciphertext || tag.",
    )
    nonce_b64: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="Base64 AEAD nonce.",
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Last write timestamp (UTC).",
    )


class AppConfigModel(Base):
    """ORM model for the ``app_config`` key-value table."""

    __tablename__ = "app_config"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)


class FunctionErrorModel(Base):
    """ORM model for the append-only ``function_errors`` table."""

    __tablename__ = "function_errors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    route: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    shop: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    client_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    code: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[str] = mapped_column(String(16), nullable=False, default="error")
    message: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)


# ---------------------------------------------------------------------------
# Engine construction
# ---------------------------------------------------------------------------


def create_engine_for(
    database_url: str,
    *,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> AsyncEngine:
    """Create an async engine with the pool class *database_url* requires."""
    dialect = detect_dialect(database_url)
    kw: dict[str, Any] = {"echo": echo}

    if requires_static_pool(dialect):
        kw["poolclass"] = StaticPool
        kw["connect_args"] = {"check_same_thread": False}
    else:
        kw["pool_size"] = pool_size
        kw["max_overflow"] = max_overflow
        kw["pool_pre_ping"] = pool_pre_ping
        kw["pool_recycle"] = 3600

    engine = create_async_engine(database_url, **kw)
    logger.info("Database engine ready dialect=%s", dialect.value)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create every shopgate table that does not exist yet (idempotent)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("shopgate tables ready")


def ensure_utc(dt: datetime | None) -> datetime:
    if dt is None:
        return datetime.now(UTC)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


__all__ = [
    "AppConfigModel",
    "Base",
    "CredentialModel",
    "FunctionErrorModel",
    "create_engine_for",
    "create_session_factory",
    "create_tables",
    "ensure_utc",
]
