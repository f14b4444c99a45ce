"""Integration tests — shopgate.vault.database.SQLAlchemyCredentialStore (SQLite)

Verified:
* upsert then get_by_shop returns the row with a UTC timestamp
* repeated upsert for one shop leaves exactly one row with the latest values
* get_by_client_id returns the most recently updated row
* delete by shop / client id; deleting nothing is success
* CredentialVault round trip over SQLite
* SQLErrorLogWriter appends to function_errors
* SQLFlagLoader reads app_config
* an exhausted time budget surfaces as UpstreamTimeoutError
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import func, select

from shopgate.cache.flags import SQLFlagLoader
from shopgate.core.exceptions import CredentialNotFoundError, UpstreamTimeoutError
from shopgate.core.types import EncryptedCredential, ErrorLogEntry
from shopgate.db import AppConfigModel, CredentialModel, FunctionErrorModel
from shopgate.errlog import SQLErrorLogWriter
from shopgate.vault.database import SQLAlchemyCredentialStore
from shopgate.vault.vault import CredentialVault

pytestmark = pytest.mark.integration

_T0 = datetime(2024, 1, 1, tzinfo=UTC)


def _row(shop: str = "foo.myshopify.com", **kw) -> EncryptedCredential:
    values = {
        "shop": shop,
        "client_id": None,
        "token_ciphertext_b64": "Y2lwaGVy",
        "nonce_b64": "bm9uY2U=",
        "updated_at": _T0,
    }
    values.update(kw)
    return EncryptedCredential(**values)


async def _count(store: SQLAlchemyCredentialStore) -> int:
    async with store.session_factory() as session:
        return (await session.execute(select(func.count()).select_from(CredentialModel))).scalar_one()


# ──────────────────────────── CRUD ───────────────────────────────────────────


class TestCredentialCrud:
    async def test_upsert_and_get(self, sqlite_store):
        await sqlite_store.upsert(_row(client_id="c-1"))
        row = await sqlite_store.get_by_shop("foo.myshopify.com")
        assert row.client_id == "c-1"
        assert row.token_ciphertext_b64 == "Y2lwaGVy"
        assert row.updated_at.tzinfo is not None

    async def test_missing_shop(self, sqlite_store):
        with pytest.raises(CredentialNotFoundError):
            await sqlite_store.get_by_shop("nobody.myshopify.com")

    async def test_upsert_is_idempotent_per_shop(self, sqlite_store):
        await sqlite_store.upsert(_row(token_ciphertext_b64="Zmlyc3Q=", nonce_b64="bjE="))
        await sqlite_store.upsert(
            _row(token_ciphertext_b64="c2Vjb25k", nonce_b64="bjI=", updated_at=_T0 + timedelta(hours=1))
        )
        assert await _count(sqlite_store) == 1
        row = await sqlite_store.get_by_shop("foo.myshopify.com")
        assert row.token_ciphertext_b64 == "c2Vjb25k"
        assert row.nonce_b64 == "bjI="

    async def test_latest_row_for_client_id(self, sqlite_store):
        await sqlite_store.upsert(_row("a.myshopify.com", client_id="c"))
        await sqlite_store.upsert(_row("b.myshopify.com", client_id="c", updated_at=_T0 + timedelta(days=1)))
        row = await sqlite_store.get_by_client_id("c")
        assert row.shop == "b.myshopify.com"

    async def test_delete(self, sqlite_store):
        await sqlite_store.upsert(_row("a.myshopify.com", client_id="c-a"))
        await sqlite_store.upsert(_row("b.myshopify.com", client_id="c-b"))
        assert await sqlite_store.delete(shop="a.myshopify.com") == 1
        assert await sqlite_store.delete(client_id="c-b") == 1
        assert await sqlite_store.delete(shop="a.myshopify.com") == 0
        assert await sqlite_store.delete() == 0
        assert await _count(sqlite_store) == 0

    async def test_exists(self, sqlite_store):
        assert await sqlite_store.exists("foo.myshopify.com") is False
        await sqlite_store.upsert(_row())
        assert await sqlite_store.exists("foo.myshopify.com") is True

    async def test_initialize_is_idempotent(self, sqlite_store):
        await sqlite_store.initialize()
        await sqlite_store.upsert(_row())
        assert await _count(sqlite_store) == 1


# ──────────────────────────── Vault over SQLite ──────────────────────────────


class TestVaultOverSqlite:
    async def test_round_trip_and_single_row(self, sqlite_store, cipher):
        vault = CredentialVault(cipher, sqlite_store)
        await vault.encrypt("foo.myshopify.com", "shpat_first")
        await vault.encrypt("FOO.myshopify.com", "shpat_abc123")
        assert await vault.decrypt("foo.myshopify.com") == "shpat_abc123"
        assert await _count(sqlite_store) == 1

    async def test_shared_engine_not_disposed(self, sqlite_store):
        borrowed = SQLAlchemyCredentialStore(engine=sqlite_store.engine)
        await borrowed.upsert(_row())
        await borrowed.close()
        assert await sqlite_store.exists("foo.myshopify.com") is True


# ──────────────────────────── Error log / flags tables ───────────────────────


class TestAuxiliaryTables:
    async def test_error_writer_appends(self, sqlite_store):
        writer = SQLErrorLogWriter(sqlite_store.session_factory)
        await writer.write(
            ErrorLogEntry(route="/tokens", code="E_UNAUTHORIZED", status=401, message="Unauthorized")
        )
        await writer.write(ErrorLogEntry(route="/tokens", code="E_CONFIG", status=500, message="x"))
        async with sqlite_store.session_factory() as session:
            rows = (await session.execute(select(FunctionErrorModel).order_by(FunctionErrorModel.id))).scalars().all()
        assert [r.code for r in rows] == ["E_UNAUTHORIZED", "E_CONFIG"]
        assert rows[0].shop is None

    async def test_flag_loader_reads_app_config(self, sqlite_store):
        async with sqlite_store.session_factory() as session:
            session.add_all(
                [
                    AppConfigModel(key="engine_proxy_enabled", value="true"),
                    AppConfigModel(key="other", value=None),
                ]
            )
            await session.commit()
        assert await SQLFlagLoader(sqlite_store.session_factory)() == {
            "engine_proxy_enabled": "true",
            "other": "",
        }
        limited = SQLFlagLoader(sqlite_store.session_factory, keys=["other"])
        assert await limited() == {"other": ""}


# ──────────────────────────── Time budget ────────────────────────────────────


class TestTimeBudget:
    async def test_timeout_maps_to_upstream_timeout(self, sqlite_store, monkeypatch):
        sqlite_store._timeout = 0.01

        original = sqlite_store.session_factory

        class _SlowSession:
            async def __aenter__(self):
                await asyncio.sleep(1)
                return await original().__aenter__()

            async def __aexit__(self, *exc_info):
                return False

        monkeypatch.setattr(sqlite_store, "_session_factory", lambda: _SlowSession())
        with pytest.raises(UpstreamTimeoutError) as exc_info:
            await sqlite_store.get_by_shop("foo.myshopify.com")
        assert exc_info.value.operation == "store.get_by_shop"
