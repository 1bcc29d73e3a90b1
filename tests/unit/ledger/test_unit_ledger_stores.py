# tests/unit/ledger/test_unit_ledger_stores.py - v1
"""Contract tests shared by the memory and SQLite ledger stores."""

from __future__ import annotations

import sqlite3
from unittest.mock import MagicMock

import pytest

from prospector.core.errors import StoreUnavailableError
from prospector.ledger.memory_store import MemoryLedgerStore
from prospector.ledger.models import IdempotencyRecord
from prospector.ledger.sqlite_store import SqliteLedgerStore


def _record(key="k1", status="processing", created_at=100.0, expires_at=400.0, **kw):
    return IdempotencyRecord(
        key=key, item_id="i1", step_name="s1", status=status,
        created_at=created_at, expires_at=expires_at, **kw,
    )


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryLedgerStore()
    else:
        s = SqliteLedgerStore(tmp_path / "ledger.db")
    yield s
    s.close()


class TestLedgerStoreContract:
    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("nope") is None

    @pytest.mark.asyncio
    async def test_insert_if_absent_only_once(self, store):
        assert await store.insert_if_absent(_record()) is True
        assert await store.insert_if_absent(_record(created_at=200.0)) is False
        assert (await store.get("k1")).created_at == 100.0

    @pytest.mark.asyncio
    async def test_replace_if_matches(self, store):
        original = _record()
        await store.insert_if_absent(original)
        new = _record(created_at=500.0, expires_at=800.0)
        assert await store.replace_if(original, new) is True
        assert (await store.get("k1")).created_at == 500.0

    @pytest.mark.asyncio
    async def test_replace_if_stale_expectation(self, store):
        await store.insert_if_absent(_record())
        stale = _record(created_at=99.0)
        assert await store.replace_if(stale, _record(created_at=500.0)) is False

    @pytest.mark.asyncio
    async def test_put_overwrites_and_keeps_result(self, store):
        await store.insert_if_absent(_record())
        await store.put(_record(status="completed", result={"text": "x", "n": [1, 2]}))
        got = await store.get("k1")
        assert got.status == "completed"
        assert got.result == {"text": "x", "n": [1, 2]}

    @pytest.mark.asyncio
    async def test_delete_only_status(self, store):
        await store.put(_record(status="completed"))
        assert await store.delete("k1", only_status="processing") is False
        assert await store.delete("k1") is True
        assert await store.get("k1") is None

    @pytest.mark.asyncio
    async def test_delete_expired(self, store):
        await store.put(_record(key="old", expires_at=150.0))
        await store.put(_record(key="new", expires_at=900.0))
        assert await store.delete_expired(200.0) == 1
        assert await store.get("old") is None
        assert await store.get("new") is not None


class TestSqliteFaults:
    @pytest.mark.asyncio
    async def test_errors_wrapped(self, tmp_path):
        store = SqliteLedgerStore(tmp_path / "ledger.db")
        store._conn.close()
        with pytest.raises(StoreUnavailableError):
            await store.get("k1")

    @pytest.mark.asyncio
    async def test_write_error_rolls_back(self, tmp_path):
        store = SqliteLedgerStore(tmp_path / "ledger.db")
        real = store._conn
        store._conn = MagicMock()
        store._conn.execute.side_effect = sqlite3.OperationalError("database is locked")
        try:
            with pytest.raises(StoreUnavailableError, match="insert_if_absent"):
                await store.insert_if_absent(_record())
            store._conn.rollback.assert_called_once()
        finally:
            real.close()

    def test_persists_across_connections(self, tmp_path):
        import asyncio

        path = tmp_path / "ledger.db"
        first = SqliteLedgerStore(path)
        asyncio.run(first.put(_record(status="completed", result=[1])))
        first.close()
        second = SqliteLedgerStore(path)
        try:
            assert asyncio.run(second.get("k1")).result == [1]
        finally:
            second.close()
