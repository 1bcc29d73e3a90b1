# tests/unit/checkpoints/test_unit_checkpoint_stores.py - v1
"""Contract tests shared by the memory, SQLite and JSON checkpoint stores."""

from __future__ import annotations

import pytest

from prospector.checkpoints.json_store import JsonCheckpointStore
from prospector.checkpoints.memory_store import MemoryCheckpointStore
from prospector.checkpoints.models import CheckpointRecord
from prospector.checkpoints.sqlite_store import SqliteCheckpointStore
from prospector.core.errors import StoreUnavailableError


def _record(step="a", position=0, version=1, status="running", item_id="i1", **kw):
    return CheckpointRecord(
        item_id=item_id, step_name=step, position=position,
        status=status, version=version, updated_at=kw.pop("updated_at", 100.0), **kw,
    )


@pytest.fixture(params=["memory", "sqlite", "json"])
def store(request, tmp_path):
    if request.param == "memory":
        s = MemoryCheckpointStore()
    elif request.param == "sqlite":
        s = SqliteCheckpointStore(tmp_path / "checkpoints.db")
    else:
        s = JsonCheckpointStore(tmp_path / "checkpoints")
    yield s
    s.close()


class TestCheckpointStoreContract:
    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("i1", "a") is None

    @pytest.mark.asyncio
    async def test_insert_if_absent_once(self, store):
        assert await store.insert_if_absent(_record()) is True
        assert await store.insert_if_absent(_record(attempts=5)) is False

    @pytest.mark.asyncio
    async def test_replace_if_version(self, store):
        await store.insert_if_absent(_record())
        updated = _record(version=2, status="succeeded", output={"text": "ok"})
        assert await store.replace_if(3, updated) is False
        assert await store.replace_if(1, updated) is True
        got = await store.get("i1", "a")
        assert got.status == "succeeded"
        assert got.output == {"text": "ok"}

    @pytest.mark.asyncio
    async def test_list_for_item_scoped(self, store):
        await store.put(_record(step="a"))
        await store.put(_record(step="b", position=1))
        await store.put(_record(step="a", item_id="other"))
        names = sorted(r.step_name for r in await store.list_for_item("i1"))
        assert names == ["a", "b"]

    @pytest.mark.asyncio
    async def test_delete_item(self, store):
        await store.put(_record(step="a"))
        await store.put(_record(step="b", position=1))
        assert await store.delete_item("i1") == 2
        assert await store.list_for_item("i1") == []

    @pytest.mark.asyncio
    async def test_list_running_before_cutoff(self, store):
        await store.put(_record(step="a", updated_at=50.0))
        await store.put(_record(step="b", position=1, updated_at=150.0))
        await store.put(_record(step="c", position=2, status="succeeded", updated_at=10.0))
        stale = await store.list_running(100.0)
        assert [r.step_name for r in stale] == ["a"]


class TestJsonStore:
    @pytest.mark.asyncio
    async def test_corrupt_file_is_store_fault(self, tmp_path):
        store = JsonCheckpointStore(tmp_path)
        await store.put(_record())
        path = next(tmp_path.glob("*.json"))
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(StoreUnavailableError):
            await store.get("i1", "a")

    @pytest.mark.asyncio
    async def test_item_ids_hashed_into_file_names(self, tmp_path):
        store = JsonCheckpointStore(tmp_path)
        await store.put(_record(item_id="../../etc/passwd"))
        files = list(tmp_path.glob("*.json"))
        assert len(files) == 1
        assert files[0].parent == tmp_path
