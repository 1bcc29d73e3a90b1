# tests/unit/pipeline/test_unit_writeback.py - v1
"""Tests for pipeline/writeback.py - bounded best-effort result persistence."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from prospector.pipeline.writeback import ResultWriter


class TestResultWriter:
    @pytest.mark.asyncio
    async def test_async_persist(self):
        written = {}

        async def persist(item_id, payload):
            written[item_id] = payload

        writer = ResultWriter(persist)
        await writer.submit("item-1", {"a": 1})
        await writer.submit("item-2", {"a": 2})
        outcomes = await writer.close()
        assert written == {"item-1": {"a": 1}, "item-2": {"a": 2}}
        assert all(o.ok for o in outcomes)
        assert writer.failures == []

    @pytest.mark.asyncio
    async def test_sync_persist(self):
        persist = MagicMock()
        writer = ResultWriter(persist)
        await writer.start()
        await writer.submit("item-1", {})
        await writer.close()
        persist.assert_called_once_with("item-1", {})

    @pytest.mark.asyncio
    async def test_failures_recorded_and_logged(self, caplog):
        def persist(item_id, payload):
            if item_id == "item-2":
                raise OSError("disk full")

        writer = ResultWriter(persist, max_queue=1)
        for i in range(1, 4):
            await writer.submit(f"item-{i}", {})
        await writer.close()
        assert writer.failures == ["item-2"]
        assert [o.item_id for o in writer.outcomes] == ["item-1", "item-2", "item-3"]
        assert "Persistence failed for item-2: disk full" in caplog.text

    @pytest.mark.asyncio
    async def test_close_without_start(self):
        assert await ResultWriter(MagicMock()).close() == []
