# tests/unit/pipeline/test_unit_state.py - v1
"""Tests for pipeline/state.py - item and batch state models."""

from __future__ import annotations

from prospector.pipeline.state import BatchResult, ItemState, Progress, StepError


class TestItemState:
    def test_defaults(self, batch_items):
        state = ItemState(item=batch_items[0])
        assert state.status == "queued"
        assert state.item_id == "item-1"
        assert state.errors == []
        assert state.result is None

    def test_record_error(self, batch_items):
        state = ItemState(item=batch_items[0])
        state.errors.append(StepError(step="research", category="permanent", message="401"))
        state.status = "error"
        assert state.errors[0].required


class TestBatchResult:
    def test_defaults(self):
        result = BatchResult(batch_id="b1", status="completed")
        assert result.succeeded == []
        assert result.usage.total_calls == 0

    def test_json_roundtrip_shape(self, batch_items):
        result = BatchResult(
            batch_id="b1",
            status="completed",
            items={"item-1": ItemState(item=batch_items[0], status="done")},
            succeeded=["item-1"],
        )
        data = result.model_dump(mode="json")
        assert data["items"]["item-1"]["status"] == "done"
        assert Progress().percentage == 0
