# tests/integration/logging/test_int_logging_subsystem.py - v1
"""Integration tests for the logging subsystem.

Covers: logging/logger.py, logging/handlers.py, logging/context.py wired
together and driven by a real pipeline run.
No Docker required.
"""

from __future__ import annotations

import asyncio
import json
import logging

import pytest

from prospector.logging.context import (
    clear_context,
    get_context,
    set_batch_context,
    set_item_context,
    set_step_context,
)
from prospector.logging.logger import ROOT_LOGGER, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger(ROOT_LOGGER)
    level, handlers = root.level, list(root.handlers)
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _read_json_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


class TestContextIsolation:
    @pytest.mark.asyncio
    async def test_item_context_does_not_leak_between_tasks(self):
        set_batch_context("batch-1")
        seen: dict[str, dict] = {}

        async def worker(item_id: str, step: str):
            set_item_context(item_id)
            set_step_context(step, "perplexity")
            await asyncio.sleep(0.01)
            seen[item_id] = get_context().as_dict()

        await asyncio.gather(worker("item-1", "research"), worker("item-2", "property"))

        assert seen["item-1"] == {
            "batch_id": "batch-1", "item_id": "item-1", "step": "research", "provider": "perplexity",
        }
        assert seen["item-2"]["item_id"] == "item-2"
        assert seen["item-2"]["step"] == "property"
        assert get_context().item_id is None

    def test_item_context_resets_step(self):
        set_step_context("research", "perplexity")
        set_item_context("item-9")
        ctx = get_context()
        assert ctx.item_id == "item-9"
        assert ctx.step is None and ctx.provider is None
        clear_context()
        assert get_context().as_dict() == {}


class TestFileLogging:
    def test_json_lines_carry_context(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "logs" / "prospector.log"
        setup_logging(level="DEBUG", log_format="json", log_file=log_file)
        set_batch_context("batch-7")
        set_item_context("item-3")

        logging.getLogger("prospector.pipeline.orchestrator").info("Item %s done", "item-3")
        for handler in restore_root_logger.handlers:
            handler.flush()

        entries = _read_json_lines(log_file)
        assert entries[-1]["message"] == "Item item-3 done"
        assert entries[-1]["batch_id"] == "batch-7"
        assert entries[-1]["item_id"] == "item-3"
        assert "step" not in entries[-1]
        assert entries[-1]["level"] == "INFO"

    def test_text_format_and_level_filter(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "text.log"
        setup_logging(level="WARNING", log_format="text", log_file=log_file)
        set_item_context("item-1")
        set_step_context("research")

        log = logging.getLogger("prospector.test")
        log.info("hidden")
        log.warning("visible")
        for handler in restore_root_logger.handlers:
            handler.flush()

        content = log_file.read_text(encoding="utf-8")
        assert "hidden" not in content
        assert "prospector.test [item-1 research] visible" in content

    def test_rotation_keeps_retention(self, tmp_path, restore_root_logger):
        log_file = tmp_path / "rotating.log"
        setup_logging(log_format="text", log_file=log_file, rotation="1KB", retention=2)
        log = logging.getLogger("prospector.test")
        for i in range(200):
            log.info("line %03d %s", i, "x" * 40)

        rotated = sorted(p.name for p in tmp_path.iterdir())
        assert rotated == ["rotating.log", "rotating.log.1", "rotating.log.2"]


class TestPipelineLogging:
    @pytest.mark.asyncio
    async def test_pipeline_run_logs_per_item_context(
        self, tmp_path, restore_root_logger, ledger, resilience, fast_settings,
        make_checkpoints, scripted_provider, batch_items,
    ):
        from prospector.pipeline.orchestrator import ResearchPipeline
        from prospector.pipeline.steps import provider_step

        log_file = tmp_path / "run.log"
        setup_logging(level="INFO", log_format="json", log_file=log_file)
        research = scripted_provider("perplexity", default_text="home valued at $1.2M")
        pipeline = ResearchPipeline(
            [provider_step("research", "perplexity", research)],
            ledger, make_checkpoints(["research"]), resilience, fast_settings,
            batch_id="batch-log",
        )
        pipeline.add_items(batch_items)
        await pipeline.start()
        for handler in restore_root_logger.handlers:
            handler.flush()

        entries = _read_json_lines(log_file)
        done = [e for e in entries if e["message"].startswith("Item ") and e["message"].endswith(" done")]
        assert len(done) == 3
        for entry in done:
            assert entry["batch_id"] == "batch-log"
            assert entry["message"] == f"Item {entry['item_id']} done"
