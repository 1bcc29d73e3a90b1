# tests/integration/pipeline/test_int_pipeline_subsystem.py - v1
"""Integration tests for the research pipeline subsystem.

Covers: end-to-end batch with transient and permanent provider failures,
exactly-once step execution across pipelines sharing a ledger, resume from
checkpoints, step sequencing, circuit breaker short-circuiting, source
deduplication and cross-provider confidence.

No Docker required: providers are scripted, state is in memory.
"""

from __future__ import annotations

import asyncio

import pytest

from prospector.config.settings import CircuitBreakerConfig
from prospector.core.errors import SequencingError
from prospector.core.models import BatchItem, ProspectInput, SourceCitation
from prospector.pipeline.executor import StepExecutor
from prospector.pipeline.orchestrator import ResearchPipeline
from prospector.pipeline.steps import StepContext, provider_step
from prospector.resilience.registry import ResilienceRegistry
from prospector.tracking.usage import UsageTracker

HOME_TEXT = "Public records show the home valued at $1.2M on Elm St."


def _items(*names: str) -> list[BatchItem]:
    return [
        BatchItem(id=f"item-{i + 1}", prospect=ProspectInput(name=name))
        for i, name in enumerate(names)
    ]


@pytest.fixture
def pipeline_for(ledger, resilience, fast_settings, make_checkpoints):
    """Build a pipeline over shared ledger/resilience; checkpoints per call unless given."""

    def _build(steps, checkpoints=None, settings=None, **kwargs):
        settings = settings or fast_settings
        return ResearchPipeline(
            steps,
            kwargs.pop("ledger", ledger),
            checkpoints or make_checkpoints([s.name for s in steps]),
            kwargs.pop("resilience", resilience),
            settings,
            **kwargs,
        )

    return _build


# =====================================================================
#  END TO END
# =====================================================================

class TestEndToEndBatch:
    @pytest.mark.asyncio
    async def test_transient_recovery_and_permanent_dead_letter(
        self, pipeline_for, scripted_provider, http_error
    ):
        research = scripted_provider("perplexity", default_text=HOME_TEXT)
        research.on("Bob", http_error(503), http_error(503), HOME_TEXT)
        lookup = scripted_provider("zillow", default_text="Zestimate $1.25M")
        lookup.on("Dana", http_error(401, "401 Unauthorized"))

        pipeline = pipeline_for([
            provider_step("research", "perplexity", research),
            provider_step("property", "zillow", lookup),
        ])
        pipeline.add_items(_items("Alice", "Bob", "Carol", "Dana"))
        result = await pipeline.start()

        assert result.status == "completed"
        assert sorted(result.succeeded) == ["item-1", "item-2", "item-3"]
        assert result.failed == ["item-4"]
        assert result.dead_letters == ["item-4"]

        assert research.calls_for("Bob") == 3
        bob_research = [
            r for r in pipeline.usage.records
            if r.item_id == "item-2" and r.step == "research"
        ]
        assert [(r.status, r.attempts) for r in bob_research] == [("success", 3)]

        assert lookup.calls_for("Dana") == 1
        dana = result.items["item-4"]
        assert dana.errors[0].category == "permanent"
        assert dana.errors[0].attempts == 1
        entry = pipeline.dead_letters.get("item-4")
        assert entry.step == "property"
        assert entry.category == "permanent"

        for item_id in result.succeeded:
            assert result.items[item_id].result.confidence("property_value") == "high"

    @pytest.mark.asyncio
    async def test_requeued_dead_letter_succeeds_on_next_run(
        self, pipeline_for, scripted_provider, http_error, make_checkpoints
    ):
        lookup = scripted_provider("zillow", default_text=HOME_TEXT)
        lookup.on("Dana", http_error(401, "401 Unauthorized"))
        steps = [provider_step("property", "zillow", lookup)]
        checkpoints = make_checkpoints(["property"])

        first = pipeline_for(steps, checkpoints=checkpoints)
        first.add_items(_items("Dana"))
        await first.start()

        lookup.on("Dana", HOME_TEXT)
        second = pipeline_for(steps, checkpoints=checkpoints, dead_letters=first.dead_letters)
        second.add_items(first.requeue_dead_letters())
        result = await second.start()

        assert result.succeeded == ["item-1"]
        assert first.dead_letters.stats().pending == 0


# =====================================================================
#  EXACTLY ONCE
# =====================================================================

class TestExactlyOnce:
    @pytest.mark.asyncio
    async def test_two_pipelines_same_item_call_provider_once(
        self, pipeline_for, scripted_provider, fast_settings
    ):
        patient = fast_settings.model_copy(
            update={"contention_poll_attempts": 20, "contention_poll_interval_s": 0.02}
        )
        research = scripted_provider("perplexity", default_text=HOME_TEXT, delay_s=0.05)
        steps = [provider_step("research", "perplexity", research)]

        first = pipeline_for(steps, settings=patient)
        second = pipeline_for(steps, settings=patient)
        first.add_items(_items("Jane Donor"))
        second.add_items(_items("Jane Donor"))

        results = await asyncio.gather(first.start(), second.start())

        assert research.calls == ["Jane Donor"]
        assert all(r.succeeded == ["item-1"] for r in results)
        statuses = sorted(
            rec.status for p in (first, second) for rec in p.usage.records
        )
        assert statuses == ["cached", "success"]

    @pytest.mark.asyncio
    async def test_rerun_after_success_served_from_ledger(
        self, pipeline_for, scripted_provider
    ):
        research = scripted_provider("perplexity", default_text=HOME_TEXT)
        steps = [provider_step("research", "perplexity", research)]

        for _ in range(2):
            pipeline = pipeline_for(steps)
            pipeline.add_items(_items("Jane Donor"))
            result = await pipeline.start()
            assert result.succeeded == ["item-1"]

        assert len(research.calls) == 1

    @pytest.mark.asyncio
    async def test_changed_input_is_a_new_key(self, pipeline_for, scripted_provider):
        research = scripted_provider("perplexity", default_text=HOME_TEXT)
        steps = [provider_step("research", "perplexity", research)]

        for prospect in (ProspectInput(name="Jane Donor"), ProspectInput(name="Jane Donor", city="Peoria")):
            pipeline = pipeline_for(steps)
            pipeline.add_items([BatchItem(id="item-1", prospect=prospect)])
            await pipeline.start()

        assert len(research.calls) == 2


# =====================================================================
#  RESUME AND SEQUENCING
# =====================================================================

class TestResume:
    @pytest.mark.asyncio
    async def test_only_unfinished_step_runs_on_resume(
        self, pipeline_for, scripted_provider, http_error, make_checkpoints
    ):
        a = scripted_provider("perplexity", default_text=HOME_TEXT)
        b = scripted_provider("linkup", default_text="Zestimate $1.25M")
        c = scripted_provider("grok", default_text="CEO of Acme Corp")
        c.on("Jane Donor", http_error(401, "401 Unauthorized"))
        steps = [
            provider_step("a", "perplexity", a),
            provider_step("b", "linkup", b),
            provider_step("c", "grok", c),
        ]
        checkpoints = make_checkpoints(["a", "b", "c"])

        first = pipeline_for(steps, checkpoints=checkpoints)
        first.add_items(_items("Jane Donor"))
        failed = await first.start()
        assert failed.failed == ["item-1"]
        assert await checkpoints.is_resumable("item-1") == "c"

        c.on("Jane Donor", "CEO of Acme Corp")
        second = pipeline_for(steps, checkpoints=checkpoints)
        second.add_items(_items("Jane Donor"))
        result = await second.start()

        assert len(a.calls) == 1
        assert len(b.calls) == 1
        assert len(c.calls) == 2
        state = result.items["item-1"]
        assert state.status == "done"
        assert state.resumed_steps == ["a", "b"]
        assert state.result.providers_used == ["perplexity", "linkup", "grok"]
        assert await checkpoints.is_resumable("item-1") is None


class TestSequencing:
    @pytest.mark.asyncio
    async def test_later_step_refused_and_lock_released(
        self, ledger, resilience, fast_settings, make_checkpoints, scripted_provider, prospect
    ):
        a = scripted_provider("perplexity", default_text=HOME_TEXT)
        b = scripted_provider("linkup", default_text=HOME_TEXT)
        step_a = provider_step("a", "perplexity", a)
        step_b = provider_step("b", "linkup", b)
        checkpoints = make_checkpoints(["a", "b"])
        executor = StepExecutor(ledger, checkpoints, resilience, fast_settings, UsageTracker())
        context = StepContext(batch_id="b1", item_id="item-1", prospect=prospect)

        with pytest.raises(SequencingError) as exc_info:
            await executor.execute(step_b, context)

        assert exc_info.value.blocking_step == "a"
        assert b.calls == []
        key = ledger.key_for_input("item-1", "b", step_b.input_for(context))
        assert (await ledger.check(key)).can_process

        await executor.execute(step_a, context)
        outcome = await executor.execute(step_b, context)
        assert outcome.attempts == 1
        assert len(b.calls) == 1


# =====================================================================
#  CIRCUIT BREAKER
# =====================================================================

class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_open_circuit_short_circuits_remaining_items(
        self, pipeline_for, scripted_provider, http_error, fast_settings
    ):
        settings = fast_settings.model_copy(
            update={
                "max_concurrent_items": 1,
                "circuit_breakers": {
                    "flaky": CircuitBreakerConfig(
                        minimum_calls=2, failure_rate_threshold=0.5, cooldown_s=60
                    ),
                },
            }
        )
        flaky = scripted_provider("flaky")
        for name in ("Alice", "Bob", "Carol"):
            flaky.on(name, http_error(503))

        pipeline = pipeline_for(
            [provider_step("research", "flaky", flaky)],
            settings=settings,
            resilience=ResilienceRegistry.from_settings(settings),
        )
        pipeline.add_items(_items("Alice", "Bob", "Carol"))
        result = await pipeline.start()

        assert len(flaky.calls) == 2
        assert sorted(result.failed) == ["item-1", "item-2", "item-3"]
        for item_id in ("item-2", "item-3"):
            assert result.items[item_id].errors[0].category == "circuit_open"

    @pytest.mark.asyncio
    async def test_optional_step_skipped_while_circuit_open(
        self, pipeline_for, scripted_provider, resilience
    ):
        research = scripted_provider("perplexity", default_text=HOME_TEXT)
        lookup = scripted_provider("zillow", default_text=HOME_TEXT)
        resilience.breakers.get("zillow").force_open()

        pipeline = pipeline_for([
            provider_step("research", "perplexity", research),
            provider_step("property", "zillow", lookup, required=False),
        ])
        pipeline.add_items(_items("Jane Donor"))
        result = await pipeline.start()

        state = result.items["item-1"]
        assert state.status == "done"
        assert lookup.calls == []
        assert state.errors[0].category == "circuit_open"
        assert state.result.providers_failed == ["zillow"]


# =====================================================================
#  TRIANGULATION THROUGH THE PIPELINE
# =====================================================================

class TestTriangulation:
    @pytest.mark.asyncio
    async def test_sources_deduplicated_across_providers(
        self, pipeline_for, scripted_provider
    ):
        research = scripted_provider(
            "perplexity",
            default_text=HOME_TEXT,
            sources=[
                SourceCitation(name="Zillow", url="https://www.zillow.com/homes/12-elm/"),
                SourceCitation(name="County", url="https://assessor.sangamon.gov/parcel?id=7&y=1"),
            ],
        )
        lookup = scripted_provider(
            "linkup",
            default_text=HOME_TEXT,
            sources=[
                SourceCitation(name="Zillow listing", url="http://zillow.com/homes/12-elm"),
                SourceCitation(name="County", url="https://assessor.sangamon.gov/parcel?y=1&id=7#top"),
                SourceCitation(name="News", url="https://news.example.org/profile"),
            ],
        )
        pipeline = pipeline_for([
            provider_step("research", "perplexity", research),
            provider_step("lookup", "linkup", lookup),
        ])
        pipeline.add_items(_items("Jane Donor"))
        result = await pipeline.start()

        sources = result.items["item-1"].result.sources
        assert [s.name for s in sources] == ["Zillow", "County", "News"]

    @pytest.mark.asyncio
    async def test_single_provider_is_low_two_agreeing_are_high(
        self, pipeline_for, scripted_provider
    ):
        research = scripted_provider("perplexity", default_text=HOME_TEXT)
        single = pipeline_for([provider_step("research", "perplexity", research)])
        single.add_items(_items("Jane Donor"))
        alone = (await single.start()).items["item-1"].result

        lookup = scripted_provider("linkup", default_text="The residence is valued at $1.3M.")
        both = pipeline_for([
            provider_step("research", "perplexity", research),
            provider_step("lookup", "linkup", lookup),
        ])
        both.add_items(_items("Ada Patron"))
        agreed = (await both.start()).items["item-1"].result

        assert alone.confidence("property_value") == "low"
        assert agreed.confidence("property_value") == "high"
        assert agreed.fields["property_value"].providers == ["perplexity", "linkup"]
