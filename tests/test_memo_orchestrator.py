"""Tests for the memo generation orchestrator."""

import asyncio
import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from dealmemo.core.memo_sections import SECTION_CONFIGS
from dealmemo.core.schemas_memos import (
    GenerationOutcome,
    GenerationResult,
    SectionResult,
    SectionStatus,
    SectionType,
)
from dealmemo.services.memo_assembler import AssemblyError
from dealmemo.services.memo_orchestrator import MemoOrchestrator, OrchestratorConfig
from dealmemo.services.section_dispatch import InProcessSectionDispatcher, SectionDispatchError
from dealmemo.services.section_generator import SectionGenerator
from tests.fakes.fake_memo_store import MEMO_ID, FakeMemoStore, ThreadRecordingMemoStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

DEAL = {"stage": "Seed", "company": {"name": "Acme Homes"}}
ANALYSIS = {"result": {"scores": {"overall": 8}}}


def fixed_clock() -> datetime:
    return NOW


class ScriptedDispatcher:
    """Dispatcher that behaves like a generator: writes its own section status."""

    def __init__(
        self,
        store: FakeMemoStore,
        failures: dict | None = None,
        raises: bool = False,
        left_pending: dict | None = None,
    ):
        self.store = store
        self.failures = Counter(failures or {})
        self.left_pending = Counter(left_pending or {})
        self.raises = raises
        self.calls: Counter = Counter()
        self.in_flight = 0
        self.max_in_flight = 0

    async def dispatch(self, memo_id, config, deal_data, analysis_data, vector_store_id=None):
        section = config.section_type
        self.calls[section] += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            # Yield so sections in the same batch overlap
            await asyncio.sleep(0)
            if self.left_pending[section] > 0:
                self.left_pending[section] -= 1
                return SectionResult(section_type=section, success=True)

            self.store.upsert_section(memo_id, section, {"status": "generating"})
            if self.failures[section] > 0:
                self.failures[section] -= 1
                self.store.upsert_section(memo_id, section, {"status": "failed", "error": "boom"})
                if self.raises:
                    raise SectionDispatchError("connection refused")
                return SectionResult(section_type=section, success=False, error="boom")

            self.store.upsert_section(
                memo_id,
                section,
                {"status": "completed", "content": f"{config.title} body.", "error": None},
            )
            return SectionResult(section_type=section, success=True)
        finally:
            self.in_flight -= 1


class SleepRecorder:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_orchestrator(store, dispatcher, sleep=None, **config) -> MemoOrchestrator:
    return MemoOrchestrator(
        store=store,
        dispatcher=dispatcher,
        config=OrchestratorConfig(**config),
        sleep=sleep or SleepRecorder(),
        clock=fixed_clock,
    )


@pytest.mark.asyncio
async def test_all_sections_complete_assembles_memo(store):
    dispatcher = ScriptedDispatcher(store)
    orchestrator = make_orchestrator(store, dispatcher)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert run.outcome == GenerationOutcome.COMPLETED
    assert run.completed_count == 10
    assert run.sections_processed == 10
    memo = store.get_memo(MEMO_ID)
    assert memo["generation_status"] == "completed"
    assert memo["sections_completed"] == 10
    assert memo["content"].startswith("# Investment Memo - Acme Homes")
    assert all(count == 1 for count in dispatcher.calls.values())


@pytest.mark.asyncio
async def test_seeds_missing_section_records(store):
    orchestrator = make_orchestrator(store, ScriptedDispatcher(store))

    assert store.list_sections(MEMO_ID) == []
    await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    records = store.list_sections(MEMO_ID)
    assert [r.section_type for r in records] == [c.section_type for c in SECTION_CONFIGS]
    assert [r.section_order for r in records] == list(range(1, 11))


@pytest.mark.asyncio
async def test_batches_bounded_by_max_concurrent(store):
    dispatcher = ScriptedDispatcher(store)
    sleep = SleepRecorder()
    orchestrator = make_orchestrator(store, dispatcher, sleep=sleep, max_concurrent=3)

    await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert dispatcher.max_in_flight == 3
    # 10 sections in batches of 3 -> 4 batches -> 3 inter-batch delays
    assert sleep.delays.count(2.0) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("failures", [1, 2, 3])
async def test_section_recovers_within_retry_budget(store, failures):
    dispatcher = ScriptedDispatcher(store, failures={SectionType.MARKET_ANALYSIS: failures})
    sleep = SleepRecorder()
    orchestrator = make_orchestrator(store, dispatcher, sleep=sleep)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert run.outcome == GenerationOutcome.COMPLETED
    assert run.completed_count == 10
    assert dispatcher.calls[SectionType.MARKET_ANALYSIS] == failures + 1
    assert sleep.delays.count(5.0) == failures
    assert store.status_of(SectionType.MARKET_ANALYSIS) == "completed"


@pytest.mark.asyncio
async def test_section_fails_after_exhausting_retries(store):
    dispatcher = ScriptedDispatcher(store, failures={SectionType.MARKET_ANALYSIS: 4})
    orchestrator = make_orchestrator(store, dispatcher)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert dispatcher.calls[SectionType.MARKET_ANALYSIS] == 4
    row = store.sections[(MEMO_ID, "market_analysis")]
    assert row["status"] == "failed"
    assert row["error"] == "Failed after 3 attempts: boom"
    # 9 of 10 is still enough to assemble
    assert run.outcome == GenerationOutcome.COMPLETED
    assert run.completed_count == 9
    assert "## Market Analysis" not in store.get_memo(MEMO_ID)["content"]


@pytest.mark.asyncio
async def test_dispatch_exceptions_count_as_failed_attempts(store):
    dispatcher = ScriptedDispatcher(store, failures={SectionType.TEAM_EXECUTION: 10}, raises=True)
    orchestrator = make_orchestrator(store, dispatcher)

    result = await orchestrator.process_section(
        MEMO_ID,
        _record(store, SectionType.TEAM_EXECUTION),
        DEAL,
        ANALYSIS,
    )

    assert result.success is False
    assert result.error == "Failed after 3 attempts: connection refused"
    assert dispatcher.calls[SectionType.TEAM_EXECUTION] == 4


@pytest.mark.asyncio
async def test_eight_of_ten_fails_memo(store):
    dispatcher = ScriptedDispatcher(
        store,
        failures={SectionType.MARKET_ANALYSIS: 99, SectionType.TEAM_EXECUTION: 99},
    )
    orchestrator = make_orchestrator(store, dispatcher)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert run.outcome == GenerationOutcome.FAILED
    assert run.completed_count == 8
    memo = store.get_memo(MEMO_ID)
    assert memo["generation_status"] == "failed"
    assert memo["sections_completed"] == 8
    assert memo["content"] == ""


@pytest.mark.asyncio
async def test_stuck_section_is_reset_and_regenerated(store):
    store.seed_sections(MEMO_ID)
    for config in SECTION_CONFIGS:
        store.set_section(config.section_type, status="completed", content=f"{config.title} body.")
    store.set_section(
        SectionType.RISKS_MITIGATION,
        status="generating",
        content=None,
        started_at=(NOW - timedelta(minutes=10)).isoformat(),
    )
    dispatcher = ScriptedDispatcher(store)
    orchestrator = make_orchestrator(store, dispatcher)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert dispatcher.calls == Counter({SectionType.RISKS_MITIGATION: 1})
    assert run.outcome == GenerationOutcome.COMPLETED
    assert store.status_of(SectionType.RISKS_MITIGATION) == "completed"


@pytest.mark.asyncio
async def test_recent_generating_section_is_not_reset(store):
    store.seed_sections(MEMO_ID)
    for config in SECTION_CONFIGS:
        store.set_section(config.section_type, status="completed", content=f"{config.title} body.")
    store.set_section(
        SectionType.RISKS_MITIGATION,
        status="generating",
        started_at=(NOW - timedelta(minutes=1)).isoformat(),
    )
    dispatcher = ScriptedDispatcher(store)
    sleep = SleepRecorder()
    orchestrator = make_orchestrator(store, dispatcher, sleep=sleep)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert sum(dispatcher.calls.values()) == 0
    assert run.timed_out is True
    assert run.outcome == GenerationOutcome.FAILED
    assert store.get_memo(MEMO_ID)["sections_completed"] == 9
    # Polled every 5s until the 120s budget ran out
    assert sleep.delays == [5.0] * 24


@pytest.mark.asyncio
async def test_completed_sections_are_not_redispatched(store):
    store.seed_sections(MEMO_ID)
    for config in SECTION_CONFIGS[:7]:
        store.set_section(config.section_type, status="completed", content=f"{config.title} body.")
    dispatcher = ScriptedDispatcher(store)
    orchestrator = make_orchestrator(store, dispatcher)

    await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert set(dispatcher.calls) == {c.section_type for c in SECTION_CONFIGS[7:]}


@pytest.mark.asyncio
async def test_rerun_after_completion_dispatches_nothing(store):
    dispatcher = ScriptedDispatcher(store)
    orchestrator = make_orchestrator(store, dispatcher)
    await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)
    first = store.get_memo(MEMO_ID)["content"]

    dispatcher.calls.clear()
    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert sum(dispatcher.calls.values()) == 0
    assert run.outcome == GenerationOutcome.COMPLETED
    assert store.get_memo(MEMO_ID)["content"] == first


@pytest.mark.asyncio
async def test_failed_memo_is_left_untouched():
    store = FakeMemoStore.with_memo(generation_status="failed")
    store.seed_sections(MEMO_ID)
    dispatcher = ScriptedDispatcher(store)
    orchestrator = make_orchestrator(store, dispatcher)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert run.outcome == GenerationOutcome.FAILED
    assert run.sections_processed == 10
    assert run.completed_count == 0
    assert sum(dispatcher.calls.values()) == 0
    assert store.get_memo(MEMO_ID)["generation_status"] == "failed"
    assert store.memo_updates == []
    assert store.section_writes == []
    assert all(r.status == SectionStatus.PENDING for r in store.list_sections(MEMO_ID))


@pytest.mark.asyncio
async def test_completed_memo_is_not_reassembled():
    store = FakeMemoStore.with_memo(generation_status="completed", content="# Final")
    store.seed_sections(MEMO_ID)
    store.set_section(SectionType.RISKS_MITIGATION, status="completed", content="Risks body.")
    dispatcher = ScriptedDispatcher(store)
    orchestrator = make_orchestrator(store, dispatcher)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert run.outcome == GenerationOutcome.COMPLETED
    assert run.completed_count == 1
    assert sum(dispatcher.calls.values()) == 0
    assert store.memo_updates == []
    assert store.get_memo(MEMO_ID)["content"] == "# Final"


@pytest.mark.asyncio
async def test_section_left_pending_by_batches_is_processed_again(store):
    dispatcher = ScriptedDispatcher(store, left_pending={SectionType.RECOMMENDATION: 1})
    orchestrator = make_orchestrator(store, dispatcher)

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert dispatcher.calls[SectionType.RECOMMENDATION] == 2
    assert dispatcher.calls[SectionType.EXECUTIVE_SUMMARY] == 1
    assert store.status_of(SectionType.RECOMMENDATION) == "completed"
    assert run.outcome == GenerationOutcome.COMPLETED
    assert run.completed_count == 10


@pytest.mark.asyncio
async def test_store_calls_run_off_the_event_loop_thread():
    store = ThreadRecordingMemoStore.with_memo()
    client = AsyncMock()
    client.generate.return_value = GenerationResult(text="Section text.")
    generator = SectionGenerator(store=store, client=client, clock=fixed_clock)
    orchestrator = make_orchestrator(store, InProcessSectionDispatcher(generator))
    loop_thread = threading.get_ident()

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert run.outcome == GenerationOutcome.COMPLETED
    called = {name for name, _ in store.call_threads}
    assert {"get_memo", "list_sections", "upsert_section", "update_memo"} <= called
    assert all(ident != loop_thread for _, ident in store.call_threads)


@pytest.mark.asyncio
async def test_assembly_error_propagates(store):
    orchestrator = make_orchestrator(store, ScriptedDispatcher(store))
    orchestrator.assembler.build_document = lambda context, sections: "   "

    with pytest.raises(AssemblyError):
        await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert store.get_memo(MEMO_ID)["generation_status"] != "completed"


@pytest.mark.asyncio
async def test_scenario_generator_crash_then_recovery(store):
    """A section whose first call crashes is retried and the memo completes."""
    client = AsyncMock()
    client.generate.side_effect = [RuntimeError("upstream 500")] + [
        GenerationResult(text="Section text.") for _ in range(10)
    ]
    generator = SectionGenerator(store=store, client=client, clock=fixed_clock)
    orchestrator = make_orchestrator(
        store, InProcessSectionDispatcher(generator), max_concurrent=1
    )

    run = await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    assert run.outcome == GenerationOutcome.COMPLETED
    assert run.completed_count == 10
    assert client.generate.await_count == 11
    assert all(r.status == SectionStatus.COMPLETED for r in store.list_sections(MEMO_ID))


@pytest.mark.asyncio
async def test_scenario_citations_renumbered_across_sections(store):
    """Sections citing overlapping sources share memo-wide numbers."""
    store.seed_sections(MEMO_ID)
    for config in SECTION_CONFIGS:
        store.set_section(config.section_type, status="completed", content=f"{config.title} body.")
    store.set_section(
        SectionType.EXECUTIVE_SUMMARY,
        content="Homes are expensive.[1]",
        citations=[{"index": 1, "url": "https://a.example", "title": "A"}],
    )
    store.set_section(
        SectionType.MARKET_ANALYSIS,
        content="Market is big.[1] Growth is fast.[2]",
        citations=[
            {"index": 1, "url": "https://b.example", "title": "B"},
            {"index": 2, "url": "https://a.example", "title": "A"},
        ],
    )
    orchestrator = make_orchestrator(store, ScriptedDispatcher(store))

    await orchestrator.run_generation(MEMO_ID, DEAL, ANALYSIS)

    content = store.get_memo(MEMO_ID)["content"]
    assert "Homes are expensive.<sup>[1]</sup>" in content
    assert "Market is big.<sup>[2]</sup> Growth is fast.<sup>[1]</sup>" in content
    assert "1. [A](https://a.example)" in content
    assert "2. [B](https://b.example)" in content


def _record(store: FakeMemoStore, section_type: SectionType):
    store.seed_sections(MEMO_ID)
    return next(r for r in store.list_sections(MEMO_ID) if r.section_type == section_type)
