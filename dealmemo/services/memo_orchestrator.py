"""Memo generation orchestrator.

Dispatches pending sections in bounded batches, retries failed sections,
recovers sections stranded by crashed runs, polls the section store until
every section is terminal, then assembles the memo or marks it failed.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from dealmemo.core.config import Settings
from dealmemo.core.logging import get_logger, log_with_context
from dealmemo.core.memo_sections import SECTION_CONFIGS, TOTAL_SECTIONS, get_section_config
from dealmemo.core.schemas_memos import (
    GenerationOutcome,
    GenerationRun,
    GenerationStatus,
    MemoSectionRecord,
    SectionResult,
    SectionStatus,
)
from dealmemo.db.memo_store import MemoStore
from dealmemo.services.memo_assembler import MemoAssembler
from dealmemo.services.section_dispatch import SectionDispatcher
from dealmemo.services.section_generator import utc_now

logger = get_logger(__name__)

TERMINAL_MEMO_STATUSES = {GenerationStatus.COMPLETED.value, GenerationStatus.FAILED.value}


@dataclass(frozen=True)
class OrchestratorConfig:
    """Limits and timings for one generation run."""

    max_concurrent: int = 5
    max_retries: int = 3
    retry_delay: float = 5.0
    batch_delay: float = 2.0
    poll_interval: float = 5.0
    max_wait: float = 120.0
    stuck_threshold: timedelta = timedelta(minutes=5)
    total_sections: int = TOTAL_SECTIONS
    min_required: int = 9

    @classmethod
    def from_settings(cls, settings: Settings) -> "OrchestratorConfig":
        return cls(
            max_concurrent=settings.MEMO_MAX_CONCURRENT,
            max_retries=settings.MEMO_MAX_RETRIES,
            retry_delay=settings.MEMO_RETRY_DELAY_SECONDS,
            batch_delay=settings.MEMO_BATCH_DELAY_SECONDS,
            poll_interval=settings.MEMO_POLL_INTERVAL_SECONDS,
            max_wait=settings.MEMO_MAX_WAIT_SECONDS,
            stuck_threshold=timedelta(seconds=settings.MEMO_STUCK_THRESHOLD_SECONDS),
            min_required=settings.MEMO_MIN_SECTIONS_FOR_ASSEMBLY,
        )


class MemoOrchestrator:
    """Runs section generation for a memo and decides its final status."""

    def __init__(
        self,
        store: MemoStore,
        dispatcher: SectionDispatcher,
        assembler: MemoAssembler | None = None,
        config: OrchestratorConfig | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.assembler = assembler or MemoAssembler(store, clock=clock)
        self.config = config or OrchestratorConfig()
        self.sleep = sleep
        self.clock = clock

    async def run_generation(
        self,
        memo_id: UUID | str,
        deal_data: dict[str, Any],
        analysis_data: dict[str, Any],
        vector_store_id: str | None = None,
    ) -> GenerationRun:
        """
        Generate every pending section of a memo and finish the memo.

        Args:
            memo_id: Memo UUID
            deal_data: Deal attributes passed to each generator
            analysis_data: Latest deal analysis passed to each generator
            vector_store_id: Optional document index for the deal

        Returns:
            GenerationRun with the outcome and section counts

        Raises:
            AssemblyError: If assembly produces an empty document
        """
        memo_id = str(memo_id)
        memo = await asyncio.to_thread(self.store.get_memo, memo_id) or {}

        status = memo.get("generation_status")
        if status in TERMINAL_MEMO_STATUSES:
            return await self._terminal_run(memo_id, status)

        await self._seed_missing_sections(memo_id)
        await asyncio.to_thread(
            self.store.reset_stuck_sections,
            memo_id,
            self.config.stuck_threshold,
            now=self.clock(),
        )

        records = await asyncio.to_thread(self.store.list_sections, memo_id)
        pending = [r for r in records if r.status == SectionStatus.PENDING]

        if pending:
            await asyncio.to_thread(
                self.store.update_memo,
                memo_id,
                {"generation_status": GenerationStatus.GENERATING.value},
            )
            await self._dispatch_batches(memo_id, pending, deal_data, analysis_data, vector_store_id)

            # Last-resort pass for anything still pending after the batches
            leftover = [
                r
                for r in await asyncio.to_thread(self.store.list_sections, memo_id)
                if r.status == SectionStatus.PENDING
            ]
            for record in leftover:
                logger.warning(
                    f"Section {record.section_type.value} still pending, processing directly",
                    extra={"memo_id": memo_id, "section_type": record.section_type.value},
                )
                await self.process_section(
                    memo_id, record, deal_data, analysis_data, vector_store_id
                )
        else:
            logger.info("No pending sections, skipping dispatch", extra={"memo_id": memo_id})

        final_records, timed_out = await self._poll_until_terminal(memo_id)
        completed_count = sum(1 for r in final_records if r.status == SectionStatus.COMPLETED)

        if not timed_out and completed_count >= self.config.min_required:
            await asyncio.to_thread(self.assembler.assemble, memo_id, completed_count)
            outcome = GenerationOutcome.COMPLETED
        else:
            await asyncio.to_thread(
                self.store.update_memo,
                memo_id,
                {
                    "generation_status": GenerationStatus.FAILED.value,
                    "sections_completed": completed_count,
                },
            )
            outcome = GenerationOutcome.FAILED

        log_with_context(
            logger,
            logging.INFO if outcome == GenerationOutcome.COMPLETED else logging.WARNING,
            f"Memo generation {outcome.value}",
            memo_id=memo_id,
            completed=completed_count,
            total=len(final_records),
            timed_out=timed_out,
        )
        return GenerationRun(
            memo_id=memo_id,
            outcome=outcome,
            sections_processed=len(records),
            completed_count=completed_count,
            timed_out=timed_out,
        )

    async def process_section(
        self,
        memo_id: str,
        record: MemoSectionRecord,
        deal_data: dict[str, Any],
        analysis_data: dict[str, Any],
        vector_store_id: str | None = None,
    ) -> SectionResult:
        """
        Run one section with its own retry budget.

        The generator is attempted once plus up to max_retries retries. When
        every attempt fails the section is marked failed with the last error.
        """
        config = get_section_config(record.section_type)
        section = record.section_type.value
        detail = "unknown error"

        for attempt in range(self.config.max_retries + 1):
            try:
                result = await self.dispatcher.dispatch(
                    memo_id, config, deal_data, analysis_data, vector_store_id
                )
                if result.success:
                    return result
                detail = result.error or detail
            except Exception as e:
                detail = str(e) or type(e).__name__

            if attempt < self.config.max_retries:
                logger.warning(
                    f"Section {section} attempt {attempt + 1} failed: {detail}; retrying",
                    extra={"memo_id": memo_id, "section_type": section},
                )
                await self.sleep(self.config.retry_delay)

        error = f"Failed after {self.config.max_retries} attempts: {detail}"
        try:
            await asyncio.to_thread(
                self.store.upsert_section,
                memo_id,
                record.section_type,
                {
                    "section_order": config.order,
                    "status": SectionStatus.FAILED.value,
                    "error": error,
                    "completed_at": self.clock().isoformat(),
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to record exhausted section {section}: {e}",
                extra={"memo_id": memo_id, "section_type": section},
            )
        logger.error(error, extra={"memo_id": memo_id, "section_type": section})
        return SectionResult(section_type=record.section_type, success=False, error=error)

    async def _terminal_run(self, memo_id: str, status: str) -> GenerationRun:
        """Report a memo that already finished; nothing is dispatched or written."""
        records = await asyncio.to_thread(self.store.list_sections, memo_id)
        completed_count = sum(1 for r in records if r.status == SectionStatus.COMPLETED)
        logger.info(
            f"Memo already {status}, skipping generation", extra={"memo_id": memo_id}
        )
        return GenerationRun(
            memo_id=memo_id,
            outcome=GenerationOutcome(status),
            sections_processed=len(records),
            completed_count=completed_count,
        )

    async def _seed_missing_sections(self, memo_id: str) -> None:
        records = await asyncio.to_thread(self.store.list_sections, memo_id)
        existing = {r.section_type for r in records}
        missing = [c for c in SECTION_CONFIGS if c.section_type not in existing]
        if missing:
            await asyncio.to_thread(self.store.seed_sections, memo_id, missing)

    async def _dispatch_batches(
        self,
        memo_id: str,
        pending: list[MemoSectionRecord],
        deal_data: dict[str, Any],
        analysis_data: dict[str, Any],
        vector_store_id: str | None,
    ) -> None:
        size = max(1, self.config.max_concurrent)
        batches = [pending[i : i + size] for i in range(0, len(pending), size)]

        for number, batch in enumerate(batches, start=1):
            logger.info(
                f"Dispatching batch {number}/{len(batches)}: "
                f"{[r.section_type.value for r in batch]}",
                extra={"memo_id": memo_id},
            )
            results = await asyncio.gather(
                *[
                    self.process_section(memo_id, r, deal_data, analysis_data, vector_store_id)
                    for r in batch
                ]
            )
            failed = [r.section_type.value for r in results if not r.success]
            if failed:
                logger.warning(f"Batch {number} failures: {failed}", extra={"memo_id": memo_id})

            if number < len(batches):
                await self.sleep(self.config.batch_delay)

    async def _poll_until_terminal(self, memo_id: str) -> tuple[list[MemoSectionRecord], bool]:
        """Poll section records until all are terminal; returns (records, timed_out)."""
        waited = 0.0
        while True:
            records = await asyncio.to_thread(self.store.list_sections, memo_id)
            if records and all(r.status.is_terminal for r in records):
                return records, False
            if waited >= self.config.max_wait:
                logger.warning(
                    f"Timed out after {waited:.0f}s waiting for sections",
                    extra={"memo_id": memo_id},
                )
                return records, True
            await self.sleep(self.config.poll_interval)
            waited += self.config.poll_interval
