"""Section generator: produces one memo section and records its lifecycle.

The generator never retries. It reports failure through the section record
and its return value; retries belong to the orchestrator.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from dealmemo.core.citations import insert_citation_markers
from dealmemo.core.llm import (
    GenerationClient,
    GenerationError,
    GenerationTool,
    document_search_tool,
    web_search_tool,
)
from dealmemo.core.logging import get_logger
from dealmemo.core.memo_sections import (
    DOCUMENT_PRECEDENCE_INSTRUCTIONS,
    SectionConfig,
    get_basic_company_info,
)
from dealmemo.core.schemas_memos import SectionResult, SectionStatus
from dealmemo.db.memo_store import MemoStore

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_tools(vector_store_id: str | None) -> list[GenerationTool]:
    """Web search always; document search only when the deal has an index."""
    tools = [web_search_tool()]
    if vector_store_id:
        tools.append(document_search_tool(vector_store_id))
    return tools


def build_section_prompt(
    config: SectionConfig, deal_data: dict[str, Any], analysis_data: dict[str, Any]
) -> str:
    return "\n\n".join(
        [
            DOCUMENT_PRECEDENCE_INSTRUCTIONS,
            get_basic_company_info(deal_data, analysis_data),
            config.render_prompt(deal_data, analysis_data),
        ]
    )


class SectionGenerator:
    """Generates a single section and writes its status to the section store."""

    def __init__(
        self,
        store: MemoStore,
        client: GenerationClient,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.client = client
        self.clock = clock

    async def generate(
        self,
        memo_id: UUID | str,
        config: SectionConfig,
        deal_data: dict[str, Any],
        analysis_data: dict[str, Any],
        vector_store_id: str | None = None,
    ) -> SectionResult:
        """
        Generate one section.

        Args:
            memo_id: Memo UUID
            config: Section configuration
            deal_data: Deal attributes (company, stage, amounts)
            analysis_data: Latest deal analysis
            vector_store_id: Optional document index for the deal

        Returns:
            SectionResult with success flag and error detail
        """
        memo_id = str(memo_id)
        section = config.section_type.value
        logger.info(f"Starting {section}", extra={"memo_id": memo_id, "section_type": section})

        await self._write_status(
            memo_id,
            config,
            {
                "section_order": config.order,
                "status": SectionStatus.GENERATING.value,
                "started_at": self.clock().isoformat(),
                "error": None,
                "completed_at": None,
            },
        )

        try:
            tools = build_tools(vector_store_id)
            prompt = build_section_prompt(config, deal_data, analysis_data)
            result = await self.client.generate(
                config.system_prompt, prompt, tools, config.max_tokens
            )

            content, sources = insert_citation_markers(result.text, result.citations)
            content = content.strip()
            if not content:
                raise GenerationError("Generated section is empty")

            await asyncio.to_thread(
                self.store.upsert_section,
                memo_id,
                config.section_type,
                {
                    "section_order": config.order,
                    "status": SectionStatus.COMPLETED.value,
                    "content": content,
                    "error": None,
                    "citations": [source.model_dump() for source in sources],
                    "completed_at": self.clock().isoformat(),
                },
            )
            logger.info(
                f"Completed {section} ({len(content)} chars, {len(sources)} sources)",
                extra={"memo_id": memo_id, "section_type": section},
            )

        except Exception as e:
            logger.error(
                f"Failed to generate {section}: {e}",
                extra={"memo_id": memo_id, "section_type": section},
            )
            await self._write_status(
                memo_id,
                config,
                {
                    "section_order": config.order,
                    "status": SectionStatus.FAILED.value,
                    "error": str(e) or type(e).__name__,
                    "completed_at": self.clock().isoformat(),
                },
            )
            await self._update_progress(memo_id)
            return SectionResult(section_type=config.section_type, success=False, error=str(e))

        await self._update_progress(memo_id)
        return SectionResult(section_type=config.section_type, success=True)

    async def _write_status(
        self, memo_id: str, config: SectionConfig, fields: dict[str, Any]
    ) -> None:
        """Best-effort status write: failures are logged, never raised."""
        try:
            await asyncio.to_thread(
                self.store.upsert_section, memo_id, config.section_type, fields
            )
        except Exception as e:
            logger.error(
                f"Failed to write {fields.get('status')} status: {e}",
                extra={"memo_id": memo_id, "section_type": config.section_type.value},
            )

    async def _update_progress(self, memo_id: str) -> None:
        # generation_status is left to the orchestrator so a memo is never completed without content
        try:
            completed = await asyncio.to_thread(self.store.count_completed_sections, memo_id)
            await asyncio.to_thread(
                self.store.update_memo, memo_id, {"sections_completed": completed}
            )
        except Exception as e:
            logger.error(f"Failed to update memo progress: {e}", extra={"memo_id": memo_id})
