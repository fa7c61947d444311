"""Assemble completed memo sections into the final investment memo."""

from collections.abc import Callable
from datetime import datetime
from typing import Any
from uuid import UUID

from dealmemo.core.citations import CitationRegistry, normalize_sup_markers
from dealmemo.core.logging import get_logger
from dealmemo.core.memo_format import format_section_content
from dealmemo.core.memo_sections import format_money, get_section_title
from dealmemo.core.schemas_memos import GenerationStatus, MemoSectionRecord, SectionStatus
from dealmemo.db.memo_store import MemoStore
from dealmemo.services.section_generator import utc_now

logger = get_logger(__name__)

SECTION_SEPARATOR = "\n\n---\n\n"

RESEARCH_SOURCES = (
    "Industry reports and market research (web research)",
    "Competitor analysis and recent funding activity (web research)",
    "News coverage and public company information (web research)",
)

DOCUMENT_SOURCE_PREFIX = "document://"


class AssemblyError(Exception):
    """The memo could not be assembled into a non-empty document."""


def format_memo_date(value: datetime) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def _value_or_tbd(value: Any) -> str:
    return str(value) if value not in (None, "") else "TBD"


class MemoAssembler:
    """Builds the final memo text from section records and writes it to the memo."""

    def __init__(self, store: MemoStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def assemble(self, memo_id: UUID | str, sections_completed: int | None = None) -> str:
        """
        Assemble and store the final memo.

        Args:
            memo_id: Memo UUID
            sections_completed: Completed count computed by the orchestrator
                (recounted from the records when omitted)

        Returns:
            The final memo text

        Raises:
            AssemblyError: If there is nothing to assemble or the result is empty.
                The memo is left untouched in that case.
        """
        memo_id = str(memo_id)
        context = self.store.get_memo_context(memo_id) or {}
        records = sorted(self.store.list_sections(memo_id), key=lambda r: r.section_order)
        completed = [
            r for r in records if r.status == SectionStatus.COMPLETED and (r.content or "").strip()
        ]
        if not completed:
            raise AssemblyError(f"No completed sections to assemble for memo {memo_id}")

        document = self.build_document(context, completed)
        if not document.strip():
            raise AssemblyError(f"Assembled memo {memo_id} is empty")

        count = sections_completed if sections_completed is not None else len(completed)
        self.store.update_memo(
            memo_id,
            {
                "content": document,
                "generation_status": GenerationStatus.COMPLETED.value,
                "sections_completed": count,
            },
        )
        logger.info(
            f"Assembled memo with {len(completed)} sections ({len(document)} chars)",
            extra={"memo_id": memo_id},
        )
        return document

    def build_document(self, context: dict[str, Any], sections: list[MemoSectionRecord]) -> str:
        """Render header, contents, sections and references as one markdown document."""
        deal = context.get("deal") or {}
        company = deal.get("company") or {}
        analysis_date = format_memo_date(self.clock())

        registry = CitationRegistry()
        blocks = []
        for record in sections:
            title = get_section_title(record.section_type)
            content = registry.renumber(record.content or "", record.citations)
            content = format_section_content(
                content, [title, record.section_type.value.replace("_", " ")]
            )
            blocks.append(f"## {title}\n\n{content}")

        parts = [
            self._header(context, deal, company, analysis_date),
            self._table_of_contents(sections),
            SECTION_SEPARATOR.join(blocks),
            self._references(company, registry, analysis_date),
        ]
        document = "\n\n".join(parts)
        return normalize_sup_markers(document)

    def _header(
        self,
        context: dict[str, Any],
        deal: dict[str, Any],
        company: dict[str, Any],
        analysis_date: str,
    ) -> str:
        name = company.get("name") or "Company"
        title = context.get("title") or f"Investment Memo - {name}"
        callout = [
            f"**Date:** {analysis_date}",
            f"**Stage:** {_value_or_tbd(deal.get('stage'))}",
            f"**Requested Amount:** {format_money(deal.get('funding_amount'))}",
            f"**Valuation:** {format_money(deal.get('valuation'))}",
            f"**HTV Allocation:** {format_money(deal.get('check_size_max'))}",
        ]
        return f"# {title}\n\n" + "\n>\n".join(f"> {line}" for line in callout)

    def _table_of_contents(self, sections: list[MemoSectionRecord]) -> str:
        lines = [
            f"{number}. {get_section_title(record.section_type)}"
            for number, record in enumerate(sections, start=1)
        ]
        return "## Table of Contents\n\n" + "\n".join(lines)

    def _references(
        self, company: dict[str, Any], registry: CitationRegistry, analysis_date: str
    ) -> str:
        name = company.get("name") or "Company"
        materials = [f"{name} pitch deck and materials provided by the company"]
        if company.get("website"):
            materials.append(f"Company website: {company['website']}")

        lines = ["## References", "", "### Company Materials", ""]
        lines += [f"{i}. {item}" for i, item in enumerate(materials, start=1)]
        lines += ["", "### Research Sources", ""]
        lines += [f"- {item}" for item in RESEARCH_SOURCES]

        if registry.sources:
            lines += ["", "### Cited Sources", ""]
            for source in registry.sources:
                if source.url.startswith(DOCUMENT_SOURCE_PREFIX):
                    label = source.title or source.url[len(DOCUMENT_SOURCE_PREFIX):]
                    lines.append(f"{source.index}. {label} (company document)")
                else:
                    lines.append(f"{source.index}. [{source.title or source.url}]({source.url})")

        lines += [
            "",
            "*Note: Superscript markers such as <sup>[1]</sup> point to the supporting source. "
            "Numbered sources are listed above; markers without a listed source refer to the "
            "company materials and web research consulted for that section.*",
            "",
            f"*Analysis date: {analysis_date}*",
        ]
        return "\n".join(lines)
