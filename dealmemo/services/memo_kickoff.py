"""Start memo generation for a deal: create the memo and seed its sections."""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from dealmemo.core.logging import get_logger
from dealmemo.core.memo_sections import company_name
from dealmemo.db.memo_store import SupabaseMemoStore

logger = get_logger(__name__)


class DealNotFoundError(Exception):
    """The deal does not exist."""


class AnalysisNotFoundError(Exception):
    """The deal has no analysis to write a memo from."""


@dataclass
class MemoKickoff:
    """Everything the orchestrator needs to run a freshly created memo."""

    memo_id: str
    deal_data: dict[str, Any] = field(default_factory=dict)
    analysis_data: dict[str, Any] = field(default_factory=dict)
    vector_store_id: str | None = None


def latest_analysis(deal: dict[str, Any]) -> dict[str, Any] | None:
    """Most recent deal analysis by created_at, or None."""
    analyses = deal.get("deal_analyses") or []
    if not analyses:
        return None
    return max(analyses, key=lambda a: a.get("created_at") or "")


def start_memo_generation(
    store: SupabaseMemoStore,
    deal_id: UUID | str,
    user_id: UUID | str | None = None,
) -> MemoKickoff:
    """
    Create a pending memo for a deal and seed its ten section records.

    Args:
        store: Memo store
        deal_id: Deal UUID
        user_id: Optional user recorded as the memo author

    Returns:
        MemoKickoff with the new memo id and generation context

    Raises:
        DealNotFoundError: If the deal does not exist
        AnalysisNotFoundError: If the deal has never been analyzed
    """
    deal = store.get_deal_with_analyses(deal_id)
    if not deal:
        raise DealNotFoundError(f"Deal {deal_id} not found")

    analysis = latest_analysis(deal)
    if not analysis:
        raise AnalysisNotFoundError(f"No analysis found for deal {deal_id}")

    deal_data = {k: v for k, v in deal.items() if k != "deal_analyses"}
    name = company_name(deal_data, analysis)
    if name == "the company":
        name = "Company"

    memo = store.create_memo(deal_id, f"Investment Memo - {name}", created_by=user_id)
    memo_id = str(memo["id"])
    store.seed_sections(memo_id)

    logger.info(
        f"Memo generation started for {name}",
        extra={"memo_id": memo_id, "deal_id": str(deal_id)},
    )

    return MemoKickoff(
        memo_id=memo_id,
        deal_data=deal_data,
        analysis_data=analysis,
        vector_store_id=analysis.get("openai_vector_store_id"),
    )
