"""API endpoints for investment memo generation."""

import asyncio
from typing import Any
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, HTTPException
from fastapi.responses import JSONResponse

from dealmemo.core.config import get_settings
from dealmemo.core.llm import get_generation_client
from dealmemo.core.logging import get_logger
from dealmemo.core.memo_sections import TOTAL_SECTIONS, get_section_config
from dealmemo.core.rate_limiter import check_memo_rate_limit
from dealmemo.core.schemas_memos import (
    GenerateMemoRequest,
    GenerateSectionRequest,
    GenerationStatus,
    MemoStatusResponse,
    ProcessSectionsRequest,
    ProcessSectionsResponse,
    SectionStatus,
    SectionStatusItem,
    SectionType,
    UpdateMemoRequest,
)
from dealmemo.db.memo_store import SupabaseMemoStore, get_memo_store
from dealmemo.services.memo_kickoff import (
    AnalysisNotFoundError,
    DealNotFoundError,
    MemoKickoff,
    start_memo_generation,
)
from dealmemo.services.memo_orchestrator import MemoOrchestrator, OrchestratorConfig
from dealmemo.services.section_dispatch import build_dispatcher
from dealmemo.services.section_generator import SectionGenerator

logger = get_logger(__name__)

router = APIRouter()


def build_orchestrator(store: SupabaseMemoStore) -> MemoOrchestrator:
    """Wire an orchestrator from settings."""
    settings = get_settings()
    return MemoOrchestrator(
        store=store,
        dispatcher=build_dispatcher(settings, store),
        config=OrchestratorConfig.from_settings(settings),
    )


def build_section_generator(store: SupabaseMemoStore) -> SectionGenerator:
    return SectionGenerator(store=store, client=get_generation_client(get_settings()))


async def run_memo_generation_background(kickoff: MemoKickoff) -> None:
    """Run the orchestrator for a new memo; failures are logged and recorded on the memo."""
    store = get_memo_store()
    try:
        await build_orchestrator(store).run_generation(
            kickoff.memo_id,
            kickoff.deal_data,
            kickoff.analysis_data,
            kickoff.vector_store_id,
        )
    except Exception:
        logger.exception(
            f"Memo generation failed for {kickoff.memo_id}", extra={"memo_id": kickoff.memo_id}
        )
        try:
            await asyncio.to_thread(
                store.update_memo,
                kickoff.memo_id,
                {"generation_status": GenerationStatus.FAILED.value},
            )
        except Exception:
            logger.exception("Failed to mark memo as failed", extra={"memo_id": kickoff.memo_id})


@router.post("/generate")
async def generate_memo(request: GenerateMemoRequest, background_tasks: BackgroundTasks) -> dict:
    """
    Start memo generation for a deal.

    Creates a pending memo, seeds its sections and runs generation in the
    background. Poll GET /memos/{memo_id}/status for progress.

    Raises:
        HTTPException 404: If the deal is not found
        HTTPException 400: If the deal has no analysis
        HTTPException 429: If the deal is rate limited
        HTTPException 500: If the memo could not be created
    """
    check_memo_rate_limit(request.deal_id)

    try:
        kickoff = start_memo_generation(get_memo_store(), request.deal_id, request.user_id)
    except DealNotFoundError:
        raise HTTPException(status_code=404, detail="Deal not found")
    except AnalysisNotFoundError:
        raise HTTPException(
            status_code=400, detail="No analysis found for this deal. Please run analysis first."
        )
    except Exception:
        logger.exception(
            f"Failed to start memo generation for deal {request.deal_id}",
            extra={"deal_id": str(request.deal_id)},
        )
        raise HTTPException(status_code=500, detail="Failed to start memo generation")

    background_tasks.add_task(run_memo_generation_background, kickoff)

    return {
        "success": True,
        "memoId": kickoff.memo_id,
        "message": "Memo generation started",
    }


@router.post("/process-sections")
async def process_sections(request: ProcessSectionsRequest) -> Any:
    """
    Run section generation for a memo and wait for the result.

    Returns:
        {success, sectionsProcessed, completedCount, status}, or 500 {error}
    """
    memo_id = str(request.memo_id)
    try:
        run = await build_orchestrator(get_memo_store()).run_generation(
            memo_id,
            request.deal_data,
            request.analysis_data,
            request.vector_store_id,
        )
    except Exception as e:
        logger.exception(f"Section processing failed for memo {memo_id}", extra={"memo_id": memo_id})
        return JSONResponse(status_code=500, content={"error": str(e) or type(e).__name__})

    response = ProcessSectionsResponse(
        success=True,
        sections_processed=run.sections_processed,
        completed_count=run.completed_count,
        status=run.outcome,
    )
    return response.model_dump(by_alias=True, mode="json")


@router.post("/{memo_id}/sections/{section_type}/generate")
async def generate_section(
    memo_id: UUID, section_type: SectionType, request: GenerateSectionRequest
) -> Any:
    """Run one section generator. Returns 500 {error} when the section fails."""
    generator = build_section_generator(get_memo_store())
    try:
        result = await generator.generate(
            memo_id,
            get_section_config(section_type),
            request.deal_data,
            request.analysis_data,
            request.vector_store_id,
        )
    except Exception as e:
        logger.exception(
            f"Section {section_type.value} crashed",
            extra={"memo_id": str(memo_id), "section_type": section_type.value},
        )
        return JSONResponse(status_code=500, content={"error": str(e) or type(e).__name__})

    if not result.success:
        return JSONResponse(status_code=500, content={"error": result.error or "Generation failed"})

    return {"success": True, "sectionType": section_type.value}


@router.get("/{memo_id}/status")
async def get_memo_status(memo_id: UUID) -> dict:
    """
    Get memo generation progress with per-section diagnostics.

    Raises:
        HTTPException 404: If the memo is not found
        HTTPException 500: If database error
    """
    try:
        store = get_memo_store()
        memo = store.get_memo(memo_id)
        if not memo:
            raise HTTPException(status_code=404, detail="Memo not found")

        records = store.list_sections(memo_id)
        total = memo.get("total_sections") or TOTAL_SECTIONS
        completed = sum(1 for r in records if r.status == SectionStatus.COMPLETED)

        status = MemoStatusResponse(
            id=str(memo["id"]),
            status=memo.get("generation_status") or GenerationStatus.PENDING.value,
            progress=round(completed / total * 100, 1) if total else 0.0,
            sections_completed=completed,
            total_sections=total,
            sections=[
                SectionStatusItem(
                    id=r.id,
                    type=r.section_type,
                    order=r.section_order,
                    status=r.status,
                    content=r.content,
                    error=r.error,
                    started_at=r.started_at,
                    completed_at=r.completed_at,
                )
                for r in records
            ],
            content=memo.get("content") or None,
            created_at=memo.get("created_at"),
            updated_at=memo.get("updated_at"),
        )
        return status.model_dump(by_alias=True, mode="json")

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to get memo status {memo_id}", extra={"memo_id": str(memo_id)})
        raise HTTPException(status_code=500, detail="Failed to retrieve memo status")


@router.put("/{memo_id}")
async def update_memo(memo_id: UUID, request: UpdateMemoRequest) -> dict:
    """
    Edit a memo's title or content.

    Raises:
        HTTPException 400: If no fields are given
        HTTPException 404: If the memo is not found
        HTTPException 500: If database error
    """
    fields = request.model_dump(exclude_none=True)
    if not fields:
        raise HTTPException(status_code=400, detail="No fields to update")

    try:
        store = get_memo_store()
        if not store.get_memo(memo_id):
            raise HTTPException(status_code=404, detail="Memo not found")

        store.update_memo(memo_id, fields)
        return {"success": True, "memoId": str(memo_id)}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to update memo {memo_id}", extra={"memo_id": str(memo_id)})
        raise HTTPException(status_code=500, detail="Failed to update memo")


@router.delete("/{memo_id}")
async def delete_memo(memo_id: UUID) -> dict:
    """
    Delete a memo and its sections.

    Raises:
        HTTPException 404: If the memo is not found
        HTTPException 500: If database error
    """
    try:
        store = get_memo_store()
        if not store.get_memo(memo_id):
            raise HTTPException(status_code=404, detail="Memo not found")

        store.delete_memo(memo_id)
        return {"success": True}

    except HTTPException:
        raise
    except Exception:
        logger.exception(f"Failed to delete memo {memo_id}", extra={"memo_id": str(memo_id)})
        raise HTTPException(status_code=500, detail="Failed to delete memo")
