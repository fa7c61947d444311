"""Pydantic schemas for investment memos and their sections."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums
# ============================================================================


class SectionType(str, Enum):
    """The ten sections every investment memo is built from."""
    EXECUTIVE_SUMMARY = "executive_summary"
    THESIS_ALIGNMENT = "thesis_alignment"
    COMPANY_OVERVIEW = "company_overview"
    MARKET_ANALYSIS = "market_analysis"
    PRODUCT_TECHNOLOGY = "product_technology"
    BUSINESS_MODEL = "business_model"
    TEAM_EXECUTION = "team_execution"
    INVESTMENT_RATIONALE = "investment_rationale"
    RISKS_MITIGATION = "risks_mitigation"
    RECOMMENDATION = "recommendation"


class SectionStatus(str, Enum):
    """Lifecycle of one section record."""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SectionStatus.COMPLETED, SectionStatus.FAILED)


class GenerationStatus(str, Enum):
    """Overall generation status of a memo."""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


class GenerationOutcome(str, Enum):
    """Result reported by one orchestration run."""
    COMPLETED = "completed"
    FAILED = "failed"


# ============================================================================
# Records
# ============================================================================


class Citation(BaseModel):
    """A source attached to generated text."""

    url: str
    title: str = ""
    start_offset: int = Field(default=0, ge=0)
    end_offset: int = Field(default=0, ge=0)


class SectionSource(BaseModel):
    """A provisional, section-local source stored alongside section content."""

    index: int = Field(..., ge=1, description="Marker number used inside the section")
    url: str
    title: str = ""


class MemoSectionRecord(BaseModel):
    """One row of investment_memo_sections."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    memo_id: str
    section_type: SectionType
    section_order: int
    status: SectionStatus = SectionStatus.PENDING
    content: str | None = None
    error: str | None = None
    citations: list[SectionSource] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @field_validator("citations", mode="before")
    @classmethod
    def _null_citations(cls, value: Any) -> Any:
        return value or []


# ============================================================================
# Generation results
# ============================================================================


class GenerationResult(BaseModel):
    """Text and citations returned by the generative service."""

    text: str
    citations: list[Citation] = Field(default_factory=list)


class SectionResult(BaseModel):
    """Outcome of one section generator invocation."""

    section_type: SectionType
    success: bool
    error: str | None = None


class GenerationRun(BaseModel):
    """Outcome of one orchestration run over a memo."""

    memo_id: str
    outcome: GenerationOutcome
    sections_processed: int = 0
    completed_count: int = 0
    timed_out: bool = False


# ============================================================================
# API models
# ============================================================================


class ProcessSectionsRequest(BaseModel):
    """Trigger payload for a generation run."""

    model_config = ConfigDict(populate_by_name=True)

    memo_id: UUID = Field(..., validation_alias=AliasChoices("memoId", "memo_id"))
    deal_data: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("dealContext", "dealData", "deal_data"),
    )
    analysis_data: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("analysisContext", "analysisData", "analysis_data"),
    )
    vector_store_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("documentIndexId", "vectorStoreId", "vector_store_id"),
    )


class ProcessSectionsResponse(BaseModel):
    """Wire response of the trigger endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    sections_processed: int = Field(..., serialization_alias="sectionsProcessed")
    completed_count: int = Field(..., serialization_alias="completedCount")
    status: GenerationOutcome


class GenerateSectionRequest(BaseModel):
    """Payload for running one section generator."""

    deal_data: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("dealContext", "dealData", "deal_data"),
    )
    analysis_data: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("analysisContext", "analysisData", "analysis_data"),
    )
    vector_store_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("documentIndexId", "vectorStoreId", "vector_store_id"),
    )


class GenerateMemoRequest(BaseModel):
    """Request to start memo generation for a deal."""

    deal_id: UUID = Field(..., validation_alias=AliasChoices("dealId", "deal_id"))
    user_id: UUID | None = Field(default=None, validation_alias=AliasChoices("userId", "user_id"))


class UpdateMemoRequest(BaseModel):
    """Manual edits to a memo."""

    title: str | None = None
    content: str | None = None


class SectionStatusItem(BaseModel):
    """Per-section diagnostics in a status response."""

    id: str | None = None
    type: SectionType
    order: int
    status: SectionStatus
    content: str | None = None
    error: str | None = None
    started_at: datetime | None = Field(default=None, serialization_alias="startedAt")
    completed_at: datetime | None = Field(default=None, serialization_alias="completedAt")


class MemoStatusResponse(BaseModel):
    """Memo generation progress."""

    id: str
    status: GenerationStatus
    progress: float
    sections_completed: int = Field(..., serialization_alias="sectionsCompleted")
    total_sections: int = Field(..., serialization_alias="totalSections")
    sections: list[SectionStatusItem] = Field(default_factory=list)
    content: str | None = None
    created_at: str | None = Field(default=None, serialization_alias="createdAt")
    updated_at: str | None = Field(default=None, serialization_alias="updatedAt")
