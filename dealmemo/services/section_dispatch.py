"""Ways of invoking a section generator from the orchestrator."""

from typing import Any, Protocol
from uuid import UUID

import httpx

from dealmemo.core.config import Settings
from dealmemo.core.llm import get_generation_client
from dealmemo.core.logging import get_logger
from dealmemo.core.memo_sections import SectionConfig
from dealmemo.core.schemas_memos import SectionResult
from dealmemo.db.memo_store import MemoStore
from dealmemo.services.section_generator import SectionGenerator

logger = get_logger(__name__)


class SectionDispatchError(Exception):
    """A section generator could not be reached."""


class SectionDispatcher(Protocol):
    async def dispatch(
        self,
        memo_id: UUID | str,
        config: SectionConfig,
        deal_data: dict[str, Any],
        analysis_data: dict[str, Any],
        vector_store_id: str | None = None,
    ) -> SectionResult: ...


class InProcessSectionDispatcher:
    """Runs the section generator in the current process."""

    def __init__(self, generator: SectionGenerator):
        self.generator = generator

    async def dispatch(
        self,
        memo_id: UUID | str,
        config: SectionConfig,
        deal_data: dict[str, Any],
        analysis_data: dict[str, Any],
        vector_store_id: str | None = None,
    ) -> SectionResult:
        return await self.generator.generate(
            memo_id, config, deal_data, analysis_data, vector_store_id
        )


class HttpSectionDispatcher:
    """Calls the section generator endpoint over HTTP, one request per section."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 180.0,
        headers: dict[str, str] | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = headers or {}

    def section_url(self, memo_id: UUID | str, config: SectionConfig) -> str:
        return f"{self.base_url}/v1/memos/{memo_id}/sections/{config.section_type.value}/generate"

    async def dispatch(
        self,
        memo_id: UUID | str,
        config: SectionConfig,
        deal_data: dict[str, Any],
        analysis_data: dict[str, Any],
        vector_store_id: str | None = None,
    ) -> SectionResult:
        url = self.section_url(memo_id, config)
        payload = {
            "dealData": deal_data,
            "analysisData": analysis_data,
            "vectorStoreId": vector_store_id,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=self.headers)
        except httpx.HTTPError as e:
            raise SectionDispatchError(
                f"Failed to call {config.section_type.value} generator: {e}"
            ) from e

        if response.status_code >= 400:
            try:
                detail = response.json().get("error") or response.text
            except ValueError:
                detail = response.text
            logger.warning(
                f"Generator returned {response.status_code}: {detail}",
                extra={"memo_id": str(memo_id), "section_type": config.section_type.value},
            )
            return SectionResult(
                section_type=config.section_type,
                success=False,
                error=f"HTTP {response.status_code}: {detail}",
            )

        return SectionResult(section_type=config.section_type, success=True)


def build_dispatcher(settings: Settings, store: MemoStore) -> SectionDispatcher:
    """
    Build the dispatcher selected by SECTION_DISPATCH_MODE.

    Raises:
        ValueError: If the mode is unknown
    """
    mode = settings.SECTION_DISPATCH_MODE.lower()
    if mode == "inprocess":
        generator = SectionGenerator(store=store, client=get_generation_client(settings))
        return InProcessSectionDispatcher(generator)
    if mode == "http":
        return HttpSectionDispatcher(
            base_url=settings.SECTION_FUNCTION_BASE_URL,
            timeout=settings.SECTION_HTTP_TIMEOUT,
        )
    raise ValueError(f"Unknown section dispatch mode: {settings.SECTION_DISPATCH_MODE}")
