"""Generative text service clients used by the section generators.

Two backends share one contract: ``generate(system, prompt, tools, max_tokens)``
returns a ``GenerationResult`` with the text and its citation annotations.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from dealmemo.core.config import Settings
from dealmemo.core.logging import get_logger
from dealmemo.core.schemas_memos import Citation, GenerationResult

logger = get_logger(__name__)

WEB_SEARCH = "web_search"
DOCUMENT_SEARCH = "document_search"


class GenerationError(Exception):
    """The generative service returned a non-success response."""


@dataclass(frozen=True)
class GenerationTool:
    """A named augmentation capability offered to the model."""

    name: str
    index_id: str | None = None


def web_search_tool() -> GenerationTool:
    return GenerationTool(name=WEB_SEARCH)


def document_search_tool(index_id: str) -> GenerationTool:
    return GenerationTool(name=DOCUMENT_SEARCH, index_id=index_id)


class GenerationClient(Protocol):
    async def generate(
        self,
        system_instructions: str,
        prompt: str,
        tools: list[GenerationTool],
        max_tokens: int,
    ) -> GenerationResult: ...


class OpenAIResponsesClient:
    """OpenAI Responses API with web search and vector-store file search."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4.1",
        search_context_size: str = "medium",
        client: Any | None = None,
    ):
        self.model = model
        self.search_context_size = search_context_size
        self.client = client or AsyncOpenAI(api_key=api_key)

    def _tool_payload(self, tools: list[GenerationTool]) -> list[dict[str, Any]]:
        payload: list[dict[str, Any]] = []
        # Document search goes first so the model reaches for the deal's files before the web
        for tool in tools:
            if tool.name == DOCUMENT_SEARCH and tool.index_id:
                payload.append({"type": "file_search", "vector_store_ids": [tool.index_id]})
        for tool in tools:
            if tool.name == WEB_SEARCH:
                payload.append(
                    {"type": "web_search_preview", "search_context_size": self.search_context_size}
                )
        return payload

    async def generate(
        self,
        system_instructions: str,
        prompt: str,
        tools: list[GenerationTool],
        max_tokens: int,
    ) -> GenerationResult:
        response = await self.client.responses.create(
            model=self.model,
            instructions=system_instructions,
            input=prompt,
            tools=self._tool_payload(tools),
            max_output_tokens=max_tokens,
        )

        status = getattr(response, "status", None) or "completed"
        if status in ("failed", "cancelled"):
            error = getattr(response, "error", None)
            message = getattr(error, "message", None) or f"Response {status}"
            raise GenerationError(message)

        text = ""
        citations: list[Citation] = []
        for item in getattr(response, "output", None) or []:
            if getattr(item, "type", None) != "message":
                continue
            if (getattr(item, "status", None) or "completed") != "completed":
                continue
            for part in getattr(item, "content", None) or []:
                if getattr(part, "type", None) != "output_text":
                    continue
                base = len(text)
                text += part.text or ""
                for annotation in getattr(part, "annotations", None) or []:
                    citation = _openai_citation(annotation, base)
                    if citation is not None:
                        citations.append(citation)

        if not text.strip():
            raise GenerationError(f"Empty response from model (status={status})")
        if status == "incomplete":
            logger.warning(f"Response incomplete, keeping {len(text)} chars of partial output")

        return GenerationResult(text=text, citations=citations)


def _openai_citation(annotation: Any, base: int) -> Citation | None:
    kind = getattr(annotation, "type", None)
    if kind == "url_citation":
        return Citation(
            url=annotation.url,
            title=getattr(annotation, "title", None) or annotation.url,
            start_offset=base + (annotation.start_index or 0),
            end_offset=base + (annotation.end_index or 0),
        )
    if kind == "file_citation":
        name = getattr(annotation, "filename", None) or getattr(annotation, "file_id", "document")
        position = base + (getattr(annotation, "index", None) or 0)
        return Citation(
            url=f"document://{name}",
            title=name,
            start_offset=position,
            end_offset=position,
        )
    return None


class AnthropicMessagesClient:
    """Anthropic Messages API with the server-side web search tool.

    Document search over a vector store has no Anthropic equivalent and is skipped.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-6",
        max_searches: int = 5,
        client: Any | None = None,
    ):
        self.model = model
        self.max_searches = max_searches
        self.client = client or AsyncAnthropic(api_key=api_key)

    async def generate(
        self,
        system_instructions: str,
        prompt: str,
        tools: list[GenerationTool],
        max_tokens: int,
    ) -> GenerationResult:
        tool_payload: list[dict[str, Any]] = []
        for tool in tools:
            if tool.name == WEB_SEARCH:
                tool_payload.append(
                    {"type": "web_search_20250305", "name": "web_search", "max_uses": self.max_searches}
                )
            elif tool.name == DOCUMENT_SEARCH:
                logger.warning(f"Document search unsupported on Anthropic, skipping index {tool.index_id}")

        response = await self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system_instructions,
            messages=[{"role": "user", "content": prompt}],
            tools=tool_payload,
        )

        if getattr(response, "stop_reason", None) == "refusal":
            raise GenerationError("Model refused to generate section")

        text = ""
        citations: list[Citation] = []
        for block in getattr(response, "content", None) or []:
            if getattr(block, "type", None) != "text":
                continue
            start = len(text)
            text += block.text or ""
            for cited in getattr(block, "citations", None) or []:
                url = getattr(cited, "url", None)
                if not url:
                    continue
                citations.append(
                    Citation(
                        url=url,
                        title=getattr(cited, "title", None) or url,
                        start_offset=start,
                        end_offset=len(text),
                    )
                )

        if not text.strip():
            raise GenerationError("Empty response from model")

        return GenerationResult(text=text, citations=citations)


def get_generation_client(settings: Settings) -> GenerationClient:
    """
    Build the configured generation client.

    Args:
        settings: Application settings

    Returns:
        Client for GENERATION_PROVIDER

    Raises:
        ValueError: If the provider is unknown or its API key is missing
    """
    provider = settings.GENERATION_PROVIDER.lower()
    if provider == "openai":
        return OpenAIResponsesClient(
            api_key=settings.OPENAI_API_KEY,
            model=settings.MEMO_MODEL,
            search_context_size=settings.WEB_SEARCH_CONTEXT_SIZE,
        )
    if provider == "anthropic":
        if not settings.ANTHROPIC_API_KEY:
            raise ValueError("ANTHROPIC_API_KEY not configured")
        return AnthropicMessagesClient(
            api_key=settings.ANTHROPIC_API_KEY,
            model=settings.ANTHROPIC_MEMO_MODEL,
            max_searches=settings.ANTHROPIC_WEB_SEARCH_MAX_USES,
        )
    raise ValueError(f"Unknown generation provider: {settings.GENERATION_PROVIDER}")
