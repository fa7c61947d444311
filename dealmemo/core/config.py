"""Configuration management for the Deal Memo Engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # OpenAI configuration (required)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")

    # Anthropic configuration (optional, only for GENERATION_PROVIDER=anthropic)
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")

    # Environment
    MEMO_ENGINE_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Section generation
    GENERATION_PROVIDER: str = Field(
        default="openai", description="Generative backend: openai or anthropic"
    )
    MEMO_MODEL: str = Field(default="gpt-4.1", description="OpenAI model for memo sections")
    ANTHROPIC_MEMO_MODEL: str = Field(
        default="claude-sonnet-4-6", description="Anthropic model for memo sections"
    )
    WEB_SEARCH_CONTEXT_SIZE: str = Field(
        default="medium", description="Web search context size for the Responses API"
    )
    ANTHROPIC_WEB_SEARCH_MAX_USES: int = Field(
        default=5, description="Max server-side web searches per Anthropic section call"
    )

    # Section dispatch
    SECTION_DISPATCH_MODE: str = Field(
        default="inprocess", description="How sections are dispatched: inprocess or http"
    )
    SECTION_FUNCTION_BASE_URL: str = Field(
        default="http://localhost:8000", description="Base URL of the section generator endpoint"
    )
    SECTION_HTTP_TIMEOUT: float = Field(
        default=180.0, description="Timeout in seconds for one HTTP section call"
    )

    # Orchestration
    MEMO_MAX_CONCURRENT: int = Field(default=5, description="Sections dispatched per batch")
    MEMO_MAX_RETRIES: int = Field(default=3, description="Retries per section after first attempt")
    MEMO_RETRY_DELAY_SECONDS: float = Field(default=5.0, description="Delay before a retry")
    MEMO_BATCH_DELAY_SECONDS: float = Field(default=2.0, description="Delay between batches")
    MEMO_POLL_INTERVAL_SECONDS: float = Field(default=5.0, description="Status poll interval")
    MEMO_MAX_WAIT_SECONDS: float = Field(default=120.0, description="Max time spent polling")
    MEMO_STUCK_THRESHOLD_SECONDS: float = Field(
        default=300.0, description="Age after which a generating section is stuck"
    )
    MEMO_MIN_SECTIONS_FOR_ASSEMBLY: int = Field(
        default=9, description="Completed sections required to assemble a memo"
    )

    # Kickoff rate limiting
    MEMO_RATE_LIMIT_PER_MINUTE: int = Field(
        default=3, description="Memo generation requests per deal per minute"
    )
    MEMO_RATE_LIMIT_BURST: int = Field(default=5, description="Burst size for memo requests")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
