"""Configuration management for the Life Consultant chat engine."""

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

    # OpenAI configuration (required, embeddings only)
    OPENAI_API_KEY: str = Field(..., description="OpenAI API key")

    # Anthropic configuration (chat completion)
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")

    # Environment
    CONSULTANT_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")

    # Embedding configuration
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")

    # Chat completion
    CHAT_MODEL: str = Field(default="claude-3-5-haiku-20241022", description="Model for chat answers")
    CHAT_MAX_TOKENS: int = Field(default=1024, description="Max tokens per chat answer")
    CHAT_TEMPERATURE: float = Field(default=0.7, description="Sampling temperature for chat answers")

    # Retrieval
    RETRIEVAL_MATCH_THRESHOLD: float = Field(
        default=0.6, description="Minimum similarity for ranked search matches"
    )
    RETRIEVAL_TOP_K: int = Field(default=8, description="Global cap on merged ranked sources")
    TASK_MATCH_COUNT: int = Field(default=5, description="Per-kind match count for tasks")
    JOURNAL_MATCH_COUNT: int = Field(default=3, description="Per-kind match count for journal entries")
    NOTE_MATCH_COUNT: int = Field(default=3, description="Per-kind match count for notes")

    # Keyword fallback (degraded retrieval)
    FALLBACK_CANDIDATE_LIMIT: int = Field(
        default=50, description="Rows per kind cached as keyword-fallback candidates"
    )
    FALLBACK_CACHE_TTL_SECONDS: float = Field(
        default=300.0, description="How long fallback candidates stay cached per user"
    )
    FALLBACK_MIN_RELEVANCE: float = Field(
        default=0.2, description="Minimum keyword relevance kept in degraded mode"
    )

    # Session history and explicit recency context
    HISTORY_TURN_LIMIT: int = Field(default=10, description="Prior turns replayed into the prompt")
    RECENT_JOURNAL_LIMIT: int = Field(default=7, description="Recent journal entries always included")
    RECENT_TASK_LIMIT: int = Field(default=10, description="Active tasks always included")

    # Prompt bounds and latency
    MAX_CONTEXT_CHARS: int = Field(default=6000, description="Cap on assembled context characters")
    REQUEST_TIMEOUT_SECONDS: float = Field(
        default=120.0, description="Total budget for retrieval plus generation"
    )

    # Rate limiting
    CHAT_RATE_LIMIT_RPM: int = Field(default=10, description="Sustained chat requests per minute per user")
    CHAT_RATE_LIMIT_BURST: int = Field(default=15, description="Chat burst size per user")


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
