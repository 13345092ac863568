"""
Configuration management using Pydantic Settings.

All configuration is loaded from environment variables with sensible defaults.
Use a .env file for local development.

Environment Variables:
    OPENAI_API_KEY: Embedding service API key (optional; without it documents
        are stored without embeddings and search falls back to keywords)
    EMBEDDING_MODEL: Embedding model name
    EMBEDDING_DIMENSION: Dimension of embedding vectors
    DATABASE_URL: PostgreSQL connection string (optional; in-memory store if unset)
    CHUNK_SIZE: Target chunk size in tokens
    CHUNK_OVERLAP: Overlap between chunks in tokens
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Embedding Service
    # ==========================================================================
    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="API key for the OpenAI-compatible embedding endpoint",
    )
    embedding_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL of the OpenAI-compatible embedding API",
    )
    embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model for chunks and queries",
    )
    embedding_dimension: int = Field(
        default=1536,
        ge=1,
        description="Dimension of embedding vectors (must match model and schema)",
    )
    embedding_batch_size: int = Field(
        default=100,
        ge=1,
        le=2048,
        description="Maximum number of texts per embedding request",
    )
    embedding_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds for a single embedding request",
    )

    # ==========================================================================
    # Chunking Configuration
    # ==========================================================================
    chunk_size: int = Field(
        default=500,
        ge=1,
        le=8192,
        description="Target size in tokens for document chunks",
    )
    chunk_overlap: int = Field(
        default=50,
        ge=0,
        description="Overlap in tokens between consecutive chunks",
    )
    min_chunk_size: int = Field(
        default=100,
        ge=0,
        description="Minimum chunk size in tokens",
    )

    # ==========================================================================
    # Persistence
    # ==========================================================================
    database_url: Optional[str] = Field(
        default=None,
        description="PostgreSQL connection string; in-memory store when unset",
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements (debugging)",
    )
    text_search_config: str = Field(
        default="english",
        description="Postgres text search configuration for keyword search",
    )
    insert_batch_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Chunks written per insert + embedding backfill unit",
    )
    storage_dir: Path = Field(
        default=Path("data/uploads"),
        description="Directory for uploaded document binaries",
    )
    max_file_size: int = Field(
        default=10 * 1024 * 1024,
        ge=1,
        description="Maximum upload size in bytes",
    )

    # ==========================================================================
    # Retrieval Configuration
    # ==========================================================================
    default_limit: int = Field(
        default=5,
        ge=1,
        description="Default number of chunks to retrieve",
    )
    max_limit: int = Field(
        default=20,
        ge=1,
        description="Maximum number of chunks a caller may request",
    )
    default_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Default minimum similarity for content matches",
    )
    min_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Lowest threshold a caller may request",
    )
    max_threshold: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Highest threshold a caller may request",
    )
    max_context_tokens: int = Field(
        default=3000,
        ge=1,
        description="Token budget for the assembled context string",
    )

    # ==========================================================================
    # API Configuration
    # ==========================================================================
    api_host: str = Field(
        default="0.0.0.0",
        description="Host to bind API server",
    )
    api_port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="Port for API server",
    )

    # ==========================================================================
    # Observability Configuration
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )
    phoenix_endpoint: str = Field(
        default="http://localhost:6006",
        description="Arize Phoenix collector endpoint",
    )
    enable_tracing: bool = Field(
        default=False,
        description="Enable OpenTelemetry tracing to Phoenix",
    )

    # ==========================================================================
    # Validators
    # ==========================================================================
    @field_validator("chunk_overlap")
    @classmethod
    def validate_chunk_overlap(cls, v: int, info) -> int:
        """Ensure overlap is less than chunk size."""
        chunk_size = info.data.get("chunk_size", 500)
        if v >= chunk_size:
            raise ValueError(f"chunk_overlap ({v}) must be less than chunk_size ({chunk_size})")
        return v

    @field_validator("max_threshold")
    @classmethod
    def validate_threshold_bounds(cls, v: float, info) -> float:
        """Ensure the threshold window is not inverted."""
        min_threshold = info.data.get("min_threshold", 0.3)
        if v < min_threshold:
            raise ValueError(f"max_threshold ({v}) must be >= min_threshold ({min_threshold})")
        return v

    @field_validator("storage_dir")
    @classmethod
    def resolve_path(cls, v: Path) -> Path:
        """Resolve paths to absolute paths."""
        return v.resolve()

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def openai_api_key_value(self) -> Optional[str]:
        """Get the actual API key value (use sparingly)."""
        if self.openai_api_key:
            return self.openai_api_key.get_secret_value()
        return None


@dataclass(frozen=True)
class SearchOptions:
    """Retrieval options after defaults and bounds have been applied."""

    limit: int
    threshold: float
    max_context_tokens: int


def normalize_search_options(
    limit: Optional[int] = None,
    threshold: Optional[float] = None,
    max_context_tokens: Optional[int] = None,
    config: Optional[Settings] = None,
) -> SearchOptions:
    """
    Apply defaults and clamp caller-supplied search options.

    The limit is capped at ``max_limit`` (and floored at 1); the threshold is
    clamped into ``[min_threshold, max_threshold]``.

    Args:
        limit: Requested number of results
        threshold: Requested minimum similarity
        max_context_tokens: Requested context budget
        config: Settings to read bounds from (defaults to global settings)

    Returns:
        SearchOptions with every field populated
    """
    cfg = config or get_settings()

    effective_limit = cfg.default_limit if limit is None else limit
    effective_limit = max(1, min(effective_limit, cfg.max_limit))

    effective_threshold = cfg.default_threshold if threshold is None else threshold
    effective_threshold = max(cfg.min_threshold, min(effective_threshold, cfg.max_threshold))

    return SearchOptions(
        limit=effective_limit,
        threshold=effective_threshold,
        max_context_tokens=max_context_tokens or cfg.max_context_tokens,
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses LRU cache to ensure settings are only loaded once.
    Call `get_settings.cache_clear()` to reload settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Convenience alias
settings = get_settings()
