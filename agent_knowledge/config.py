"""
Centralized configuration management for the agent knowledge engine.

This module provides a Pydantic Settings-based configuration system that:
- Validates environment variables at startup
- Provides type coercion (strings to ints, floats, bools, etc.)
- Groups related settings for better organization
- Converts settings groups into the engine's runtime config objects
- Supports .env file loading

Usage:
    from agent_knowledge.config import get_settings

    settings = get_settings()
    store_path = settings.store.database_path
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Literal, Optional

from pydantic import Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types.knowledge import (
    ChunkingConfig,
    EmbeddingConfig,
    HybridSearchConfig,
    RerankConfig,
)


# =============================================================================
# Embedding Settings
# =============================================================================


class EmbeddingSettings(BaseSettings):
    """Configuration for the embedding provider."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: Optional[SecretStr] = Field(
        default=None,
        description="OpenAI API key used for embeddings",
    )
    kb_embedding_model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name",
    )
    kb_embedding_dimensions: int = Field(
        default=1536,
        ge=1,
        description="Dimensions of the embedding vectors",
    )
    kb_embedding_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per embedding request before giving up",
    )
    kb_embedding_retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Base delay in seconds between embedding retries",
    )

    @property
    def is_configured(self) -> bool:
        """Check if an embedding API key is available."""
        return bool(self.openai_api_key)

    def to_config(self) -> EmbeddingConfig:
        return EmbeddingConfig(
            model=self.kb_embedding_model,
            dimensions=self.kb_embedding_dimensions,
            max_retries=self.kb_embedding_max_retries,
            retry_delay=self.kb_embedding_retry_delay,
        )


# =============================================================================
# Store Settings
# =============================================================================


class StoreSettings(BaseSettings):
    """Configuration for the SQLite knowledge store."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    kb_database_path: str = Field(
        default="./data/knowledge.sqlite",
        description="Path of the SQLite database file",
    )

    @property
    def database_path(self) -> Path:
        return Path(self.kb_database_path)


# =============================================================================
# Chunking Settings
# =============================================================================


class ChunkingSettings(BaseSettings):
    """Configuration for chunking and chunk embedding."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    kb_chunk_size: int = Field(
        default=512,
        ge=1,
        description="Chunk size in characters",
    )
    kb_chunk_overlap: int = Field(
        default=20,
        ge=0,
        description="Overlap between neighbouring chunks in characters",
    )
    kb_embedding_batch_size: int = Field(
        default=10,
        ge=1,
        description="Chunks embedded concurrently per batch",
    )

    @model_validator(mode="after")
    def check_overlap(self) -> "ChunkingSettings":
        if self.kb_chunk_overlap >= self.kb_chunk_size:
            raise ValueError("KB_CHUNK_OVERLAP must be smaller than KB_CHUNK_SIZE")
        return self

    def to_config(self) -> ChunkingConfig:
        return ChunkingConfig(
            chunk_size=self.kb_chunk_size,
            chunk_overlap=self.kb_chunk_overlap,
        )


# =============================================================================
# Retrieval Settings
# =============================================================================


class RetrievalSettings(BaseSettings):
    """Configuration for hybrid search and reranking."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    kb_match_threshold: float = Field(
        default=0.6,
        ge=0,
        le=1,
        description="Minimum vector score, also applied after reranking",
    )
    kb_match_count: int = Field(
        default=6,
        ge=1,
        description="Default number of results returned to callers",
    )
    kb_rescue_threshold: float = Field(
        default=0.3,
        ge=0,
        le=1,
        description="Minimum vector score for records admitted by keyword score",
    )
    kb_keyword_match_boost: float = Field(
        default=3.0,
        gt=0,
        description="Keyword multiplier when the record text contains the query",
    )
    kb_chunk_boost: float = Field(
        default=1.5,
        gt=0,
        description="Keyword multiplier for chunk records",
    )
    kb_main_boost: float = Field(
        default=1.2,
        gt=0,
        description="Keyword multiplier for main (parent) records",
    )
    kb_term_boost: float = Field(
        default=2.0,
        ge=0,
        description="Rerank boost scaled by the share of matching query terms",
    )
    kb_proximity_boost: float = Field(
        default=1.5,
        ge=1,
        description="Rerank multiplier when matched terms occur close together",
    )
    kb_proximity_window: int = Field(
        default=5,
        ge=1,
        description="Maximum word distance counted as close together",
    )
    kb_no_match_penalty: float = Field(
        default=0.3,
        ge=0,
        le=1,
        description="Rerank multiplier for results matching no query term",
    )

    def to_search_config(self) -> HybridSearchConfig:
        return HybridSearchConfig(
            rescue_threshold=self.kb_rescue_threshold,
            keyword_match_boost=self.kb_keyword_match_boost,
            chunk_boost=self.kb_chunk_boost,
            main_boost=self.kb_main_boost,
        )

    def to_rerank_config(self) -> RerankConfig:
        return RerankConfig(
            term_boost=self.kb_term_boost,
            proximity_boost=self.kb_proximity_boost,
            proximity_window=self.kb_proximity_window,
            no_match_penalty=self.kb_no_match_penalty,
        )


# =============================================================================
# Cache Settings
# =============================================================================


class CacheSettings(BaseSettings):
    """Configuration for the search result cache."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    kb_cache_enabled: bool = Field(
        default=True,
        description="Cache search results per agent",
    )
    kb_cache_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Lifetime of cached search results",
    )


# =============================================================================
# Sync Settings
# =============================================================================


class SyncSettings(BaseSettings):
    """Configuration for directory synchronization and file watching."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    kb_agent_id: str = Field(
        default="default",
        description="Agent that owns private knowledge",
    )
    kb_knowledge_root: str = Field(
        default="./characters/knowledge",
        description="Root directory containing knowledge group directories",
    )
    kb_supported_extensions: str = Field(
        default=".md,.txt",
        description="Comma-separated file extensions that are indexed",
    )
    kb_file_batch_size: int = Field(
        default=5,
        ge=1,
        description="Files processed concurrently during a directory sync",
    )
    kb_watch_debounce_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Quiet period before queued file changes are applied",
    )
    kb_watch_queue_size: int = Field(
        default=1000,
        ge=1,
        description="Maximum pending file change events",
    )

    @property
    def knowledge_root(self) -> Path:
        return Path(self.kb_knowledge_root)

    @property
    def extensions(self) -> List[str]:
        """Get supported extensions as a normalized list."""
        extensions = []
        for ext in self.kb_supported_extensions.split(","):
            ext = ext.strip().lower()
            if not ext:
                continue
            extensions.append(ext if ext.startswith(".") else f".{ext}")
        return extensions


# =============================================================================
# Logging Settings
# =============================================================================


class LoggingSettings(BaseSettings):
    """Configuration for logging."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    log_format_json: bool = Field(
        default=False,
        description="Force JSON log format",
    )


# =============================================================================
# Main Settings Class
# =============================================================================


class Settings(BaseSettings):
    """
    Main settings class that aggregates all configuration groups.

    This class provides a single entry point for all engine configuration
    with validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def get_config_summary(self) -> dict:
        """
        Get a summary of configuration status for logging.

        Returns a dictionary WITHOUT exposing any secrets.
        """
        return {
            "agent_id": self.sync.kb_agent_id,
            "knowledge_root": self.sync.kb_knowledge_root,
            "database_path": self.store.kb_database_path,
            "embedding_model": self.embedding.kb_embedding_model,
            "embedding_configured": self.embedding.is_configured,
            "chunk_size": self.chunking.kb_chunk_size,
            "chunk_overlap": self.chunking.kb_chunk_overlap,
            "match_threshold": self.retrieval.kb_match_threshold,
            "cache_enabled": self.cache.kb_cache_enabled,
            "log_level": self.logging.log_level,
        }


# =============================================================================
# Settings Singleton
# =============================================================================


@lru_cache()
def get_settings() -> Settings:
    """
    Get the settings singleton.

    Uses lru_cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload settings.

    Returns:
        Validated Settings instance

    Raises:
        ValidationError: If configuration is invalid
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings from environment.

    This clears the cache and returns fresh settings.
    Useful for testing or after environment changes.
    """
    get_settings.cache_clear()
    return get_settings()
