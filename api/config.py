"""Settings management for the Strata API.

This module provides centralized configuration management using pydantic-settings.
All configuration is loaded from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.embeddings.models import EmbeddingProvider
from core.ingestion.models import PipelineConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        app_name: Name of the application.
        app_version: Application version.
        debug: Enable debug mode.
        log_level: Logging level.

        store_backend: ``memory`` for a process-local store, ``graph`` for
            Neo4j records with a Qdrant file index.
        neo4j_uri: Neo4j connection URI.
        qdrant_host: Qdrant host.

        anthropic_api_key: Anthropic API key for summaries. Without it a
            mock client is used.
        embedding_provider: Embedding provider.

        github_token: Token for GitHub API reads.
        github_webhook_secret: Secret for X-Hub-Signature-256 validation.

        file_batch_size ... max_commits: Pipeline limits, see PipelineConfig.
        concurrency_*: Per-function concurrency ceilings.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = Field(default="Strata API", description="Application name")
    app_version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    # Record store
    store_backend: Literal["memory", "graph"] = Field(
        default="memory",
        description="Record store backend",
    )

    # Neo4j settings
    neo4j_uri: str = Field(
        default="bolt://localhost:7687",
        description="Neo4j connection URI",
    )
    neo4j_user: str = Field(default="neo4j", description="Neo4j username")
    neo4j_password: str = Field(default="password", description="Neo4j password")
    neo4j_database: str = Field(default="neo4j", description="Neo4j database name")

    # Qdrant settings
    qdrant_host: str = Field(default="localhost", description="Qdrant host")
    qdrant_port: int = Field(default=6333, description="Qdrant port")
    qdrant_api_key: str | None = Field(
        default=None,
        description="Optional Qdrant API key",
    )
    qdrant_collection: str = Field(
        default="file_embeddings",
        description="Collection holding file summary embeddings",
    )

    # LLM and embedding providers
    anthropic_api_key: str | None = Field(
        default=None,
        description="Anthropic API key for Claude",
    )
    llm_model: str = Field(
        default="claude-sonnet-4-20250514",
        description="Model used for file and commit summaries",
    )
    embedding_provider: EmbeddingProvider = Field(
        default=EmbeddingProvider.VOYAGE,
        description="Embedding provider",
    )
    voyage_api_key: str | None = Field(
        default=None,
        description="Voyage AI API key for embeddings",
    )
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key (alternative for embeddings)",
    )

    # GitHub integration
    github_token: str | None = Field(default=None, description="GitHub access token")
    github_webhook_secret: str | None = Field(
        default=None,
        description="GitHub webhook secret",
    )

    # CORS settings
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    # API settings
    api_prefix: str = Field(default="/api/v1", description="API route prefix")

    # Pipeline limits
    file_batch_size: int = Field(default=2, ge=1, description="Files per batch")
    file_batch_delay_seconds: float = Field(default=2.0, ge=0, description="Batch delay")
    commit_wave_size: int = Field(default=3, ge=1, description="Commit jobs per wave")
    commit_wave_delay_seconds: float = Field(default=20.0, ge=0, description="Wave delay")
    commit_jitter_seconds: float = Field(default=3.0, ge=0, description="Commit jitter")
    reindex_batch_size: int = Field(default=3, ge=1, description="Files per reindex batch")
    reindex_batch_delay_seconds: float = Field(default=2.0, ge=0, description="Reindex delay")
    failure_message_limit: int = Field(default=100, ge=1, description="Failure text limit")
    max_commits: int = Field(default=15, ge=1, description="Recent commits considered")

    # Concurrency ceilings
    concurrency_project_creation: int = Field(default=2, ge=1, description="Per user")
    concurrency_single_commit: int = Field(default=5, ge=1, description="Global")
    concurrency_file_changes: int = Field(default=5, ge=1, description="Per project")
    concurrency_smart_reindex: int = Field(default=3, ge=1, description="Per project")
    concurrency_release: int = Field(default=2, ge=1, description="Per project")

    def pipeline_config(self) -> PipelineConfig:
        """Build the pipeline configuration from settings."""
        return PipelineConfig(
            file_batch_size=self.file_batch_size,
            file_batch_delay_seconds=self.file_batch_delay_seconds,
            commit_wave_size=self.commit_wave_size,
            commit_wave_delay_seconds=self.commit_wave_delay_seconds,
            commit_jitter_seconds=self.commit_jitter_seconds,
            reindex_batch_size=self.reindex_batch_size,
            reindex_batch_delay_seconds=self.reindex_batch_delay_seconds,
            failure_message_limit=self.failure_message_limit,
            max_commits=self.max_commits,
        )

    def concurrency(self) -> dict[str, int]:
        """Concurrency ceilings keyed by function id."""
        return {
            "process-project-creation": self.concurrency_project_creation,
            "process-single-commit": self.concurrency_single_commit,
            "process-file-changes": self.concurrency_file_changes,
            "smart-reindex": self.concurrency_smart_reindex,
            "process-release": self.concurrency_release,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Uses lru_cache to ensure settings are loaded once and reused.

    Returns:
        The application settings instance.
    """
    return Settings()
