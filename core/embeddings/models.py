"""Embedding models and types for Strata.

This module defines the provider enum, client configuration and result
types for summary embeddings.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class EmbeddingProvider(str, Enum):
    """Supported embedding providers."""

    VOYAGE = "voyage"
    OPENAI = "openai"
    MOCK = "mock"


class EmbeddingConfig(BaseModel):
    """Configuration for an embedding client.

    Attributes:
        provider: The embedding provider to use.
        model: The model name/ID.
        dimension: Vector dimension size, which must match the index.
        batch_size: Maximum texts per API call.
        max_retries: Maximum number of attempts per call.
    """

    model_config = ConfigDict(frozen=True)

    provider: EmbeddingProvider = Field(default=EmbeddingProvider.VOYAGE, description="Provider")
    model: str = Field(default="voyage-code-2", description="Model name")
    dimension: int = Field(default=1024, ge=1, description="Vector dimension")
    batch_size: int = Field(default=128, ge=1, le=256, description="Maximum batch size")
    max_retries: int = Field(default=3, ge=1, le=10, description="Maximum attempts")


VOYAGE_CODE_CONFIG = EmbeddingConfig(
    provider=EmbeddingProvider.VOYAGE,
    model="voyage-code-2",
    dimension=1024,
    batch_size=128,
)

OPENAI_CONFIG = EmbeddingConfig(
    provider=EmbeddingProvider.OPENAI,
    model="text-embedding-3-small",
    dimension=1536,
    batch_size=100,
)


class EmbeddingResult(BaseModel):
    """Embedding of a single text."""

    text: str = Field(..., description="Original text")
    vector: list[float] = Field(..., description="Embedding vector")
    model: str = Field(..., description="Model used")
    token_count: int = Field(default=0, description="Token count")


class EmbeddingBatchResult(BaseModel):
    """Result of batch embedding generation.

    Attributes:
        embeddings: Embeddings of the texts that succeeded, in input order.
        total_tokens: Total tokens reported by the provider.
        model: Model used for generation.
        failed_indices: Indices of texts whose API batch failed.
    """

    embeddings: list[EmbeddingResult] = Field(default_factory=list, description="Embeddings")
    total_tokens: int = Field(default=0, description="Total tokens")
    model: str = Field(..., description="Model used")
    failed_indices: list[int] = Field(default_factory=list, description="Failed indices")
