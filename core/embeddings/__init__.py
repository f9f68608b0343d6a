"""Embeddings module for Strata.

This module provides embedding clients for file summaries and the Qdrant
index that stores one summary embedding per project file.
"""

from core.embeddings.client import (
    EmbeddingClient,
    EmbeddingClientError,
    MockEmbeddingClient,
    OpenAIClient,
    RateLimitError,
    VoyageClient,
    create_embedding_client,
)
from core.embeddings.models import (
    OPENAI_CONFIG,
    VOYAGE_CODE_CONFIG,
    EmbeddingBatchResult,
    EmbeddingConfig,
    EmbeddingProvider,
    EmbeddingResult,
)
from core.embeddings.store import (
    FileEmbeddingIndex,
    VectorStoreConfig,
    VectorStoreError,
    point_id_for,
)

__all__ = [
    # Clients
    "EmbeddingClient",
    "EmbeddingClientError",
    "RateLimitError",
    "VoyageClient",
    "OpenAIClient",
    "MockEmbeddingClient",
    "create_embedding_client",
    # Models
    "EmbeddingProvider",
    "EmbeddingConfig",
    "EmbeddingResult",
    "EmbeddingBatchResult",
    "VOYAGE_CODE_CONFIG",
    "OPENAI_CONFIG",
    # Index
    "FileEmbeddingIndex",
    "VectorStoreConfig",
    "VectorStoreError",
    "point_id_for",
]
