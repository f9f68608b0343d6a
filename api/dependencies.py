"""Dependency injection setup for the Strata API.

This module builds the record store, the collaborator clients and the
ingestion pipeline once at startup and provides FastAPI dependency
functions for injecting them into route handlers.
"""

from collections.abc import AsyncGenerator
from typing import Annotated

import structlog
from fastapi import Depends

from core.embeddings import (
    OPENAI_CONFIG,
    VOYAGE_CODE_CONFIG,
    EmbeddingConfig,
    EmbeddingProvider,
    FileEmbeddingIndex,
    VectorStoreConfig,
    create_embedding_client,
)
from core.ingestion.collaborators import Embedder
from core.ingestion.pipeline import IngestionPipeline
from core.llm import ClaudeClient, CodeSummarizer, LLMClient, LLMConfig, MockClaudeClient
from core.store import InMemoryRecordStore, RecordStore
from core.store.connection import GraphConnection
from core.store.graph import GraphRecordStore
from integrations.github import (
    GitHubClient,
    GitHubClientConfig,
    GitHubRepoLoader,
    WebhookProcessor,
)

from .config import Settings, get_settings

logger = structlog.get_logger(__name__)

# Type aliases for dependency injection
SettingsDep = Annotated[Settings, Depends(get_settings)]


# Global instances for connection management
_graph_connection: GraphConnection | None = None
_record_store: RecordStore | None = None
_llm_client: LLMClient | None = None
_embedder: Embedder | None = None
_github_client: GitHubClient | None = None
_ingestion_pipeline: IngestionPipeline | None = None
_webhook_processor: WebhookProcessor | None = None


def _build_llm_client(settings: Settings) -> LLMClient:
    if not settings.anthropic_api_key:
        logger.warning("Anthropic API key not configured, using mock summaries")
        return MockClaudeClient()
    return ClaudeClient(settings.anthropic_api_key, LLMConfig(model=settings.llm_model))


def _embedding_config(settings: Settings) -> tuple[EmbeddingConfig, str]:
    provider = settings.embedding_provider
    api_key = {
        EmbeddingProvider.VOYAGE: settings.voyage_api_key,
        EmbeddingProvider.OPENAI: settings.openai_api_key,
    }.get(provider)
    if provider == EmbeddingProvider.OPENAI and api_key:
        return OPENAI_CONFIG, api_key
    if provider == EmbeddingProvider.VOYAGE and api_key:
        return VOYAGE_CODE_CONFIG, api_key
    if provider != EmbeddingProvider.MOCK:
        logger.warning("Embedding API key not configured, using mock embeddings")
    return EmbeddingConfig(provider=EmbeddingProvider.MOCK, model="mock"), ""


async def _build_record_store(settings: Settings, vector_size: int) -> RecordStore:
    global _graph_connection

    if settings.store_backend == "memory":
        return InMemoryRecordStore()

    _graph_connection = GraphConnection(
        uri=settings.neo4j_uri,
        user=settings.neo4j_user,
        password=settings.neo4j_password,
        database=settings.neo4j_database,
    )
    await _graph_connection.connect()
    await _graph_connection.ensure_schema()

    index = FileEmbeddingIndex(
        VectorStoreConfig(
            host=settings.qdrant_host,
            port=settings.qdrant_port,
            api_key=settings.qdrant_api_key,
            collection_name=settings.qdrant_collection,
            vector_size=vector_size,
        )
    )
    await index.ensure_collection()
    return GraphRecordStore(_graph_connection, index)


async def init_dependencies(settings: Settings) -> None:
    """Initialize global dependencies on application startup.

    Args:
        settings: Application settings instance.
    """
    global _record_store, _llm_client, _embedder, _github_client
    global _ingestion_pipeline, _webhook_processor

    embedding_config, embedding_key = _embedding_config(settings)
    _record_store = await _build_record_store(settings, embedding_config.dimension)
    _llm_client = _build_llm_client(settings)
    _embedder = create_embedding_client(
        embedding_config.provider, embedding_key, embedding_config
    )
    _github_client = GitHubClient(
        GitHubClientConfig(
            access_token=settings.github_token,
            webhook_secret=settings.github_webhook_secret,
        )
    )

    loader = GitHubRepoLoader(_github_client, max_commits=settings.max_commits)
    summarizer = CodeSummarizer(_llm_client)

    _ingestion_pipeline = IngestionPipeline(
        store=_record_store,
        lister=loader,
        file_summarizer=summarizer,
        embedder=_embedder,
        diff_fetcher=loader,
        commit_summarizer=summarizer,
        file_source=loader,
        config=settings.pipeline_config(),
        concurrency=settings.concurrency(),
    )

    _webhook_processor = WebhookProcessor(
        _record_store, _ingestion_pipeline.bus.send, _github_client
    )
    _webhook_processor.register_defaults()

    logger.info("Dependencies initialized", store_backend=settings.store_backend)


async def shutdown_dependencies() -> None:
    """Cleanup dependencies on application shutdown.

    Waits for in-flight pipeline work, then closes clients and stores.
    """
    global _graph_connection, _record_store, _llm_client, _embedder
    global _github_client, _ingestion_pipeline, _webhook_processor

    if _ingestion_pipeline is not None:
        await _ingestion_pipeline.bus.drain()
        _ingestion_pipeline = None

    if _github_client is not None:
        await _github_client.close()
        _github_client = None

    if _llm_client is not None:
        await _llm_client.close()
        _llm_client = None

    close_embedder = getattr(_embedder, "close", None)
    if close_embedder is not None:
        await close_embedder()
    _embedder = None

    # GraphRecordStore.close also closes the connection
    if _record_store is not None:
        await _record_store.close()
        _record_store = None
    _graph_connection = None
    _webhook_processor = None


async def get_graph_connection() -> AsyncGenerator[GraphConnection | None, None]:
    """Get the Neo4j connection, or None for the in-memory backend."""
    yield _graph_connection


async def get_record_store() -> AsyncGenerator[RecordStore, None]:
    """Get the record store.

    Raises:
        RuntimeError: If dependencies have not been initialized.
    """
    if _record_store is None:
        raise RuntimeError(
            "Record store not initialized. Ensure init_dependencies() was called on startup."
        )
    yield _record_store


async def get_ingestion_pipeline() -> AsyncGenerator[IngestionPipeline, None]:
    """Get the ingestion pipeline.

    Raises:
        RuntimeError: If dependencies have not been initialized.
    """
    if _ingestion_pipeline is None:
        raise RuntimeError(
            "Ingestion pipeline not initialized. Ensure init_dependencies() was called on startup."
        )
    yield _ingestion_pipeline


async def get_github_client() -> AsyncGenerator[GitHubClient, None]:
    """Get the GitHub client.

    Raises:
        RuntimeError: If dependencies have not been initialized.
    """
    if _github_client is None:
        raise RuntimeError(
            "GitHub client not initialized. Ensure init_dependencies() was called on startup."
        )
    yield _github_client


async def get_webhook_processor() -> AsyncGenerator[WebhookProcessor, None]:
    """Get the webhook processor.

    Raises:
        RuntimeError: If dependencies have not been initialized.
    """
    if _webhook_processor is None:
        raise RuntimeError(
            "Webhook processor not initialized. Ensure init_dependencies() was called on startup."
        )
    yield _webhook_processor


# Type aliases for commonly used dependencies
GraphConnectionDep = Annotated[GraphConnection | None, Depends(get_graph_connection)]
RecordStoreDep = Annotated[RecordStore, Depends(get_record_store)]
IngestionPipelineDep = Annotated[IngestionPipeline, Depends(get_ingestion_pipeline)]
GitHubClientDep = Annotated[GitHubClient, Depends(get_github_client)]
WebhookProcessorDep = Annotated[WebhookProcessor, Depends(get_webhook_processor)]
