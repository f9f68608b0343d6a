"""Qdrant index for file summary embeddings.

This module provides the FileEmbeddingIndex class, which stores one point
per (project_id, file_name). Point ids are derived deterministically from
the natural key, so an upsert of the same file replaces the previous point
instead of adding a duplicate.
"""

import contextlib
from datetime import datetime
from typing import Any
from uuid import NAMESPACE_URL, uuid5

import structlog
from pydantic import BaseModel, ConfigDict, Field
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import UnexpectedResponse

from core.store.models import FileEmbedding, utcnow

logger = structlog.get_logger(__name__)


class VectorStoreError(Exception):
    """Base exception for vector store errors."""

    pass


class VectorStoreConfig(BaseModel):
    """Configuration for the file embedding index.

    Attributes:
        host: Qdrant host address.
        port: Qdrant port.
        api_key: Optional Qdrant API key.
        collection_name: Name of the collection.
        vector_size: Size of embedding vectors.
        distance: Distance metric for similarity.
    """

    model_config = ConfigDict(frozen=True)

    host: str = Field(default="localhost", description="Qdrant host")
    port: int = Field(default=6333, description="Qdrant port")
    api_key: str | None = Field(default=None, description="Qdrant API key")
    collection_name: str = Field(default="file_embeddings", description="Collection name")
    vector_size: int = Field(default=1024, description="Vector dimension")
    distance: str = Field(default="Cosine", description="Distance metric")


def point_id_for(project_id: str, file_name: str) -> str:
    """Return the deterministic Qdrant point id for a file."""
    return str(uuid5(NAMESPACE_URL, f"{project_id}:{file_name}"))


def _project_filter(project_id: str) -> models.Filter:
    return models.Filter(
        must=[
            models.FieldCondition(
                key="project_id",
                match=models.MatchValue(value=project_id),
            )
        ]
    )


class FileEmbeddingIndex:
    """Qdrant-backed storage for FileEmbedding records."""

    def __init__(
        self,
        config: VectorStoreConfig | None = None,
        client: AsyncQdrantClient | None = None,
    ) -> None:
        """Initialize the index.

        Args:
            config: Index configuration.
            client: Optional pre-configured Qdrant client.
        """
        self.config = config or VectorStoreConfig()
        self._client = client
        self._logger = logger.bind(component="file_embedding_index")

    async def _get_client(self) -> AsyncQdrantClient:
        if self._client is None:
            self._client = AsyncQdrantClient(
                host=self.config.host,
                port=self.config.port,
                api_key=self.config.api_key,
            )
        return self._client

    async def close(self) -> None:
        """Close the Qdrant client."""
        if self._client:
            await self._client.close()
            self._client = None

    async def health_check(self) -> bool:
        """Check if Qdrant is reachable.

        Returns:
            True if healthy, False otherwise.
        """
        try:
            client = await self._get_client()
            await client.get_collections()
            return True
        except Exception as e:
            self._logger.error("health_check_failed", error=str(e))
            return False

    async def ensure_collection(self) -> None:
        """Create the collection and its payload indexes if missing.

        Raises:
            VectorStoreError: If creation fails.
        """
        client = await self._get_client()
        name = self.config.collection_name

        try:
            collections = await client.get_collections()
            if any(c.name == name for c in collections.collections):
                self._logger.info("collection_exists", name=name)
                return

            distance = models.Distance.COSINE
            if self.config.distance.upper() == "EUCLID":
                distance = models.Distance.EUCLID
            elif self.config.distance.upper() == "DOT":
                distance = models.Distance.DOT

            await client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(
                    size=self.config.vector_size,
                    distance=distance,
                ),
            )
            for field in ("project_id", "file_name"):
                with contextlib.suppress(UnexpectedResponse):
                    await client.create_payload_index(
                        collection_name=name,
                        field_name=field,
                        field_schema=models.PayloadSchemaType.KEYWORD,
                    )

            self._logger.info("collection_created", name=name, vector_size=self.config.vector_size)
        except UnexpectedResponse as e:
            raise VectorStoreError(f"Failed to create collection: {e}") from e

    async def upsert(self, record: FileEmbedding) -> FileEmbedding:
        """Create or replace the point for a file.

        Raises:
            VectorStoreError: If the record has no vector or the write fails.
        """
        if not record.embedding:
            raise VectorStoreError(f"No embedding for {record.file_name}")

        stored = record.model_copy(update={"updated_at": utcnow()})
        client = await self._get_client()
        try:
            await client.upsert(
                collection_name=self.config.collection_name,
                points=[
                    models.PointStruct(
                        id=point_id_for(record.project_id, record.file_name),
                        vector=list(record.embedding),
                        payload={
                            "project_id": stored.project_id,
                            "file_name": stored.file_name,
                            "source_code": stored.source_code,
                            "summary": stored.summary,
                            "updated_at": stored.updated_at.isoformat(),
                        },
                    )
                ],
            )
        except UnexpectedResponse as e:
            raise VectorStoreError(f"Failed to upsert {record.file_name}: {e}") from e
        return stored

    async def get(self, project_id: str, file_name: str) -> FileEmbedding | None:
        """Fetch a single file record, or None."""
        client = await self._get_client()
        try:
            points = await client.retrieve(
                collection_name=self.config.collection_name,
                ids=[point_id_for(project_id, file_name)],
                with_payload=True,
                with_vectors=True,
            )
        except UnexpectedResponse as e:
            raise VectorStoreError(f"Failed to retrieve {file_name}: {e}") from e

        if not points:
            return None
        return self._to_record(points[0].payload or {}, points[0].vector)

    async def list_file_names(self, project_id: str) -> set[str]:
        """Return every file name indexed for a project."""
        client = await self._get_client()
        names: set[str] = set()
        offset: Any = None

        try:
            while True:
                points, offset = await client.scroll(
                    collection_name=self.config.collection_name,
                    scroll_filter=_project_filter(project_id),
                    limit=256,
                    offset=offset,
                    with_payload=["file_name"],
                    with_vectors=False,
                )
                names.update(p.payload["file_name"] for p in points if p.payload)
                if offset is None:
                    break
        except UnexpectedResponse as e:
            raise VectorStoreError(f"Failed to list files for {project_id}: {e}") from e

        return names

    async def delete(self, project_id: str, file_name: str) -> bool:
        """Delete the point for a file.

        Returns:
            False if there was no point to delete.
        """
        if await self.get(project_id, file_name) is None:
            return False

        client = await self._get_client()
        try:
            await client.delete(
                collection_name=self.config.collection_name,
                points_selector=models.PointIdsList(points=[point_id_for(project_id, file_name)]),
            )
        except UnexpectedResponse as e:
            raise VectorStoreError(f"Failed to delete {file_name}: {e}") from e

        self._logger.info("file_embedding_deleted", project_id=project_id, file_name=file_name)
        return True

    @staticmethod
    def _to_record(payload: dict[str, Any], vector: Any) -> FileEmbedding:
        updated_at = payload.get("updated_at")
        return FileEmbedding(
            project_id=payload["project_id"],
            file_name=payload["file_name"],
            source_code=payload.get("source_code", ""),
            summary=payload.get("summary", ""),
            embedding=list(vector) if isinstance(vector, list) else [],
            updated_at=datetime.fromisoformat(updated_at) if updated_at else utcnow(),
        )
