"""Tests for the embeddings module.

Tests for the embedding clients and the Qdrant file embedding index.
"""

import json
import math
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from core.embeddings import (
    OPENAI_CONFIG,
    EmbeddingClientError,
    EmbeddingConfig,
    EmbeddingProvider,
    FileEmbeddingIndex,
    MockEmbeddingClient,
    OpenAIClient,
    RateLimitError,
    VectorStoreConfig,
    VectorStoreError,
    VoyageClient,
    create_embedding_client,
    point_id_for,
)
from core.store import FileEmbedding


def _embedding_response(vectors: list[list[float]], tokens: int = 10) -> dict:
    return {
        "data": [{"index": i, "embedding": v} for i, v in enumerate(vectors)],
        "usage": {"total_tokens": tokens},
    }


# =============================================================================
# Client Tests
# =============================================================================


class TestMockEmbeddingClient:
    """Tests for MockEmbeddingClient."""

    @pytest.mark.asyncio
    async def test_deterministic_unit_vectors(self):
        client = MockEmbeddingClient(dimension=16)

        first = await client.embed_text("hello")
        second = await client.embed_text("hello")
        other = await client.embed_text("world")

        assert first == second
        assert first != other
        assert len(first) == 16
        assert math.isclose(sum(v * v for v in first), 1.0, rel_tol=1e-6)


class TestCreateEmbeddingClient:
    """Tests for the client factory."""

    def test_voyage(self):
        assert isinstance(create_embedding_client(EmbeddingProvider.VOYAGE, "k"), VoyageClient)

    def test_openai(self):
        client = create_embedding_client(EmbeddingProvider.OPENAI, "k")
        assert isinstance(client, OpenAIClient)
        assert client.config == OPENAI_CONFIG

    def test_mock_uses_config_dimension(self):
        config = EmbeddingConfig(provider=EmbeddingProvider.MOCK, model="mock", dimension=8)
        client = create_embedding_client(EmbeddingProvider.MOCK, "", config)
        assert isinstance(client, MockEmbeddingClient)
        assert client.dimension == 8


class TestVoyageClient:
    """Tests for VoyageClient against a mocked transport."""

    @pytest.mark.asyncio
    async def test_embed_text(self):
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json=_embedding_response([[0.1, 0.2]]))

        client = VoyageClient("key", transport=httpx.MockTransport(handler))
        vector = await client.embed_text("A file summary")
        await client.close()

        assert vector == [0.1, 0.2]
        assert bodies[0]["input"] == ["A file summary"]
        assert bodies[0]["input_type"] == "document"

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        statuses = iter([503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            status = next(statuses)
            if status != 200:
                return httpx.Response(status)
            return httpx.Response(200, json=_embedding_response([[1.0]]))

        client = VoyageClient("key", transport=httpx.MockTransport(handler))
        with patch("core.embeddings.client.asyncio.sleep", new_callable=AsyncMock):
            assert await client.embed_text("x") == [1.0]

    @pytest.mark.asyncio
    async def test_rate_limited_on_every_attempt(self):
        client = VoyageClient(
            "key", transport=httpx.MockTransport(lambda request: httpx.Response(429))
        )
        with patch("core.embeddings.client.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(RateLimitError):
                await client.embed_text("x")

    @pytest.mark.asyncio
    async def test_empty_response_is_error(self):
        client = VoyageClient(
            "key",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"data": []})
            ),
        )
        with pytest.raises(EmbeddingClientError):
            await client.embed_text("x")


class TestOpenAIClient:
    """Tests for OpenAIClient batching."""

    @pytest.mark.asyncio
    async def test_batch_orders_by_index(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "data": [
                        {"index": 1, "embedding": [2.0]},
                        {"index": 0, "embedding": [1.0]},
                    ],
                    "usage": {"total_tokens": 4},
                },
            )

        client = OpenAIClient("key", transport=httpx.MockTransport(handler))
        result = await client.embed_batch(["a", "b"])

        assert [e.vector for e in result.embeddings] == [[1.0], [2.0]]
        assert result.total_tokens == 4

    @pytest.mark.asyncio
    async def test_failed_batch_recorded(self):
        config = EmbeddingConfig(provider=EmbeddingProvider.OPENAI, model="m", batch_size=1)
        client = OpenAIClient(
            "key",
            config,
            transport=httpx.MockTransport(lambda request: httpx.Response(400, text="bad")),
        )

        result = await client.embed_batch(["a", "b"])

        assert result.embeddings == []
        assert result.failed_indices == [0, 1]


# =============================================================================
# Index Tests
# =============================================================================


@pytest.fixture
def qdrant() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def index(qdrant: AsyncMock) -> FileEmbeddingIndex:
    return FileEmbeddingIndex(VectorStoreConfig(vector_size=3), client=qdrant)


class TestFileEmbeddingIndex:
    """Tests for FileEmbeddingIndex with a mocked Qdrant client."""

    def test_point_id_is_stable(self):
        assert point_id_for("p1", "a.py") == point_id_for("p1", "a.py")
        assert point_id_for("p1", "a.py") != point_id_for("p2", "a.py")

    @pytest.mark.asyncio
    async def test_ensure_collection_creates_when_missing(
        self, index: FileEmbeddingIndex, qdrant: AsyncMock
    ):
        qdrant.get_collections.return_value = SimpleNamespace(collections=[])

        await index.ensure_collection()

        qdrant.create_collection.assert_awaited_once()
        assert qdrant.create_payload_index.await_count == 2

    @pytest.mark.asyncio
    async def test_ensure_collection_existing(self, index: FileEmbeddingIndex, qdrant: AsyncMock):
        qdrant.get_collections.return_value = SimpleNamespace(
            collections=[SimpleNamespace(name="file_embeddings")]
        )

        await index.ensure_collection()

        qdrant.create_collection.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_upsert_uses_natural_key(self, index: FileEmbeddingIndex, qdrant: AsyncMock):
        record = FileEmbedding(
            project_id="p1", file_name="a.py", summary="s", embedding=[0.1, 0.2, 0.3]
        )

        await index.upsert(record)

        point = qdrant.upsert.await_args.kwargs["points"][0]
        assert point.id == point_id_for("p1", "a.py")
        assert point.payload["summary"] == "s"

    @pytest.mark.asyncio
    async def test_upsert_without_vector_rejected(self, index: FileEmbeddingIndex):
        with pytest.raises(VectorStoreError):
            await index.upsert(FileEmbedding(project_id="p1", file_name="a.py"))

    @pytest.mark.asyncio
    async def test_get_round_trips_payload(self, index: FileEmbeddingIndex, qdrant: AsyncMock):
        qdrant.retrieve.return_value = [
            SimpleNamespace(
                payload={
                    "project_id": "p1",
                    "file_name": "a.py",
                    "source_code": "x = 1",
                    "summary": "Sets x",
                    "updated_at": "2024-01-01T00:00:00+00:00",
                },
                vector=[0.1, 0.2, 0.3],
            )
        ]

        record = await index.get("p1", "a.py")

        assert record.summary == "Sets x"
        assert record.embedding == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_list_file_names_scrolls(self, index: FileEmbeddingIndex, qdrant: AsyncMock):
        qdrant.scroll.side_effect = [
            ([SimpleNamespace(payload={"file_name": "a.py"})], "next"),
            ([SimpleNamespace(payload={"file_name": "b.py"})], None),
        ]

        assert await index.list_file_names("p1") == {"a.py", "b.py"}
        assert qdrant.scroll.await_count == 2

    @pytest.mark.asyncio
    async def test_delete_missing_point(self, index: FileEmbeddingIndex, qdrant: AsyncMock):
        qdrant.retrieve.return_value = []

        assert await index.delete("p1", "a.py") is False
        qdrant.delete.assert_not_awaited()
