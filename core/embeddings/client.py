"""Embedding clients for file summaries.

This module provides clients for the Voyage AI and OpenAI embedding APIs.
Both implement the pipeline's Embedder contract through ``embed_text``.
"""

import asyncio
import hashlib
import math
from abc import abstractmethod
from typing import Any

import httpx
import structlog

from core.embeddings.models import (
    OPENAI_CONFIG,
    VOYAGE_CODE_CONFIG,
    EmbeddingBatchResult,
    EmbeddingConfig,
    EmbeddingProvider,
    EmbeddingResult,
)
from core.ingestion.collaborators import Embedder

logger = structlog.get_logger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class EmbeddingClientError(Exception):
    """Base exception for embedding client errors."""

    pass


class RateLimitError(EmbeddingClientError):
    """Rate limit exceeded on every attempt."""

    pass


class EmbeddingClient(Embedder):
    """Base class for HTTP embedding providers."""

    API_URL = ""
    PROVIDER = ""

    def __init__(
        self,
        api_key: str,
        config: EmbeddingConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Provider API key.
            config: Embedding configuration.
            transport: Optional httpx transport, used by tests.
        """
        self.api_key = api_key
        self.config = config
        self._client = httpx.AsyncClient(
            timeout=60.0,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )
        self._logger = logger.bind(provider=self.PROVIDER)

    @abstractmethod
    def _payload(self, texts: list[str]) -> dict[str, Any]:
        """Build the request body for a batch."""

    @abstractmethod
    def _vectors(self, data: dict[str, Any]) -> list[list[float]]:
        """Extract vectors from a response body, in input order."""

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingClientError: If embedding fails.
        """
        return (await self.embed(text)).vector

    async def embed(self, text: str) -> EmbeddingResult:
        """Generate embedding for a single text.

        Raises:
            EmbeddingClientError: If embedding fails.
        """
        vectors, tokens = await self._request([text])
        if not vectors:
            raise EmbeddingClientError("Failed to generate embedding")
        return EmbeddingResult(
            text=text, vector=vectors[0], model=self.config.model, token_count=tokens
        )

    async def embed_batch(self, texts: list[str]) -> EmbeddingBatchResult:
        """Generate embeddings for multiple texts.

        A failing API batch marks its texts as failed without aborting the
        remaining batches.
        """
        if not texts:
            return EmbeddingBatchResult(embeddings=[], model=self.config.model)

        embeddings: list[EmbeddingResult] = []
        failed_indices: list[int] = []
        total_tokens = 0

        for batch_start in range(0, len(texts), self.config.batch_size):
            batch_end = min(batch_start + self.config.batch_size, len(texts))
            batch_texts = texts[batch_start:batch_end]

            try:
                vectors, tokens = await self._request(batch_texts)
            except EmbeddingClientError:
                failed_indices.extend(range(batch_start, batch_end))
                self._logger.error(
                    "batch_embedding_failed",
                    batch_start=batch_start,
                    batch_end=batch_end,
                )
                continue

            per_text = tokens // len(vectors) if vectors else 0
            for text, vector in zip(batch_texts, vectors, strict=False):
                embeddings.append(
                    EmbeddingResult(
                        text=text, vector=vector, model=self.config.model, token_count=per_text
                    )
                )
            total_tokens += tokens

        return EmbeddingBatchResult(
            embeddings=embeddings,
            total_tokens=total_tokens,
            model=self.config.model,
            failed_indices=failed_indices,
        )

    async def _request(self, texts: list[str]) -> tuple[list[list[float]], int]:
        """POST one batch with retries.

        Returns:
            Vectors in input order and the reported token usage.

        Raises:
            RateLimitError: If every attempt was rate limited.
            EmbeddingClientError: If the API call fails.
        """
        payload = self._payload(texts)
        last_status: int | None = None

        for attempt in range(self.config.max_retries):
            try:
                response = await self._client.post(self.API_URL, json=payload)
            except httpx.TimeoutException:
                self._logger.warning("timeout", attempt=attempt)
                if attempt == self.config.max_retries - 1:
                    raise EmbeddingClientError(f"{self.PROVIDER} API timeout")
                await asyncio.sleep(2**attempt)
                continue

            if response.status_code in RETRYABLE_STATUS:
                last_status = response.status_code
                wait_time = 2**attempt
                self._logger.warning(
                    "retryable_status",
                    status=response.status_code,
                    attempt=attempt,
                    wait_time=wait_time,
                )
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(wait_time)
                continue

            if response.status_code != 200:
                raise EmbeddingClientError(
                    f"{self.PROVIDER} API error: {response.status_code} - {response.text}"
                )

            data = response.json()
            return self._vectors(data), data.get("usage", {}).get("total_tokens", 0)

        if last_status == 429:
            raise RateLimitError(f"{self.PROVIDER} rate limit exceeded")
        raise EmbeddingClientError("Max retries exceeded")

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


class VoyageClient(EmbeddingClient):
    """Client for Voyage AI code embeddings."""

    API_URL = "https://api.voyageai.com/v1/embeddings"
    PROVIDER = "voyage"

    def __init__(
        self,
        api_key: str,
        config: EmbeddingConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(api_key, config or VOYAGE_CODE_CONFIG, transport)

    def _payload(self, texts: list[str]) -> dict[str, Any]:
        return {"input": texts, "model": self.config.model, "input_type": "document"}

    def _vectors(self, data: dict[str, Any]) -> list[list[float]]:
        return [item.get("embedding", []) for item in data.get("data", [])]


class OpenAIClient(EmbeddingClient):
    """Client for OpenAI text embeddings."""

    API_URL = "https://api.openai.com/v1/embeddings"
    PROVIDER = "openai"

    def __init__(
        self,
        api_key: str,
        config: EmbeddingConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(api_key, config or OPENAI_CONFIG, transport)

    def _payload(self, texts: list[str]) -> dict[str, Any]:
        return {"input": texts, "model": self.config.model}

    def _vectors(self, data: dict[str, Any]) -> list[list[float]]:
        items = sorted(data.get("data", []), key=lambda x: x.get("index", 0))
        return [item.get("embedding", []) for item in items]


def create_embedding_client(
    provider: EmbeddingProvider,
    api_key: str,
    config: EmbeddingConfig | None = None,
) -> Embedder:
    """Create an embedding client for the specified provider.

    Raises:
        ValueError: If provider is not supported.
    """
    if provider == EmbeddingProvider.VOYAGE:
        return VoyageClient(api_key, config)
    elif provider == EmbeddingProvider.OPENAI:
        return OpenAIClient(api_key, config)
    elif provider == EmbeddingProvider.MOCK:
        return MockEmbeddingClient(config.dimension if config else 64)
    else:
        raise ValueError(f"Unsupported provider: {provider}")


class MockEmbeddingClient(Embedder):
    """Deterministic embedder for tests and local runs without an API key.

    The same text always maps to the same unit-length vector.
    """

    def __init__(self, dimension: int = 64) -> None:
        self.dimension = dimension
        self.calls: list[str] = []

    async def embed_text(self, text: str) -> list[float]:
        self.calls.append(text)
        digest = hashlib.sha256(text.encode()).digest()
        raw = [digest[i % len(digest)] / 255.0 - 0.5 for i in range(self.dimension)]
        norm = math.sqrt(sum(v * v for v in raw)) or 1.0
        return [v / norm for v in raw]

    async def close(self) -> None:
        """No-op for mock client."""
        pass
