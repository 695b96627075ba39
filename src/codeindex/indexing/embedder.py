"""
Embedding backend abstraction with an OpenAI-compatible implementation.

Provides:
- Abstract base class for embedding backends
- OpenAI / OpenAI-compatible / Ollama backend over the openai client
- Factory from configuration
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog
from openai import AsyncOpenAI

if TYPE_CHECKING:
    from codeindex.config import Config

logger = structlog.get_logger(__name__)

OLLAMA_DEFAULT_API_KEY = "ollama"


class EmbeddingBackend(ABC):
    """Abstract base class for embedding backends."""

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimension."""
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the backend (clients, models, etc.)."""
        pass

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of input texts.

        Returns:
            List of embedding vectors, one per input, in input order.
        """
        pass

    async def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        results = await self.embed_batch([text])
        return results[0]

    async def close(self) -> None:
        """Cleanup resources."""
        pass


class OpenAIEmbeddingBackend(EmbeddingBackend):
    """
    Embedding backend for the OpenAI embeddings API.

    Also serves openai-compatible servers and Ollama, which expose the same
    endpoint under a different base URL.
    """

    def __init__(self, config: "Config") -> None:
        """
        Initialize the backend.

        Args:
            config: codeindex configuration.
        """
        from codeindex.config import EmbedderProvider

        embedding = config.embedding
        self.provider = embedding.provider
        self.model = embedding.model_name
        self.batch_size = embedding.batch_size
        self.timeout = embedding.timeout_seconds
        self.max_retries = embedding.max_retries
        self.base_url = embedding.base_url
        self.api_key = embedding.api_key
        if self.provider == EmbedderProvider.OLLAMA and not self.api_key:
            self.api_key = OLLAMA_DEFAULT_API_KEY

        self._dimension = embedding.dimension
        self._client: Any = None

    @property
    def dimension(self) -> int:
        """Return the embedding dimension."""
        return self._dimension

    async def initialize(self) -> None:
        """Create the API client."""
        if self._client is not None:
            return

        self._client = AsyncOpenAI(
            api_key=self.api_key,
            base_url=self.base_url,
            timeout=self.timeout,
            max_retries=self.max_retries,
        )

        logger.info(
            "Embedding backend initialized",
            provider=self.provider.value,
            model=self.model,
        )

    async def embed_batch(self, texts: list[str]) -> list[np.ndarray]:
        """Generate embeddings, splitting into requests of batch_size."""
        if not texts:
            return []

        if self._client is None:
            await self.initialize()

        embeddings: list[np.ndarray] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i : i + self.batch_size]

            response = await self._client.embeddings.create(
                input=batch,
                model=self.model,
            )

            items = sorted(response.data, key=lambda item: item.index)
            if len(items) != len(batch):
                raise RuntimeError(
                    f"Embedding provider returned {len(items)} vectors for {len(batch)} inputs"
                )

            for item in items:
                embeddings.append(np.array(item.embedding, dtype=np.float32))

        return embeddings

    async def close(self) -> None:
        """Close the API client."""
        if self._client is not None:
            await self._client.close()
            self._client = None


def create_embedder(config: "Config") -> EmbeddingBackend:
    """
    Create an embedding backend based on configuration.

    Args:
        config: codeindex configuration.

    Returns:
        Configured EmbeddingBackend instance.
    """
    return OpenAIEmbeddingBackend(config)
