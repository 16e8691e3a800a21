"""Vectorization / embeddings.

Real embeddings come from Ollama's embeddings API. A deterministic hash-seeded
implementation is kept as an explicit opt-in for development and tests; it is
restartable but NOT semantically meaningful.
"""

from __future__ import annotations

import hashlib
import math
import random

from email_event_extractor.config import Settings
from email_event_extractor.exceptions import ConfigurationError, EmbeddingError
from email_event_extractor.ollama.client import OllamaClient


def _normalize(vec: list[float]) -> list[float]:
    norm = math.sqrt(sum(v * v for v in vec))
    if norm == 0.0:
        return vec
    return [v / norm for v in vec]


class DeterministicEmbedder:
    """Hash-seeded unit vectors: equal texts get equal vectors, nothing more."""

    def __init__(self, dimensions: int = 384) -> None:
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        seed = int.from_bytes(digest[:8], "big", signed=False)

        rng = random.Random(seed)
        # Centered so unrelated titles are not all near-identical under cosine.
        vec = [rng.random() - 0.5 for _ in range(self.dimensions)]
        return _normalize(vec)


class OllamaEmbedder:
    """Embeddings from an Ollama embedding model."""

    def __init__(self, client: OllamaClient, model: str, dimensions: int) -> None:
        self.client = client
        self.model = model
        self.dimensions = dimensions

    async def embed(self, text: str) -> list[float]:
        vec = await self.client.embed(text, model=self.model)
        if len(vec) != self.dimensions:
            raise EmbeddingError(
                f"Embedding size mismatch: got {len(vec)}, expected {self.dimensions}. "
                f"Either use an embedding model with {self.dimensions} dims (default: all-minilm) "
                "or recreate the Qdrant collection with the new dimension."
            )
        return _normalize(vec)


def build_embedder(settings: Settings, client: OllamaClient | None = None):
    """Pick the embedder described by ``settings``."""

    if settings.allow_deterministic_vectors:
        return DeterministicEmbedder(settings.embedding_dimensions)
    if not settings.ollama_host:
        raise ConfigurationError(
            "Embeddings are not configured. Set EVENT_EXTRACTOR_OLLAMA_HOST and ensure an embedding "
            "model is available (e.g. `ollama pull all-minilm`), or set "
            "EVENT_EXTRACTOR_ALLOW_DETERMINISTIC_VECTORS=true."
        )
    return OllamaEmbedder(client or OllamaClient(settings), settings.embedding_model, settings.embedding_dimensions)
