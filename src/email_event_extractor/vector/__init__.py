"""Semantic embeddings of event titles and the nearest-neighbour index over them."""

from .embedder import DeterministicEmbedder, OllamaEmbedder, build_embedder
from .index import EmbeddingEntry, EmbeddingIndex

__all__ = [
    "DeterministicEmbedder",
    "EmbeddingEntry",
    "EmbeddingIndex",
    "OllamaEmbedder",
    "build_embedder",
]
