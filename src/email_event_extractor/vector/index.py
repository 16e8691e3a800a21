"""Qdrant-backed nearest-neighbour index over event titles.

Each distinct title is one point. Its payload records which stored events
currently carry that title. An event id lives in at most one entry, and an
entry whose id set becomes empty is deleted.

Entries are immutable: every update returns a new :class:`EmbeddingEntry`
rather than mutating the one a caller holds.

The Qdrant client is blocking, so the public query and update methods run it
in a worker thread with `asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass

import structlog
from qdrant_client import QdrantClient
from qdrant_client.models import Distance, PointIdsList, PointStruct, VectorParams

from email_event_extractor.config import Settings

logger = structlog.get_logger()


def point_id_for_label(label: str) -> str:
    """Return the deterministic Qdrant point id for a title label."""

    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"event-title:{label}"))


@dataclass(frozen=True)
class EmbeddingEntry:
    label: str
    vector: tuple[float, ...]
    event_ids: frozenset[int]


class EmbeddingIndex:
    """Label → vector + event-id metadata, with k-NN queries."""

    def __init__(self, client: QdrantClient, collection_name: str, dimensions: int) -> None:
        self._client = client
        self.collection_name = collection_name
        self.dimensions = dimensions

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmbeddingIndex":
        if settings.qdrant_location:
            client = QdrantClient(location=settings.qdrant_location)
        else:
            client = QdrantClient(host=settings.qdrant_host, port=settings.qdrant_port)
        index = cls(client, settings.qdrant_collection, settings.embedding_dimensions)
        index.ensure_collection()
        return index

    def ensure_collection(self) -> None:
        names = [c.name for c in self._client.get_collections().collections]
        if self.collection_name in names:
            return
        self._client.create_collection(
            collection_name=self.collection_name,
            vectors_config=VectorParams(size=self.dimensions, distance=Distance.COSINE),
        )
        logger.info("embedding_collection_created", collection=self.collection_name, size=self.dimensions)

    async def get(self, label: str) -> EmbeddingEntry | None:
        return await asyncio.to_thread(self._get_sync, label)

    async def upsert(self, label: str, vector: list[float] | tuple[float, ...], event_ids) -> EmbeddingEntry:
        return await asyncio.to_thread(self._upsert_sync, label, vector, event_ids)

    async def delete(self, label: str) -> None:
        await asyncio.to_thread(self._delete_sync, label)

    async def nearest_neighbors(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        """Return up to ``k`` (label, cosine similarity) pairs, most similar first."""
        return await asyncio.to_thread(self._nearest_neighbors_sync, vector, k)

    async def attach(self, label: str, vector: list[float], event_id: int) -> EmbeddingEntry:
        """Associate ``event_id`` with ``label``, keeping any ids already there."""
        return await asyncio.to_thread(self._attach_sync, label, vector, event_id)

    async def detach(self, label: str, event_id: int) -> EmbeddingEntry | None:
        """Remove ``event_id`` from ``label``; drop the entry once it is empty.

        Returns the remaining entry, or None if there is none.
        """
        return await asyncio.to_thread(self._detach_sync, label, event_id)

    # Synchronous implementations

    def _get_sync(self, label: str) -> EmbeddingEntry | None:
        records = self._client.retrieve(
            collection_name=self.collection_name,
            ids=[point_id_for_label(label)],
            with_payload=True,
            with_vectors=True,
        )
        if not records:
            return None
        record = records[0]
        payload = record.payload or {}
        vector = record.vector
        if isinstance(vector, dict):
            # Named vectors: this collection only ever has one.
            vector = next(iter(vector.values()), [])
        return EmbeddingEntry(
            label=str(payload.get("label", label)),
            vector=tuple(float(x) for x in (vector or [])),
            event_ids=frozenset(int(x) for x in payload.get("event_ids", [])),
        )

    def _upsert_sync(self, label: str, vector: list[float] | tuple[float, ...], event_ids) -> EmbeddingEntry:
        entry = EmbeddingEntry(
            label=label,
            vector=tuple(float(x) for x in vector),
            event_ids=frozenset(int(x) for x in event_ids),
        )
        self._client.upsert(
            collection_name=self.collection_name,
            points=[
                PointStruct(
                    id=point_id_for_label(label),
                    vector=list(entry.vector),
                    payload={"label": label, "event_ids": sorted(entry.event_ids)},
                )
            ],
        )
        return entry

    def _delete_sync(self, label: str) -> None:
        self._client.delete(
            collection_name=self.collection_name,
            points_selector=PointIdsList(points=[point_id_for_label(label)]),
        )

    def _nearest_neighbors_sync(self, vector: list[float], k: int) -> list[tuple[str, float]]:
        response = self._client.query_points(
            collection_name=self.collection_name,
            query=list(vector),
            limit=k,
            with_payload=True,
        )
        return [(str((p.payload or {}).get("label", "")), float(p.score)) for p in response.points]

    def _attach_sync(self, label: str, vector: list[float], event_id: int) -> EmbeddingEntry:
        current = self._get_sync(label)
        ids = current.event_ids if current is not None else frozenset()
        return self._upsert_sync(label, vector, ids | {event_id})

    def _detach_sync(self, label: str, event_id: int) -> EmbeddingEntry | None:
        current = self._get_sync(label)
        if current is None:
            return None
        remaining = current.event_ids - {event_id}
        if not remaining:
            self._delete_sync(label)
            return None
        if remaining == current.event_ids:
            return current
        return self._upsert_sync(label, current.vector, remaining)
