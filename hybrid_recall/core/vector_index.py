"""
hybrid_recall.core.vector_index.

=================================
In-memory vector index over a user's notes.

This module provides:
* ``cosine_similarity`` - bounded, zero-safe cosine similarity that refuses
  to compare vectors from different models.
* ``LocalVectorIndex`` - node id -> embedding map with exhaustive similarity
  search, nearest-neighbour lookup, greedy threshold clustering and
  outlier detection.

An index holds "all of a user's notes" (thousands, not millions), so every
query is a linear scan over one stacked matrix. The index is a derived,
disposable structure that can be rebuilt from the node store at any time.

Writes (``upsert``/``remove``) take the writer side of an
:class:`~hybrid_recall.utils.rwlock.AsyncRWLock`; reads take the reader side,
so a search never observes a half-written entry.
"""

from __future__ import annotations

import itertools
import logging
import time
from typing import TYPE_CHECKING, Any

import numpy as np

from hybrid_recall.models import IndexedVector, SearchResult, TextEmbedding
from hybrid_recall.utils.exceptions import EmbeddingVersionMismatch
from hybrid_recall.utils.metrics import INDEX_SIZE
from hybrid_recall.utils.rwlock import AsyncRWLock

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = ["LocalVectorIndex", "cosine_similarity"]

_LOGGER = logging.getLogger(__name__)


def _check_compatible(a: TextEmbedding, b: TextEmbedding) -> None:
    if not a.compatible_with(b):
        raise EmbeddingVersionMismatch(
            f"cannot compare {a.model_version}/{a.dimension} with "
            f"{b.model_version}/{b.dimension}"
        )


def _cosine_many(matrix: NDArray[np.float64], query: NDArray[np.float64]) -> NDArray[np.float64]:
    """Cosine similarity of every row of ``matrix`` against ``query``."""
    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    with np.errstate(divide="ignore", invalid="ignore"):
        sims = np.where(denom > 0, dots / np.where(denom > 0, denom, 1.0), 0.0)
    return np.clip(sims, -1.0, 1.0)


def cosine_similarity(
    a: TextEmbedding | NDArray[np.floating[Any]], b: TextEmbedding | NDArray[np.floating[Any]]
) -> float:
    """
    Return ``dot(a, b) / (|a| * |b|)`` clipped to ``[-1, 1]``.

    Zero-norm vectors have similarity ``0.0``. Embeddings of different
    dimension or model version raise :class:`EmbeddingVersionMismatch`.
    """
    if isinstance(a, TextEmbedding) and isinstance(b, TextEmbedding):
        _check_compatible(a, b)
    va = np.asarray(a.vector if isinstance(a, TextEmbedding) else a, dtype=np.float64).ravel()
    vb = np.asarray(b.vector if isinstance(b, TextEmbedding) else b, dtype=np.float64).ravel()
    if va.shape != vb.shape:
        raise EmbeddingVersionMismatch(f"dimension mismatch: {va.shape[0]} != {vb.shape[0]}")
    return float(_cosine_many(va.reshape(1, -1), vb)[0])


class LocalVectorIndex:
    """Async-safe in-memory map from node id to embedding."""

    def __init__(self, model_version: str | None = None) -> None:
        """
        Create an empty index.

        ``model_version`` pins the index to one model; when omitted, the first
        upserted embedding decides it.
        """
        self._entries: dict[str, IndexedVector] = {}
        self._rwlock = AsyncRWLock()
        self._seq = itertools.count(1)
        self._pinned_version = model_version
        self._model_version = model_version
        self._dimension: int | None = None

    @property
    def model_version(self) -> str | None:
        return self._model_version

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._entries

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _validate(self, embedding: TextEmbedding) -> None:
        if self._model_version is not None and embedding.model_version != self._model_version:
            raise EmbeddingVersionMismatch(
                f"index holds {self._model_version} vectors, got {embedding.model_version}"
            )
        if self._dimension is not None and embedding.dimension != self._dimension:
            raise EmbeddingVersionMismatch(
                f"index holds {self._dimension}-d vectors, got {embedding.dimension}-d"
            )

    async def upsert(self, node_id: str, embedding: TextEmbedding) -> IndexedVector:
        """
        Insert or replace the vector for ``node_id``.

        A replaced node moves to the end of the index order, as if it had
        been indexed for the first time.
        """
        async with self._rwlock.writer_lock():
            self._validate(embedding)
            self._model_version = embedding.model_version
            self._dimension = embedding.dimension
            self._entries.pop(node_id, None)
            entry = IndexedVector(
                node_id=node_id,
                embedding=embedding,
                indexed_at=time.time(),
                sequence=next(self._seq),
            )
            self._entries[node_id] = entry
            INDEX_SIZE.set(len(self._entries))
        return entry

    async def remove(self, node_id: str) -> bool:
        """Drop ``node_id``; return whether it was present."""
        async with self._rwlock.writer_lock():
            removed = self._entries.pop(node_id, None) is not None
            INDEX_SIZE.set(len(self._entries))
        return removed

    async def clear(self) -> None:
        async with self._rwlock.writer_lock():
            self._entries.clear()
            self._dimension = None
            self._model_version = self._pinned_version
            INDEX_SIZE.set(0)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, node_id: str) -> IndexedVector | None:
        async with self._rwlock.reader_lock():
            return self._entries.get(node_id)

    async def ids(self) -> list[str]:
        """Return node ids in index order."""
        async with self._rwlock.reader_lock():
            return list(self._entries)

    def _scan(
        self, query: TextEmbedding, *, exclude: str | None = None
    ) -> list[tuple[IndexedVector, float]]:
        """Score every entry against ``query``; caller holds the reader lock."""
        entries = [e for e in self._entries.values() if e.node_id != exclude]
        if not entries:
            return []
        _check_compatible(query, entries[0].embedding)
        matrix = np.vstack([e.embedding.vector for e in entries]).astype(np.float64)
        sims = _cosine_many(matrix, query.vector.astype(np.float64))
        scored = list(zip(entries, (float(s) for s in sims), strict=True))
        # Highest similarity first; ties go to the most recently indexed.
        scored.sort(key=lambda pair: (-pair[1], -pair[0].sequence))
        return scored

    @staticmethod
    def _to_results(scored: list[tuple[IndexedVector, float]]) -> list[SearchResult]:
        results = []
        for entry, sim in scored:
            raw = max(0.0, sim)
            results.append(SearchResult(node_id=entry.node_id, raw_similarity=raw, relevance_score=raw))
        return results

    async def search(self, query: TextEmbedding, limit: int = 10) -> list[SearchResult]:
        """Return the ``limit`` most similar nodes, by similarity only."""
        if limit <= 0:
            return []
        async with self._rwlock.reader_lock():
            scored = self._scan(query)
        return self._to_results(scored[:limit])

    async def find_similar(self, node_id: str, limit: int = 5) -> list[SearchResult]:
        """Nearest neighbours of an indexed node, never including the node itself."""
        if limit <= 0:
            return []
        async with self._rwlock.reader_lock():
            entry = self._entries.get(node_id)
            if entry is None:
                return []
            scored = self._scan(entry.embedding, exclude=node_id)
        return self._to_results(scored[:limit])

    async def cluster(self, min_similarity: float = 0.7) -> list[set[str]]:
        """
        Greedy single-pass threshold clustering.

        Walks nodes in index order. Each node not yet assigned seeds a new
        cluster that takes every other unassigned node whose similarity to
        the seed is at least ``min_similarity``. Singletons are dropped.

        The result depends on index order and is not a globally optimal
        partition: a node joins the first seed it is close enough to, even if
        a later seed would be closer.
        """
        async with self._rwlock.reader_lock():
            entries = list(self._entries.values())
        if len(entries) < 2:
            return []
        matrix = np.vstack([e.embedding.vector for e in entries]).astype(np.float64)
        assigned = np.zeros(len(entries), dtype=bool)
        clusters: list[set[str]] = []
        for i, seed in enumerate(entries):
            if assigned[i]:
                continue
            assigned[i] = True
            sims = _cosine_many(matrix, matrix[i])
            members = np.flatnonzero((sims >= min_similarity) & ~assigned)
            if members.size == 0:
                continue
            assigned[members] = True
            clusters.append({seed.node_id, *(entries[j].node_id for j in members)})
        _LOGGER.debug("clustered %d nodes into %d clusters", len(entries), len(clusters))
        return clusters

    async def find_outliers(self, threshold: float = 0.3) -> list[str]:
        """
        Nodes whose nearest neighbour is less similar than ``threshold``.

        A node with no neighbours counts as best similarity 0. Ids come back
        in index order.
        """
        async with self._rwlock.reader_lock():
            entries = list(self._entries.values())
        if not entries:
            return []
        matrix = np.vstack([e.embedding.vector for e in entries]).astype(np.float64)
        outliers: list[str] = []
        for i, entry in enumerate(entries):
            sims = _cosine_many(matrix, matrix[i])
            sims[i] = -np.inf
            best = float(sims.max()) if len(entries) > 1 else 0.0
            if best < threshold:
                outliers.append(entry.node_id)
        return outliers

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "model_version": self._model_version,
            "dimension": self._dimension or 0,
        }
