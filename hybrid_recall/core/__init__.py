"""Core module for Hybrid Recall."""

from __future__ import annotations

__all__ = [
    "EmbeddingService",
    "IndexMaintainer",
    "LocalVectorIndex",
    "cosine_similarity",
]


def __getattr__(name: str) -> object:
    if name == "EmbeddingService":
        from hybrid_recall.core.embedding import EmbeddingService

        return EmbeddingService
    if name in ("LocalVectorIndex", "cosine_similarity"):
        from hybrid_recall.core.vector_index import LocalVectorIndex, cosine_similarity

        return locals()[name]
    if name == "IndexMaintainer":
        from hybrid_recall.core.maintenance import IndexMaintainer

        return IndexMaintainer
    raise AttributeError(f"module '{__name__}' has no attribute '{name}'")
