"""
Hybrid Recall.

Semantic retrieval and backend routing for personal knowledge notes.

This package provides:
- On-device text embeddings with a bounded, case-insensitive cache
- An in-memory vector index with similarity search and greedy clustering
- A routing engine choosing local, remote or disabled execution paths
- A search orchestrator that merges local and remote results into ranked,
  explained output
- Incremental index maintenance that tolerates per-node failures
"""

from __future__ import annotations

import logging

__version__: str = "0.4.0"
# Rebuild the module docstring to embed the current version.
__doc__ = f"Hybrid Recall v{__version__}.\n\n" + __doc__.split("\n", 2)[2]

# Configure default logging (no handlers by default for library use)
logging.getLogger(__name__).addHandler(logging.NullHandler())

from hybrid_recall.core.embedding import EmbeddingService  # noqa: E402
from hybrid_recall.core.maintenance import IndexMaintainer  # noqa: E402
from hybrid_recall.core.vector_index import LocalVectorIndex, cosine_similarity  # noqa: E402
from hybrid_recall.engine import RetrievalEngine  # noqa: E402
from hybrid_recall.router import BackendRouter, decide  # noqa: E402
from hybrid_recall.search import SearchOrchestrator  # noqa: E402
from hybrid_recall.settings import UnifiedSettings, get_settings  # noqa: E402

__all__ = [
    "BackendRouter",
    "EmbeddingService",
    "IndexMaintainer",
    "LocalVectorIndex",
    "RetrievalEngine",
    "SearchOrchestrator",
    "UnifiedSettings",
    "__version__",
    "cosine_similarity",
    "decide",
    "get_settings",
]
