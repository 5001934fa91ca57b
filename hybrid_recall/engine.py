"""Retrieval engine facade wiring embedding, indexing, routing and search."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from hybrid_recall.core.embedding import EmbeddingService, ModelFactory
from hybrid_recall.core.interfaces import (
    CredentialStore,
    EmbeddingModel,
    FeatureFlags,
    NetworkMonitor,
    NodeStore,
    QuotaLedger,
    RemoteVectorService,
    SubscriptionStatus,
)
from hybrid_recall.core.maintenance import IndexMaintainer
from hybrid_recall.core.vector_index import LocalVectorIndex
from hybrid_recall.models import (
    IndexingReport,
    NodeRecord,
    SearchFilters,
    SearchHistoryEntry,
    SearchMetrics,
    SearchMode,
    SearchOutcome,
    SearchResult,
    TextEmbedding,
)
from hybrid_recall.router import BackendRouter
from hybrid_recall.search import SearchOrchestrator
from hybrid_recall.settings import UnifiedSettings
from hybrid_recall.utils.metrics import get_prometheus_metrics

log = logging.getLogger(__name__)


class RetrievalEngine:
    """
    Single entry point for the application layer.

    Owns the embedding cache and the local vector index; nodes stay owned by
    the node store and are only ever referenced by id.
    """

    def __init__(
        self,
        *,
        node_store: NodeStore,
        ledger: QuotaLedger,
        flags: FeatureFlags,
        network: NetworkMonitor,
        subscription: SubscriptionStatus,
        credentials: CredentialStore | None = None,
        remote: RemoteVectorService | None = None,
        model: EmbeddingModel | None = None,
        model_factory: ModelFactory | None = None,
        settings: UnifiedSettings | None = None,
    ) -> None:
        self.settings = settings or UnifiedSettings()
        self.embedder = EmbeddingService(model, self.settings, model_factory=model_factory)
        self.index = LocalVectorIndex()
        self.router = BackendRouter(
            ledger, flags, network, subscription, credentials, self.settings, remote_available=remote is not None
        )
        self.search_orchestrator = SearchOrchestrator(
            self.embedder,
            self.index,
            self.router,
            node_store,
            remote=remote,
            flags=flags,
            settings=self.settings,
        )
        self.maintainer = IndexMaintainer(
            self.embedder,
            self.index,
            node_store,
            remote=remote,
            settings=self.settings,
            metrics=self.search_orchestrator.metrics,
        )

    # Embedding

    async def embed(self, text: str) -> TextEmbedding:
        return await self.embedder.embed(text)

    async def embed_batch(self, texts: Iterable[str]) -> dict[str, TextEmbedding]:
        return await self.embedder.embed_batch(texts)

    # Search

    async def search(self, query: str, limit: int | None = None) -> list[SearchResult]:
        """Semantic search returning just the ranked results."""
        outcome = await self.search_orchestrator.global_search(query, SearchMode.SEMANTIC, limit)
        return outcome.results

    async def global_search(
        self, query: str, mode: SearchMode = SearchMode.SEMANTIC, limit: int | None = None
    ) -> SearchOutcome:
        return await self.search_orchestrator.global_search(query, mode, limit)

    async def search_latest(
        self, query: str, mode: SearchMode = SearchMode.SEMANTIC, limit: int | None = None
    ) -> SearchOutcome:
        return await self.search_orchestrator.search_latest(query, mode, limit)

    async def multi_modal_search(self, filters: SearchFilters, limit: int | None = None) -> SearchOutcome:
        return await self.search_orchestrator.multi_modal_search(filters, limit)

    async def find_similar_nodes(self, node: NodeRecord | str, limit: int = 5) -> SearchOutcome:
        return await self.search_orchestrator.find_similar_nodes(node, limit)

    async def cluster(self, min_similarity: float = 0.7) -> list[set[str]]:
        return await self.index.cluster(min_similarity)

    async def find_outliers(self, threshold: float = 0.3) -> list[str]:
        return await self.index.find_outliers(threshold)

    @property
    def history(self) -> list[SearchHistoryEntry]:
        return self.search_orchestrator.history

    def clear_history(self) -> None:
        self.search_orchestrator.clear_history()

    @property
    def metrics(self) -> SearchMetrics:
        return self.search_orchestrator.metrics

    # Maintenance

    async def ensure_indexed(self, nodes: Iterable[NodeRecord]) -> IndexingReport:
        return await self.maintainer.ensure_indexed(nodes)

    async def reindex_pending(self) -> IndexingReport:
        return await self.maintainer.reindex_pending()

    async def remove_node(self, node_id: str) -> bool:
        """Forget a deleted node; returns whether it was indexed."""
        removed = await self.index.remove(node_id)
        self.metrics.total_indexed_nodes = len(self.index)
        if removed:
            log.debug("removed node %s from the local index", node_id)
        return removed

    def stats(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "embedding": self.embedder.stats(),
            "index": self.index.stats(),
            "search": self.search_orchestrator.stats(),
            "embeddings_generated": self.metrics.embeddings_generated,
            "total_indexed_nodes": self.metrics.total_indexed_nodes,
            "settings": self.settings.get_config_summary(),
        }
        if self.settings.monitoring.enable_metrics:
            out["prometheus"] = get_prometheus_metrics()
        return out


__all__ = ["RetrievalEngine"]
