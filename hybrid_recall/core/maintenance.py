"""
maintenance.py - keep the vector indexes in step with the node store.

Nodes are embedded in fixed-size batches. A node that fails at any stage is
logged and left unmarked so the next pass retries it; one bad node never
aborts its batch or the pass.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable

from hybrid_recall.core.embedding import EmbeddingService
from hybrid_recall.core.interfaces import NodeStore, RemoteVectorService
from hybrid_recall.core.vector_index import LocalVectorIndex
from hybrid_recall.models import IndexingReport, NodeRecord, SearchMetrics
from hybrid_recall.settings import UnifiedSettings
from hybrid_recall.utils.exceptions import ModelUnavailable
from hybrid_recall.utils.metrics import INDEXING_FAILURES_TOTAL, LAT_INDEXING, measure_time_async

log = logging.getLogger(__name__)


class IndexMaintainer:
    """Embeds pending nodes into the local index and, optionally, the remote one."""

    def __init__(
        self,
        embedder: EmbeddingService,
        index: LocalVectorIndex,
        node_store: NodeStore,
        remote: RemoteVectorService | None = None,
        settings: UnifiedSettings | None = None,
        metrics: SearchMetrics | None = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.node_store = node_store
        self.remote = remote
        self.settings = settings or embedder.settings
        self.metrics = metrics

    @measure_time_async(LAT_INDEXING)
    async def ensure_indexed(self, nodes: Iterable[NodeRecord]) -> IndexingReport:
        """Embed and index every node not yet embedded with the current model or missing from the index."""
        report = IndexingReport()
        pending = list(nodes)
        if not pending:
            return report
        try:
            model = await self.embedder.load()
        except ModelUnavailable as exc:
            log.warning("embedding model unavailable, %d nodes left pending: %s", len(pending), exc)
            INDEXING_FAILURES_TOTAL.labels(stage="model").inc(len(pending))
            report.failed.extend(n.id for n in pending)
            return report

        todo: list[NodeRecord] = []
        for node in pending:
            # A marked node still needs an upsert when the index was rebuilt empty.
            if node.embedding_version == model.version and node.id in self.index:
                report.skipped.append(node.id)
            else:
                todo.append(node)

        size = self.settings.maintenance.batch_size
        for start in range(0, len(todo), size):
            batch = todo[start : start + size]
            outcomes = await asyncio.gather(*(self._index_one(n) for n in batch))
            for node, ok in zip(batch, outcomes, strict=True):
                (report.indexed if ok else report.failed).append(node.id)

        if self.metrics is not None:
            self.metrics.embeddings_generated += len(report.indexed)
            self.metrics.total_indexed_nodes = len(self.index)
        log.info(
            "maintenance pass: %d indexed, %d skipped, %d failed",
            len(report.indexed),
            len(report.skipped),
            len(report.failed),
        )
        return report

    async def reindex_pending(self) -> IndexingReport:
        """Run :meth:`ensure_indexed` over the nodes the store reports as unembedded."""
        ids = await self.node_store.list_unembedded()
        nodes = await asyncio.gather(*(self.node_store.get_node(i) for i in ids))
        return await self.ensure_indexed(n for n in nodes if n is not None)

    async def _index_one(self, node: NodeRecord) -> bool:
        stage = "embed"
        try:
            embedding = await self.embedder.embed(node.content)
            stage = "local"
            await self.index.upsert(node.id, embedding)
            if self.remote is not None and self.settings.maintenance.push_to_remote:
                stage = "remote"
                await asyncio.wait_for(
                    self.remote.upsert(node.id, embedding),
                    self.settings.search.remote_timeout_seconds,
                )
            stage = "mark"
            await self.node_store.mark_embedded(node.id, embedding.model_version)
        except Exception as exc:  # noqa: BLE001 - isolate per-node failures
            log.warning("indexing node %s failed at %s: %s", node.id, stage, exc)
            INDEXING_FAILURES_TOTAL.labels(stage=stage).inc()
            return False
        return True


__all__ = ["IndexMaintainer"]
