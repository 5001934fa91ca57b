"""
hybrid_recall.search.

=====================
Search orchestration across the local index and the remote vector service.

Every search embeds the query on device first, asks the
:class:`~hybrid_recall.router.BackendRouter` where to run, merges local and
remote candidates, re-ranks them and renders highlights. Remote failures fall
back to the local index and the returned :class:`SearchOutcome` says so.

Completed searches go into a bounded history ordered by start time, so a
slow search that finishes after a newer one never displaces it.
"""

from __future__ import annotations

import asyncio
import bisect
import datetime as dt
import itertools
import logging
import time
import uuid
from collections.abc import Callable
from typing import Any

from hybrid_recall.context import SEARCH_ID
from hybrid_recall.core import ranking
from hybrid_recall.core.embedding import EmbeddingService
from hybrid_recall.core.interfaces import FLAG_MULTI_MODAL, FeatureFlags, NodeStore, RemoteVectorService
from hybrid_recall.core.vector_index import LocalVectorIndex
from hybrid_recall.models import (
    NodeRecord,
    RoutingMode,
    SearchFilters,
    SearchHistoryEntry,
    SearchMetrics,
    SearchMode,
    SearchOutcome,
    SearchResult,
    TaskDescriptor,
    TaskKind,
    TextEmbedding,
)
from hybrid_recall.router import BackendRouter
from hybrid_recall.settings import UnifiedSettings
from hybrid_recall.utils.exceptions import (
    EmbeddingError,
    FeatureUnavailable,
    RemoteError,
    RemoteFailure,
    RemoteTimeout,
)
from hybrid_recall.utils.metrics import LAT_SEARCH, REMOTE_FAILURES_TOTAL, SEARCHES_TOTAL

__all__ = ["SearchOrchestrator"]

log = logging.getLogger(__name__)

_BASIS = {
    SearchMode.SEMANTIC: "semantic similarity",
    SearchMode.KEYWORD: "keyword overlap",
    SearchMode.HYBRID: "hybrid score",
    SearchMode.MULTI_MODAL: "semantic similarity",
}


class SearchOrchestrator:
    """Runs searches, keeps history and rolling metrics."""

    def __init__(
        self,
        embedder: EmbeddingService,
        index: LocalVectorIndex,
        router: BackendRouter,
        node_store: NodeStore,
        remote: RemoteVectorService | None = None,
        flags: FeatureFlags | None = None,
        settings: UnifiedSettings | None = None,
    ) -> None:
        self.embedder = embedder
        self.index = index
        self.router = router
        self.node_store = node_store
        self.remote = remote
        self.flags = flags or router.flags
        self.settings = settings or embedder.settings
        self.metrics = SearchMetrics()
        # (sort key, entry); sort key orders newest start first
        self._history: list[tuple[tuple[float, int], SearchHistoryEntry]] = []
        self._seq = itertools.count()
        self._latest: asyncio.Task[SearchOutcome] | None = None

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    @property
    def history(self) -> list[SearchHistoryEntry]:
        """Search history, most recently started first."""
        return [entry for _, entry in self._history]

    def clear_history(self) -> None:
        self._history.clear()

    def _record(
        self,
        query: str,
        search_mode: SearchMode,
        outcome: SearchOutcome,
        started: float,
        seq: int,
    ) -> None:
        entry = SearchHistoryEntry(
            query=query,
            timestamp=started,
            result_count=len(outcome.results),
            search_mode=search_mode,
            mode=outcome.mode,
        )
        bisect.insort(self._history, ((-started, -seq), entry), key=lambda item: item[0])
        del self._history[self.settings.search.history_size :]

        self.metrics.record_search(query, len(outcome.results))
        if outcome.mode is RoutingMode.REMOTE:
            self.metrics.remote_searches += 1
        if outcome.degraded and outcome.attempted_mode is RoutingMode.REMOTE:
            self.metrics.fallbacks += 1
        SEARCHES_TOTAL.labels(search_mode=search_mode.value, mode=outcome.mode.value).inc()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def global_search(
        self, query: str, mode: SearchMode = SearchMode.SEMANTIC, limit: int | None = None
    ) -> SearchOutcome:
        """Search all notes for ``query``."""
        if mode is SearchMode.MULTI_MODAL:
            return await self.multi_modal_search(SearchFilters(text=query), limit=limit)
        if not query.strip():
            return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason="empty query")

        started, seq = time.time(), next(self._seq)
        token = SEARCH_ID.set(uuid.uuid4().hex[:12])
        try:
            with LAT_SEARCH.time():
                outcome = await self._execute(query, mode, limit, TaskKind.SEARCH)
            self._record(query, mode, outcome, started, seq)
            log.debug("search %r (%s) -> %d results via %s", query, mode.value, len(outcome.results), outcome.mode.value)
            return outcome
        finally:
            SEARCH_ID.reset(token)

    async def multi_modal_search(self, filters: SearchFilters, limit: int | None = None) -> SearchOutcome:
        """
        Search with optional text, emotional tag, time range and node types.

        Text drives ranking; the other filters are applied to the ranked
        list and only ever remove results. Requires the multi-modal feature
        flag and a sufficient subscription tier.
        """
        self._check_multi_modal()
        query = filters.text or ""
        started, seq = time.time(), next(self._seq)
        token = SEARCH_ID.set(uuid.uuid4().hex[:12])
        try:
            with LAT_SEARCH.time():
                if query.strip():
                    outcome = await self._execute(
                        query, SearchMode.SEMANTIC, limit, TaskKind.MULTI_MODAL_SEARCH, predicate=filters.matches
                    )
                else:
                    outcome = await self._filter_only(filters, limit)
            self._record(query, SearchMode.MULTI_MODAL, outcome, started, seq)
            return outcome
        finally:
            SEARCH_ID.reset(token)

    async def find_similar_nodes(self, node: NodeRecord | str, limit: int = 5) -> SearchOutcome:
        """Notes most similar to ``node``, never including ``node`` itself."""
        node_id = node if isinstance(node, str) else node.id
        if limit <= 0:
            return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason="limit is zero")

        entry = await self.index.get(node_id)
        try:
            if entry is not None:
                embedding = entry.embedding
            else:
                record = node if isinstance(node, NodeRecord) else await self.node_store.get_node(node_id)
                if record is None:
                    return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason="unknown node")
                embedding = await self.embedder.embed(record.content)
        except EmbeddingError as exc:
            log.warning("cannot embed node %s: %s", node_id, exc)
            return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason=str(exc), degraded=True)

        return await self._run(
            embedding,
            query="",
            search_mode=SearchMode.SEMANTIC,
            limit=limit,
            kind=TaskKind.SIMILAR_NODES,
            pool=limit + 1,
            exclude=node_id,
        )

    async def search_latest(
        self, query: str, mode: SearchMode = SearchMode.SEMANTIC, limit: int | None = None
    ) -> SearchOutcome:
        """
        Like :meth:`global_search`, but a newer call cancels this one.

        The superseded call returns an empty outcome flagged ``superseded``
        and leaves no history entry behind.
        """
        previous = self._latest
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.create_task(self.global_search(query, mode, limit))
        self._latest = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            log.debug("search %r superseded", query)
            return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason="superseded", superseded=True)
        finally:
            if self._latest is task:
                self._latest = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_multi_modal(self) -> None:
        required = self.settings.search.multi_modal_min_tier
        if not self.flags.is_enabled(FLAG_MULTI_MODAL):
            raise FeatureUnavailable("multi-modal search is disabled")
        tier = self.router.subscription.current_tier()
        if not tier.at_least(required):
            raise FeatureUnavailable(f"multi-modal search requires the {required.value} tier, not {tier.value}")

    async def _execute(
        self,
        query: str,
        search_mode: SearchMode,
        limit: int | None,
        kind: TaskKind,
        *,
        predicate: Callable[[NodeRecord], bool] | None = None,
    ) -> SearchOutcome:
        cfg = self.settings.search
        limit = cfg.default_limit if limit is None else limit
        if limit <= 0:
            return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason="limit is zero")
        try:
            embedding = await self.embedder.embed(query)
        except EmbeddingError as exc:
            log.warning("query embedding failed, returning no results: %s", exc)
            return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason=str(exc), degraded=True)

        return await self._run(
            embedding,
            query=query,
            search_mode=search_mode,
            limit=limit,
            kind=kind,
            pool=max(limit, cfg.remote_top_k),
            predicate=predicate,
        )

    async def _run(
        self,
        embedding: TextEmbedding,
        *,
        query: str,
        search_mode: SearchMode,
        limit: int,
        kind: TaskKind,
        pool: int,
        exclude: str | None = None,
        predicate: Callable[[NodeRecord], bool] | None = None,
    ) -> SearchOutcome:
        top_k = min(pool, self.settings.search.remote_top_k)
        task = TaskDescriptor(kind, item_count=min(limit, top_k))

        failure: RemoteError | None = None
        try:
            decision = await self.router.route(task)
            attempted, reason = decision.mode, decision.reason
        except RemoteError as exc:
            attempted, reason, failure = RoutingMode.REMOTE, "", exc

        if attempted is RoutingMode.DISABLED:
            return SearchOutcome([], RoutingMode.DISABLED, RoutingMode.DISABLED, reason=reason)

        remote_pairs: list[tuple[str, float]] = []
        if attempted is RoutingMode.REMOTE and failure is None:
            try:
                remote_pairs = await self._query_remote(embedding, top_k)
            except RemoteError as exc:
                failure = exc

        if failure is not None:
            REMOTE_FAILURES_TOTAL.labels(kind=type(failure).__name__).inc()
            if not kind.has_local_path:
                return SearchOutcome([], RoutingMode.REMOTE, RoutingMode.REMOTE, reason=str(failure), degraded=True)
            log.warning("remote search failed, falling back to local index: %s", failure)
            reason = f"remote unavailable ({failure}); local results only"

        ran = RoutingMode.REMOTE if attempted is RoutingMode.REMOTE and failure is None else RoutingMode.LOCAL
        scores = await self._candidate_scores(embedding, query, search_mode, pool, remote_pairs)
        scores.pop(exclude, None)
        results = await self._rank(scores, query, search_mode, limit, predicate)
        return SearchOutcome(
            results=results,
            mode=ran,
            attempted_mode=attempted,
            reason=reason,
            degraded=failure is not None,
        )

    async def _query_remote(self, embedding: TextEmbedding, top_k: int) -> list[tuple[str, float]]:
        if self.remote is None:
            raise RemoteFailure("no remote vector service configured")
        try:
            return await asyncio.wait_for(
                self.remote.query(embedding, top_k), self.settings.search.remote_timeout_seconds
            )
        except TimeoutError as exc:
            raise RemoteTimeout("remote query timed out") from exc

    async def _candidate_scores(
        self,
        embedding: TextEmbedding,
        query: str,
        search_mode: SearchMode,
        pool: int,
        remote_pairs: list[tuple[str, float]],
    ) -> dict[str, float]:
        """Raw score per candidate node id, before boosts."""
        if search_mode is SearchMode.SEMANTIC:
            local = await self.index.search(embedding, pool)
        else:
            # keyword matching has to look at every note
            local = await self.index.search(embedding, len(self.index))

        similarity: dict[str, float] = {r.node_id: r.raw_similarity for r in local}
        for node_id, score in remote_pairs:
            score = min(1.0, max(0.0, float(score)))
            if score > similarity.get(node_id, -1.0):
                similarity[node_id] = score
        floor = self.settings.search.min_similarity
        if search_mode is SearchMode.SEMANTIC:
            return {k: v for k, v in similarity.items() if v > floor}

        concepts = ranking.extract_concepts(query)
        nodes = await self._fetch(list(similarity))
        scores: dict[str, float] = {}
        for node in nodes:
            overlap = ranking.concept_overlap(concepts, node.content)
            score = overlap if search_mode is SearchMode.KEYWORD else max(similarity[node.id], overlap)
            if score > floor:
                scores[node.id] = score
        return scores

    async def _fetch(self, node_ids: list[str]) -> list[NodeRecord]:
        nodes = await asyncio.gather(*(self.node_store.get_node(i) for i in node_ids))
        return [n for n in nodes if n is not None]

    async def _rank(
        self,
        scores: dict[str, float],
        query: str,
        search_mode: SearchMode,
        limit: int,
        predicate: Callable[[NodeRecord], bool] | None = None,
    ) -> list[SearchResult]:
        nodes = await self._fetch(list(scores))
        now = dt.datetime.now(dt.timezone.utc)
        ranked = ranking.sort_by_relevance(
            self._build_result(node, scores[node.id], query, _BASIS[search_mode], now) for node in nodes
        )
        if predicate is not None:
            keep = {n.id for n in nodes if predicate(n)}
            ranked = [r for r in ranked if r.node_id in keep]
        ranked = ranked[:limit]
        related_limit = self.settings.search.related_limit
        if related_limit:
            for result in ranked:
                related = await self.index.find_similar(result.node_id, related_limit)
                result.related_node_ids = [r.node_id for r in related]
        return ranked

    def _build_result(
        self, node: NodeRecord, raw: float, query: str, basis: str, now: dt.datetime
    ) -> SearchResult:
        cfg = self.settings.ranking
        created = node.created_at
        if created.tzinfo is None:
            recency = ranking.recency_boost(created, now=now.replace(tzinfo=None), horizon_days=cfg.recency_horizon_days)
        else:
            recency = ranking.recency_boost(created, now=now, horizon_days=cfg.recency_horizon_days)
        emotional = node.has_emotional_marker
        snippet, span = ranking.highlight(
            node.content, query, open_tag=cfg.highlight_open, close_tag=cfg.highlight_close
        )
        return SearchResult(
            node_id=node.id,
            raw_similarity=raw,
            relevance_score=ranking.relevance_score(
                raw,
                recency,
                emotional,
                recency_weight=cfg.recency_weight,
                emotional_weight=cfg.emotional_weight,
            ),
            content=node.content,
            highlighted_snippet=snippet,
            highlight=span,
            context_snippet=ranking.context_snippet(node.content, cfg.snippet_length),
            explanation=ranking.explain(raw, recency, emotional, basis=basis),
            created_at=created,
            node_type=node.node_type,
            emotional_tags=node.emotional_tags,
        )

    async def _filter_only(self, filters: SearchFilters, limit: int | None) -> SearchOutcome:
        """Rank every indexed note by boosts alone and keep those matching ``filters``."""
        if filters.emotional_tag is None and filters.time_range is None and filters.node_types is None:
            return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason="no filters given")
        limit = self.settings.search.default_limit if limit is None else limit
        if limit <= 0:
            return SearchOutcome([], RoutingMode.LOCAL, RoutingMode.LOCAL, reason="limit is zero")
        scores = dict.fromkeys(await self.index.ids(), 0.0)
        results = await self._rank(scores, "", SearchMode.MULTI_MODAL, limit, filters.matches)
        return SearchOutcome(results, RoutingMode.LOCAL, RoutingMode.LOCAL, reason="filter-only search runs on device")

    def stats(self) -> dict[str, Any]:
        m = self.metrics
        return {
            "total_searches": m.total_searches,
            "remote_searches": m.remote_searches,
            "fallbacks": m.fallbacks,
            "average_result_count": m.average_result_count,
            "popular_queries": m.popular_queries.most_common(10),
            "history_size": len(self._history),
        }
