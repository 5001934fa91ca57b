"""
Hybrid Recall - Prometheus metrics utilities.

Latency histograms share one bucket configuration so dashboards can derive
percentiles with ``histogram_quantile()``. For example, the 95th percentile
search latency over the last five minutes is::

    histogram_quantile(0.95, rate(recall_search_latency_seconds_bucket[5m]))

"""

from __future__ import annotations

import functools
from collections.abc import Callable, Coroutine
from typing import Any, ParamSpec, TypeVar

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest

from hybrid_recall import __version__

# Update module docstring with current version
__doc__ = __doc__.replace("utilities", f"utilities (v{__version__})")

# Buckets in seconds, from a few milliseconds for cache hits up to the
# remote timeout range.
LATENCY_BUCKETS = [0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10]

# Embedding & cache
EMBEDDINGS_GENERATED_TOTAL = Counter(
    "recall_embeddings_generated_total",
    "Embeddings produced by the on-device model",
    ("strategy",),
)
MODEL_INVOCATIONS_TOTAL = Counter(
    "recall_model_invocations_total", "Calls into the embedding model"
)
CACHE_HITS_TOTAL = Counter("recall_cache_hits_total", "Embedding cache hits")
CACHE_MISSES_TOTAL = Counter("recall_cache_misses_total", "Embedding cache misses")
CACHE_HIT_RATE = Gauge("recall_cache_hit_rate", "Embedding cache hit rate")
CACHE_SIZE = Gauge("recall_cache_size", "Entries held by the embedding cache")
LAT_EMBEDDING = Histogram(
    "recall_embedding_latency_seconds", "Embedding generation latency", buckets=LATENCY_BUCKETS
)

# Index
INDEX_SIZE = Gauge("recall_index_size", "Vectors held by the local index")
INDEXING_FAILURES_TOTAL = Counter(
    "recall_indexing_failures_total", "Nodes that failed to index", ("stage",)
)

# Routing & quota
ROUTING_DECISIONS_TOTAL = Counter(
    "recall_routing_decisions_total", "Routing decisions by outcome", ("mode", "task")
)
QUOTA_CONSUMED_TOTAL = Counter("recall_quota_consumed_total", "Quota units charged")

# Search
SEARCHES_TOTAL = Counter(
    "recall_searches_total", "Completed searches", ("search_mode", "mode")
)
REMOTE_FAILURES_TOTAL = Counter(
    "recall_remote_failures_total", "Remote calls that failed", ("kind",)
)
LAT_SEARCH = Histogram(
    "recall_search_latency_seconds", "End-to-end search latency", buckets=LATENCY_BUCKETS
)
LAT_INDEXING = Histogram(
    "recall_indexing_pass_seconds", "Duration of one maintenance pass", buckets=LATENCY_BUCKETS
)

P = ParamSpec("P")
R = TypeVar("R")


def _wrap_sync(metric: Histogram) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator factory for synchronous function timing."""

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(fn)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with metric.time():
                return fn(*args, **kwargs)

        return wrapper

    return decorator


def _wrap_async(
    metric: Histogram,
) -> Callable[[Callable[P, Coroutine[Any, Any, R]]], Callable[P, Coroutine[Any, Any, R]]]:
    """Decorator factory for async function timing."""

    def decorator(fn: Callable[P, Coroutine[Any, Any, R]]) -> Callable[P, Coroutine[Any, Any, R]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            with metric.time():
                return await fn(*args, **kwargs)

        return wrapper

    return decorator


measure_time = _wrap_sync
measure_time_async = _wrap_async


def get_prometheus_metrics() -> str:
    """Return the latest metrics as plaintext (Prometheus exposition format)."""
    return generate_latest(REGISTRY).decode()


__all__ = [
    "CACHE_HITS_TOTAL",
    "CACHE_HIT_RATE",
    "CACHE_MISSES_TOTAL",
    "CACHE_SIZE",
    "EMBEDDINGS_GENERATED_TOTAL",
    "INDEXING_FAILURES_TOTAL",
    "INDEX_SIZE",
    "LATENCY_BUCKETS",
    "LAT_EMBEDDING",
    "LAT_INDEXING",
    "LAT_SEARCH",
    "MODEL_INVOCATIONS_TOTAL",
    "QUOTA_CONSUMED_TOTAL",
    "REMOTE_FAILURES_TOTAL",
    "ROUTING_DECISIONS_TOTAL",
    "SEARCHES_TOTAL",
    "get_prometheus_metrics",
    "measure_time",
    "measure_time_async",
]
