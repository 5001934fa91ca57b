"""
Re-ranking helpers for search candidates.

Relevance combines the raw similarity with two small boosts::

    relevance = min(1.0, raw + recency_weight * recency + emotional_weight * emotional)

``recency`` decays linearly from 1 for a note created now to 0 at the
recency horizon; ``emotional`` is 1 when the note carries any emotional tag.
The weights are product tuning values and live in ``RankingConfig``.
"""

from __future__ import annotations

import datetime as dt
import re
from collections.abc import Iterable

from hybrid_recall.models import SearchResult

__all__ = [
    "STOP_WORDS",
    "concept_overlap",
    "context_snippet",
    "explain",
    "extract_concepts",
    "highlight",
    "recency_boost",
    "relevance_score",
    "sort_by_relevance",
]

STOP_WORDS = frozenset({"the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for"})


def recency_boost(
    created_at: dt.datetime, *, now: dt.datetime | None = None, horizon_days: int = 365
) -> float:
    """Linear decay from 1.0 (created now) to 0.0 at ``horizon_days`` old."""
    if now is None:
        now = dt.datetime.now(tz=created_at.tzinfo)
    age_days = (now - created_at).total_seconds() / 86_400
    return min(1.0, max(0.0, 1.0 - age_days / horizon_days))


def relevance_score(
    raw: float,
    recency: float,
    emotional: bool,
    *,
    recency_weight: float = 0.1,
    emotional_weight: float = 0.05,
) -> float:
    score = raw + recency_weight * recency + (emotional_weight if emotional else 0.0)
    return min(1.0, max(0.0, score))


def highlight(
    content: str, query: str, *, open_tag: str = "<mark>", close_tag: str = "</mark>"
) -> tuple[str, tuple[int, int] | None]:
    """
    Mark the first case-insensitive literal occurrence of ``query``.

    Returns the rendered snippet and the ``(start, end)`` span in
    ``content``; when the query does not occur literally the content is
    returned untouched with no span.
    """
    needle = query.strip()
    if not needle:
        return content, None
    match = re.search(re.escape(needle), content, flags=re.IGNORECASE)
    if match is None:
        return content, None
    start, end = match.span()
    return f"{content[:start]}{open_tag}{content[start:end]}{close_tag}{content[end:]}", (start, end)


def context_snippet(content: str, length: int = 100) -> str:
    if len(content) <= length:
        return content
    return content[:length] + "..."


def extract_concepts(text: str) -> set[str]:
    """Lower-cased words longer than three characters, minus stop words."""
    return {w for w in text.lower().split() if len(w) > 3 and w not in STOP_WORDS}


def concept_overlap(a: str | set[str], b: str | set[str]) -> float:
    """Jaccard index of the concept sets of ``a`` and ``b``."""
    ca = a if isinstance(a, set) else extract_concepts(a)
    cb = b if isinstance(b, set) else extract_concepts(b)
    union = ca | cb
    if not union:
        return 0.0
    return len(ca & cb) / len(union)


def explain(raw: float, recency: float, emotional: bool, *, basis: str = "semantic similarity") -> str:
    parts = [f"{basis} {raw:.2f}"]
    if recency > 0:
        parts.append(f"recency {recency:.2f}")
    if emotional:
        parts.append("emotional marker")
    return "; ".join(parts)


def sort_by_relevance(results: Iterable[SearchResult]) -> list[SearchResult]:
    # Stable: equal scores keep their candidate order.
    return sorted(results, key=lambda r: r.relevance_score, reverse=True)
