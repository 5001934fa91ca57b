"""Value types shared by the retrieval and routing layers."""

from __future__ import annotations

import datetime as dt
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "EmotionalTag",
    "IndexedVector",
    "IndexingReport",
    "NetworkState",
    "NodeRecord",
    "NodeType",
    "RoutingContext",
    "RoutingDecision",
    "RoutingMode",
    "SearchFilters",
    "SearchHistoryEntry",
    "SearchMetrics",
    "SearchMode",
    "SearchOutcome",
    "SearchResult",
    "SubscriptionTier",
    "TaskDescriptor",
    "TaskKind",
    "TextEmbedding",
]


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class RoutingMode(str, Enum):
    LOCAL = "local"
    REMOTE = "remote"
    DISABLED = "disabled"


class NetworkState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"


class SubscriptionTier(str, Enum):
    """Subscription tiers ordered from cheapest to most capable."""

    FREE = "free"
    EXPLORER = "explorer"
    ADVANCED = "advanced"
    PROFESSIONAL = "professional"

    @property
    def rank(self) -> int:
        return _TIER_ORDER.index(self)

    def at_least(self, other: SubscriptionTier) -> bool:
        return self.rank >= other.rank


_TIER_ORDER = list(SubscriptionTier)


class TaskKind(str, Enum):
    """
    Closed set of AI-capable operations.

    Each member carries the inputs the routing policy needs: whether the task
    is high-complexity and whether an on-device path exists for it.
    """

    SEARCH = ("search", False, True)
    MULTI_MODAL_SEARCH = ("multi_modal_search", False, True)
    SIMILAR_NODES = ("similar_nodes", False, True)
    ANALYSIS = ("analysis", False, True)
    ASSOCIATIONS = ("associations", False, True)
    EMOTIONAL_ANALYSIS = ("emotional_analysis", False, True)
    EMBEDDING = ("embedding", False, True)
    INSIGHT_GENERATION = ("insight_generation", True, True)
    SYNTHESIS = ("synthesis", True, False)

    high_complexity: bool
    has_local_path: bool

    def __new__(cls, value: str, high_complexity: bool, has_local_path: bool) -> TaskKind:
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.high_complexity = high_complexity
        obj.has_local_path = has_local_path
        return obj


class SearchMode(str, Enum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"
    MULTI_MODAL = "multi_modal"


class NodeType(str, Enum):
    THOUGHT = "thought"
    INSIGHT = "insight"
    QUESTION = "question"
    CONCLUSION = "conclusion"
    CONTRADICTION = "contradiction"
    STRUCTURE = "structure"


class EmotionalTag(str, Enum):
    EXCITED = "excited"
    CALM = "calm"
    CONFUSED = "confused"
    INSPIRED = "inspired"
    FRUSTRATED = "frustrated"
    CURIOUS = "curious"
    CONFIDENT = "confident"
    UNCERTAIN = "uncertain"


# ---------------------------------------------------------------------------
# Embeddings & index entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True, eq=False)
class TextEmbedding:
    """A fixed-length vector tagged with the model version that produced it."""

    vector: NDArray[np.float32]
    model_version: str

    def __post_init__(self) -> None:
        vec = np.asarray(self.vector, dtype=np.float32).reshape(-1)
        vec.setflags(write=False)
        object.__setattr__(self, "vector", vec)

    @property
    def dimension(self) -> int:
        return int(self.vector.shape[0])

    def compatible_with(self, other: TextEmbedding) -> bool:
        return self.dimension == other.dimension and self.model_version == other.model_version


@dataclass(frozen=True, eq=False)
class IndexedVector:
    node_id: str
    embedding: TextEmbedding
    indexed_at: float
    # Monotonic insertion sequence; breaks ties between equal timestamps.
    sequence: int = 0


@dataclass
class NodeRecord:
    """Transient copy of a node as returned by the node store."""

    id: str
    content: str
    created_at: dt.datetime
    emotional_tags: tuple[EmotionalTag, ...] = ()
    node_type: NodeType = NodeType.THOUGHT
    embedding_version: str | None = None

    @property
    def has_emotional_marker(self) -> bool:
        return bool(self.emotional_tags)


@dataclass
class IndexingReport:
    indexed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskDescriptor:
    kind: TaskKind
    item_count: int = 0


@dataclass(frozen=True)
class RoutingContext:
    """Snapshot of the environment a routing decision is made against."""

    network_state: NetworkState
    subscription_tier: SubscriptionTier
    remaining_quota: int
    has_user_credential: bool = False
    byok_enabled: bool = False
    cloud_proxy_enabled: bool = True
    # False when no remote service is wired in; remote paths are then never chosen.
    remote_available: bool = True


@dataclass(frozen=True)
class RoutingDecision:
    mode: RoutingMode
    reason: str
    # True when the remote call runs on the user's own credential.
    uses_user_credential: bool = False


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------


def _as_utc(value: dt.datetime) -> dt.datetime:
    # Naive datetimes are taken to be UTC.
    return value.replace(tzinfo=dt.timezone.utc) if value.tzinfo is None else value


@dataclass(frozen=True)
class SearchFilters:
    text: str | None = None
    emotional_tag: EmotionalTag | None = None
    time_range: tuple[dt.datetime, dt.datetime] | None = None
    node_types: frozenset[NodeType] | None = None

    def matches(self, node: NodeRecord) -> bool:
        if self.emotional_tag is not None and self.emotional_tag not in node.emotional_tags:
            return False
        if self.time_range is not None:
            start, end = self.time_range
            if not _as_utc(start) <= _as_utc(node.created_at) <= _as_utc(end):
                return False
        return not (self.node_types is not None and node.node_type not in self.node_types)


@dataclass
class SearchResult:
    node_id: str
    raw_similarity: float
    relevance_score: float
    content: str = ""
    highlighted_snippet: str = ""
    highlight: tuple[int, int] | None = None
    context_snippet: str = ""
    explanation: str = ""
    related_node_ids: list[str] = field(default_factory=list)
    created_at: dt.datetime | None = None
    node_type: NodeType = NodeType.THOUGHT
    emotional_tags: tuple[EmotionalTag, ...] = ()


@dataclass
class SearchOutcome:
    """
    Results plus the path that actually produced them.

    ``attempted_mode`` is what routing chose; ``mode`` is what ran. They
    differ when a remote failure fell back to the local index.
    """

    results: list[SearchResult]
    mode: RoutingMode
    attempted_mode: RoutingMode
    reason: str = ""
    degraded: bool = False
    superseded: bool = False

    @property
    def node_ids(self) -> list[str]:
        return [r.node_id for r in self.results]


@dataclass(frozen=True)
class SearchHistoryEntry:
    query: str
    timestamp: float
    result_count: int
    search_mode: SearchMode
    mode: RoutingMode


@dataclass
class SearchMetrics:
    total_searches: int = 0
    remote_searches: int = 0
    fallbacks: int = 0
    embeddings_generated: int = 0
    total_indexed_nodes: int = 0
    average_result_count: float = 0.0
    popular_queries: Counter[str] = field(default_factory=Counter)

    def record_search(self, query: str, result_count: int) -> None:
        self.total_searches += 1
        n = self.total_searches
        self.average_result_count = (self.average_result_count * (n - 1) + result_count) / n
        self.popular_queries[query] += 1
