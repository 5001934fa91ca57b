"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import dataclasses
import datetime as dt
import threading
from collections.abc import Sequence

import pytest

from hybrid_recall.core.embedding import EmbeddingService
from hybrid_recall.core.interfaces import FLAG_CLOUD_PROXY, FLAG_MULTI_MODAL
from hybrid_recall.engine import RetrievalEngine
from hybrid_recall.models import EmotionalTag, NetworkState, NodeRecord, NodeType, SubscriptionTier
from hybrid_recall.settings import UnifiedSettings

VOCAB: dict[str, list[float]] = {
    "apple": [1.0, 0.0, 0.0, 0.0],
    "banana": [0.9, 0.1, 0.0, 0.0],
    "fruit": [0.8, 0.2, 0.0, 0.0],
    "car": [0.0, 1.0, 0.0, 0.0],
    "engine": [0.0, 0.9, 0.1, 0.0],
    "music": [0.0, 0.0, 1.0, 0.0],
    "guitar": [0.0, 0.0, 0.95, 0.05],
    "sky": [0.0, 0.0, 0.0, 1.0],
}


class FakeWordModel:
    """
    Deterministic four-dimensional model over a tiny vocabulary.

    Whole-text embedding only succeeds when every word is known and the text
    has at most ``max_words`` words; otherwise callers must fall back to
    averaging token vectors.
    """

    def __init__(self, version: str = "fake-v1", max_words: int = 8) -> None:
        self._version = version
        self.max_words = max_words
        self.text_calls: list[str] = []
        self._lock = threading.Lock()

    @property
    def version(self) -> str:
        return self._version

    @property
    def dimension(self) -> int:
        return 4

    def embed_text(self, text: str) -> Sequence[float] | None:
        with self._lock:
            self.text_calls.append(text)
        words = text.split()
        if len(words) > self.max_words or any(w not in VOCAB for w in words):
            return None
        return [sum(VOCAB[w][i] for w in words) / len(words) for i in range(4)]

    def embed_token(self, token: str) -> Sequence[float] | None:
        return VOCAB.get(token)


class InMemoryNodeStore:
    def __init__(self, nodes: Sequence[NodeRecord] = ()) -> None:
        self.nodes: dict[str, NodeRecord] = {n.id: n for n in nodes}
        self.marked: list[tuple[str, str]] = []
        self.fail_mark: set[str] = set()

    def add(self, *nodes: NodeRecord) -> None:
        for n in nodes:
            self.nodes[n.id] = n

    async def get_node(self, node_id: str) -> NodeRecord | None:
        return self.nodes.get(node_id)

    async def list_unembedded(self) -> list[str]:
        return [n.id for n in self.nodes.values() if n.embedding_version is None]

    async def mark_embedded(self, node_id: str, model_version: str) -> None:
        if node_id in self.fail_mark:
            raise OSError(f"store refused to mark {node_id}")
        self.marked.append((node_id, model_version))
        node = self.nodes.get(node_id)
        if node is not None:
            self.nodes[node_id] = dataclasses.replace(node, embedding_version=model_version)


class FakeLedger:
    def __init__(self, remaining: int = 10, *, allow: bool = True, delay: float = 0.0) -> None:
        self._remaining = remaining
        self.allow = allow
        self.delay = delay
        self.consumed: list[int] = []

    async def remaining(self) -> int:
        return self._remaining

    async def consume(self, amount: int) -> bool:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.consumed.append(amount)
        if not self.allow:
            return False
        self._remaining -= amount
        return True


class FakeRemote:
    def __init__(self, matches: Sequence[tuple[str, float]] = ()) -> None:
        self.matches = list(matches)
        self.error: Exception | None = None
        self.delay = 0.0
        self.queries: list[int] = []
        self.upserts: dict[str, object] = {}

    async def query(self, embedding, top_k: int) -> list[tuple[str, float]]:  # type: ignore[no-untyped-def]
        self.queries.append(top_k)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.matches[:top_k]

    async def upsert(self, node_id: str, embedding) -> None:  # type: ignore[no-untyped-def]
        if self.error is not None:
            raise self.error
        self.upserts[node_id] = embedding


class FakeFlags:
    def __init__(self, *enabled: str) -> None:
        self.enabled = set(enabled)

    def is_enabled(self, flag: str) -> bool:
        return flag in self.enabled


class FakeNetwork:
    def __init__(self, state: NetworkState = NetworkState.ONLINE) -> None:
        self.state = state

    def current_state(self) -> NetworkState:
        return self.state


class FakeSubscription:
    def __init__(self, tier: SubscriptionTier = SubscriptionTier.FREE) -> None:
        self.tier = tier

    def current_tier(self) -> SubscriptionTier:
        return self.tier


class FakeCredentials:
    def __init__(self, valid: bool = False) -> None:
        self.valid = valid

    def has_valid_credential(self) -> bool:
        return self.valid


def make_node(
    node_id: str,
    content: str,
    *,
    days_old: float = 0.0,
    tags: tuple[EmotionalTag, ...] = (),
    node_type: NodeType = NodeType.THOUGHT,
) -> NodeRecord:
    created = dt.datetime.now(dt.timezone.utc) - dt.timedelta(days=days_old)
    return NodeRecord(id=node_id, content=content, created_at=created, emotional_tags=tags, node_type=node_type)


@pytest.fixture
def settings() -> UnifiedSettings:
    return UnifiedSettings.for_testing()


@pytest.fixture
def model() -> FakeWordModel:
    return FakeWordModel()


@pytest.fixture
def embedder(model: FakeWordModel, settings: UnifiedSettings) -> EmbeddingService:
    return EmbeddingService(model, settings)


@pytest.fixture
def node_store() -> InMemoryNodeStore:
    return InMemoryNodeStore()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def flags() -> FakeFlags:
    return FakeFlags(FLAG_CLOUD_PROXY, FLAG_MULTI_MODAL)


@pytest.fixture
def network() -> FakeNetwork:
    return FakeNetwork()


@pytest.fixture
def subscription() -> FakeSubscription:
    return FakeSubscription()


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def engine(
    model: FakeWordModel,
    settings: UnifiedSettings,
    node_store: InMemoryNodeStore,
    ledger: FakeLedger,
    remote: FakeRemote,
    flags: FakeFlags,
    network: FakeNetwork,
    subscription: FakeSubscription,
    credentials: FakeCredentials,
) -> RetrievalEngine:
    return RetrievalEngine(
        node_store=node_store,
        ledger=ledger,
        flags=flags,
        network=network,
        subscription=subscription,
        credentials=credentials,
        remote=remote,
        model=model,
        settings=settings,
    )
