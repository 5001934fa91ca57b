"""Protocol interfaces for the collaborators the retrieval core consumes."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from hybrid_recall.models import NetworkState, NodeRecord, SubscriptionTier, TextEmbedding

# Feature flag names understood by the routing and search layers.
FLAG_BYOK = "enable_byok"
FLAG_CLOUD_PROXY = "use_cloud_proxy"
FLAG_MULTI_MODAL = "multi_modal_search"


@runtime_checkable
class EmbeddingModel(Protocol):
    """
    Read-only handle to an embedding model.

    The handle is loaded once and shared; implementations must not mutate
    state after construction so concurrent worker threads can call it.
    """

    @property
    def version(self) -> str:
        """Identifier stamped on every vector this model produces."""

    @property
    def dimension(self) -> int:
        """Length of the vectors this model produces."""

    def embed_text(self, text: str) -> Sequence[float] | None:
        """Embed the whole string, or return ``None`` if the model cannot."""

    def embed_token(self, token: str) -> Sequence[float] | None:
        """Embed a single token, or return ``None`` if it is unknown."""


@runtime_checkable
class NodeStore(Protocol):
    """Persistence collaborator owning node content."""

    async def get_node(self, node_id: str) -> NodeRecord | None:
        """Return the node or ``None`` when it no longer exists."""

    async def list_unembedded(self) -> list[str]:
        """Return ids of nodes without an embedding for the current model."""

    async def mark_embedded(self, node_id: str, model_version: str) -> None:
        """Record that ``node_id`` was embedded with ``model_version``."""


@runtime_checkable
class QuotaLedger(Protocol):
    """Subscription credit ledger; consulted, never reimplemented here."""

    async def remaining(self) -> int:
        """Return the remaining remote-call allowance."""

    async def consume(self, amount: int) -> bool:
        """Charge ``amount`` units; ``False`` means insufficient credits."""


@runtime_checkable
class RemoteVectorService(Protocol):
    """Opaque cloud-hosted vector index."""

    async def query(self, embedding: TextEmbedding, top_k: int) -> list[tuple[str, float]]:
        """Return up to ``top_k`` ``(node_id, raw_similarity)`` pairs, unranked."""

    async def upsert(self, node_id: str, embedding: TextEmbedding) -> None:
        """Store or replace the vector for ``node_id``."""


@runtime_checkable
class FeatureFlags(Protocol):
    def is_enabled(self, flag: str) -> bool:
        """Return whether the runtime switch ``flag`` is on."""


@runtime_checkable
class NetworkMonitor(Protocol):
    def current_state(self) -> NetworkState:
        """Return the last observed connectivity state."""


@runtime_checkable
class SubscriptionStatus(Protocol):
    def current_tier(self) -> SubscriptionTier:
        """Return the user's active subscription tier."""


@runtime_checkable
class CredentialStore(Protocol):
    def has_valid_credential(self) -> bool:
        """Return whether the user supplied a usable remote credential."""


__all__ = [
    "FLAG_BYOK",
    "FLAG_CLOUD_PROXY",
    "FLAG_MULTI_MODAL",
    "CredentialStore",
    "EmbeddingModel",
    "FeatureFlags",
    "NetworkMonitor",
    "NodeStore",
    "QuotaLedger",
    "RemoteVectorService",
    "SubscriptionStatus",
]
