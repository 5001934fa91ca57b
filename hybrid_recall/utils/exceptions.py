"""Error hierarchy for Hybrid Recall.

Every error records the routing mode that was attempted so user-facing
layers can say truthfully whether a degraded result was local-only.
"""

from __future__ import annotations

from hybrid_recall.models import RoutingMode


class RecallError(Exception):
    """Base class for all library errors."""

    default_mode: RoutingMode = RoutingMode.LOCAL

    def __init__(self, message: str = "", *, mode: RoutingMode | None = None) -> None:
        super().__init__(message)
        self.mode = mode or self.default_mode

    def __str__(self) -> str:
        base = super().__str__()
        return f"{base} (mode={self.mode.value})" if base else f"mode={self.mode.value}"


class EmbeddingError(RecallError):
    """Raised when text cannot be turned into an embedding."""


class ModelUnavailable(EmbeddingError):
    """The on-device embedding model could not be loaded."""


class UnembeddableText(EmbeddingError):
    """Empty text, or no token of the text is known to the model."""


class EmbeddingVersionMismatch(RecallError, ValueError):
    """Vectors of different dimension or model version were compared."""


class InsufficientCredits(RecallError):
    """The quota ledger refused to charge a remote call."""

    default_mode = RoutingMode.REMOTE


class FeatureUnavailable(RecallError):
    """The caller's tier or feature flags do not allow the operation."""


class RemoteError(RecallError):
    """The remote vector service or quota ledger failed."""

    default_mode = RoutingMode.REMOTE


class RemoteTimeout(RemoteError):
    """A remote call did not complete within its deadline."""


class RemoteFailure(RemoteError):
    """A remote call returned an error or could not be delivered."""


__all__ = [
    "EmbeddingError",
    "EmbeddingVersionMismatch",
    "FeatureUnavailable",
    "InsufficientCredits",
    "ModelUnavailable",
    "RecallError",
    "RemoteError",
    "RemoteFailure",
    "RemoteTimeout",
    "UnembeddableText",
]
