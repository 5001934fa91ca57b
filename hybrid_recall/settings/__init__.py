"""Settings package providing configuration models for Hybrid Recall."""

from .core import (
    EmbeddingConfig,
    MaintenanceConfig,
    MonitoringConfig,
    RankingConfig,
    RoutingConfig,
    SearchConfig,
    UnifiedSettings,
    configure_logging,
    get_settings,
)

__all__ = [
    "EmbeddingConfig",
    "MaintenanceConfig",
    "MonitoringConfig",
    "RankingConfig",
    "RoutingConfig",
    "SearchConfig",
    "UnifiedSettings",
    "configure_logging",
    "get_settings",
]
