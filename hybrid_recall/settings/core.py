from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, model_validator

from hybrid_recall import __version__
from hybrid_recall.models import SubscriptionTier
from hybrid_recall.utils.logging import SearchIdFilter, setup_search_id_logging

ENV_PREFIX = "RECALL_"


class EmbeddingConfig(BaseModel):
    """On-device embedding model and cache parameters."""

    model_name: str = "all-MiniLM-L6-v2"
    fallback_model_name: str | None = "paraphrase-MiniLM-L3-v2"
    cache_size: PositiveInt = 1_000
    batch_concurrency: int = 10

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _concurrency_range(self) -> EmbeddingConfig:
        if self.batch_concurrency < 1 or self.batch_concurrency > 32:
            raise ValueError("batch_concurrency must be between 1 and 32")
        return self


class RankingConfig(BaseModel):
    """Weights for re-ranking search candidates and rendering snippets."""

    recency_weight: float = Field(0.1, ge=0.0)
    emotional_weight: float = Field(0.05, ge=0.0)
    recency_horizon_days: PositiveInt = 365
    highlight_open: str = "<mark>"
    highlight_close: str = "</mark>"
    snippet_length: PositiveInt = 100

    model_config = ConfigDict(frozen=True)


class RoutingConfig(BaseModel):
    """Per-tier complexity thresholds and quota cost of a remote call."""

    free_max_items: int = Field(3, ge=0)
    mid_tier_min_items: int = Field(2, ge=0)
    remote_call_cost: PositiveInt = 1

    model_config = ConfigDict(frozen=True)


class SearchConfig(BaseModel):
    """Remote search orchestration parameters."""

    remote_top_k: PositiveInt = 50
    default_limit: PositiveInt = 20
    history_size: PositiveInt = 50
    remote_timeout_seconds: float = Field(10.0, gt=0.0)
    quota_timeout_seconds: float = Field(5.0, gt=0.0)
    related_limit: int = Field(3, ge=0)
    # Text-search candidates scoring at or below this are not returned.
    min_similarity: float = Field(0.0, ge=0.0, lt=1.0)
    multi_modal_min_tier: SubscriptionTier = SubscriptionTier.ADVANCED

    model_config = ConfigDict(frozen=True)


class MaintenanceConfig(BaseModel):
    """Embedding backfill options."""

    batch_size: PositiveInt = 10
    push_to_remote: bool = True

    model_config = ConfigDict(frozen=True)


class MonitoringConfig(BaseModel):
    """Metrics and diagnostics configuration."""

    enable_metrics: bool = True
    log_level: str = "INFO"

    model_config = ConfigDict(frozen=True)


_SECTIONS: dict[str, type[BaseModel]] = {
    "embedding": EmbeddingConfig,
    "ranking": RankingConfig,
    "routing": RoutingConfig,
    "search": SearchConfig,
    "maintenance": MaintenanceConfig,
    "monitoring": MonitoringConfig,
}


def _env_overrides(environ: dict[str, str]) -> dict[str, dict[str, str]]:
    """Collect ``RECALL_<SECTION>__<FIELD>`` variables grouped by section."""
    out: dict[str, dict[str, str]] = {}
    for key, value in environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        trimmed = key[len(ENV_PREFIX) :]
        if "__" not in trimmed:
            continue
        section, field = trimmed.split("__", 1)
        section = section.lower()
        field = field.lower()
        cfg_cls = _SECTIONS.get(section)
        if cfg_cls is None or field not in cfg_cls.model_fields:
            continue
        out.setdefault(section, {})[field] = value
    return out


class UnifiedSettings(BaseModel):
    """Aggregate all configuration sections."""

    version: str = __version__
    profile: str = "development"
    embedding: EmbeddingConfig = EmbeddingConfig()
    ranking: RankingConfig = RankingConfig()
    routing: RoutingConfig = RoutingConfig()
    search: SearchConfig = SearchConfig()
    maintenance: MaintenanceConfig = MaintenanceConfig()
    monitoring: MonitoringConfig = MonitoringConfig()

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_env(cls, base: UnifiedSettings | None = None, **kwargs: Any) -> UnifiedSettings:
        """
        Return ``base`` with environment overrides applied.

        Values are validated by the section models, so ``"25"`` becomes ``25``
        for integer fields and ``"false"`` becomes ``False`` for booleans.
        """
        base = base or cls(**kwargs)
        overrides = _env_overrides(dict(os.environ))
        if not overrides:
            return base
        data = base.model_dump()
        for section, fields in overrides.items():
            data[section].update(fields)
        return cls.model_validate(data)

    @classmethod
    def for_testing(cls) -> UnifiedSettings:
        return cls(
            profile="testing",
            embedding=EmbeddingConfig(cache_size=100, batch_concurrency=4),
            search=SearchConfig(remote_timeout_seconds=0.5, quota_timeout_seconds=0.5),
            monitoring=MonitoringConfig(enable_metrics=False, log_level="DEBUG"),
        )

    @classmethod
    def for_production(cls) -> UnifiedSettings:
        return cls(
            profile="production",
            embedding=EmbeddingConfig(cache_size=5_000),
            monitoring=MonitoringConfig(log_level="WARNING"),
        )

    @classmethod
    def for_development(cls) -> UnifiedSettings:
        return cls(
            profile="development",
            embedding=EmbeddingConfig(cache_size=500),
            monitoring=MonitoringConfig(log_level="DEBUG"),
        )

    def get_config_summary(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "profile": self.profile,
            **{name: getattr(self, name).model_dump(mode="json") for name in _SECTIONS},
        }

    def save_to_file(self, path: Path) -> None:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)

    @classmethod
    def load_from_file(cls, path: Path) -> UnifiedSettings:
        with open(path, encoding="utf-8") as f:
            return cls.model_validate(json.load(f))


def configure_logging(settings: UnifiedSettings | None = None) -> None:
    settings = settings or UnifiedSettings()
    level = getattr(logging, settings.monitoring.log_level.upper(), logging.INFO)
    setup_search_id_logging()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s [%(search_id)s] %(message)s",
    )
    root = logging.getLogger()
    if not any(isinstance(f, SearchIdFilter) for f in root.filters):
        root.addFilter(SearchIdFilter())


def get_settings(env: str | None = None) -> UnifiedSettings:
    env = env or os.getenv("RECALL_ENV", "development")
    if env == "production":
        base = UnifiedSettings.for_production()
    elif env == "testing":
        base = UnifiedSettings.for_testing()
    elif env == "development":
        base = UnifiedSettings.for_development()
    else:
        base = UnifiedSettings()
    return UnifiedSettings.from_env(base)


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
