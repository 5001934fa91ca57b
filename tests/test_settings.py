import logging
from pathlib import Path

import pytest
from pydantic import ValidationError

from hybrid_recall.context import SEARCH_ID
from hybrid_recall.models import SubscriptionTier
from hybrid_recall.settings import EmbeddingConfig, UnifiedSettings, configure_logging, get_settings


def test_defaults() -> None:
    s = UnifiedSettings()
    assert s.embedding.cache_size == 1000
    assert s.embedding.batch_concurrency == 10
    assert s.ranking.recency_weight == pytest.approx(0.1)
    assert s.ranking.emotional_weight == pytest.approx(0.05)
    assert s.search.remote_top_k == 50
    assert s.search.history_size == 50
    assert s.routing.remote_call_cost == 1
    assert s.maintenance.batch_size == 10
    assert s.search.multi_modal_min_tier is SubscriptionTier.ADVANCED


def test_frozen() -> None:
    s = UnifiedSettings()
    with pytest.raises(ValidationError):
        s.embedding.cache_size = 5  # type: ignore[misc]


def test_batch_concurrency_range() -> None:
    with pytest.raises(ValidationError):
        EmbeddingConfig(batch_concurrency=0)
    with pytest.raises(ValidationError):
        EmbeddingConfig(batch_concurrency=33)


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECALL_SEARCH__REMOTE_TOP_K", "25")
    monkeypatch.setenv("RECALL_MAINTENANCE__PUSH_TO_REMOTE", "false")
    monkeypatch.setenv("RECALL_SEARCH__MULTI_MODAL_MIN_TIER", "professional")
    monkeypatch.setenv("RECALL_SEARCH__NOT_A_FIELD", "1")
    monkeypatch.setenv("RECALL_NOPE__X", "1")
    s = UnifiedSettings.from_env()
    assert s.search.remote_top_k == 25
    assert s.maintenance.push_to_remote is False
    assert s.search.multi_modal_min_tier is SubscriptionTier.PROFESSIONAL
    assert s.search.default_limit == 20


def test_invalid_env_value_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RECALL_EMBEDDING__CACHE_SIZE", "-1")
    with pytest.raises(ValidationError):
        UnifiedSettings.from_env()


def test_get_settings_profiles(monkeypatch: pytest.MonkeyPatch) -> None:
    assert get_settings("testing").profile == "testing"
    assert get_settings("production").embedding.cache_size == 5000
    monkeypatch.setenv("RECALL_ENV", "development")
    assert get_settings().profile == "development"


def test_save_and_load(tmp_path: Path) -> None:
    s = UnifiedSettings.for_testing()
    path = tmp_path / "recall.json"
    s.save_to_file(path)
    loaded = UnifiedSettings.load_from_file(path)
    assert loaded == s
    summary = loaded.get_config_summary()
    assert summary["profile"] == "testing"
    assert summary["search"]["multi_modal_min_tier"] == "advanced"


def test_configure_logging_adds_search_id(caplog: pytest.LogCaptureFixture) -> None:
    configure_logging(UnifiedSettings.for_testing())
    token = SEARCH_ID.set("abc123")
    try:
        with caplog.at_level(logging.INFO, logger="hybrid_recall.test"):
            logging.getLogger("hybrid_recall.test").info("hello")
    finally:
        SEARCH_ID.reset(token)
    assert caplog.records[-1].search_id == "abc123"
