"""Logging helpers for Hybrid Recall."""

from __future__ import annotations

import logging

from hybrid_recall.context import SEARCH_ID


def _add_search_id(record: logging.LogRecord) -> logging.LogRecord:
    if not hasattr(record, "search_id"):
        record.search_id = SEARCH_ID.get() or "-"
    return record


class SearchIdFilter(logging.Filter):
    """Inject ``search_id`` from :mod:`contextvars` into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - simple
        _add_search_id(record)
        return True


def setup_search_id_logging() -> None:
    """Ensure all log records include a ``search_id`` attribute."""
    old_factory = logging.getLogRecordFactory()
    if getattr(old_factory, "_recall_search_id", False):
        return

    def record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
        return _add_search_id(old_factory(*args, **kwargs))

    record_factory._recall_search_id = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(record_factory)


__all__ = ["SearchIdFilter", "setup_search_id_logging"]
