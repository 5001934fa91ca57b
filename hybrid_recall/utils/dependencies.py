"""Lazy import helpers for optional dependencies."""

# ruff: noqa: PLW0603, TRY003, EM101

from __future__ import annotations

from importlib import import_module
from threading import Lock
from typing import Any

_st: Any | None = None
_st_lock = Lock()


def require_sentence_transformers() -> Any:
    """Return :class:`SentenceTransformer` or raise if it's unavailable."""
    global _st
    if _st is None:
        with _st_lock:
            if _st is None:
                try:  # pragma: no cover - optional dependency
                    module = import_module("sentence_transformers")
                    _st = module.SentenceTransformer
                except ModuleNotFoundError as exc:  # pragma: no cover - runtime guard
                    raise ModuleNotFoundError(
                        "sentence-transformers is required for on-device embeddings. Install "
                        "with 'pip install hybrid-recall[models]'.",
                    ) from exc
    return _st


__all__ = ["require_sentence_transformers"]
