# embedding.py - on-device text embeddings for Hybrid Recall
"""
Embedding service with:
- **Lazy model loading** with fallback to a lighter model, loaded once and
  shared read-only afterwards.
- **Case-insensitive cache** keyed on normalised text with a hard capacity
  and oldest-first eviction.
- **Word-average fallback** when the model cannot embed a whole string.
- **In-flight de-duplication** so concurrent requests for the same text
  trigger a single model invocation.
- **Bounded batch fan-out** where one failing text never aborts the batch.
"""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from collections.abc import Callable, Iterable
from functools import partial
from typing import Any

import numpy as np

from hybrid_recall.core.interfaces import EmbeddingModel
from hybrid_recall.models import TextEmbedding
from hybrid_recall.settings import UnifiedSettings
from hybrid_recall.utils.cache import EmbeddingCache
from hybrid_recall.utils.exceptions import ModelUnavailable, UnembeddableText
from hybrid_recall.utils.metrics import (
    EMBEDDINGS_GENERATED_TOTAL,
    LAT_EMBEDDING,
    MODEL_INVOCATIONS_TOTAL,
    measure_time,
)

__all__ = ["EmbeddingService", "normalize_text"]

log = logging.getLogger(__name__)

_WS_RE = re.compile(r"\s+")

ModelFactory = Callable[[str], EmbeddingModel]


def normalize_text(text: str) -> str:
    """Trim, collapse runs of whitespace and newlines, and lower-case."""
    return _WS_RE.sub(" ", text).strip().lower()


def _default_factory(name: str) -> EmbeddingModel:
    from hybrid_recall.core.st_model import SentenceTransformerModel

    return SentenceTransformerModel(name)


class EmbeddingService:
    """
    Cache-aware embedding generator.

    Public API consists of the async ``embed`` and ``embed_batch`` methods.
    Model calls run in worker threads so the event loop stays responsive.
    """

    def __init__(
        self,
        model: EmbeddingModel | None = None,
        settings: UnifiedSettings | None = None,
        *,
        model_factory: ModelFactory | None = None,
    ) -> None:
        self.settings = settings or UnifiedSettings.for_development()
        self._model = model
        self._model_factory = model_factory or _default_factory
        self._model_lock = threading.Lock()
        self.cache: EmbeddingCache[TextEmbedding] = EmbeddingCache(
            max_size=self.settings.embedding.cache_size
        )
        self._inflight: dict[str, asyncio.Task[TextEmbedding]] = {}
        self._generated = 0

    # Model management

    def _load_model(self) -> EmbeddingModel:
        """Load the configured model once, trying the fallback on failure."""
        with self._model_lock:
            if self._model is not None:
                return self._model
            cfg = self.settings.embedding
            names = [cfg.model_name]
            if cfg.fallback_model_name and cfg.fallback_model_name != cfg.model_name:
                names.append(cfg.fallback_model_name)
            last_exc: Exception | None = None
            for name in names:
                try:
                    log.info("Loading embedding model: %s", name)
                    model = self._model_factory(name)
                except (OSError, RuntimeError, ValueError, ModuleNotFoundError) as exc:
                    log.warning("Embedding model %s failed to load: %s", name, exc)
                    last_exc = exc
                    continue
                log.info("Model loaded: %s (dim=%d)", model.version, model.dimension)
                self._model = model
                return model
            raise ModelUnavailable("Could not load any embedding model") from last_exc

    async def load(self) -> EmbeddingModel:
        """Load the model ahead of the first request."""
        return await asyncio.to_thread(self._load_model)

    @property
    def model_version(self) -> str | None:
        """Version of the loaded model, or ``None`` before loading."""
        return self._model.version if self._model is not None else None

    # Public API

    async def embed(self, text: str) -> TextEmbedding:
        """Return the embedding for ``text``, generating it on a cache miss."""
        key = normalize_text(text)
        if not key:
            raise UnembeddableText("text is empty")
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._generate_and_store(key))
            self._inflight[key] = task
            task.add_done_callback(partial(self._generation_done, key))
        # A cancelled caller stops waiting; generation goes on for the others.
        return await asyncio.shield(task)

    async def _generate_and_store(self, key: str) -> TextEmbedding:
        embedding = await asyncio.to_thread(self._generate, key)
        return self.cache.put(key, embedding)

    def _generation_done(self, key: str, task: asyncio.Task[TextEmbedding]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Every waiter may have gone; mark the error as retrieved.
            task.exception()

    async def embed_batch(self, texts: Iterable[str]) -> dict[str, TextEmbedding]:
        """
        Embed many texts with bounded concurrency.

        Failed texts are logged and left out of the returned mapping.
        """
        unique = list(dict.fromkeys(texts))
        if not unique:
            return {}
        sem = asyncio.Semaphore(self.settings.embedding.batch_concurrency)

        async def _one(text: str) -> TextEmbedding:
            async with sem:
                return await self.embed(text)

        outcomes = await asyncio.gather(*(_one(t) for t in unique), return_exceptions=True)
        results: dict[str, TextEmbedding] = {}
        for text, outcome in zip(unique, outcomes, strict=True):
            if isinstance(outcome, TextEmbedding):
                results[text] = outcome
            elif isinstance(outcome, Exception):
                log.warning("Embedding failed for %r: %s", text[:40], outcome)
            else:
                raise outcome
        return results

    # Generation (runs in worker threads)

    @measure_time(LAT_EMBEDDING)
    def _generate(self, text: str) -> TextEmbedding:
        model = self._load_model()
        MODEL_INVOCATIONS_TOTAL.inc()
        vector = model.embed_text(text)
        strategy = "whole"
        if vector is None:
            vector = self._word_average(model, text)
            strategy = "word_average"
        self._generated += 1
        EMBEDDINGS_GENERATED_TOTAL.labels(strategy=strategy).inc()
        return TextEmbedding(np.asarray(vector, dtype=np.float32), model.version)

    @staticmethod
    def _word_average(model: EmbeddingModel, text: str) -> np.ndarray:
        known = [v for v in (model.embed_token(tok) for tok in text.split(" ")) if v is not None]
        if not known:
            raise UnembeddableText("no token of the text is known to the model")
        return np.mean(np.asarray(known, dtype=np.float32), axis=0)

    def stats(self) -> dict[str, Any]:
        model = self._model
        return {
            "model": model.version if model else self.settings.embedding.model_name,
            "dimension": model.dimension if model else 0,
            "cache": self.cache.get_stats(),
            "generated": self._generated,
            "inflight": len(self._inflight),
        }
