"""Embedding model handle backed by ``sentence-transformers``."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from hybrid_recall.utils.dependencies import require_sentence_transformers

if TYPE_CHECKING:  # pragma: no cover - typing helper
    from sentence_transformers import SentenceTransformer
else:  # pragma: no cover - runtime helper
    SentenceTransformer = Any

log = logging.getLogger(__name__)


class SentenceTransformerModel:
    """
    Read-only wrapper exposing the :class:`EmbeddingModel` protocol.

    Whole-text embedding is refused for strings longer than the model's
    maximum sequence length, which makes the caller fall back to averaging
    token embeddings instead of silently truncating the note.
    """

    def __init__(self, model_name: str, *, device: str | None = None) -> None:
        st = require_sentence_transformers()
        self._model: SentenceTransformer = st(model_name, device=device)
        self._name = model_name
        self._dimension = int(self._model.get_sentence_embedding_dimension())
        self._max_tokens = int(getattr(self._model, "max_seq_length", 0) or 0)

    @property
    def version(self) -> str:
        return self._name

    @property
    def dimension(self) -> int:
        return self._dimension

    def _token_count(self, text: str) -> int:
        tokenizer = getattr(self._model, "tokenizer", None)
        if tokenizer is None:
            return len(text.split())
        return len(tokenizer.tokenize(text))

    def embed_text(self, text: str) -> Sequence[float] | None:
        if self._max_tokens and self._token_count(text) > self._max_tokens:
            log.debug("text exceeds %d tokens; refusing whole-text embedding", self._max_tokens)
            return None
        return self._model.encode(text, convert_to_numpy=True).tolist()

    def embed_token(self, token: str) -> Sequence[float] | None:
        if not token:
            return None
        return self._model.encode(token, convert_to_numpy=True).tolist()


__all__ = ["SentenceTransformerModel"]
