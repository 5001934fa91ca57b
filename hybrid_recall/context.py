"""Search-scoped context variables."""

from __future__ import annotations

from contextvars import ContextVar

# Context variable storing the identifier of the search being served.
SEARCH_ID: ContextVar[str | None] = ContextVar("search_id", default=None)

__all__ = ["SEARCH_ID"]
