"""Concrete adapters for external collaborators."""

from __future__ import annotations

from hybrid_recall.adapter.http_remote import HttpRemoteVectorService

__all__ = ["HttpRemoteVectorService"]
