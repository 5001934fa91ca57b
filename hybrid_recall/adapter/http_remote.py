"""
HTTP client for a cloud-hosted vector index.

The service speaks JSON over two endpoints::

    POST /query   {"vector": [...], "top_k": k, "model_version": v}
                  -> {"matches": [{"id": "...", "score": 0.87}, ...]}
    POST /upsert  {"id": "...", "vector": [...], "model_version": v}

A user-supplied credential is sent as a bearer token.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from typing import Any

import httpx

from hybrid_recall.models import TextEmbedding
from hybrid_recall.utils.exceptions import RemoteFailure, RemoteTimeout
from hybrid_recall.utils.http import HTTPTimeouts

logger = logging.getLogger(__name__)


class HttpRemoteVectorService:
    """:class:`RemoteVectorService` implementation over ``httpx.AsyncClient``."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeouts: HTTPTimeouts | None = None,
        retry: int = 0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeouts = timeouts or HTTPTimeouts()
        self.retry = retry
        self.client = httpx.AsyncClient(timeout=self.timeouts.to_httpx(), transport=transport)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> HttpRemoteVectorService:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.api_key:
            h["Authorization"] = f"Bearer {self.api_key}"
        return h

    async def _post(self, path: str, payload: dict[str, Any]) -> httpx.Response:
        attempt = 0
        while True:
            try:
                resp = await self.client.post(
                    f"{self.base_url}{path}",
                    content=json.dumps(payload),
                    headers=self._headers(),
                )
                resp.raise_for_status()
                return resp
            except httpx.TimeoutException as exc:
                if attempt >= self.retry:
                    raise RemoteTimeout(f"POST {path} timed out") from exc
                error: Exception = exc
            except httpx.HTTPStatusError as exc:
                # Client errors will not succeed on retry.
                if exc.response.status_code < 500 or attempt >= self.retry:
                    raise RemoteFailure(f"POST {path} returned {exc.response.status_code}") from exc
                error = exc
            except httpx.HTTPError as exc:
                if attempt >= self.retry:
                    raise RemoteFailure(f"POST {path} failed: {exc}") from exc
                error = exc
            backoff = 2**attempt + secrets.randbelow(1000) / 1000
            logger.warning("POST %s failed (attempt %d/%d): %s", path, attempt + 1, self.retry, error)
            await asyncio.sleep(backoff)
            attempt += 1

    async def query(self, embedding: TextEmbedding, top_k: int) -> list[tuple[str, float]]:
        payload = {
            "vector": embedding.vector.tolist(),
            "top_k": top_k,
            "model_version": embedding.model_version,
        }
        resp = await self._post("/query", payload)
        try:
            data = resp.json()
            return [(str(m["id"]), float(m["score"])) for m in data.get("matches", [])][:top_k]
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise RemoteFailure(f"malformed /query response: {exc}") from exc

    async def upsert(self, node_id: str, embedding: TextEmbedding) -> None:
        payload = {
            "id": node_id,
            "vector": embedding.vector.tolist(),
            "model_version": embedding.model_version,
        }
        await self._post("/upsert", payload)


__all__ = ["HttpRemoteVectorService"]
