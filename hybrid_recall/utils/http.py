"""HTTP related utility types."""

from __future__ import annotations

from dataclasses import dataclass

import httpx


@dataclass(slots=True)
class HTTPTimeouts:
    """HTTP client timeout configuration."""

    connect: float = 5.0
    read: float = 10.0

    def to_httpx(self) -> httpx.Timeout:
        return httpx.Timeout(self.read, connect=self.connect)
