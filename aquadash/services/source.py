from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx

from ..errors import TransportFailure


class ReadingSource(ABC):
    """Black-box supplier of raw reading batches."""

    @abstractmethod
    async def fetch(self) -> Any:
        """Return the decoded response body, normally a list of readings."""


class HttpReadingSource(ReadingSource):
    """Fetches the reading array with a plain ``GET`` against the sensor API."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.transport = transport

    async def fetch(self) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.get(self.url)
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as exc:
            raise TransportFailure(f"GET {self.url} failed: {exc}") from exc
        except ValueError as exc:
            raise TransportFailure(f"GET {self.url} returned invalid JSON") from exc
