"""Abstract source adapter interface for crawling."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from fxpipe.core.config import settings
from fxpipe.core.errors import FetchError
from fxpipe.schemas.ticks import Snapshot

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


class BaseSource(ABC):
    """Fetches one raw provider payload and wraps it in a ``Snapshot``."""

    key: str

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    @abstractmethod
    def identifiers(self) -> List[str]:
        """Identifiers crawled on the default schedule."""

    @abstractmethod
    async def fetch(self, identifier: str, options: Optional[Dict[str, Any]] = None) -> Snapshot:
        """Fetch the raw payload for ``identifier``."""

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout,
            headers={"user-agent": BROWSER_USER_AGENT, "accept": "*/*"},
            follow_redirects=True,
        )

    def _snapshot(self, identifier: str, payload: Any, captured_at: Optional[datetime] = None) -> Snapshot:
        return Snapshot(
            source=self.key,
            identifier=identifier,
            captured_at=captured_at or datetime.now(timezone.utc),
            method="direct-api",
            payload=payload,
        )

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            resp = await client.request(method, url, **kwargs)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise FetchError(f"{self.key} request failed: {exc}", source=self.key, details={"url": url}) from exc
        return resp

    async def _get_json(self, client: httpx.AsyncClient, url: str, **kwargs: Any) -> Any:
        resp = await self._request(client, "GET", url, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            raise FetchError(f"{self.key} returned non-JSON body", source=self.key, details={"url": url}) from exc
