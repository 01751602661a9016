"""Reuters quote source (Markit Digital API)."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fxpipe.core.config import settings
from fxpipe.core.errors import FetchError
from fxpipe.core.logging import get_logger
from fxpipe.schemas.ticks import Snapshot
from .base import BaseSource

log = get_logger("ingestion.reuters")

REUTERS_API_URL = "https://api.markitdigital.com/fwc-api-service/v1/fwc-universal-app"


class ReutersSource(BaseSource):
    key = "reuters"

    def identifiers(self) -> List[str]:
        return list(settings.REUTERS_SYMBOLS)

    async def fetch(self, identifier: str, options: Optional[Dict[str, Any]] = None) -> Snapshot:
        options = options or {}
        xid = options.get("xid") or settings.REUTERS_XIDS.get(identifier)
        if xid is None:
            raise FetchError(f"No Reuters xid configured for {identifier}", source=self.key)
        if not settings.REUTERS_AUTH_TOKEN:
            raise FetchError("REUTERS_AUTH_TOKEN is not configured", source=self.key)

        body = [
            {"key": "marketAppId", "value": "fwc-currency-detailed-quote"},
            {"key": "xid", "value": xid},
            {"key": "showLinks", "value": False},
        ]
        headers = {
            "authorization": settings.REUTERS_AUTH_TOKEN,
            "content-type": "application/json",
            "referer": "https://www.reuters.com/",
        }

        captured_at = datetime.now(timezone.utc)
        async with self._client() as client:
            resp = await self._request(client, "POST", REUTERS_API_URL, json=body, headers=headers)
        try:
            data = resp.json()
        except ValueError as exc:
            raise FetchError("Reuters returned non-JSON body", source=self.key) from exc

        log.info(f"Fetched Reuters quote for {identifier} (xid={xid})")
        payload = {"method": "direct-api", "xid": xid, "capturedAt": captured_at.isoformat(), "data": data}
        return self._snapshot(identifier, payload, captured_at=captured_at)
