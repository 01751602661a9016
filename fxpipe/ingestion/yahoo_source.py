"""Yahoo Finance chart API source."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from fxpipe.core.config import settings
from fxpipe.core.logging import get_logger
from fxpipe.schemas.ticks import Snapshot
from .base import BaseSource

log = get_logger("ingestion.yahoo")

CHART_URL = "https://query2.finance.yahoo.com/v8/finance/chart/{symbol}"


class YahooSource(BaseSource):
    key = "yahoo"

    def identifiers(self) -> List[str]:
        return list(settings.YAHOO_SYMBOLS)

    async def fetch(self, identifier: str, options: Optional[Dict[str, Any]] = None) -> Snapshot:
        options = options or {}
        now = datetime.now(timezone.utc)
        lookback = timedelta(days=int(options.get("lookback_days", settings.YAHOO_LOOKBACK_DAYS)))
        params = {
            "period1": int((now - lookback).timestamp()),
            "period2": int(now.timestamp()),
            "interval": options.get("interval", settings.YAHOO_INTERVAL),
            "includePrePost": "true",
            "events": "div|split|earn",
            "lang": "en-US",
            "region": "US",
        }
        headers = {"referer": f"https://finance.yahoo.com/quote/{identifier}/"}
        if settings.YAHOO_COOKIES:
            headers["cookie"] = settings.YAHOO_COOKIES

        async with self._client() as client:
            data = await self._get_json(client, CHART_URL.format(symbol=identifier), params=params, headers=headers)

        log.info(f"Fetched Yahoo chart for {identifier} ({params['interval']})")
        return self._snapshot(identifier, data, captured_at=now)
