"""XE.com charting + midmarket source."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fxpipe.core.config import settings
from fxpipe.core.errors import FetchError
from fxpipe.core.logging import get_logger
from fxpipe.schemas.ticks import Snapshot
from .base import BaseSource

log = get_logger("ingestion.xe")

CHARTING_URL = "https://www.xe.com/api/protected/charting-rates/"
MIDMARKET_URL = "https://www.xe.com/api/protected/midmarket-converter/"


class XeSource(BaseSource):
    key = "xe"

    def identifiers(self) -> List[str]:
        return list(settings.XE_PAIRS)

    async def fetch(self, identifier: str, options: Optional[Dict[str, Any]] = None) -> Snapshot:
        options = options or {}
        from_ccy, to_ccy = split_pair(identifier, options)

        headers = {
            "referer": f"https://www.xe.com/currencyconverter/convert/?Amount=1&From={from_ccy}&To={to_ccy}",
        }
        if settings.XE_AUTH_TOKEN:
            headers["authorization"] = settings.XE_AUTH_TOKEN
        if settings.XE_COOKIES:
            headers["cookie"] = settings.XE_COOKIES

        captured_at = datetime.now(timezone.utc)
        async with self._client() as client:
            charting = await self._get_json(
                client,
                CHARTING_URL,
                params={"fromCurrency": from_ccy, "toCurrency": to_ccy, "crypto": "true"},
                headers=headers,
            )
            midmarket = await self._get_json(client, MIDMARKET_URL, headers=headers)

        payload = {
            "method": "direct-api",
            "fromCurrency": from_ccy,
            "toCurrency": to_ccy,
            "capturedAt": captured_at.isoformat(),
            "charting": charting,
            "midmarket": midmarket,
        }
        log.info(f"Fetched XE {from_ccy}/{to_ccy}")
        return self._snapshot(f"{from_ccy}{to_ccy}", payload, captured_at=captured_at)


def split_pair(identifier: str, options: Dict[str, Any]) -> tuple[str, str]:
    """``USD/VND`` (or ``fromCurrency``/``toCurrency`` options) -> ("USD", "VND")."""
    if options.get("fromCurrency") and options.get("toCurrency"):
        return str(options["fromCurrency"]).upper(), str(options["toCurrency"]).upper()

    code = (identifier or "").replace("/", "").replace("-", "").strip().upper()
    if len(code) != 6:
        raise FetchError(f"XE identifier {identifier!r} is not a currency pair", source="xe")
    return code[:3], code[3:]
