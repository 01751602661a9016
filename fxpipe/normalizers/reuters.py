"""Reuters single-quote normalizer."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from pydantic import ValidationError

from fxpipe.core.config import settings
from fxpipe.core.errors import MalformedPayload
from fxpipe.core.logging import get_logger
from fxpipe.normalizers.base import BaseNormalizer, decode_symbol
from fxpipe.schemas.payloads import ReutersLastTrade, ReutersPayload
from fxpipe.schemas.ticks import NormalizationResult, TickCandidate, synthesize_spread, to_decimal

log = get_logger("normalizers.reuters")


class ReutersNormalizer(BaseNormalizer):
    key = "reuters"
    source_name = "Reuters"

    def __init__(self, spread: Optional[Decimal] = None, open_backdate_seconds: Optional[int] = None):
        self.spread = settings.SYNTHETIC_SPREAD if spread is None else spread
        backdate = settings.REUTERS_OPEN_BACKDATE_SECONDS if open_backdate_seconds is None else open_backdate_seconds
        self.open_backdate = timedelta(seconds=backdate)

    def normalize(self, payload: Any, captured_at: datetime) -> NormalizationResult:
        try:
            data = ReutersPayload.from_raw(payload)
        except ValidationError as exc:
            raise MalformedPayload("Reuters payload failed validation", source=self.key) from exc

        quote_el = data.find("Quote", "lastTrade")
        xref_el = data.find("Xref", "symbol")
        if quote_el is None or xref_el is None:
            raise MalformedPayload("No quote data found in Reuters response", source=self.key)

        base, quote = decode_symbol(str(xref_el.data["symbol"]))
        try:
            trade = ReutersLastTrade.model_validate(quote_el.data["lastTrade"])
        except ValidationError as exc:
            raise MalformedPayload("Reuters lastTrade is not an object", source=self.key) from exc

        last = to_decimal(trade.last) or to_decimal(trade.close)
        if not last:
            raise MalformedPayload("Reuters quote carries no price", source=self.key)

        trade_time = _parse_trade_date(trade.date)
        if trade_time is None:
            raise MalformedPayload(
                "Reuters lastTrade has no usable date", source=self.key, details={"date": trade.date}
            )

        result = NormalizationResult(candidates=[self._tick(base, quote, trade_time, last)])

        # Approximate: the feed carries no timestamp for the open
        open_ = to_decimal(trade.open)
        if open_ and open_ != last:
            result.candidates.append(self._tick(base, quote, trade_time - self.open_backdate, open_))

        log.debug(f"Reuters {base}/{quote}: {len(result.candidates)} ticks at {trade_time.isoformat()}")
        return result

    def _tick(self, base: str, quote: str, when: datetime, mid: Decimal) -> TickCandidate:
        bid, ask = synthesize_spread(mid, self.spread)
        return TickCandidate(base_currency=base, quote_currency=quote, time=when, bid=bid, mid=mid, ask=ask)


def _parse_trade_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
