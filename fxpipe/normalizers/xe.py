"""XE.com chart + midmarket normalizer."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

from fxpipe.core.config import settings
from fxpipe.core.errors import MalformedPayload
from fxpipe.core.logging import get_logger
from fxpipe.normalizers.base import BaseNormalizer
from fxpipe.schemas.payloads import XePayload
from fxpipe.schemas.ticks import NormalizationResult, TickCandidate, synthesize_spread, to_decimal

log = get_logger("normalizers.xe")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class XeNormalizer(BaseNormalizer):
    key = "xe"
    source_name = "XE.com"

    def __init__(self, spread: Optional[Decimal] = None, sanity_floor: Optional[Decimal] = None):
        self.spread = settings.SYNTHETIC_SPREAD if spread is None else spread
        self.sanity_floor = settings.XE_SANITY_FLOOR if sanity_floor is None else sanity_floor

    def normalize(self, payload: Any, captured_at: datetime) -> NormalizationResult:
        data = self._validate(XePayload, payload)
        base = (data.from_currency or "").strip().upper()
        quote = (data.to_currency or "").strip().upper()
        if not base or not quote:
            raise MalformedPayload("XE payload is missing fromCurrency/toCurrency", source=self.key)

        result = NormalizationResult()

        batches = data.charting.batch_list if data.charting else []
        for batch in batches:
            for index, raw_rate in enumerate(batch.rates):
                rate = self._usable(raw_rate)
                if rate is None:
                    result.skipped += 1
                    continue
                tick_time = EPOCH + timedelta(milliseconds=batch.start_time + index * batch.interval)
                result.candidates.append(self._tick(base, quote, tick_time, rate))

        if data.midmarket:
            entry = data.midmarket.rates.get(quote)
            rate = self._usable(entry.rate) if entry else None
            if rate is not None:
                stamp = _parse_captured_at(data.captured_at) or captured_at
                result.candidates.append(self._tick(base, quote, stamp, rate))
            elif entry is not None:
                result.skipped += 1

        log.debug(f"XE {base}/{quote}: {len(result.candidates)} ticks, {result.skipped} skipped")
        return self._require_candidates(result)

    def _usable(self, raw_rate: Any) -> Optional[Decimal]:
        rate = to_decimal(raw_rate)
        if rate is None or rate < self.sanity_floor:
            return None
        return rate

    def _tick(self, base: str, quote: str, when: datetime, mid: Decimal) -> TickCandidate:
        bid, ask = synthesize_spread(mid, self.spread)
        return TickCandidate(base_currency=base, quote_currency=quote, time=when, bid=bid, mid=mid, ask=ask)


def _parse_captured_at(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
