"""Yahoo Finance chart normalizer."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from fxpipe.core.config import settings
from fxpipe.core.errors import MalformedPayload
from fxpipe.core.logging import get_logger
from fxpipe.normalizers.base import BaseNormalizer, decode_symbol
from fxpipe.schemas.payloads import YahooPayload, YahooQuote
from fxpipe.schemas.ticks import NormalizationResult, TickCandidate, synthesize_spread, to_decimal

log = get_logger("normalizers.yahoo")


class YahooNormalizer(BaseNormalizer):
    key = "yahoo"
    source_name = "Yahoo Finance"

    def __init__(self, spread: Optional[Decimal] = None):
        self.spread = settings.SYNTHETIC_SPREAD if spread is None else spread

    def normalize(self, payload: Any, captured_at: datetime) -> NormalizationResult:
        chart = self._validate(YahooPayload, payload).chart
        if not chart.result:
            raise MalformedPayload("Yahoo chart has no result", source=self.key)

        series = chart.result[0]
        base, quote_ccy = decode_symbol(series.meta.symbol)
        timestamps = series.timestamp or []
        quote = series.indicators.quote[0] if series.indicators and series.indicators.quote else YahooQuote()

        result = NormalizationResult()
        for index, epoch_seconds in enumerate(timestamps):
            mid = self._mid(quote, index)
            if epoch_seconds is None or mid is None:
                result.skipped += 1
                continue
            try:
                when = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                result.skipped += 1
                continue

            volume = to_decimal(_at(quote.volume, index))
            bid, ask = synthesize_spread(mid, self.spread)
            result.candidates.append(
                TickCandidate(
                    base_currency=base,
                    quote_currency=quote_ccy,
                    time=when,
                    bid=bid,
                    mid=mid,
                    ask=ask,
                    volume=volume or None,
                )
            )

        log.debug(f"Yahoo {series.meta.symbol}: {len(result.candidates)} ticks, {result.skipped} skipped")
        return self._require_candidates(result)

    @staticmethod
    def _mid(quote: YahooQuote, index: int) -> Optional[Decimal]:
        close = to_decimal(_at(quote.close, index))
        if close:
            return close
        open_ = to_decimal(_at(quote.open, index))
        if open_:
            return open_
        high = to_decimal(_at(quote.high, index)) or None
        low = to_decimal(_at(quote.low, index)) or None
        if high is not None and low is not None:
            return (high + low) / 2
        return high if high is not None else low


def _at(values: list[Any], index: int) -> Any:
    return values[index] if index < len(values) else None
