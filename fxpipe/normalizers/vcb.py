"""VietcomBank rate sheet normalizer."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from fxpipe.core.config import settings
from fxpipe.core.errors import MalformedPayload, SampleSkipped
from fxpipe.core.logging import get_logger
from fxpipe.normalizers.base import BaseNormalizer
from fxpipe.schemas.payloads import VcbPayload, VcbRate
from fxpipe.schemas.ticks import NormalizationResult, TickCandidate, institution_quote

log = get_logger("normalizers.vcb")

SHEET_TIME_FORMAT = "%m/%d/%Y %I:%M:%S %p"


class VcbNormalizer(BaseNormalizer):
    key = "vcb"
    source_name = "VietcomBank"

    def __init__(self, timezone_name: Optional[str] = None, quote_currency: Optional[str] = None):
        self.tz = ZoneInfo(timezone_name or settings.VCB_TIMEZONE)
        self.quote_currency = quote_currency or settings.VCB_QUOTE_CURRENCY

    def normalize(self, payload: Any, captured_at: datetime) -> NormalizationResult:
        sheet = self._validate(VcbPayload, payload).exrate_list
        sheet_time = self.parse_sheet_time(sheet.date_time)

        result = NormalizationResult()
        for raw_row in sheet.exrate:
            try:
                result.candidates.append(self._row_to_tick(raw_row, sheet_time))
            except SampleSkipped as exc:
                result.skipped += 1
                log.debug(f"Skipping VCB row: {exc.message}")

        if result.skipped:
            log.info(f"VCB sheet {sheet.date_time}: {len(result.candidates)} ticks, {result.skipped} rows skipped")
        return self._require_candidates(result)

    def parse_sheet_time(self, value: str) -> datetime:
        """Parse the sheet's bank-local ``M/D/YYYY h:mm:ss AM`` timestamp to UTC."""
        if not value or not value.strip():
            raise MalformedPayload("VCB sheet has no DateTime", source=self.key)
        try:
            local = datetime.strptime(value.strip(), SHEET_TIME_FORMAT)
        except ValueError as exc:
            raise MalformedPayload(f"Unparseable VCB DateTime {value!r}", source=self.key) from exc
        return local.replace(tzinfo=self.tz).astimezone(timezone.utc)

    def _row_to_tick(self, raw_row: dict[str, Any], sheet_time: datetime) -> TickCandidate:
        try:
            row = VcbRate.model_validate(raw_row)
        except ValidationError as exc:
            raise SampleSkipped("undecodable row", source=self.key) from exc

        code = (row.currency_code or "").upper()
        if len(code) != 3:
            raise SampleSkipped(f"bad currency code {row.currency_code!r}", source=self.key)

        quote = institution_quote(parse_rate(row.buy), parse_rate(row.transfer), parse_rate(row.sell))
        if quote is None:
            raise SampleSkipped(f"{code} has no quote", source=self.key)

        bid, mid, ask = quote
        return TickCandidate(
            base_currency=code,
            quote_currency=self.quote_currency,
            time=sheet_time,
            bid=bid,
            mid=mid,
            ask=ask,
        )


def parse_rate(value: Optional[str]) -> Optional[Decimal]:
    """Parse ``25,350.00``-style numbers; ``-`` and blanks mean no quote."""
    if value is None:
        return None
    cleaned = value.replace(",", "").strip()
    if not cleaned or cleaned == "-":
        return None
    try:
        rate = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return rate
