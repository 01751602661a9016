"""Canonical tick model shared by every normalizer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, field_validator

SnapshotMethod = Literal["direct-api", "browser"]


class TickCandidate(BaseModel):
    """A normalized tick not yet resolved to dimension ids."""

    base_currency: str
    quote_currency: str
    time: datetime
    bid: Decimal
    mid: Decimal
    ask: Decimal
    volume: Optional[Decimal] = None

    model_config = {"frozen": True}

    @field_validator("base_currency", "quote_currency")
    @classmethod
    def _upper_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("time")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("tick time must be timezone-aware")
        return value.astimezone(timezone.utc)

    @property
    def symbol(self) -> str:
        return f"{self.base_currency}{self.quote_currency}"


@dataclass
class NormalizationResult:
    """Output of one normalizer pass over one snapshot."""

    candidates: list[TickCandidate] = field(default_factory=list)
    skipped: int = 0


class Snapshot(BaseModel):
    """Raw provider payload as captured by a source adapter, stored verbatim."""

    source: str
    identifier: str
    captured_at: datetime
    method: SnapshotMethod = "direct-api"
    payload: Any


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert JSON numbers to Decimal without binary float artefacts."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value))
    except (ArithmeticError, ValueError):
        return None
    return result if result.is_finite() else None


def synthesize_spread(mid: Decimal, spread: Decimal) -> tuple[Decimal, Decimal]:
    """Derive (bid, ask) around a single mid rate using a relative spread.

    The result is an approximation for sources that only publish one rate; it
    must not be read as a tradable quote. With ``spread > 0`` and ``mid > 0``
    it always holds that ``bid < mid < ask``.
    """
    half = mid * spread / 2
    return mid - half, mid + half


def institution_quote(
    buy: Optional[Decimal],
    transfer: Optional[Decimal],
    sell: Optional[Decimal],
) -> Optional[tuple[Decimal, Decimal, Decimal]]:
    """Map bank Buy/Transfer/Sell columns to (bid, mid, ask).

    Buy is the bid, Sell the ask; the transfer rate stands in for a missing
    side and is the mid, falling back to ``(bid + ask) / 2``. Returns None when
    no complete quote can be derived.
    """
    bid = buy if buy is not None else transfer
    ask = sell if sell is not None else transfer
    if transfer is not None:
        mid = transfer
    elif bid is not None and ask is not None:
        mid = (bid + ask) / 2
    else:
        return None
    if bid is None or ask is None:
        return None
    return bid, mid, ask
