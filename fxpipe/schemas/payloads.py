"""Raw provider payload schemas.

One closed schema per provider. Only the fields normalization depends on are
declared; everything else in the verbatim payload is ignored.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Raw(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


# -----------------------------------------------------------------------------
# VCB - bank rate sheet (XML converted to JSON with "@_" attribute prefix)
# -----------------------------------------------------------------------------
class VcbRate(_Raw):
    currency_code: Optional[str] = Field(None, alias="@_CurrencyCode")
    currency_name: Optional[str] = Field(None, alias="@_CurrencyName")
    buy: Optional[str] = Field(None, alias="@_Buy")
    transfer: Optional[str] = Field(None, alias="@_Transfer")
    sell: Optional[str] = Field(None, alias="@_Sell")

    @field_validator("buy", "transfer", "sell", "currency_code", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value).strip()


class VcbExrateList(_Raw):
    date_time: str = Field(alias="DateTime")
    exrate: list[dict[str, Any]] = Field(default_factory=list, alias="Exrate")
    source: Optional[str] = Field(None, alias="Source")

    @field_validator("exrate", mode="before")
    @classmethod
    def _listify(cls, value: Any) -> list[Any]:
        # A sheet with a single currency is parsed as an object, not a list
        if value is None:
            return []
        if isinstance(value, dict):
            return [value]
        return value


class VcbPayload(_Raw):
    exrate_list: VcbExrateList = Field(alias="ExrateList")


# -----------------------------------------------------------------------------
# XE - charting batches + midmarket converter
# -----------------------------------------------------------------------------
class XeBatch(_Raw):
    start_time: int = Field(alias="startTime")  # epoch ms
    interval: int  # ms
    rates: list[Any] = Field(default_factory=list)


class XeCharting(_Raw):
    batch_list: list[XeBatch] = Field(default_factory=list, alias="batchList")


class XeMidmarketRate(_Raw):
    rate: Optional[Any] = None


class XeMidmarket(_Raw):
    rates: dict[str, XeMidmarketRate] = Field(default_factory=dict)


class XePayload(_Raw):
    from_currency: str = Field(alias="fromCurrency")
    to_currency: str = Field(alias="toCurrency")
    captured_at: Optional[str] = Field(None, alias="capturedAt")
    method: Optional[str] = None
    charting: Optional[XeCharting] = None
    midmarket: Optional[XeMidmarket] = None


# -----------------------------------------------------------------------------
# Yahoo - chart API (parallel arrays)
# -----------------------------------------------------------------------------
class YahooQuote(_Raw):
    open: list[Optional[Any]] = Field(default_factory=list)
    high: list[Optional[Any]] = Field(default_factory=list)
    low: list[Optional[Any]] = Field(default_factory=list)
    close: list[Optional[Any]] = Field(default_factory=list)
    volume: list[Optional[Any]] = Field(default_factory=list)


class YahooIndicators(_Raw):
    quote: list[YahooQuote] = Field(default_factory=list)


class YahooMeta(_Raw):
    symbol: str
    currency: Optional[str] = None
    exchange_name: Optional[str] = Field(None, alias="exchangeName")


class YahooResult(_Raw):
    meta: YahooMeta
    timestamp: Optional[list[Optional[int]]] = None
    indicators: Optional[YahooIndicators] = None


class YahooChart(_Raw):
    result: Optional[list[YahooResult]] = None


class YahooPayload(_Raw):
    chart: YahooChart


# -----------------------------------------------------------------------------
# Reuters - market data elements
# -----------------------------------------------------------------------------
class ReutersElement(_Raw):
    resource: Optional[str] = None
    data: Optional[dict[str, Any]] = None


class ReutersLastTrade(_Raw):
    date: Optional[str] = None
    last: Optional[Any] = None
    close: Optional[Any] = None
    open: Optional[Any] = None
    high: Optional[Any] = None
    low: Optional[Any] = None


class ReutersPayload(_Raw):
    elements: list[ReutersElement] = Field(default_factory=list)

    @classmethod
    def from_raw(cls, raw: Any) -> "ReutersPayload":
        # The timestamped snapshot wraps the API body under "data"; "latest" may not
        body = raw.get("data", raw) if isinstance(raw, dict) else raw
        return cls.model_validate(body)

    def find(self, resource: str, key: str) -> Optional[ReutersElement]:
        for element in self.elements:
            if element.resource == resource and element.data and element.data.get(key):
                return element
        return None
