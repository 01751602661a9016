"""Abstract normalizer interface and shared helpers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from fxpipe.core.config import settings
from fxpipe.core.errors import MalformedPayload, SymbolDecodeError
from fxpipe.schemas.ticks import NormalizationResult

SourceKey = Literal["vcb", "xe", "yahoo", "reuters"]

PayloadT = TypeVar("PayloadT", bound=BaseModel)


class BaseNormalizer(ABC):
    """Maps one raw provider payload to canonical tick candidates."""

    key: SourceKey
    source_name: str

    @abstractmethod
    def normalize(self, payload: Any, captured_at: datetime) -> NormalizationResult:
        """Return candidates plus the number of skipped samples.

        Raises ``MalformedPayload`` when the payload is structurally unusable
        or yields no rate at all.
        """

    def _validate(self, schema: Type[PayloadT], payload: Any) -> PayloadT:
        try:
            return schema.model_validate(payload)
        except ValidationError as exc:
            raise MalformedPayload(
                f"{self.source_name} payload failed validation",
                source=self.key,
                details={"errors": exc.errors(include_url=False, include_input=False, include_context=False)},
            ) from exc

    def _require_candidates(self, result: NormalizationResult) -> NormalizationResult:
        if not result.candidates:
            raise MalformedPayload(
                f"{self.source_name} payload contained no usable rate",
                source=self.key,
                details={"skipped": result.skipped},
            )
        return result


def decode_symbol(symbol: str, implied_base: Optional[str] = None) -> tuple[str, str]:
    """Decode a provider ticker such as ``VND=X`` or ``EURUSD=X`` to (base, quote)."""
    implied_base = implied_base or settings.IMPLIED_BASE_CURRENCY
    code = (symbol or "").strip().upper()
    if code.endswith("=X"):
        code = code[:-2]
    elif code.endswith("="):
        code = code[:-1]

    if len(code) == 3:
        return implied_base, code
    if len(code) == 6:
        return code[:3], code[3:]
    raise SymbolDecodeError(f"Cannot decode currency symbol {symbol!r}", details={"symbol": symbol})
