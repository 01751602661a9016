from fxpipe.models.base import Base
from fxpipe.models.reference import CurrencyPair, Source
from fxpipe.models.ticks import FxTick
from fxpipe.models.runs import IngestionRun

__all__ = [
    "Base",
    "Source",
    "CurrencyPair",
    "FxTick",
    "IngestionRun",
]
