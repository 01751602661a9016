from fxpipe.normalizers.base import BaseNormalizer, SourceKey, decode_symbol
from fxpipe.normalizers.reuters import ReutersNormalizer
from fxpipe.normalizers.vcb import VcbNormalizer
from fxpipe.normalizers.xe import XeNormalizer
from fxpipe.normalizers.yahoo import YahooNormalizer

SOURCE_KEYS: tuple[SourceKey, ...] = ("vcb", "xe", "yahoo", "reuters")


def get_normalizer(source: str) -> BaseNormalizer:
    """Return a fresh normalizer for a source key."""
    registry = {
        "vcb": VcbNormalizer,
        "xe": XeNormalizer,
        "yahoo": YahooNormalizer,
        "reuters": ReutersNormalizer,
    }
    try:
        return registry[source]()
    except KeyError:
        raise ValueError(f"Unsupported source: {source}") from None


__all__ = [
    "BaseNormalizer",
    "SourceKey",
    "SOURCE_KEYS",
    "decode_symbol",
    "get_normalizer",
    "VcbNormalizer",
    "XeNormalizer",
    "YahooNormalizer",
    "ReutersNormalizer",
]
