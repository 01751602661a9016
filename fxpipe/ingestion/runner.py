"""Crawl orchestration: fetch a snapshot and persist it."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from fxpipe.core.logging import get_logger
from fxpipe.core.snapshots import SnapshotStore
from .base import BaseSource
from .reuters_source import ReutersSource
from .vcb_source import VcbSource
from .xe_source import XeSource
from .yahoo_source import YahooSource

log = get_logger("ingestion.runner")

SOURCES: Dict[str, type[BaseSource]] = {
    "vcb": VcbSource,
    "xe": XeSource,
    "yahoo": YahooSource,
    "reuters": ReutersSource,
}


def get_source(key: str) -> BaseSource:
    try:
        return SOURCES[key]()
    except KeyError:
        raise ValueError(f"Unsupported source: {key}") from None


class CrawlRunner:
    """Runs one source adapter and stores what it captured."""

    def __init__(self, source: BaseSource, store: Optional[SnapshotStore] = None):
        self.source = source
        self.store = store or SnapshotStore()

    async def run(self, identifier: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        snapshot = await self.source.fetch(identifier, options)
        snapshot_id = await asyncio.to_thread(self.store.save, snapshot)
        log.info(f"Source={self.source.key} identifier={identifier} snapshot={snapshot_id}")
        return {
            "source": self.source.key,
            "identifier": snapshot.identifier,
            "snapshot_id": snapshot_id,
            "captured_at": snapshot.captured_at.isoformat(),
            "method": snapshot.method,
        }
