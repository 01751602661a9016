"""Batch dedup and idempotent, chunked upsert of fx ticks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fxpipe.core.config import settings
from fxpipe.core.db import dialect_insert
from fxpipe.core.errors import PersistenceError
from fxpipe.core.logging import get_logger
from fxpipe.models.ticks import FxTick
from fxpipe.schemas.ticks import TickCandidate
from fxpipe.services.resolver import ReferenceResolver

log = get_logger("upsert_service")

TickKey = Tuple[datetime, int, int]


@dataclass
class UpsertStats:
    received: int = 0
    upserted: int = 0
    deduped: int = 0


class TickUpsertService:
    """Writes one source's batch; the caller owns commit/rollback."""

    def __init__(self, db: Session, chunk_size: Optional[int] = None):
        self.db = db
        self.chunk_size = settings.UPSERT_CHUNK_SIZE if chunk_size is None else chunk_size
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be positive")

    def ingest(self, source_name: str, candidates: Sequence[TickCandidate]) -> UpsertStats:
        """Resolve, dedup (later candidate wins) and upsert a batch."""
        stats = UpsertStats(received=len(candidates))
        if not candidates:
            return stats

        try:
            rows = self._resolve_and_dedup(source_name, candidates)
            stats.deduped = stats.received - len(rows)

            for chunk in _chunks(rows, self.chunk_size):
                self._upsert_chunk(chunk)
                stats.upserted += len(chunk)
        except SQLAlchemyError as exc:
            raise PersistenceError(
                f"Tick upsert failed for {source_name}: {exc.__class__.__name__}",
                source=source_name,
                details={"received": stats.received},
            ) from exc

        if stats.deduped:
            log.debug(f"Deduplicated {source_name} batch (input={stats.received} output={len(rows)})")
        return stats

    def _resolve_and_dedup(self, source_name: str, candidates: Iterable[TickCandidate]) -> List[Dict[str, Any]]:
        resolver = ReferenceResolver(self.db)
        source_id = resolver.resolve_source(source_name)

        dedup: Dict[TickKey, Dict[str, Any]] = {}
        for candidate in candidates:
            pair_id = resolver.resolve_pair(candidate.base_currency, candidate.quote_currency)
            dedup[(candidate.time, pair_id, source_id)] = {
                "time": candidate.time,
                "pair_id": pair_id,
                "source_id": source_id,
                "bid": candidate.bid,
                "mid": candidate.mid,
                "ask": candidate.ask,
                "volume": candidate.volume,
            }
        return list(dedup.values())

    def _upsert_chunk(self, rows: List[Dict[str, Any]]) -> None:
        stmt = dialect_insert(self.db, FxTick).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=[FxTick.time, FxTick.pair_id, FxTick.source_id],
            set_={
                "bid": stmt.excluded.bid,
                "mid": stmt.excluded.mid,
                "ask": stmt.excluded.ask,
                "volume": stmt.excluded.volume,
            },
        )
        self.db.execute(stmt)


def _chunks(rows: List[Dict[str, Any]], size: int) -> Iterable[List[Dict[str, Any]]]:
    for start in range(0, len(rows), size):
        yield rows[start : start + size]
