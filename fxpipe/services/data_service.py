"""Data Service - Query logic for tick and run endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from fxpipe.core.logging import get_logger
from fxpipe.models.reference import CurrencyPair, Source
from fxpipe.models.runs import IngestionRun
from fxpipe.models.ticks import FxTick
from fxpipe.normalizers import SOURCE_KEYS, get_normalizer

log = get_logger("data_service")


class DataService:
    """Handles all data query operations - reads from DB only, no writes."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Tick Queries
    # -------------------------------------------------------------------------
    def _tick_query(
        self,
        symbol: Optional[str],
        source: Optional[str],
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> Select:
        stmt = (
            select(FxTick, CurrencyPair.symbol, Source.name)
            .join(CurrencyPair, CurrencyPair.id == FxTick.pair_id)
            .join(Source, Source.id == FxTick.source_id)
        )
        if symbol:
            stmt = stmt.where(CurrencyPair.symbol == symbol.upper())
        if source:
            stmt = stmt.where(Source.name == source)
        if start:
            stmt = stmt.where(FxTick.time >= start)
        if end:
            stmt = stmt.where(FxTick.time < end)
        return stmt

    def get_ticks(
        self,
        symbol: Optional[str] = None,
        source: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Tuple[FxTick, str, str]]:
        """Ticks newest first, with their pair symbol and source name."""
        stmt = self._tick_query(symbol, source, start, end)
        stmt = stmt.order_by(FxTick.time.desc(), FxTick.pair_id, FxTick.source_id).limit(limit).offset(offset)
        return [tuple(row) for row in self.db.execute(stmt).all()]

    def count_ticks(
        self,
        symbol: Optional[str] = None,
        source: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> int:
        sub = self._tick_query(symbol, source, start, end).subquery()
        return self.db.execute(select(func.count()).select_from(sub)).scalar() or 0

    def get_pairs(self) -> List[CurrencyPair]:
        return list(self.db.execute(select(CurrencyPair).order_by(CurrencyPair.symbol)).scalars().all())

    def get_sources(self) -> List[Source]:
        return list(self.db.execute(select(Source).order_by(Source.name)).scalars().all())

    # -------------------------------------------------------------------------
    # Ingestion Run Queries
    # -------------------------------------------------------------------------
    def get_ingestion_runs(
        self,
        source: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 10,
    ) -> List[IngestionRun]:
        """Get recent ingestion runs with optional filtering."""
        stmt = select(IngestionRun)

        if source:
            stmt = stmt.where(IngestionRun.source_name == source)
        if status:
            stmt = stmt.where(IngestionRun.status == status)

        stmt = stmt.order_by(IngestionRun.started_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def get_latest_run(self, source: Optional[str] = None) -> Optional[IngestionRun]:
        stmt = select(IngestionRun)
        if source:
            stmt = stmt.where(IngestionRun.source_name == source)
        stmt = stmt.order_by(IngestionRun.started_at.desc()).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_sources_summary(self) -> List[Dict[str, Any]]:
        """Tick counts and last run per source key."""
        summary = []
        for key in SOURCE_KEYS:
            source_name = get_normalizer(key).source_name
            count, last_tick = self.db.execute(
                select(func.count(), func.max(FxTick.time))
                .select_from(FxTick)
                .join(Source, Source.id == FxTick.source_id)
                .where(Source.name == source_name)
            ).one()
            latest_run = self.get_latest_run(key)

            summary.append({
                "source": key,
                "source_name": source_name,
                "tick_count": count or 0,
                "last_tick_at": last_tick,
                "last_run_status": latest_run.status if latest_run else None,
                "last_run_at": latest_run.started_at if latest_run else None,
            })

        return summary
