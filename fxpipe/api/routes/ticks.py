"""Tick routes - canonical fx ticks and reference data."""

import time
import uuid
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from fxpipe.api.deps import get_db
from fxpipe.schemas.api import PairOut, SourceOut, TickOut, TickResponse
from fxpipe.services.data_service import DataService

router = APIRouter(prefix="/ticks", tags=["ticks"])


@router.get("", response_model=TickResponse)
def get_ticks(
    symbol: Optional[str] = Query(None, description="Pair symbol, e.g. USDVND"),
    source: Optional[str] = Query(None, description="Source name, e.g. VietcomBank"),
    start: Optional[datetime] = Query(None, description="Inclusive lower time bound"),
    end: Optional[datetime] = Query(None, description="Exclusive upper time bound"),
    limit: int = Query(100, ge=1, le=1000, description="Number of ticks to return (max 1000)"),
    offset: int = Query(0, ge=0, description="Number of ticks to skip"),
    db: Session = Depends(get_db),
):
    """
    Get ticks newest first.

    Bid/ask of single-rate sources are synthesized around the mid and are
    approximations, not tradable quotes.
    """
    started = time.perf_counter()
    request_id = str(uuid.uuid4())

    service = DataService(db)
    rows = service.get_ticks(symbol=symbol, source=source, start=start, end=end, limit=limit, offset=offset)
    total = service.count_ticks(symbol=symbol, source=source, start=start, end=end)

    latency_ms = int((time.perf_counter() - started) * 1000)

    return TickResponse(
        request_id=request_id,
        api_latency_ms=latency_ms,
        total_count=total,
        data=[
            TickOut(
                time=tick.time,
                symbol=pair_symbol,
                source=source_name,
                bid=tick.bid,
                mid=tick.mid,
                ask=tick.ask,
                volume=tick.volume,
            )
            for tick, pair_symbol, source_name in rows
        ],
    )


@router.get("/pairs", response_model=list[PairOut])
def get_pairs(db: Session = Depends(get_db)):
    """All currency pairs seen so far."""
    return DataService(db).get_pairs()


@router.get("/sources", response_model=list[SourceOut])
def get_sources(db: Session = Depends(get_db)):
    """All quote providers seen so far."""
    return DataService(db).get_sources()
