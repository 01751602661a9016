"""Stats routes - ingestion observability."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from fxpipe.api.deps import get_db
from fxpipe.schemas.api import SourceSummary, StatsResponse
from fxpipe.services.data_service import DataService

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("", response_model=list[StatsResponse])
def get_ingestion_stats(
    source: Optional[str] = Query(None, description="Filter by source key (vcb, xe, yahoo, reuters)"),
    status: Optional[str] = Query(None, description="Filter by status (running, success, failure)"),
    limit: int = Query(10, ge=1, le=100, description="Number of runs to return"),
    db: Session = Depends(get_db),
):
    """
    Get recent ingestion runs, one per imported snapshot.

    Shows received/upserted/deduped tick counts, skipped samples and errors.
    """
    service = DataService(db)
    runs = service.get_ingestion_runs(source=source, status=status, limit=limit)

    return [
        StatsResponse(
            run_id=str(run.run_id),
            source_name=run.source_name,
            snapshot_id=run.snapshot_id,
            status=run.status,
            ticks_received=run.ticks_received,
            ticks_upserted=run.ticks_upserted,
            ticks_deduped=run.ticks_deduped,
            samples_skipped=run.samples_skipped,
            error_message=run.error_message,
            started_at=run.started_at,
            ended_at=run.ended_at,
        )
        for run in runs
    ]


@router.get("/sources", response_model=list[SourceSummary])
def get_sources_summary(db: Session = Depends(get_db)):
    """Tick counts, newest tick and last run status for each source."""
    return DataService(db).get_sources_summary()
