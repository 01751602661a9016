"""Health routes - System health and readiness checks."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fxpipe.api.deps import get_db
from fxpipe.models.runs import IngestionRun
from fxpipe.schemas.api import HealthResponse

router = APIRouter(prefix="/health", tags=["health"])


async def _queue_status(request: Request) -> str:
    runtime = getattr(request.app.state, "pipeline", None)
    if runtime is None:
        return "disabled"
    try:
        return "ok" if await runtime.backend.ping() else "down"
    except Exception as e:  # noqa: BLE001
        return f"down: {e}"


@router.get("", response_model=HealthResponse)
async def health(request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Health check endpoint for load balancer and Docker health checks.

    Checks database and queue connectivity and the last ingestion run status.
    Returns 503 if the database is unreachable.
    """
    last_status = None
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
        stmt = select(IngestionRun).order_by(IngestionRun.started_at.desc()).limit(1)
        last_run = db.execute(stmt).scalar_one_or_none()
        last_status = last_run.status if last_run else None
    except SQLAlchemyError as e:
        db_status = f"down: {e.__class__.__name__}"
        response.status_code = 503

    return HealthResponse(
        database=db_status,
        queue=await _queue_status(request),
        last_run_status=last_status,
    )


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)):
    """
    Readiness probe - checks if service can serve traffic.

    Returns 200 if ready, 503 if database is unreachable.
    """
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready", "timestamp": datetime.now(timezone.utc).isoformat()}
    except SQLAlchemyError as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e), "timestamp": datetime.now(timezone.utc).isoformat()}
