"""API dependencies"""

from typing import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from fxpipe.core.db import SessionLocal
from fxpipe.jobs.queue import QueueBackend


def get_db() -> Generator[Session, None, None]:
    """Database dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_queue_backend(request: Request) -> QueueBackend:
    """Queue backend owned by the application lifespan."""
    runtime = getattr(request.app.state, "pipeline", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Job queue is not initialised")
    return runtime.backend
