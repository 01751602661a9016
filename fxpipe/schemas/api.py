from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class TickOut(BaseModel):
    time: datetime
    symbol: str
    source: str
    bid: Decimal
    mid: Decimal
    ask: Decimal
    volume: Optional[Decimal] = None


class TickResponse(BaseModel):
    request_id: str
    api_latency_ms: int
    total_count: int
    data: list[TickOut]


class PairOut(BaseModel):
    id: int
    symbol: str
    base_currency: str
    quote_currency: str

    class Config:
        from_attributes = True


class SourceOut(BaseModel):
    id: int
    name: str
    priority: int

    class Config:
        from_attributes = True


class HealthResponse(BaseModel):
    database: str
    queue: str
    last_run_status: str | None


class StatsResponse(BaseModel):
    run_id: str
    source_name: str
    snapshot_id: str | None = None
    status: str
    ticks_received: int
    ticks_upserted: int
    ticks_deduped: int
    samples_skipped: int
    error_message: str | None = None
    started_at: datetime
    ended_at: datetime | None

    class Config:
        from_attributes = True


class SourceSummary(BaseModel):
    source: str
    source_name: str
    tick_count: int
    last_tick_at: datetime | None
    last_run_status: str | None
    last_run_at: datetime | None


class JobCreateRequest(BaseModel):
    options: dict[str, Any] = Field(default_factory=dict)
    job_id: Optional[str] = Field(None, description="Explicit id; a known id is rejected as duplicate")
    repeat_every_seconds: Optional[float] = Field(None, gt=0, description="Register as a repeating job")
    delay_seconds: float = Field(0, ge=0)


class JobOut(BaseModel):
    id: str
    queue: str
    name: str
    state: str
    data: dict[str, Any]
    attempts_made: int
    max_attempts: int
    run_at: datetime
    created_at: datetime
    finished_at: datetime | None = None
    failed_reason: str | None = None
    result: Any = None


class RepeatableOut(BaseModel):
    key: str
    queue: str
    name: str
    every_seconds: float
    next_run: datetime | None = None
    data: dict[str, Any]


class JobCreateResponse(BaseModel):
    queue: str
    job: JobOut | None = None
    repeatable: RepeatableOut | None = None
    duplicate: bool = False


class QueueStatus(BaseModel):
    queue: str
    counts: dict[str, int]
    failed: list[JobOut] = Field(default_factory=list)
    repeatables: list[RepeatableOut] = Field(default_factory=list)
