"""Job records and queue backends.

A queue holds jobs addressed by id. Adding a job whose id is still known to
the queue (waiting, running, failed or completed within the dedup window) is a
no-op, which is what makes deterministic schedule ids idempotent.

Per-queue single-flight is a lock taken on claim and released on completion
or failure; it expires with the job lease so a dead worker cannot wedge a queue.
"""

from __future__ import annotations

import hashlib
import json
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from fxpipe.core.config import settings

CRAWL_PREFIX = "crawl"
IMPORT_PREFIX = "import"


def crawl_queue(source: str) -> str:
    return f"{CRAWL_PREFIX}.{source}"


def import_queue(source: str) -> str:
    return f"{IMPORT_PREFIX}.{source}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobState(str, Enum):
    SCHEDULED = "scheduled"
    ENQUEUED = "enqueued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    RETRYING = "failed-retrying"
    FAILED = "failed-terminal"


WAITING_STATES = (JobState.SCHEDULED, JobState.ENQUEUED, JobState.RETRYING)


class JobOptions(BaseModel):
    attempts: int = Field(default_factory=lambda: settings.JOB_ATTEMPTS, ge=1)
    backoff_seconds: float = Field(default_factory=lambda: settings.JOB_BACKOFF_SECONDS, ge=0)
    delay_seconds: float = Field(default=0, ge=0)


class Job(BaseModel):
    id: str
    queue: str
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
    state: JobState = JobState.ENQUEUED
    attempts_made: int = 0
    max_attempts: int = 3
    backoff_seconds: float = 60.0
    run_at: datetime
    created_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    lease_until: Optional[datetime] = None
    failed_reason: Optional[str] = None
    result: Optional[Any] = None
    lock_token: Optional[str] = None

    @property
    def options(self) -> Dict[str, Any]:
        return self.data.get("options") or {}

    def retry_delay(self) -> float:
        """Exponential backoff after the attempt that just failed."""
        return self.backoff_seconds * 2 ** max(self.attempts_made - 1, 0)

    @classmethod
    def new(
        cls,
        queue: str,
        name: str,
        data: Optional[Dict[str, Any]] = None,
        job_id: Optional[str] = None,
        options: Optional[JobOptions] = None,
        now: Optional[datetime] = None,
    ) -> "Job":
        options = options or JobOptions()
        now = now or utcnow()
        data = data or {}
        return cls(
            id=job_id or f"{name}-{content_hash(data)}-{int(now.timestamp() * 1000)}",
            queue=queue,
            name=name,
            data=data,
            state=JobState.SCHEDULED if options.delay_seconds else JobState.ENQUEUED,
            max_attempts=options.attempts,
            backoff_seconds=options.backoff_seconds,
            run_at=now + timedelta(seconds=options.delay_seconds),
            created_at=now,
        )


class Repeatable(BaseModel):
    """Operator-registered job fired every ``every_seconds``."""

    key: str
    queue: str
    name: str
    data: Dict[str, Any] = Field(default_factory=dict)
    every_seconds: float = Field(gt=0)
    next_run: Optional[datetime] = None

    @classmethod
    def build(cls, queue: str, name: str, data: Dict[str, Any], every_seconds: float) -> "Repeatable":
        key = f"{name}:{int(every_seconds * 1000)}:{content_hash(data)}"
        return cls(key=key, queue=queue, name=name, data=data, every_seconds=every_seconds)


def content_hash(data: Dict[str, Any]) -> str:
    return hashlib.sha1(json.dumps(data, sort_keys=True, default=str).encode()).hexdigest()[:10]


class QueueBackend(ABC):
    """Storage and state transitions for jobs; shared by API, workers and scheduler."""

    @abstractmethod
    async def add(self, job: Job) -> Optional[Job]:
        """Store a new job; return None when its id is already known."""

    @abstractmethod
    async def claim(self, queue: str, lease_seconds: float, now: Optional[datetime] = None) -> Optional[Job]:
        """Take the queue lock and the next due job, or None."""

    @abstractmethod
    async def complete(self, job: Job, result: Any = None, now: Optional[datetime] = None) -> Job: ...

    @abstractmethod
    async def fail(self, job: Job, reason: str, retry_at: Optional[datetime] = None, now: Optional[datetime] = None) -> Job:
        """Record a failed attempt; reschedule at ``retry_at`` or mark terminal."""

    @abstractmethod
    async def recover_stalled(self, queue: str, now: Optional[datetime] = None) -> List[Job]:
        """Redeliver jobs whose lease expired; terminal if their budget is spent."""

    @abstractmethod
    async def get_job(self, queue: str, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    async def list_jobs(self, queue: str, states: Optional[List[JobState]] = None) -> List[Job]: ...

    @abstractmethod
    async def remove_job(self, queue: str, job_id: str) -> bool: ...

    @abstractmethod
    async def clear(self, queue: str) -> None:
        """Drop every job and repeatable of the queue."""

    @abstractmethod
    async def list_queues(self) -> List[str]: ...

    @abstractmethod
    async def add_repeatable(self, repeatable: Repeatable) -> Repeatable: ...

    @abstractmethod
    async def list_repeatables(self, queue: str) -> List[Repeatable]: ...

    @abstractmethod
    async def save_repeatable(self, repeatable: Repeatable) -> None: ...

    @abstractmethod
    async def remove_repeatable(self, queue: str, key: str) -> bool: ...

    async def counts(self, queue: str) -> Dict[str, int]:
        jobs = await self.list_jobs(queue)
        counts = {state.value: 0 for state in JobState}
        for job in jobs:
            counts[job.state.value] += 1
        return counts

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None

    @staticmethod
    def _terminal_or_redeliver(job: Job, now: datetime) -> Job:
        job.lease_until = None
        job.lock_token = None
        if job.attempts_made >= job.max_attempts:
            job.state = JobState.FAILED
            job.failed_reason = "job stalled past its lease"
            job.finished_at = now
        else:
            job.state = JobState.ENQUEUED
            job.run_at = now
        return job


class MemoryQueueBackend(QueueBackend):
    """Single-process backend for development and tests."""

    def __init__(self, completed_ttl_seconds: Optional[float] = None):
        self.completed_ttl = timedelta(
            seconds=settings.JOB_DEDUP_TTL_SECONDS if completed_ttl_seconds is None else completed_ttl_seconds
        )
        self._jobs: Dict[str, Dict[str, Job]] = {}
        self._locks: Dict[str, tuple[str, datetime]] = {}
        self._repeatables: Dict[str, Dict[str, Repeatable]] = {}

    def _queue(self, queue: str) -> Dict[str, Job]:
        return self._jobs.setdefault(queue, {})

    def _expire(self, queue: str, now: datetime) -> None:
        jobs = self._queue(queue)
        for job_id in [
            j.id for j in jobs.values()
            if j.state == JobState.SUCCEEDED and j.finished_at and j.finished_at + self.completed_ttl <= now
        ]:
            del jobs[job_id]

    def _release(self, job: Job) -> None:
        held = self._locks.get(job.queue)
        if held and held[0] == job.lock_token:
            del self._locks[job.queue]

    async def add(self, job: Job) -> Optional[Job]:
        self._expire(job.queue, utcnow())
        jobs = self._queue(job.queue)
        if job.id in jobs:
            return None
        jobs[job.id] = job.model_copy(deep=True)
        return job

    async def claim(self, queue: str, lease_seconds: float, now: Optional[datetime] = None) -> Optional[Job]:
        now = now or utcnow()
        held = self._locks.get(queue)
        if held and held[1] > now:
            return None

        due = sorted(
            (j for j in self._queue(queue).values() if j.state in WAITING_STATES and j.run_at <= now),
            key=lambda j: (j.run_at, j.created_at),
        )
        if not due:
            return None

        job = due[0]
        job.state = JobState.RUNNING
        job.attempts_made += 1
        job.started_at = now
        job.lease_until = now + timedelta(seconds=lease_seconds)
        job.lock_token = f"{job.id}:{job.attempts_made}"
        self._locks[queue] = (job.lock_token, job.lease_until)
        return job.model_copy(deep=True)

    async def complete(self, job: Job, result: Any = None, now: Optional[datetime] = None) -> Job:
        stored = self._queue(job.queue).get(job.id, job)
        self._release(job)
        stored.state = JobState.SUCCEEDED
        stored.result = result
        stored.finished_at = now or utcnow()
        stored.lease_until = None
        stored.lock_token = None
        return stored.model_copy(deep=True)

    async def fail(self, job: Job, reason: str, retry_at: Optional[datetime] = None, now: Optional[datetime] = None) -> Job:
        stored = self._queue(job.queue).get(job.id, job)
        self._release(job)
        stored.failed_reason = reason
        stored.result = job.result
        stored.lease_until = None
        stored.lock_token = None
        if retry_at is not None:
            stored.state = JobState.RETRYING
            stored.run_at = retry_at
        else:
            stored.state = JobState.FAILED
            stored.finished_at = now or utcnow()
        return stored.model_copy(deep=True)

    async def recover_stalled(self, queue: str, now: Optional[datetime] = None) -> List[Job]:
        now = now or utcnow()
        recovered = []
        for job in self._queue(queue).values():
            if job.state == JobState.RUNNING and job.lease_until and job.lease_until <= now:
                held = self._locks.get(queue)
                if held and held[0] == job.lock_token:
                    del self._locks[queue]
                recovered.append(self._terminal_or_redeliver(job, now).model_copy(deep=True))
        return recovered

    async def get_job(self, queue: str, job_id: str) -> Optional[Job]:
        self._expire(queue, utcnow())
        job = self._queue(queue).get(job_id)
        return job.model_copy(deep=True) if job else None

    async def list_jobs(self, queue: str, states: Optional[List[JobState]] = None) -> List[Job]:
        self._expire(queue, utcnow())
        jobs = [j for j in self._queue(queue).values() if not states or j.state in states]
        return [j.model_copy(deep=True) for j in sorted(jobs, key=lambda j: j.created_at)]

    async def remove_job(self, queue: str, job_id: str) -> bool:
        return self._queue(queue).pop(job_id, None) is not None

    async def clear(self, queue: str) -> None:
        self._jobs.pop(queue, None)
        self._locks.pop(queue, None)
        self._repeatables.pop(queue, None)

    async def list_queues(self) -> List[str]:
        return sorted(set(self._jobs) | set(self._repeatables))

    async def add_repeatable(self, repeatable: Repeatable) -> Repeatable:
        existing = self._repeatables.setdefault(repeatable.queue, {}).setdefault(repeatable.key, repeatable)
        return existing.model_copy(deep=True)

    async def list_repeatables(self, queue: str) -> List[Repeatable]:
        return [r.model_copy(deep=True) for r in self._repeatables.get(queue, {}).values()]

    async def save_repeatable(self, repeatable: Repeatable) -> None:
        bucket = self._repeatables.get(repeatable.queue, {})
        if repeatable.key in bucket:
            bucket[repeatable.key] = repeatable.model_copy(deep=True)

    async def remove_repeatable(self, queue: str, key: str) -> bool:
        return self._repeatables.get(queue, {}).pop(key, None) is not None
