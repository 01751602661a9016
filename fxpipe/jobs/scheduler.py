"""Fixed-interval scheduler that enqueues crawl jobs with deterministic ids."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fxpipe.core.config import settings
from fxpipe.core.logging import get_logger
from fxpipe.core.snapshots import safe_identifier
from fxpipe.ingestion.runner import get_source
from fxpipe.jobs.queue import Job, QueueBackend, Repeatable, crawl_queue, utcnow

log = get_logger("jobs.scheduler")


def slot_ms(now: datetime, every_seconds: float) -> int:
    """Epoch ms of ``now`` truncated to the schedule interval."""
    interval_ms = int(every_seconds * 1000)
    now_ms = int(now.timestamp() * 1000)
    return now_ms // interval_ms * interval_ms


@dataclass
class Schedule:
    queue: str
    prefix: str
    identifier: str
    every_seconds: float
    data: Dict[str, Any] = field(default_factory=dict)
    name: str = "crawl"

    def job_id(self, now: datetime) -> str:
        return f"{self.prefix}-{safe_identifier(self.identifier)}-{slot_ms(now, self.every_seconds)}"


def default_schedules() -> List[Schedule]:
    """One schedule per configured source identifier."""
    schedules: List[Schedule] = []
    for source_key, every in settings.CRAWL_INTERVAL_SECONDS.items():
        if every <= 0:
            continue
        for identifier in get_source(source_key).identifiers():
            options: Dict[str, Any] = {"identifier": identifier, "auto_import": settings.AUTO_IMPORT}
            if source_key == "xe":
                from_ccy, _, to_ccy = identifier.partition("/")
                options.update({"fromCurrency": from_ccy, "toCurrency": to_ccy})
            schedules.append(
                Schedule(
                    queue=crawl_queue(source_key),
                    prefix=source_key,
                    identifier=identifier,
                    every_seconds=every,
                    data={"options": options},
                )
            )
    return schedules


class Scheduler:
    """Fires built-in schedules and operator repeatables.

    Firing twice inside one interval yields the same job id, which the queue
    rejects, so restarts and multiple scheduler processes do not duplicate work.
    """

    def __init__(self, backend: QueueBackend, schedules: Optional[List[Schedule]] = None, tick_seconds: float = 1.0):
        self.backend = backend
        self.schedules = default_schedules() if schedules is None else schedules
        self.tick_seconds = tick_seconds

    async def fire(self, now: Optional[datetime] = None) -> List[Job]:
        now = now or utcnow()
        enqueued: List[Job] = []

        for schedule in self.schedules:
            job = Job.new(schedule.queue, schedule.name, schedule.data, job_id=schedule.job_id(now), now=now)
            if await self.backend.add(job):
                log.info(f"Scheduled {schedule.queue}/{job.id}")
                enqueued.append(job)

        for queue in await self.backend.list_queues():
            for repeatable in await self.backend.list_repeatables(queue):
                job = await self._fire_repeatable(repeatable, now)
                if job:
                    enqueued.append(job)
        return enqueued

    async def _fire_repeatable(self, repeatable: Repeatable, now: datetime) -> Optional[Job]:
        if repeatable.next_run and repeatable.next_run > now:
            return None

        slot = slot_ms(now, repeatable.every_seconds)
        job = Job.new(repeatable.queue, repeatable.name, repeatable.data, job_id=f"repeat-{repeatable.key}-{slot}", now=now)
        added = await self.backend.add(job)

        next_ms = slot + int(repeatable.every_seconds * 1000)
        repeatable.next_run = datetime.fromtimestamp(next_ms / 1000, tz=timezone.utc)
        await self.backend.save_repeatable(repeatable)
        return added

    async def run(self, stop: asyncio.Event) -> None:
        log.info(f"Scheduler started with {len(self.schedules)} schedules")
        while not stop.is_set():
            try:
                await self.fire()
            except Exception as exc:  # noqa: BLE001
                log.exception(f"Scheduler tick failed: {exc}")
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass
        log.info("Scheduler stopped")
