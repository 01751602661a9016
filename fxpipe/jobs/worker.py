"""Queue worker: single-flight execution with retry/backoff and completion hooks."""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, List, Optional

from fxpipe.core.config import settings
from fxpipe.core.errors import TerminalTaskFailure
from fxpipe.core.logging import get_logger
from fxpipe.jobs.queue import Job, QueueBackend, utcnow

log = get_logger("jobs.worker")

Handler = Callable[[Job], Awaitable[Any]]
CompletionHook = Callable[[Job], Awaitable[None]]


class QueueWorker:
    """Processes one queue, one job at a time.

    Each attempt is bounded by the lock duration; exceeding it counts as a
    failed attempt, and so does an attempt interrupted by shutdown. Failed
    attempts are retried after ``backoff * 2 ** (attempt - 1)`` until the
    job's budget is spent, after which the job is kept as failed-terminal
    and logged at ERROR.
    """

    def __init__(
        self,
        backend: QueueBackend,
        queue: str,
        handler: Handler,
        lock_duration: Optional[float] = None,
        poll_interval: Optional[float] = None,
        on_completed: Optional[List[CompletionHook]] = None,
    ):
        self.backend = backend
        self.queue = queue
        self.handler = handler
        self.lock_duration = lock_duration or settings.JOB_LOCK_DURATION_SECONDS
        self.poll_interval = settings.WORKER_POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.on_completed = on_completed or []

    async def process_next(self) -> Optional[Job]:
        """Claim and run one due job; return its updated record, or None if idle."""
        await self.backend.recover_stalled(self.queue)
        job = await self.backend.claim(self.queue, self.lock_duration)
        if job is None:
            return None

        log.info(f"Processing {self.queue}/{job.id} (attempt {job.attempts_made}/{job.max_attempts})")
        try:
            result = await asyncio.wait_for(self.handler(job), timeout=self.lock_duration)
        except asyncio.CancelledError:
            log.warning(f"Worker for {self.queue} shut down while running {job.id}")
            await self._failed(job, "Worker shut down mid-job", retryable=True)
            raise
        except asyncio.TimeoutError:
            return await self._failed(job, f"Job exceeded lock duration of {self.lock_duration}s", retryable=True)
        except Exception as exc:  # noqa: BLE001
            return await self._failed(job, str(exc) or exc.__class__.__name__, getattr(exc, "retryable", True))

        done = await self.backend.complete(job, result)
        log.info(f"Completed {self.queue}/{job.id}")
        for hook in self.on_completed:
            try:
                await hook(done)
            except Exception as exc:  # noqa: BLE001
                # A follow-up failing must not fail the job that already succeeded
                log.error(f"Completion hook failed for {self.queue}/{job.id}: {exc}")
        return done

    async def _failed(self, job: Job, reason: str, retryable: bool) -> Job:
        if retryable and job.attempts_made < job.max_attempts:
            delay = job.retry_delay()
            log.warning(f"Job {self.queue}/{job.id} failed (attempt {job.attempts_made}): {reason}; retry in {delay:.0f}s")
            return await self.backend.fail(job, reason, retry_at=utcnow() + timedelta(seconds=delay))

        terminal = TerminalTaskFailure(
            f"Job {self.queue}/{job.id} failed permanently after {job.attempts_made} attempts: {reason}",
            job_id=job.id,
            queue=self.queue,
            attempts=job.attempts_made,
        )
        job.result = terminal.to_dict()
        failed = await self.backend.fail(job, reason)
        log.error(terminal.message)
        return failed

    async def run(self, stop: asyncio.Event) -> None:
        log.info(f"Worker started for {self.queue}")
        while not stop.is_set():
            try:
                job = await self.process_next()
            except asyncio.CancelledError:
                log.info(f"Worker for {self.queue} cancelled")
                raise
            except Exception as exc:  # noqa: BLE001
                log.exception(f"Worker loop error on {self.queue}: {exc}")
                job = None
            if job is None:
                try:
                    await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
        log.info(f"Worker stopped for {self.queue}")
