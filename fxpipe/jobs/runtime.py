"""Process-level wiring: queue connection pool, workers and scheduler."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from fxpipe.core.config import settings
from fxpipe.core.logging import get_logger
from fxpipe.core.snapshots import SnapshotStore
from fxpipe.jobs.queue import MemoryQueueBackend, QueueBackend, crawl_queue, import_queue
from fxpipe.jobs.redis_backend import RedisQueueBackend, create_redis_pool
from fxpipe.jobs.scheduler import Scheduler
from fxpipe.jobs.tasks import SessionFactory, chain_import, make_crawl_handler, make_import_handler
from fxpipe.jobs.worker import QueueWorker
from fxpipe.normalizers import SOURCE_KEYS

log = get_logger("jobs.runtime")


def build_workers(
    backend: QueueBackend,
    store: Optional[SnapshotStore] = None,
    session_factory: Optional[SessionFactory] = None,
) -> List[QueueWorker]:
    """One worker per crawl/import queue, honouring ``ACTIVE_WORKERS``."""
    crawl = make_crawl_handler(store)
    import_ = make_import_handler(store, session_factory)
    hooks = [chain_import(backend)]

    workers: List[QueueWorker] = []
    for source in SOURCE_KEYS:
        for queue, handler in ((crawl_queue(source), crawl), (import_queue(source), import_)):
            if not settings.worker_active(queue):
                log.info(f"Worker for {queue} disabled by ACTIVE_WORKERS")
                continue
            workers.append(QueueWorker(backend, queue, handler, on_completed=hooks))
    return workers


class PipelineRuntime:
    """Owns the queue connection pool and background tasks for one process."""

    def __init__(self, backend: Optional[QueueBackend] = None, pool=None):
        self._pool = pool
        self.backend = backend or self._create_backend()
        self._stop = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    def _create_backend(self) -> QueueBackend:
        if settings.QUEUE_BACKEND == "memory":
            return MemoryQueueBackend()

        self._pool = create_redis_pool()
        return RedisQueueBackend(self._pool)

    def start(self, workers: bool = True, scheduler: bool = True) -> None:
        self._stop.clear()
        if workers:
            for worker in build_workers(self.backend):
                self._tasks.append(asyncio.create_task(worker.run(self._stop), name=f"worker:{worker.queue}"))
        if scheduler:
            self._tasks.append(asyncio.create_task(Scheduler(self.backend).run(self._stop), name="scheduler"))
        log.info(f"Pipeline runtime started ({len(self._tasks)} tasks)")

    async def wait(self) -> None:
        await asyncio.gather(*self._tasks)

    async def stop(self, drain_seconds: Optional[float] = None) -> None:
        """Let running jobs finish for up to ``drain_seconds``, then cancel the rest."""
        drain = settings.WORKER_DRAIN_SECONDS if drain_seconds is None else drain_seconds
        self._stop.set()
        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=drain)
            if pending:
                log.warning(f"Cancelling {len(pending)} tasks still running after {drain:.0f}s drain")
            for task in pending:
                task.cancel()
            for task in pending:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._tasks.clear()

        await self.backend.close()
        if self._pool is not None:
            await self._pool.disconnect()
        log.info("Pipeline runtime stopped")
