"""Crawl and import task handlers, and crawl -> import chaining."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from fxpipe.core.db import SessionLocal
from fxpipe.core.logging import get_logger
from fxpipe.core.snapshots import SnapshotStore
from fxpipe.ingestion.runner import CrawlRunner, get_source
from fxpipe.jobs.queue import CRAWL_PREFIX, Job, QueueBackend, import_queue
from fxpipe.services.import_service import ImportService

log = get_logger("jobs.tasks")

SessionFactory = Callable[[], Session]


def source_of(queue: str) -> str:
    return queue.split(".", 1)[-1]


def make_crawl_handler(store: Optional[SnapshotStore] = None):
    async def crawl(job: Job) -> Dict[str, Any]:
        source = get_source(source_of(job.queue))
        identifier = job.options.get("identifier") or source.identifiers()[0]
        return await CrawlRunner(source, store).run(identifier, job.options)

    return crawl


def make_import_handler(store: Optional[SnapshotStore] = None, session_factory: Optional[SessionFactory] = None):
    factory = session_factory or SessionLocal

    def _run(source: str, mode: str, snapshot_id: Optional[str]) -> Dict[str, Any]:
        with factory() as db:
            return ImportService(db, store).run(source, mode, snapshot_id)  # type: ignore[arg-type]

    async def import_(job: Job) -> Dict[str, Any]:
        options = job.options
        mode = options.get("mode", "latest")
        return await asyncio.to_thread(_run, source_of(job.queue), mode, options.get("snapshot_id"))

    return import_


def chain_import(backend: QueueBackend):
    """Completion hook: a successful crawl with ``auto_import`` enqueues its import."""

    async def hook(job: Job) -> None:
        if not job.queue.startswith(f"{CRAWL_PREFIX}.") or not job.options.get("auto_import"):
            return
        snapshot_id = (job.result or {}).get("snapshot_id")
        if not snapshot_id:
            return

        follow_up = Job.new(
            import_queue(source_of(job.queue)),
            "import",
            {"options": {"mode": "latest", "snapshot_id": snapshot_id}},
            job_id=f"import-{snapshot_id}",
        )
        try:
            if await backend.add(follow_up):
                log.info(f"Chained {follow_up.queue}/{follow_up.id} after {job.id}")
        except Exception as exc:  # noqa: BLE001
            # Fire-and-forget: the crawl already succeeded
            log.error(f"Failed to enqueue import after {job.id}: {exc}")

    return hook
