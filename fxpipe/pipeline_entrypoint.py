"""Pipeline entrypoint - Standalone script for crawls, imports and workers.

Usage:
    python -m fxpipe.pipeline_entrypoint import vcb             # Import latest VCB snapshots
    python -m fxpipe.pipeline_entrypoint import yahoo all       # Import every retained Yahoo snapshot
    python -m fxpipe.pipeline_entrypoint crawl xe USD/VND       # Crawl once, store the snapshot
    python -m fxpipe.pipeline_entrypoint workers                # Run queue workers + scheduler
"""

import asyncio
import signal
import sys

from fxpipe.core.config import settings
from fxpipe.core.db import SessionLocal
from fxpipe.core.errors import PipelineError
from fxpipe.core.logging import get_logger
from fxpipe.ingestion.runner import CrawlRunner, get_source
from fxpipe.jobs.runtime import PipelineRuntime
from fxpipe.normalizers import SOURCE_KEYS
from fxpipe.services.import_service import ImportService

logger = get_logger("pipeline_entrypoint")

USAGE = "usage: pipeline_entrypoint (import <source> [latest|all] | crawl <source> [identifier] | workers)"


def run_import(source: str, mode: str) -> dict:
    """Import snapshots of one source."""
    logger.info(f"Starting {mode} import for source: {source}")
    with SessionLocal() as db:
        result = ImportService(db).run(source, mode)  # type: ignore[arg-type]
    logger.info(f"Import completed for {source}: {result['succeeded']}/{result['files']} snapshots")
    return result


async def run_crawl(source: str, identifier: str | None) -> dict:
    """Crawl one identifier of a source and store the snapshot."""
    adapter = get_source(source)
    identifier = identifier or adapter.identifiers()[0]
    logger.info(f"Starting crawl for {source}/{identifier}")
    return await CrawlRunner(adapter).run(identifier)


async def run_workers() -> None:
    """Run workers and scheduler until SIGINT/SIGTERM."""
    runtime = PipelineRuntime()
    runtime.start(workers=True, scheduler=settings.SCHEDULER_ENABLED)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await stop.wait()
    await runtime.stop()


def main():
    """Main entry point for the pipeline CLI."""
    args = sys.argv[1:]
    if not args:
        logger.error(USAGE)
        sys.exit(2)

    command = args[0]
    if command == "workers":
        asyncio.run(run_workers())
        return None

    if command not in ("import", "crawl") or len(args) < 2:
        logger.error(USAGE)
        sys.exit(2)

    source = args[1]
    if source not in SOURCE_KEYS:
        logger.error(f"Invalid source: {source}. Must be one of: {', '.join(SOURCE_KEYS)}")
        sys.exit(1)

    if command == "crawl":
        try:
            result = asyncio.run(run_crawl(source, args[2] if len(args) > 2 else None))
        except PipelineError as exc:
            logger.error(f"Crawl failed for {source}: {exc.message}")
            sys.exit(1)
        logger.info(f"Crawl completed: {result}")
        return result

    mode = args[2] if len(args) > 2 else "latest"
    if mode not in ("latest", "all"):
        logger.error(f"Invalid mode: {mode}. Must be latest or all")
        sys.exit(1)

    try:
        result = run_import(source, mode)
    except PipelineError as exc:
        logger.error(f"Import failed for {source}: {exc.message}")
        sys.exit(1)

    # Exit with error code if any snapshot failed
    if result["failed"]:
        sys.exit(1)
    return result


if __name__ == "__main__":
    main()
