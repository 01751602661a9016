"""Job routes - enqueue, inspect and clear crawl/import queues."""

from fastapi import APIRouter, Depends, HTTPException, Path

from fxpipe.api.deps import get_queue_backend
from fxpipe.core.logging import get_logger
from fxpipe.jobs.queue import Job, JobOptions, JobState, QueueBackend, Repeatable, crawl_queue, import_queue
from fxpipe.normalizers import SOURCE_KEYS
from fxpipe.schemas.api import JobCreateRequest, JobCreateResponse, JobOut, QueueStatus, RepeatableOut

router = APIRouter(prefix="/jobs", tags=["jobs"])
log = get_logger("job_routes")

QUEUES = [q for source in SOURCE_KEYS for q in (crawl_queue(source), import_queue(source))]


def _valid_queue(queue: str = Path(..., description="Queue name, e.g. crawl.vcb or import.xe")) -> str:
    if queue not in QUEUES:
        raise HTTPException(status_code=404, detail=f"Unknown queue {queue!r}; expected one of {QUEUES}")
    return queue


def _job_out(job: Job) -> JobOut:
    return JobOut(
        id=job.id,
        queue=job.queue,
        name=job.name,
        state=job.state.value,
        data=job.data,
        attempts_made=job.attempts_made,
        max_attempts=job.max_attempts,
        run_at=job.run_at,
        created_at=job.created_at,
        finished_at=job.finished_at,
        failed_reason=job.failed_reason,
        result=job.result,
    )


def _repeatable_out(repeatable: Repeatable) -> RepeatableOut:
    return RepeatableOut(**repeatable.model_dump())


async def _status(backend: QueueBackend, queue: str) -> QueueStatus:
    return QueueStatus(
        queue=queue,
        counts=await backend.counts(queue),
        failed=[_job_out(j) for j in await backend.list_jobs(queue, [JobState.FAILED])],
        repeatables=[_repeatable_out(r) for r in await backend.list_repeatables(queue)],
    )


@router.post("/{queue}", response_model=JobCreateResponse, status_code=202)
async def add_job(
    body: JobCreateRequest,
    queue: str = Depends(_valid_queue),
    backend: QueueBackend = Depends(get_queue_backend),
):
    """
    Enqueue a one-off job, or register a repeating one with ``repeat_every_seconds``.

    Crawl options: ``identifier``, ``auto_import``; XE also ``fromCurrency``/``toCurrency``.
    Import options: ``mode`` (latest | all) and optionally ``snapshot_id``.
    """
    name = queue.split(".", 1)[0]
    data = {"options": body.options}

    if body.repeat_every_seconds:
        repeatable = await backend.add_repeatable(Repeatable.build(queue, name, data, body.repeat_every_seconds))
        log.info(f"Registered repeatable {queue}/{repeatable.key}")
        return JobCreateResponse(queue=queue, repeatable=_repeatable_out(repeatable))

    job = Job.new(queue, name, data, job_id=body.job_id, options=JobOptions(delay_seconds=body.delay_seconds))
    added = await backend.add(job)
    if added is None:
        existing = await backend.get_job(queue, job.id)
        return JobCreateResponse(queue=queue, job=_job_out(existing) if existing else None, duplicate=True)

    log.info(f"Enqueued {queue}/{job.id}")
    return JobCreateResponse(queue=queue, job=_job_out(added))


@router.get("", response_model=list[QueueStatus])
async def list_queues(backend: QueueBackend = Depends(get_queue_backend)):
    """Depth per state, terminal failures and repeatables for every queue."""
    return [await _status(backend, queue) for queue in QUEUES]


@router.get("/{queue}", response_model=QueueStatus)
async def get_queue(queue: str = Depends(_valid_queue), backend: QueueBackend = Depends(get_queue_backend)):
    return await _status(backend, queue)


@router.delete("/{queue}")
async def clear_queue(queue: str = Depends(_valid_queue), backend: QueueBackend = Depends(get_queue_backend)):
    """Drop every job (terminal failures included) and repeatable of a queue."""
    await backend.clear(queue)
    log.warning(f"Cleared queue {queue}")
    return {"queue": queue, "cleared": True}


@router.delete("/{queue}/{job_id}")
async def remove_job(
    job_id: str,
    queue: str = Depends(_valid_queue),
    backend: QueueBackend = Depends(get_queue_backend),
):
    """Remove a repeatable by key, or a single job by id."""
    if await backend.remove_repeatable(queue, job_id):
        return {"queue": queue, "removed": job_id, "kind": "repeatable"}
    if await backend.remove_job(queue, job_id):
        return {"queue": queue, "removed": job_id, "kind": "job"}
    raise HTTPException(status_code=404, detail=f"No job or repeatable {job_id!r} in {queue}")
