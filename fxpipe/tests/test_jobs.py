"""Job queue, worker retry/backoff, scheduling and chaining tests"""

import asyncio
from datetime import timedelta

import pytest
from loguru import logger

from conftest import xe_payload
from fxpipe.core.config import settings
from fxpipe.core.db import SessionLocal
from fxpipe.core.errors import FetchError, SampleSkipped
from fxpipe.jobs.queue import Job, JobOptions, JobState, MemoryQueueBackend, Repeatable, utcnow
from fxpipe.jobs.runtime import PipelineRuntime, build_workers
from fxpipe.jobs.scheduler import Schedule, Scheduler, slot_ms
from fxpipe.jobs.tasks import chain_import, make_import_handler
from fxpipe.jobs.worker import QueueWorker


@pytest.fixture
def error_logs():
    messages = []
    sink_id = logger.add(lambda m: messages.append(m.record["message"]), level="ERROR")
    yield messages
    logger.remove(sink_id)


def make_due(backend: MemoryQueueBackend, job: Job) -> None:
    backend._jobs[job.queue][job.id].run_at = utcnow() - timedelta(seconds=1)


def vcb_schedule() -> Schedule:
    return Schedule(
        queue="crawl.vcb",
        prefix="vcb",
        identifier="rates",
        every_seconds=60,
        data={"options": {"identifier": "rates", "auto_import": True}},
    )


async def failing(job):
    raise FetchError("provider down", source="vcb")


class TestMemoryQueue:
    """Test queue storage semantics"""

    @pytest.mark.asyncio
    async def test_known_id_is_rejected(self, queue_backend):
        assert await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="vcb-rates-1"))
        assert await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="vcb-rates-1")) is None
        assert len(await queue_backend.list_jobs("crawl.vcb")) == 1

    @pytest.mark.asyncio
    async def test_completed_id_is_rejected_within_dedup_window(self, queue_backend):
        job = await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="vcb-rates-1"))
        claimed = await queue_backend.claim("crawl.vcb", 60)
        await queue_backend.complete(claimed, {"ok": True})

        assert await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id=job.id)) is None

    @pytest.mark.asyncio
    async def test_completed_id_is_reusable_after_dedup_window(self):
        backend = MemoryQueueBackend(completed_ttl_seconds=1)
        await backend.add(Job.new("crawl.vcb", "crawl", job_id="vcb-rates-1"))
        claimed = await backend.claim("crawl.vcb", 60)
        await backend.complete(claimed, now=utcnow() - timedelta(seconds=5))

        assert await backend.add(Job.new("crawl.vcb", "crawl", job_id="vcb-rates-1"))

    @pytest.mark.asyncio
    async def test_single_flight_per_queue(self, queue_backend):
        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="a"))
        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="b"))
        await queue_backend.add(Job.new("crawl.xe", "crawl", job_id="c"))

        first = await queue_backend.claim("crawl.vcb", 60)
        assert first.id == "a"
        assert await queue_backend.claim("crawl.vcb", 60) is None
        assert (await queue_backend.claim("crawl.xe", 60)).id == "c"

        await queue_backend.complete(first)
        assert (await queue_backend.claim("crawl.vcb", 60)).id == "b"

    @pytest.mark.asyncio
    async def test_delayed_job_waits(self, queue_backend):
        job = await queue_backend.add(Job.new("crawl.vcb", "crawl", options=JobOptions(delay_seconds=30)))
        assert job.state == JobState.SCHEDULED
        assert await queue_backend.claim("crawl.vcb", 60) is None
        assert (await queue_backend.claim("crawl.vcb", 60, now=utcnow() + timedelta(seconds=31))).id == job.id

    @pytest.mark.asyncio
    async def test_stalled_job_is_redelivered(self, queue_backend):
        now = utcnow()
        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="a", now=now))
        await queue_backend.claim("crawl.vcb", 10, now=now)

        (recovered,) = await queue_backend.recover_stalled("crawl.vcb", now=now + timedelta(seconds=11))
        assert recovered.state == JobState.ENQUEUED
        again = await queue_backend.claim("crawl.vcb", 10, now=now + timedelta(seconds=11))
        assert again.attempts_made == 2

    @pytest.mark.asyncio
    async def test_stalled_job_without_budget_is_terminal(self, queue_backend):
        now = utcnow()
        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="a", options=JobOptions(attempts=1), now=now))
        await queue_backend.claim("crawl.vcb", 10, now=now)

        (recovered,) = await queue_backend.recover_stalled("crawl.vcb", now=now + timedelta(seconds=11))
        assert recovered.state == JobState.FAILED

    @pytest.mark.asyncio
    async def test_counts_and_clear(self, queue_backend):
        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="a"))
        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="b", options=JobOptions(delay_seconds=60)))

        counts = await queue_backend.counts("crawl.vcb")
        assert (counts["enqueued"], counts["scheduled"]) == (1, 1)

        await queue_backend.clear("crawl.vcb")
        assert await queue_backend.list_jobs("crawl.vcb") == []


class TestQueueWorker:
    """Test retry, backoff and terminal failure"""

    @pytest.mark.asyncio
    async def test_success_stores_result(self, queue_backend):
        async def handler(job):
            return {"snapshot_id": "vcb_rates_1"}

        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="a"))
        done = await QueueWorker(queue_backend, "crawl.vcb", handler).process_next()

        assert done.state == JobState.SUCCEEDED
        assert done.result == {"snapshot_id": "vcb_rates_1"}

    @pytest.mark.asyncio
    async def test_idle_queue(self, queue_backend):
        assert await QueueWorker(queue_backend, "crawl.vcb", failing).process_next() is None

    @pytest.mark.asyncio
    async def test_backoff_doubles_then_goes_terminal(self, queue_backend, error_logs):
        worker = QueueWorker(queue_backend, "crawl.vcb", failing)
        job = await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="a"))

        delays = []
        for _ in range(2):
            before = utcnow()
            failed = await worker.process_next()
            assert failed.state == JobState.RETRYING
            delays.append(round((failed.run_at - before).total_seconds()))
            make_due(queue_backend, job)

        terminal = await worker.process_next()

        assert delays == [60, 120]
        assert terminal.state == JobState.FAILED
        assert terminal.attempts_made == 3
        assert terminal.failed_reason == "provider down"
        assert any("failed permanently after 3 attempts" in m for m in error_logs)
        assert terminal.result["error_type"] == "TerminalTaskFailure"
        assert terminal.result["details"]["attempts"] == 3
        stored = await queue_backend.get_job("crawl.vcb", "a")
        assert stored.result == terminal.result

    @pytest.mark.asyncio
    async def test_timeout_counts_as_failed_attempt(self, queue_backend):
        async def slow(job):
            await asyncio.sleep(1)

        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="a"))
        failed = await QueueWorker(queue_backend, "crawl.vcb", slow, lock_duration=0.05).process_next()

        assert failed.state == JobState.RETRYING
        assert "lock duration" in failed.failed_reason

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_terminal_at_once(self, queue_backend):
        async def skipped(job):
            raise SampleSkipped("nothing to do")

        await queue_backend.add(Job.new("crawl.vcb", "crawl", job_id="a"))
        failed = await QueueWorker(queue_backend, "crawl.vcb", skipped).process_next()

        assert failed.state == JobState.FAILED
        assert failed.attempts_made == 1

    @pytest.mark.asyncio
    async def test_run_loop_stops(self, queue_backend):
        stop = asyncio.Event()
        worker = QueueWorker(queue_backend, "crawl.vcb", failing, poll_interval=0.01)
        task = asyncio.create_task(worker.run(stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, timeout=1)


class TestChaining:
    """Test crawl -> import follow-up jobs"""

    async def crawl_once(self, backend, auto_import=True):
        async def crawl(job):
            return {"snapshot_id": "vcb_rates_1769653544000"}

        await backend.add(Job.new("crawl.vcb", "crawl", {"options": {"auto_import": auto_import}}, job_id="vcb-rates-1"))
        return await QueueWorker(backend, "crawl.vcb", crawl, on_completed=[chain_import(backend)]).process_next()

    @pytest.mark.asyncio
    async def test_auto_import_enqueues_exact_snapshot(self, queue_backend):
        await self.crawl_once(queue_backend)

        (follow_up,) = await queue_backend.list_jobs("import.vcb")
        assert follow_up.id == "import-vcb_rates_1769653544000"
        assert follow_up.options == {"mode": "latest", "snapshot_id": "vcb_rates_1769653544000"}

    @pytest.mark.asyncio
    async def test_without_auto_import_nothing_is_chained(self, queue_backend):
        await self.crawl_once(queue_backend, auto_import=False)
        assert await queue_backend.list_jobs("import.vcb") == []

    @pytest.mark.asyncio
    async def test_enqueue_failure_does_not_fail_crawl(self, error_logs):
        class BrokenImports(MemoryQueueBackend):
            async def add(self, job):
                if job.queue.startswith("import."):
                    raise ConnectionError("queue unavailable")
                return await super().add(job)

        done = await self.crawl_once(BrokenImports())

        assert done.state == JobState.SUCCEEDED
        assert any("Failed to enqueue import" in m for m in error_logs)

    @pytest.mark.asyncio
    async def test_chained_import_runs_against_database(self, queue_backend, db_session, save_snapshot, snapshot_store):
        snapshot_id = save_snapshot("xe", "USD/VND", xe_payload())
        await queue_backend.add(
            Job.new("import.xe", "import", {"options": {"mode": "latest", "snapshot_id": snapshot_id}}, job_id=f"import-{snapshot_id}")
        )

        handler = make_import_handler(snapshot_store, SessionLocal)
        done = await QueueWorker(queue_backend, "import.xe", handler).process_next()

        assert done.state == JobState.SUCCEEDED
        assert done.result["ticks_upserted"] == 2


class TestScheduler:
    """Test deterministic scheduling and repeatables"""

    @pytest.mark.asyncio
    async def test_same_slot_is_enqueued_once(self, queue_backend):
        scheduler = Scheduler(queue_backend, schedules=[vcb_schedule()])
        now = utcnow()

        first = await scheduler.fire(now)
        second = await scheduler.fire(now)

        assert len(first) == 1
        assert second == []
        assert first[0].id == f"vcb-rates-{slot_ms(now, 60)}"
        assert first[0].options["auto_import"] is True

    @pytest.mark.asyncio
    async def test_next_slot_gets_a_new_job(self, queue_backend):
        scheduler = Scheduler(queue_backend, schedules=[vcb_schedule()])
        now = utcnow()

        await scheduler.fire(now)
        await scheduler.fire(now + timedelta(seconds=60))

        assert len(await queue_backend.list_jobs("crawl.vcb")) == 2

    def test_slot_truncates_to_interval(self):
        now = utcnow().replace(second=42, microsecond=0)
        assert slot_ms(now, 60) == int(now.replace(second=0).timestamp() * 1000)

    @pytest.mark.asyncio
    async def test_repeatable_fires_once_per_interval(self, queue_backend):
        repeatable = await queue_backend.add_repeatable(
            Repeatable.build("crawl.xe", "crawl", {"options": {"identifier": "EUR/USD"}}, every_seconds=30)
        )
        scheduler = Scheduler(queue_backend, schedules=[])
        now = utcnow()

        fired = await scheduler.fire(now)
        assert [job.id for job in fired] == [f"repeat-{repeatable.key}-{slot_ms(now, 30)}"]
        assert await scheduler.fire(now) == []
        assert len(await scheduler.fire(now + timedelta(seconds=30))) == 1

    @pytest.mark.asyncio
    async def test_registering_same_repeatable_twice(self, queue_backend):
        repeatable = Repeatable.build("crawl.xe", "crawl", {"options": {}}, every_seconds=30)
        await queue_backend.add_repeatable(repeatable)
        await queue_backend.add_repeatable(repeatable)
        assert len(await queue_backend.list_repeatables("crawl.xe")) == 1


class TestRuntime:
    """Test worker wiring"""

    def test_all_queues_get_a_worker(self, queue_backend, monkeypatch):
        monkeypatch.setattr(settings, "ACTIVE_WORKERS", None)
        queues = {worker.queue for worker in build_workers(queue_backend)}
        assert queues == {f"{kind}.{src}" for kind in ("crawl", "import") for src in ("vcb", "xe", "yahoo", "reuters")}

    def test_active_workers_filter(self, queue_backend, monkeypatch):
        monkeypatch.setattr(settings, "ACTIVE_WORKERS", ["vcb", "XE"])
        queues = sorted(worker.queue for worker in build_workers(queue_backend))
        assert queues == ["crawl.vcb", "crawl.xe", "import.vcb", "import.xe"]

    @pytest.mark.asyncio
    async def test_start_and_stop(self, monkeypatch):
        monkeypatch.setattr(settings, "ACTIVE_WORKERS", ["vcb"])
        runtime = PipelineRuntime(MemoryQueueBackend())
        runtime.start(workers=True, scheduler=False)
        await asyncio.sleep(0.01)
        await runtime.stop()

    @pytest.mark.asyncio
    async def test_stop_lets_running_job_finish(self, monkeypatch):
        async def slow(job):
            await asyncio.sleep(0.3)
            return {}

        monkeypatch.setattr(settings, "ACTIVE_WORKERS", ["vcb"])
        monkeypatch.setattr("fxpipe.jobs.runtime.make_crawl_handler", lambda store: slow)
        backend = MemoryQueueBackend()
        await backend.add(Job.new("crawl.vcb", "crawl", job_id="a"))
        runtime = PipelineRuntime(backend)
        runtime.start(workers=True, scheduler=False)
        await asyncio.sleep(0.1)
        await runtime.stop()

        assert (await backend.get_job("crawl.vcb", "a")).state == JobState.SUCCEEDED
        assert "crawl.vcb" not in backend._locks

    @pytest.mark.asyncio
    async def test_stop_after_drain_releases_interrupted_job(self, monkeypatch):
        async def stuck(job):
            await asyncio.sleep(10)

        monkeypatch.setattr(settings, "ACTIVE_WORKERS", ["vcb"])
        monkeypatch.setattr("fxpipe.jobs.runtime.make_crawl_handler", lambda store: stuck)
        backend = MemoryQueueBackend()
        await backend.add(Job.new("crawl.vcb", "crawl", job_id="a"))
        runtime = PipelineRuntime(backend)
        runtime.start(workers=True, scheduler=False)
        await asyncio.sleep(0.05)
        await runtime.stop(drain_seconds=0.05)

        job = await backend.get_job("crawl.vcb", "a")
        assert job.state == JobState.RETRYING
        assert job.failed_reason == "Worker shut down mid-job"
        assert "crawl.vcb" not in backend._locks
