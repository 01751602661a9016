"""API endpoint tests"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from conftest import vcb_payload, xe_payload
from fxpipe.jobs.queue import Job, JobState, MemoryQueueBackend
from fxpipe.jobs.runtime import PipelineRuntime
from fxpipe.main import app
from fxpipe.services.import_service import ImportService


@pytest.fixture
def client(db_session):
    """Test client without lifespan: no migrations, no background workers."""
    app.state.pipeline = PipelineRuntime(MemoryQueueBackend())
    try:
        yield TestClient(app)
    finally:
        app.state.pipeline = None


@pytest.fixture
def imported(db_session, snapshot_store, save_snapshot):
    """One VCB tick and two XE ticks in the database."""
    service = ImportService(db_session, snapshot_store)
    service.import_snapshot("vcb", save_snapshot("vcb", "rates", vcb_payload()))
    service.import_snapshot("xe", save_snapshot("xe", "USD/VND", xe_payload()))


class TestHealthAPI:
    """Test health endpoints"""

    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"database": "ok", "queue": "ok", "last_run_status": None}

    def test_health_reports_last_run(self, client, imported):
        assert client.get("/health").json()["last_run_status"] == "success"

    def test_health_without_queue(self, client):
        app.state.pipeline = None
        assert client.get("/health").json()["queue"] == "disabled"

    def test_readiness(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"


class TestTickAPI:
    """Test tick and reference data endpoints"""

    def test_ticks_newest_first(self, client, imported):
        response = client.get("/ticks")
        assert response.status_code == 200

        body = response.json()
        assert body["total_count"] == 3
        times = [tick["time"] for tick in body["data"]]
        assert times == sorted(times, reverse=True)

    def test_filter_by_source_and_symbol(self, client, imported):
        body = client.get("/ticks", params={"source": "VietcomBank", "symbol": "usdvnd"}).json()

        assert body["total_count"] == 1
        (tick,) = body["data"]
        assert tick["symbol"] == "USDVND"
        assert tick["source"] == "VietcomBank"
        assert float(tick["ask"]) == 25410

    def test_pagination(self, client, imported):
        body = client.get("/ticks", params={"limit": 1, "offset": 1}).json()
        assert body["total_count"] == 3
        assert len(body["data"]) == 1

    def test_pairs_and_sources(self, client, imported):
        assert [p["symbol"] for p in client.get("/ticks/pairs").json()] == ["USDVND"]
        assert [s["name"] for s in client.get("/ticks/sources").json()] == ["VietcomBank", "XE.com"]

    def test_invalid_limit(self, client):
        assert client.get("/ticks", params={"limit": 0}).status_code == 422


class TestStatsAPI:
    """Test ingestion run endpoints"""

    def test_runs(self, client, imported):
        runs = client.get("/stats").json()
        assert len(runs) == 2
        assert {r["source_name"] for r in runs} == {"vcb", "xe"}

    def test_runs_filtered(self, client, imported):
        (run,) = client.get("/stats", params={"source": "xe", "status": "success"}).json()
        assert (run["ticks_upserted"], run["samples_skipped"]) == (2, 1)

    def test_sources_summary(self, client, imported):
        summary = {s["source"]: s for s in client.get("/stats/sources").json()}

        assert summary["vcb"]["tick_count"] == 1
        assert summary["xe"]["tick_count"] == 2
        assert summary["yahoo"]["tick_count"] == 0
        assert summary["yahoo"]["last_run_status"] is None


class TestJobsAPI:
    """Test queue control endpoints"""

    def test_enqueue(self, client):
        response = client.post("/jobs/crawl.vcb", json={"options": {"auto_import": True}, "job_id": "manual-1"})

        assert response.status_code == 202
        body = response.json()
        assert body["duplicate"] is False
        assert body["job"]["id"] == "manual-1"
        assert body["job"]["state"] == "enqueued"
        assert body["job"]["data"] == {"options": {"auto_import": True}}

    def test_duplicate_id(self, client):
        client.post("/jobs/import.xe", json={"job_id": "manual-1"})
        body = client.post("/jobs/import.xe", json={"job_id": "manual-1"}).json()

        assert body["duplicate"] is True
        assert body["job"]["id"] == "manual-1"

    def test_delayed_job(self, client):
        body = client.post("/jobs/crawl.xe", json={"delay_seconds": 60}).json()
        assert body["job"]["state"] == "scheduled"

    def test_repeatable_and_removal(self, client):
        body = client.post("/jobs/crawl.yahoo", json={"options": {"identifier": "EURUSD=X"}, "repeat_every_seconds": 300}).json()
        key = body["repeatable"]["key"]

        status = client.get("/jobs/crawl.yahoo").json()
        assert [r["key"] for r in status["repeatables"]] == [key]

        assert client.delete(f"/jobs/crawl.yahoo/{key}").json()["kind"] == "repeatable"
        assert client.get("/jobs/crawl.yahoo").json()["repeatables"] == []

    def test_queue_status_lists_terminal_failures(self, client):
        backend = app.state.pipeline.backend
        job = Job.new("crawl.reuters", "crawl", job_id="r-1")
        job.state = JobState.FAILED
        job.failed_reason = "provider down"
        asyncio.run(backend.add(job))

        status = client.get("/jobs/crawl.reuters").json()
        assert status["counts"]["failed-terminal"] == 1
        assert status["failed"][0]["failed_reason"] == "provider down"

    def test_list_all_queues(self, client):
        queues = [q["queue"] for q in client.get("/jobs").json()]
        assert "crawl.vcb" in queues
        assert "import.reuters" in queues
        assert len(queues) == 8

    def test_remove_job_and_clear(self, client):
        client.post("/jobs/crawl.vcb", json={"job_id": "a"})
        client.post("/jobs/crawl.vcb", json={"job_id": "b"})

        assert client.delete("/jobs/crawl.vcb/a").json()["kind"] == "job"
        assert client.delete("/jobs/crawl.vcb/a").status_code == 404

        assert client.delete("/jobs/crawl.vcb").json()["cleared"] is True
        assert client.get("/jobs/crawl.vcb").json()["counts"]["enqueued"] == 0

    def test_unknown_queue(self, client):
        assert client.post("/jobs/crawl.bloomberg", json={}).status_code == 404
        assert client.get("/jobs/export.vcb").status_code == 404

    def test_queue_unavailable(self, client):
        app.state.pipeline = None
        assert client.post("/jobs/crawl.vcb", json={}).status_code == 503


def test_invalid_endpoint(client):
    assert client.get("/invalid").status_code == 404
