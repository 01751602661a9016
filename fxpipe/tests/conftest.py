"""Shared fixtures: embedded SQLite database, temp snapshot store, in-memory queue."""

import os
import tempfile

# Must be set before fxpipe.core.config is imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["QUEUE_BACKEND"] = "memory"
os.environ["SLACK_WEBHOOK_URL"] = ""
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="fxpipe-logs-"))

from datetime import datetime, timezone  # noqa: E402

import pytest  # noqa: E402

from fxpipe.core.db import SessionLocal, engine  # noqa: E402
from fxpipe.core.snapshots import SnapshotStore  # noqa: E402
from fxpipe.jobs.queue import MemoryQueueBackend  # noqa: E402
from fxpipe.models import Base  # noqa: E402
from fxpipe.schemas.ticks import Snapshot  # noqa: E402

CAPTURED_AT = datetime(2026, 1, 29, 2, 30, tzinfo=timezone.utc)


def vcb_payload(usd_sell: str = "25,410.00") -> dict:
    return {
        "ExrateList": {
            "DateTime": "1/29/2026 9:25:44 AM",
            "Exrate": [
                {"@_CurrencyCode": "USD", "@_CurrencyName": "US DOLLAR", "@_Buy": "25,350.00", "@_Transfer": "25,380.00", "@_Sell": usd_sell},
                {"@_CurrencyCode": "XYZ", "@_CurrencyName": "NO QUOTE", "@_Buy": "-", "@_Transfer": "-", "@_Sell": "-"},
            ],
            "Source": "Joint Stock Commercial Bank for Foreign Trade of Vietnam - Vietcombank",
        }
    }


def xe_payload(rates=None, midmarket=None) -> dict:
    payload = {
        "method": "direct-api",
        "fromCurrency": "USD",
        "toCurrency": "VND",
        "capturedAt": "2026-01-29T02:30:00.000Z",
        "charting": {
            "batchList": [
                {"startTime": 1769644800000, "interval": 60000, "rates": [25380.5, 0, 25381.25] if rates is None else rates}
            ]
        },
    }
    if midmarket is not None:
        payload["midmarket"] = {"rates": {"VND": {"rate": midmarket}}}
    return payload


def yahoo_payload(symbol: str = "VND=X") -> dict:
    return {
        "chart": {
            "result": [
                {
                    "meta": {"symbol": symbol, "currency": "VND"},
                    "timestamp": [1769558400, 1769644800, 1769731200],
                    "indicators": {
                        "quote": [
                            {
                                "open": [25300.0, 25310.0, None],
                                "high": [25400.0, 25420.0, None],
                                "low": [25200.0, 25250.0, None],
                                "close": [25350.0, None, None],
                                "volume": [0, 12, None],
                            }
                        ]
                    },
                }
            ]
        }
    }


def reuters_payload(last=25390.0, open_=25370.0) -> dict:
    return {
        "method": "direct-api",
        "xid": 611986,
        "capturedAt": "2026-01-29T02:30:00.000Z",
        "data": {
            "elements": [
                {"resource": "Xref", "data": {"symbol": "VND=X"}},
                {"resource": "Quote", "data": {"lastTrade": {"date": "2026-01-29T02:29:00Z", "last": last, "open": open_}}},
            ]
        },
    }


@pytest.fixture
def db_session():
    """Fresh schema per test on the shared in-memory engine."""
    Base.metadata.create_all(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)


@pytest.fixture
def snapshot_store(tmp_path):
    return SnapshotStore(str(tmp_path / "data"))


@pytest.fixture
def queue_backend():
    return MemoryQueueBackend()


@pytest.fixture
def save_snapshot(snapshot_store):
    """Store a payload as a snapshot and return its id."""

    def _save(source: str, identifier: str, payload, captured_at: datetime = CAPTURED_AT) -> str:
        return snapshot_store.save(
            Snapshot(source=source, identifier=identifier, captured_at=captured_at, payload=payload)
        )

    return _save
