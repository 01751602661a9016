"""Snapshot import: normalize -> resolve -> dedup -> upsert, one transaction per snapshot."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from sqlalchemy.orm import Session

from fxpipe.core.errors import PipelineError, SnapshotImportError
from fxpipe.core.logging import get_logger
from fxpipe.core.snapshots import SnapshotStore
from fxpipe.models.runs import IngestionRun
from fxpipe.normalizers import get_normalizer
from fxpipe.services.upsert_service import TickUpsertService

log = get_logger("import_service")

ImportMode = Literal["latest", "all"]


class ImportService:
    """Imports stored snapshots of one source into the tick store.

    Each snapshot gets an ``IngestionRun`` row committed up front, so a failed
    import stays visible after its ingestion transaction is rolled back.
    """

    def __init__(self, db: Session, store: Optional[SnapshotStore] = None, chunk_size: Optional[int] = None):
        self.db = db
        self.store = store or SnapshotStore()
        self.chunk_size = chunk_size

    def run(self, source: str, mode: ImportMode = "latest", snapshot_id: Optional[str] = None) -> Dict[str, Any]:
        if mode == "latest":
            return self._run_latest(source, snapshot_id)
        if mode == "all":
            return self._run_all(source)
        raise ValueError(f"Unsupported import mode: {mode}")

    def import_snapshot(self, source: str, snapshot_id: str) -> Dict[str, Any]:
        """Import a single snapshot; raises on failure after recording it."""
        normalizer = get_normalizer(source)

        run = IngestionRun(source_name=source, snapshot_id=snapshot_id, status="running")
        self.db.add(run)
        self.db.commit()

        try:
            snapshot = self.store.load(source, snapshot_id)
            result = normalizer.normalize(snapshot.payload, snapshot.captured_at)
            stats = TickUpsertService(self.db, self.chunk_size).ingest(normalizer.source_name, result.candidates)

            run.status = "success"
            run.ticks_received = stats.received
            run.ticks_upserted = stats.upserted
            run.ticks_deduped = stats.deduped
            run.samples_skipped = result.skipped
            run.ended_at = datetime.now(timezone.utc)
            self.db.commit()

            log.info(
                f"Imported {snapshot_id} | received={stats.received} upserted={stats.upserted} "
                f"deduped={stats.deduped} skipped={result.skipped}"
            )
            return {
                "snapshot_id": snapshot_id,
                "success": True,
                "ticks_received": stats.received,
                "ticks_upserted": stats.upserted,
                "ticks_deduped": stats.deduped,
                "samples_skipped": result.skipped,
            }

        except Exception as exc:  # noqa: BLE001
            self.db.rollback()
            run.status = "failure"
            run.error_message = str(exc)
            if isinstance(exc, PipelineError):
                run.meta = exc.to_dict()
            run.ended_at = datetime.now(timezone.utc)
            self.db.add(run)
            self.db.commit()
            log.error(f"Import failed for {source}/{snapshot_id}: {exc}")
            raise

    # -------------------------------------------------------------------------
    # Modes
    # -------------------------------------------------------------------------
    def _run_latest(self, source: str, snapshot_id: Optional[str]) -> Dict[str, Any]:
        if snapshot_id:
            # Exact snapshot from a chained crawl: let the original error reach the worker
            result = self.import_snapshot(source, snapshot_id)
            return self._summary(source, "latest", [result])

        results = self._import_each(source, self.store.list_latest(source))
        summary = self._summary(source, "latest", results)
        if summary["failed"]:
            raise SnapshotImportError(
                f"{summary['failed']} of {summary['files']} latest {source} snapshots failed",
                source=source,
                results=results,
            )
        return summary

    def _run_all(self, source: str) -> Dict[str, Any]:
        results = self._import_each(source, self.store.list_all(source))
        return self._summary(source, "all", results)

    def _import_each(self, source: str, snapshot_ids: List[str]) -> List[Dict[str, Any]]:
        if not snapshot_ids:
            log.info(f"No {source} snapshots to import")

        results: List[Dict[str, Any]] = []
        for snapshot_id in snapshot_ids:
            try:
                results.append(self.import_snapshot(source, snapshot_id))
            except Exception as exc:  # noqa: BLE001
                results.append({"snapshot_id": snapshot_id, "success": False, "error": str(exc)})
        return results

    @staticmethod
    def _summary(source: str, mode: str, results: List[Dict[str, Any]]) -> Dict[str, Any]:
        succeeded = sum(1 for r in results if r["success"])
        return {
            "source": source,
            "mode": mode,
            "files": len(results),
            "succeeded": succeeded,
            "failed": len(results) - succeeded,
            "ticks_upserted": sum(r.get("ticks_upserted", 0) for r in results),
            "results": results,
        }
