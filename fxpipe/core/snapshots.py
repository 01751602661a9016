"""File-based raw snapshot store.

Layout::

    <SNAPSHOT_DIR>/<source>/<source>_<identifier>_<epoch_ms>.json
    <SNAPSHOT_DIR>/<source>/<source>_<identifier>_latest.json

Each file holds a ``Snapshot`` envelope with the verbatim provider payload.
A snapshot id is the file name without ``.json``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from fxpipe.core.config import settings
from fxpipe.core.errors import MalformedPayload, SnapshotNotFound
from fxpipe.core.logging import get_logger
from fxpipe.schemas.ticks import Snapshot

log = get_logger("snapshots")

LATEST_SUFFIX = "_latest"
_UNSAFE = re.compile(r"[^A-Za-z0-9=\-]")
_SNAPSHOT_ID = re.compile(r"^[A-Za-z0-9=_\-]+$")


def safe_identifier(identifier: str) -> str:
    """``USD/VND`` -> ``USDVND``; underscores are reserved as separators."""
    cleaned = _UNSAFE.sub("", identifier or "")
    return cleaned or "default"


class SnapshotStore:
    """Persists and reads raw snapshots per source."""

    def __init__(self, snapshot_dir: Optional[str] = None):
        self.root = Path(snapshot_dir or settings.SNAPSHOT_DIR)

    def source_dir(self, source: str) -> Path:
        return self.root / source

    def save(self, snapshot: Snapshot) -> str:
        """Write the timestamped file and refresh ``latest``; return the snapshot id."""
        directory = self.source_dir(snapshot.source)
        directory.mkdir(parents=True, exist_ok=True)

        epoch_ms = int(snapshot.captured_at.timestamp() * 1000)
        stem = f"{snapshot.source}_{safe_identifier(snapshot.identifier)}"
        snapshot_id = f"{stem}_{epoch_ms}"
        body = snapshot.model_dump_json(indent=2)

        (directory / f"{snapshot_id}.json").write_text(body, encoding="utf-8")
        (directory / f"{stem}{LATEST_SUFFIX}.json").write_text(body, encoding="utf-8")

        log.info(f"Saved snapshot {snapshot_id}")
        return snapshot_id

    def load(self, source: str, snapshot_id: str) -> Snapshot:
        if not _SNAPSHOT_ID.match(snapshot_id or ""):
            raise SnapshotNotFound(f"Invalid snapshot id {snapshot_id!r}", source=source)

        path = self.source_dir(source) / f"{snapshot_id}.json"
        if not path.exists():
            raise SnapshotNotFound(f"Snapshot {snapshot_id} not found", source=source, details={"path": str(path)})

        try:
            return Snapshot.model_validate_json(path.read_text(encoding="utf-8"))
        except ValidationError as exc:
            raise MalformedPayload(f"Snapshot {snapshot_id} is not a valid envelope", source=source) from exc

    def list_latest(self, source: str) -> List[str]:
        """Most recent snapshot per identifier."""
        return [p.stem for p in self._files(source) if p.stem.endswith(LATEST_SUFFIX)]

    def list_all(self, source: str) -> List[str]:
        """Every retained timestamped snapshot, oldest first."""
        stems = [p.stem for p in self._files(source) if not p.stem.endswith(LATEST_SUFFIX)]
        return sorted(stems, key=_epoch_of)

    def _files(self, source: str) -> List[Path]:
        directory = self.source_dir(source)
        if not directory.is_dir():
            return []
        return sorted(p for p in directory.glob(f"{source}_*.json") if p.is_file())


def _epoch_of(snapshot_id: str) -> int:
    tail = snapshot_id.rsplit("_", 1)[-1]
    return int(tail) if tail.isdigit() else 0
