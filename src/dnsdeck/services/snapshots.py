"""Snapshot and rollback of the live resolver configuration."""

from __future__ import annotations

import json
import logging
import re
import shutil
from datetime import datetime, timedelta, timezone
from pathlib import Path

from dnsdeck.errors import InvalidParameter, SnapshotError, SnapshotNotFound
from dnsdeck.services.resolver import ResolverControl
from dnsdeck.storage.atomic import AtomicWriteResult, atomic_write, atomic_write_json
from dnsdeck.storage.models import Snapshot, UpstreamConfig
from dnsdeck.storage.upstream import UpstreamStore

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "snapshot-"
SNAPSHOT_ID_RE = re.compile(r"^snapshot-\d{8}T\d{6}-\d{6}Z$")

MANAGED_FILE = "managed.conf"
UPSTREAM_FILE = "upstream.json"
METADATA_FILE = "metadata.json"


def snapshot_id_for(moment: datetime) -> str:
    """Timestamp-derived id; lexical order equals chronological order."""
    return SNAPSHOT_PREFIX + moment.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%S-%fZ")


class SnapshotManager:
    """Owns the snapshot directory.

    Each snapshot is a directory named by its id holding ``managed.conf``,
    ``upstream.json`` (each only if the live file existed) and
    ``metadata.json``. The metadata file is written last, so a directory
    without it is an incomplete snapshot and is ignored by ``list()``.
    """

    def __init__(
        self,
        snapshot_dir: str | Path,
        managed_conf: str | Path,
        upstream: UpstreamStore,
        resolver: ResolverControl,
        retention: int = 10,
    ) -> None:
        self.snapshot_dir = Path(snapshot_dir).expanduser()
        self.managed_conf = Path(managed_conf).expanduser()
        self.upstream = upstream
        self.resolver = resolver
        self.retention = retention

    def _new_id(self) -> str:
        moment = datetime.now(timezone.utc)
        latest = self.latest_id()
        if latest is not None:
            # Ids must keep increasing even if the clock stepped backwards
            floor = datetime.strptime(latest[len(SNAPSHOT_PREFIX) :], "%Y%m%dT%H%M%S-%fZ").replace(tzinfo=timezone.utc)
            moment = max(moment, floor + timedelta(microseconds=1))
        return snapshot_id_for(moment)

    def _dir_for(self, snapshot_id: str) -> Path:
        if not SNAPSHOT_ID_RE.match(snapshot_id):
            raise SnapshotNotFound(snapshot_id)
        return self.snapshot_dir / snapshot_id

    def _snapshot_ids(self) -> list[str]:
        if not self.snapshot_dir.is_dir():
            return []
        return sorted(
            p.name for p in self.snapshot_dir.iterdir() if p.is_dir() and SNAPSHOT_ID_RE.match(p.name)
        )

    def create(self) -> str:
        """Capture the live rendered config and structured config, then prune."""
        self.snapshot_dir.mkdir(parents=True, exist_ok=True)
        snapshot_id = self._new_id()
        target = self.snapshot_dir / snapshot_id
        try:
            target.mkdir()
            if self.managed_conf.exists():
                self._write(atomic_write(target / MANAGED_FILE, _read(self.managed_conf)))
            if self.upstream.path.exists():
                self._write(atomic_write(target / UPSTREAM_FILE, _read(self.upstream.path)))
            metadata = {"id": snapshot_id, "timestamp": datetime.now(timezone.utc).isoformat()}
            self._write(atomic_write_json(target / METADATA_FILE, metadata))
        except (OSError, ValueError, SnapshotError) as e:
            shutil.rmtree(target, ignore_errors=True)
            raise SnapshotError(f"Failed to create snapshot: {e}") from e

        logger.info("Created snapshot %s", snapshot_id)
        self.prune(self.retention)
        return snapshot_id

    @staticmethod
    def _write(result: AtomicWriteResult) -> None:
        if not result.success:
            raise SnapshotError(f"{result.path}: {result.error}")

    def get(self, snapshot_id: str) -> Snapshot:
        directory = self._dir_for(snapshot_id)
        metadata_path = directory / METADATA_FILE
        if not metadata_path.exists():
            raise SnapshotNotFound(snapshot_id)
        try:
            metadata = json.loads(metadata_path.read_text(encoding="utf-8"))
            managed_path = directory / MANAGED_FILE
            rendered = _read(managed_path) if managed_path.exists() else ""
            upstream_path = directory / UPSTREAM_FILE
            if upstream_path.exists():
                upstream = UpstreamConfig.from_dict(json.loads(_read(upstream_path)))
            else:
                upstream = UpstreamConfig()
        except (OSError, ValueError, InvalidParameter) as e:
            raise SnapshotError(f"Snapshot {snapshot_id} is unreadable: {e}") from e

        return Snapshot(
            id=metadata.get("id", snapshot_id),
            timestamp_iso=metadata.get("timestamp", ""),
            rendered_config=rendered,
            upstream_config=upstream,
        )

    def list(self) -> list[Snapshot]:
        """All readable snapshots, newest first."""
        snapshots = []
        for snapshot_id in reversed(self._snapshot_ids()):
            try:
                snapshots.append(self.get(snapshot_id))
            except SnapshotError as e:
                logger.warning("Skipping snapshot %s: %s", snapshot_id, e)
        return snapshots

    def latest_id(self) -> str | None:
        ids = self._snapshot_ids()
        return ids[-1] if ids else None

    def prune(self, keep: int = 10) -> list[str]:
        """Delete snapshots beyond ``keep``, oldest first. Returns the deleted ids."""
        ids = self._snapshot_ids()
        excess = ids[: max(len(ids) - keep, 0)]
        for snapshot_id in excess:
            try:
                shutil.rmtree(self.snapshot_dir / snapshot_id)
                logger.info("Pruned snapshot %s", snapshot_id)
            except OSError as e:
                logger.warning("Could not prune snapshot %s: %s", snapshot_id, e)
        return excess

    async def restore(self, snapshot_id: str, reload: bool = True) -> None:
        """Write the snapshot back to the live paths and reload the resolver.

        A live file that did not exist when the snapshot was taken is removed.
        Raises SnapshotNotFound, SnapshotError on write failure, and ReloadFailed.
        Pass ``reload=False`` when the caller reloads itself.
        """
        directory = self._dir_for(snapshot_id)
        if not (directory / METADATA_FILE).exists():
            raise SnapshotNotFound(snapshot_id)

        try:
            self._restore_file(directory / MANAGED_FILE, self.managed_conf)
            self._restore_file(directory / UPSTREAM_FILE, self.upstream.path)
        except (OSError, ValueError) as e:
            raise SnapshotError(f"Failed to restore snapshot {snapshot_id}: {e}") from e

        logger.info("Restored snapshot %s", snapshot_id)
        if reload:
            await self.resolver.reload()

    def _restore_file(self, source: Path, live: Path) -> None:
        if source.exists():
            self._write(atomic_write(live, _read(source)))
        else:
            live.unlink(missing_ok=True)


def _read(path: Path) -> str:
    # Bytes first so line endings survive a snapshot round trip unchanged
    return path.read_bytes().decode("utf-8")
