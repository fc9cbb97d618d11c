"""Safe apply workflow.

snapshot -> render -> write staged -> validate -> write live -> reload ->
quick self-test -> commit, with rollback to the snapshot on any failure
after the snapshot exists.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import AsyncIterator

from filelock import FileLock, Timeout

from dnsdeck.errors import ApplyInProgress, DnsDeckError, RollbackFailed, SelfTestFailed
from dnsdeck.services.audit import AuditLogger
from dnsdeck.services.renderer import render
from dnsdeck.services.resolver import ResolverControl
from dnsdeck.services.selftest import SelfTestEngine
from dnsdeck.services.snapshots import SnapshotManager
from dnsdeck.storage.atomic import atomic_write
from dnsdeck.storage.models import STATUS_FAIL, ApplyResult, UpstreamConfig
from dnsdeck.storage.upstream import UpstreamStore

logger = logging.getLogger(__name__)


class ApplyState(str, Enum):
    IDLE = "idle"
    SNAPSHOTTING = "snapshotting"
    RENDERING = "rendering"
    WRITING_STAGED = "writing_staged"
    VALIDATING = "validating"
    WRITING_FINAL = "writing_final"
    RELOADING = "reloading"
    SELF_TESTING = "self_testing"
    COMMITTED = "committed"
    ROLLING_BACK = "rolling_back"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


# Step name reported for a failure in each state
FAILED_STEP = {
    ApplyState.SNAPSHOTTING: "snapshot",
    ApplyState.RENDERING: "render",
    ApplyState.WRITING_STAGED: "write_staged",
    ApplyState.VALIDATING: "validation",
    ApplyState.WRITING_FINAL: "write_final",
    ApplyState.RELOADING: "reload",
    ApplyState.SELF_TESTING: "self_test",
}


LOCK_FILE = ".apply.lock"


class ApplyOrchestrator:
    """Runs one apply at a time; a concurrent request is rejected, never interleaved.

    The asyncio lock covers tasks in this process and the file lock covers
    other dnsdeck processes sharing the same snapshot directory.
    """

    def __init__(
        self,
        managed_conf: str | Path,
        upstream: UpstreamStore,
        snapshots: SnapshotManager,
        resolver: ResolverControl,
        selftest: SelfTestEngine,
        audit: AuditLogger,
        lock_path: str | Path | None = None,
    ) -> None:
        self.managed_conf = Path(managed_conf).expanduser()
        self.upstream = upstream
        self.snapshots = snapshots
        self.resolver = resolver
        self.selftest = selftest
        self.audit = audit
        self.lock_path = Path(lock_path).expanduser() if lock_path else snapshots.snapshot_dir / LOCK_FILE
        self._lock = asyncio.Lock()
        self._file_lock = FileLock(str(self.lock_path), timeout=0)
        self._state = ApplyState.IDLE
        self._last_outcome: ApplyState | None = None

    @property
    def state(self) -> ApplyState:
        return self._state

    @property
    def last_outcome(self) -> ApplyState | None:
        """Terminal state of the most recent apply."""
        return self._last_outcome

    @property
    def staged_path(self) -> Path:
        # Same directory as the live file so the final move is an atomic rename
        return self.managed_conf.parent / f".{self.managed_conf.stem}.staged.conf"

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        if self._lock.locked():
            raise ApplyInProgress()
        async with self._lock:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            try:
                self._file_lock.acquire()
            except Timeout:
                logger.warning("Apply lock %s is held by another process", self.lock_path)
                raise ApplyInProgress() from None
            try:
                yield
            finally:
                self._file_lock.release()

    async def apply(self, candidate: UpstreamConfig, run_self_test: bool = True) -> ApplyResult:
        try:
            async with self._exclusive():
                try:
                    result = await self._apply(candidate, run_self_test)
                finally:
                    self._last_outcome = self._state
                    self._state = ApplyState.IDLE
        except (ApplyInProgress, OSError) as e:
            error = str(e)
            self.audit.record("config_apply", False, {"mode": candidate.mode, "failedStep": "lock"}, error)
            return ApplyResult(success=False, error=error, failed_step="lock")

        details = {
            "mode": candidate.mode,
            "snapshotId": result.snapshot_id,
            "rolledBack": result.rolled_back,
        }
        if result.failed_step:
            details["failedStep"] = result.failed_step
        self.audit.record("config_apply", result.success, details, result.error)
        return result

    async def _apply(self, candidate: UpstreamConfig, run_self_test: bool) -> ApplyResult:
        # A skipped self-test is reported as passed
        result = ApplyResult(self_test_passed=not run_self_test)

        self._state = ApplyState.SNAPSHOTTING
        try:
            result.snapshot_id = self.snapshots.create()
        except (DnsDeckError, OSError) as e:
            # Nothing has been changed yet, so there is nothing to roll back
            logger.error("Apply aborted, snapshot failed: %s", e)
            self._state = ApplyState.IDLE
            result.error = str(e)
            result.failed_step = FAILED_STEP[ApplyState.SNAPSHOTTING]
            return result

        staged = self.staged_path
        try:
            self._state = ApplyState.RENDERING
            text = render(candidate)

            self._state = ApplyState.WRITING_STAGED
            written = atomic_write(staged, text)
            if not written.success:
                raise DnsDeckError(f"Could not write staged config: {written.error}")

            self._state = ApplyState.VALIDATING
            await self.resolver.check_config(str(staged))
            result.validation_passed = True

            self._state = ApplyState.WRITING_FINAL
            os.replace(staged, self.managed_conf)
            self.upstream.save(candidate)

            self._state = ApplyState.RELOADING
            await self.resolver.reload()
            result.reload_passed = True

            if run_self_test:
                self._state = ApplyState.SELF_TESTING
                quick = await self.selftest.run_quick()
                if quick.summary.status == STATUS_FAIL:
                    errors = "; ".join(f"{s.name}: {s.error}" for s in quick.steps if s.status == STATUS_FAIL)
                    raise SelfTestFailed(f"Self-test failed after apply ({errors})")
                result.self_test_passed = True
        except Exception as e:
            failed_step = FAILED_STEP.get(self._state, self._state.value)
            if not isinstance(e, (DnsDeckError, OSError)):
                logger.exception("Unexpected error during %s", failed_step)
            else:
                logger.error("Apply failed during %s: %s", failed_step, e)
            result.failed_step = failed_step
            return await self._rollback(result, result.snapshot_id, str(e) or e.__class__.__name__)
        finally:
            staged.unlink(missing_ok=True)

        self._state = ApplyState.COMMITTED
        result.success = True
        logger.info("Applied %s configuration (snapshot %s)", candidate.mode, result.snapshot_id)
        return result

    async def _rollback(self, result: ApplyResult, snapshot_id: str, original: str) -> ApplyResult:
        self._state = ApplyState.ROLLING_BACK
        try:
            await self.snapshots.restore(snapshot_id, reload=False)
            # Second reload, this time against the restored content
            await self.resolver.reload()
        except Exception as e:
            self._state = ApplyState.ROLLBACK_FAILED
            failure = RollbackFailed(original, str(e) or e.__class__.__name__)
            logger.error("Rollback to %s failed: %s", snapshot_id, failure)
            result.rolled_back = False
            result.error = str(failure)
            return result

        self._state = ApplyState.ROLLED_BACK
        logger.warning("Rolled back to %s after failure: %s", snapshot_id, original)
        result.rolled_back = True
        result.error = original
        return result

    async def rollback(self, snapshot_id: str) -> None:
        """Operator-requested restore of a snapshot, serialized with applies."""
        try:
            async with self._exclusive():
                await self.snapshots.restore(snapshot_id)
        except DnsDeckError as e:
            self.audit.record("config_rollback", False, {"snapshotId": snapshot_id}, str(e))
            raise
        self.audit.record("config_rollback", True, {"snapshotId": snapshot_id})

    async def snapshot(self) -> str:
        """Operator-requested snapshot, serialized with applies and rollbacks."""
        async with self._exclusive():
            return self.snapshots.create()
