"""Error taxonomy for the configuration pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dnsdeck.storage.models import ExecutionResult


class DnsDeckError(Exception):
    """Base class for all dnsdeck errors."""


class InvalidParameter(DnsDeckError):
    """A caller-supplied value was rejected by a validator."""


class UnknownCommand(DnsDeckError):
    """A command id outside the allowlisted catalogue was requested."""

    def __init__(self, command_id: str) -> None:
        super().__init__(f"Command not allowed: {command_id}")
        self.command_id = command_id


class ExecutionFailed(DnsDeckError):
    """A process could not be started or did not finish in time."""

    def __init__(self, command_id: str, message: str) -> None:
        super().__init__(f"{command_id}: {message}")
        self.command_id = command_id


class CommandFailed(ExecutionFailed):
    """A process exited non-zero and its catalogue entry does not allow that."""

    def __init__(self, command_id: str, result: ExecutionResult) -> None:
        detail = result.stderr.strip() or result.stdout.strip() or f"exit code {result.exit_code}"
        super().__init__(command_id, detail)
        self.result = result


class ValidationFailed(DnsDeckError):
    """The resolver's own checker rejected a configuration."""


class ReloadFailed(DnsDeckError):
    """The resolver could not reload its configuration."""


class SelfTestFailed(DnsDeckError):
    """Post-apply verification failed."""


class SnapshotError(DnsDeckError):
    """A snapshot could not be written or read."""


class SnapshotNotFound(SnapshotError):
    """The requested snapshot does not exist."""

    def __init__(self, snapshot_id: str) -> None:
        super().__init__(f"Snapshot not found: {snapshot_id}")
        self.snapshot_id = snapshot_id


class RollbackFailed(DnsDeckError):
    """Rollback failed after an earlier failure; both causes are kept."""

    def __init__(self, original: str, rollback_error: str) -> None:
        super().__init__(f"{original}; rollback failed: {rollback_error}")
        self.original = original
        self.rollback_error = rollback_error


class ApplyInProgress(DnsDeckError):
    """Another apply currently holds the pipeline."""

    def __init__(self) -> None:
        super().__init__("Another configuration apply is already in progress")
