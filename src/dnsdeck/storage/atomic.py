"""Crash-safe single file replacement (temp file + fsync + rename)."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AtomicWriteResult:
    success: bool
    path: str
    error: str | None = None


def atomic_write(path: str | Path, content: str, mode: int = 0o644) -> AtomicWriteResult:
    """Replace ``path`` with ``content`` so readers see either the old or the new file.

    The temp file is created in the target directory so the final rename stays
    on one filesystem. On any failure before the rename the temp file is
    removed and the target is left untouched.
    """
    target = Path(path)
    directory = target.parent
    tmp_path: str | None = None
    try:
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=directory)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, target)
        tmp_path = None
        _fsync_dir(directory)
    except (OSError, ValueError) as e:
        # ValueError covers content that cannot be encoded as UTF-8
        logger.error("Atomic write to %s failed: %s", target, e)
        return AtomicWriteResult(success=False, path=str(target), error=str(e))
    finally:
        if tmp_path is not None:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass

    return AtomicWriteResult(success=True, path=str(target))


def atomic_write_json(path: str | Path, data: Any, mode: int = 0o644) -> AtomicWriteResult:
    """Serialize ``data`` as indented JSON and write it atomically."""
    try:
        content = json.dumps(data, indent=2) + "\n"
    except (TypeError, ValueError) as e:
        logger.error("Failed to serialize JSON for %s: %s", path, e)
        return AtomicWriteResult(success=False, path=str(path), error=str(e))
    return atomic_write(path, content, mode)


def _fsync_dir(directory: Path) -> None:
    # Persist the rename itself; not every platform allows opening a directory
    try:
        dir_fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)
