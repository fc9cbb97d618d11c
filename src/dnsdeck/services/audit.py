"""Audit records for state-changing actions, one JSON line per event."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

AUDIT_EVENTS = (
    "config_apply",
    "config_rollback",
    "mode_change",
    "service_reload",
    "service_restart",
    "cache_flush",
    "self_test",
)

logger = logging.getLogger("dnsdeck.audit")


class AuditLogger:
    """Emits audit entries on the ``dnsdeck.audit`` logger."""

    def __init__(self, actor: str = "cli") -> None:
        self.actor = actor

    def record(
        self,
        event: str,
        success: bool,
        details: dict[str, Any] | None = None,
        error: str | None = None,
    ) -> dict[str, Any]:
        if event not in AUDIT_EVENTS:
            raise ValueError(f"Unknown audit event: {event}")
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "actor": self.actor,
            "result": "success" if success else "failure",
        }
        if details:
            entry["details"] = details
        if error:
            entry["error"] = error

        line = json.dumps(entry, default=str)
        if success:
            logger.info(line)
        else:
            logger.warning(line)
        return entry
