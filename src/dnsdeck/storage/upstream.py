"""Structured upstream configuration file (JSON)."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from dnsdeck.errors import DnsDeckError, InvalidParameter
from dnsdeck.storage.atomic import atomic_write_json
from dnsdeck.storage.models import UpstreamConfig

logger = logging.getLogger(__name__)


class UpstreamStore:
    """Reads and writes the live structured configuration."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> UpstreamConfig:
        """Load the live config, falling back to defaults when missing or unreadable."""
        if not self.path.exists():
            return UpstreamConfig()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return UpstreamConfig.from_dict(data)
        except (OSError, ValueError, InvalidParameter) as e:
            logger.error("Failed to load upstream config from %s, using defaults: %s", self.path, e)
            return UpstreamConfig()

    def save(self, config: UpstreamConfig) -> None:
        result = atomic_write_json(self.path, config.to_dict())
        if not result.success:
            raise DnsDeckError(f"Failed to write {self.path}: {result.error}")
