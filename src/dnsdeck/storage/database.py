"""SQLite database management for command execution history."""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

from dnsdeck.storage.models import CommandRecord

logger = logging.getLogger(__name__)


class HistoryStore:
    """Records every gateway invocation in a local SQLite database."""

    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path).expanduser().resolve()
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the database and create tables."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode = WAL")

        await self._db.execute("""
            CREATE TABLE IF NOT EXISTS commands (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                command TEXT NOT NULL,
                args TEXT DEFAULT '',
                stdout TEXT DEFAULT '',
                stderr TEXT DEFAULT '',
                exit_code INTEGER,
                duration_ms INTEGER,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        await self._db.execute("CREATE INDEX IF NOT EXISTS idx_commands_created_at ON commands(created_at)")
        await self._db.commit()
        logger.info("History database opened: %s", self.db_path)

    @property
    def is_open(self) -> bool:
        return self._db is not None

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("History database not open. Call open() first.")
        return self._db

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None
            logger.info("History database closed")

    async def record(
        self,
        command: str,
        args: str,
        stdout: str,
        stderr: str,
        exit_code: int,
        duration_ms: int,
    ) -> None:
        """Save a command execution. Failures are logged, never raised."""
        try:
            db = self._conn()
            await db.execute(
                """INSERT INTO commands (command, args, stdout, stderr, exit_code, duration_ms)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (command, args, stdout, stderr, exit_code, duration_ms),
            )
            await db.commit()
        except Exception:
            logger.exception("Failed to save command history")

    async def recent(self, limit: int = 10) -> list[CommandRecord]:
        """Get recent command history, newest first."""
        db = self._conn()
        cursor = await db.execute(
            """SELECT id, command, args, stdout, stderr, exit_code, duration_ms, created_at
               FROM commands ORDER BY id DESC LIMIT ?""",
            (limit,),
        )
        rows = await cursor.fetchall()
        return [CommandRecord(**dict(row)) for row in rows]
