"""Command execution gateway: the only code path that starts processes."""

from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Mapping

from dnsdeck.errors import CommandFailed, ExecutionFailed
from dnsdeck.services.commands import CommandId, build_argv, build_validators, resolve_command
from dnsdeck.storage.database import HistoryStore
from dnsdeck.storage.models import ExecutionResult

logger = logging.getLogger(__name__)


class CommandGateway:
    """Execute allowlisted commands with validated parameters and a hard timeout."""

    def __init__(
        self,
        config_dir: Path,
        history: HistoryStore | None = None,
        max_output: int = 65536,
    ) -> None:
        self.validators = build_validators(config_dir)
        self.history = history
        self.max_output = max_output

    async def execute(
        self,
        command_id: CommandId | str,
        params: Mapping[str, str] | None = None,
    ) -> ExecutionResult:
        """Run a catalogue command.

        Raises UnknownCommand or InvalidParameter before any process starts,
        ExecutionFailed if the process cannot start or times out, and
        CommandFailed on a non-zero exit the catalogue entry does not allow.
        """
        spec = resolve_command(command_id)
        argv = build_argv(spec, params or {}, self.validators)
        command = spec.id.value

        env = {**os.environ, "LC_ALL": "C"}
        start = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            logger.error("Could not start %s: %s", command, e)
            await self._record(command, argv, "", str(e), -1, self._elapsed(start))
            raise ExecutionFailed(command, f"could not start {spec.executable}: {e}") from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(proc.communicate(), timeout=spec.timeout)
        except asyncio.TimeoutError:
            try:
                proc.kill()
            except ProcessLookupError:
                # Exited between the timeout and the kill
                pass
            await proc.communicate()
            message = f"timed out after {spec.timeout:g}s"
            logger.warning("Command %s %s", command, message)
            await self._record(command, argv, "", message, -1, self._elapsed(start))
            raise ExecutionFailed(command, message) from None

        result = ExecutionResult(
            exit_code=proc.returncode or 0,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            duration_ms=self._elapsed(start),
        )
        await self._record(command, argv, result.stdout, result.stderr, result.exit_code, result.duration_ms)
        logger.debug("Command %s exited %d in %dms", command, result.exit_code, result.duration_ms)

        if result.exit_code != 0 and not spec.allow_nonzero_exit:
            raise CommandFailed(command, result)
        return result

    @staticmethod
    def _elapsed(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    async def _record(
        self,
        command: str,
        argv: list[str],
        stdout: str,
        stderr: str,
        exit_code: int,
        duration_ms: int,
    ) -> None:
        if self.history is None or not self.history.is_open:
            return
        await self.history.record(
            command=command,
            args=" ".join(argv[1:]),
            stdout=stdout[: self.max_output],
            stderr=stderr[: self.max_output],
            exit_code=exit_code,
            duration_ms=duration_ms,
        )
