"""System utility checks."""

from __future__ import annotations

import os
import shutil
from pathlib import Path

from dnsdeck.errors import ExecutionFailed
from dnsdeck.services.commands import CommandId
from dnsdeck.services.gateway import CommandGateway

REQUIRED_TOOLS = ("unbound-control", "unbound-checkconf", "systemctl", "journalctl")


def check_tool(name: str) -> tuple[bool, str]:
    """Check if an executable is on PATH and return its location."""
    path = shutil.which(name)
    if not path:
        return False, f"{name} not found on PATH"
    return True, path


async def check_unbound(gateway: CommandGateway) -> tuple[bool, str]:
    """Check if Unbound is installed and return its version line."""
    if not shutil.which("unbound"):
        return False, "Unbound not found. Install the unbound package."
    try:
        result = await gateway.execute(CommandId.UNBOUND_VERSION)
    except ExecutionFailed as e:
        return False, f"Error checking Unbound: {e}"
    output = result.stdout.strip() or result.stderr.strip()
    return True, output.splitlines()[0] if output else "unknown"


def check_config_dir(path: str | Path) -> tuple[bool, str]:
    """Validate that the managed config directory exists and is writable."""
    resolved = Path(path).expanduser().resolve()
    if not resolved.exists():
        return False, f"Directory not found: {resolved}"
    if not resolved.is_dir():
        return False, f"Not a directory: {resolved}"
    if not os.access(resolved, os.W_OK):
        return False, f"Not writable: {resolved}"
    return True, str(resolved)
