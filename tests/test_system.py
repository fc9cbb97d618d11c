"""Tests for system checks."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from dnsdeck.services.gateway import CommandGateway
from dnsdeck.utils.system import check_config_dir, check_tool, check_unbound

SUBPROCESS = "dnsdeck.services.gateway.asyncio.create_subprocess_exec"
WHICH = "dnsdeck.utils.system.shutil.which"


def make_proc(stdout: bytes = b"", stderr: bytes = b"", returncode: int = 0) -> AsyncMock:
    proc = AsyncMock()
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.returncode = returncode
    proc.kill = MagicMock()
    return proc


@pytest.fixture
def gateway(tmp_path):
    return CommandGateway(tmp_path)


class TestCheckUnbound:
    @pytest.mark.asyncio
    async def test_version_read_through_gateway(self, gateway):
        proc = make_proc(b"Version 1.19.2\n\nConfigure line: --prefix=/usr\n", returncode=1)
        with patch(WHICH, return_value="/usr/sbin/unbound"), patch(SUBPROCESS, return_value=proc) as mock_exec:
            installed, info = await check_unbound(gateway)

        assert installed
        assert info == "Version 1.19.2"
        assert mock_exec.call_args.args == ("unbound", "-V")
        assert mock_exec.call_args.kwargs["env"]["LC_ALL"] == "C"

    @pytest.mark.asyncio
    async def test_version_on_stderr(self, gateway):
        proc = make_proc(stderr=b"Version 1.17.1\n")
        with patch(WHICH, return_value="/usr/sbin/unbound"), patch(SUBPROCESS, return_value=proc):
            installed, info = await check_unbound(gateway)
        assert installed
        assert info == "Version 1.17.1"

    @pytest.mark.asyncio
    async def test_missing_binary_spawns_nothing(self, gateway):
        with patch(WHICH, return_value=None), patch(SUBPROCESS) as mock_exec:
            installed, info = await check_unbound(gateway)
        assert not installed
        assert "not found" in info
        mock_exec.assert_not_called()

    @pytest.mark.asyncio
    async def test_timeout_reported(self, gateway):
        proc = make_proc()
        proc.communicate = AsyncMock(side_effect=[asyncio.TimeoutError, (b"", b"")])
        with patch(WHICH, return_value="/usr/sbin/unbound"), patch(SUBPROCESS, return_value=proc):
            installed, info = await check_unbound(gateway)
        assert not installed
        assert "timed out" in info


class TestChecks:
    def test_check_tool_missing(self):
        with patch(WHICH, return_value=None):
            found, message = check_tool("unbound-control")
        assert not found
        assert "unbound-control" in message

    def test_check_config_dir(self, tmp_path):
        assert check_config_dir(tmp_path) == (True, str(tmp_path.resolve()))
        found, message = check_config_dir(tmp_path / "missing")
        assert not found
        assert "not found" in message
