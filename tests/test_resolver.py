"""Tests for resolver control and output parsing."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from dnsdeck.errors import CommandFailed, ExecutionFailed, ReloadFailed, ValidationFailed
from dnsdeck.services.commands import CommandId
from dnsdeck.services.gateway import CommandGateway
from dnsdeck.services.resolver import ResolverControl, parse_stats, parse_status
from dnsdeck.storage.models import ExecutionResult

STATS_OUTPUT = """\
thread0.num.queries=120
total.num.queries=1000
total.num.cachehits=750
total.num.cachemiss=250
total.recursion.time.avg=0.042000
num.answer.rcode.SERVFAIL=12
num.answer.rcode.NXDOMAIN=40
"""

STATUS_OUTPUT = """\
version: 1.19.0
verbosity: 1
threads: 2
modules: 2 [ validator iterator ]
uptime: 3725 seconds
options: reuseport control(ssl)
unbound (pid 812) is running...
"""


class TestParsing:
    def test_parse_stats(self):
        stats = parse_stats(STATS_OUTPUT)
        assert stats.total_queries == 1000
        assert stats.cache_hits == 750
        assert stats.cache_misses == 250
        assert stats.cache_hit_ratio == 75.0
        assert stats.servfail_count == 12
        assert stats.nxdomain_count == 40
        assert stats.avg_response_ms == pytest.approx(42.0)

    def test_parse_stats_ignores_garbage(self):
        stats = parse_stats("not a stat line\ntotal.num.queries=abc\n")
        assert stats.total_queries == 0
        assert stats.cache_hit_ratio == 0.0

    def test_parse_status(self):
        status = parse_status(STATUS_OUTPUT)
        assert status.running
        assert status.version == "1.19.0"
        assert status.uptime == 3725
        assert status.pid == 812


@pytest.fixture
def gateway():
    return MagicMock(spec=CommandGateway)


class TestResolverControl:
    @pytest.mark.asyncio
    async def test_is_running(self, gateway):
        gateway.execute.return_value = ExecutionResult(stdout="active\n")
        assert await ResolverControl(gateway).is_running()
        gateway.execute.assert_awaited_once_with(CommandId.SYSTEMCTL_IS_ACTIVE, {"SERVICE": "unbound"})

    @pytest.mark.asyncio
    async def test_is_running_inactive(self, gateway):
        gateway.execute.return_value = ExecutionResult(exit_code=3, stdout="inactive\n")
        assert not await ResolverControl(gateway).is_running()

    @pytest.mark.asyncio
    async def test_is_running_on_gateway_error(self, gateway):
        gateway.execute.side_effect = ExecutionFailed("systemctl-is-active", "timed out after 5s")
        assert not await ResolverControl(gateway).is_running()

    @pytest.mark.asyncio
    async def test_status_when_stopped(self, gateway):
        gateway.execute.return_value = ExecutionResult(exit_code=3, stdout="failed\n")
        status = await ResolverControl(gateway).status()
        assert not status.running
        assert gateway.execute.await_count == 1

    @pytest.mark.asyncio
    async def test_check_config_file(self, gateway):
        await ResolverControl(gateway).check_config("/etc/unbound/.managed.staged.conf")
        gateway.execute.assert_awaited_once_with(
            CommandId.UNBOUND_CHECKCONF_FILE, {"FILE": "/etc/unbound/.managed.staged.conf"}
        )

    @pytest.mark.asyncio
    async def test_check_config_failure(self, gateway):
        failed = ExecutionResult(exit_code=1, stderr="syntax error")
        gateway.execute.side_effect = CommandFailed("unbound-checkconf", failed)
        with pytest.raises(ValidationFailed, match="syntax error"):
            await ResolverControl(gateway).check_config()

    @pytest.mark.asyncio
    async def test_reload_failure(self, gateway):
        gateway.execute.side_effect = ExecutionFailed("unbound-reload", "timed out after 10s")
        with pytest.raises(ReloadFailed):
            await ResolverControl(gateway).reload()

    @pytest.mark.asyncio
    async def test_restart_proxy(self, gateway):
        await ResolverControl(gateway).restart("cloudflared")
        gateway.execute.assert_awaited_once_with(CommandId.SYSTEMCTL_RESTART, {"SERVICE": "cloudflared"})
