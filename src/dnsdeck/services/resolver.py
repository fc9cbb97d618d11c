"""Unbound control wrapper over the command gateway."""

from __future__ import annotations

import logging
import re

from dnsdeck.errors import ExecutionFailed, ReloadFailed, ValidationFailed
from dnsdeck.services.commands import CommandId
from dnsdeck.services.gateway import CommandGateway
from dnsdeck.storage.models import ResolverStats, ResolverStatus

logger = logging.getLogger(__name__)

_UPTIME_RE = re.compile(r"(\d+)\s*seconds")
_VERSION_RE = re.compile(r"version\s*:?\s*(\S+)")
_PID_RE = re.compile(r"pid\s*:?\s*(\d+)")


def parse_status(output: str) -> ResolverStatus:
    status = ResolverStatus(running=True)
    for line in output.splitlines():
        if "uptime" in line and (m := _UPTIME_RE.search(line)):
            status.uptime = int(m.group(1))
        if "version" in line and (m := _VERSION_RE.search(line)):
            status.version = m.group(1)
        if "pid" in line and (m := _PID_RE.search(line)):
            status.pid = int(m.group(1))
    return status


def parse_stats(output: str) -> ResolverStats:
    """Parse ``unbound-control stats_noreset`` key=value output."""
    stats = ResolverStats()
    for line in output.splitlines():
        key, sep, raw = line.partition("=")
        if not sep:
            continue
        try:
            value = float(raw.strip())
        except ValueError:
            continue
        key = key.strip()
        if key == "total.num.queries":
            stats.total_queries = value
        elif key == "total.num.cachehits":
            stats.cache_hits = value
        elif key == "total.num.cachemiss":
            stats.cache_misses = value
        elif key == "num.answer.rcode.SERVFAIL":
            stats.servfail_count = value
        elif key == "num.answer.rcode.NXDOMAIN":
            stats.nxdomain_count = value
        elif key == "total.recursion.time.avg":
            stats.avg_response_ms = value * 1000

    if stats.total_queries > 0:
        stats.cache_hit_ratio = stats.cache_hits / stats.total_queries * 100
    return stats


class ResolverControl:
    """Resolver operations expressed as catalogue commands."""

    def __init__(self, gateway: CommandGateway, service: str = "unbound") -> None:
        self.gateway = gateway
        self.service = service

    async def is_running(self) -> bool:
        try:
            result = await self.gateway.execute(CommandId.SYSTEMCTL_IS_ACTIVE, {"SERVICE": self.service})
        except ExecutionFailed as e:
            logger.warning("Could not query %s state: %s", self.service, e)
            return False
        return result.stdout.strip() == "active"

    async def status(self) -> ResolverStatus:
        if not await self.is_running():
            return ResolverStatus(running=False)
        try:
            result = await self.gateway.execute(CommandId.UNBOUND_STATUS)
        except ExecutionFailed as e:
            logger.warning("unbound-control status failed: %s", e)
            return ResolverStatus(running=True)
        return parse_status(result.stdout)

    async def stats(self) -> ResolverStats:
        result = await self.gateway.execute(CommandId.UNBOUND_STATS)
        return parse_stats(result.stdout)

    async def check_config(self, path: str | None = None) -> None:
        """Run unbound-checkconf on the whole config or one file; raise ValidationFailed."""
        try:
            if path is None:
                await self.gateway.execute(CommandId.UNBOUND_CHECKCONF)
            else:
                await self.gateway.execute(CommandId.UNBOUND_CHECKCONF_FILE, {"FILE": path})
        except ExecutionFailed as e:
            raise ValidationFailed(f"Configuration validation failed: {e}") from e

    async def reload(self) -> None:
        try:
            await self.gateway.execute(CommandId.UNBOUND_RELOAD)
        except ExecutionFailed as e:
            raise ReloadFailed(f"Failed to reload Unbound: {e}") from e

    async def restart(self, service: str | None = None) -> None:
        """Restart the resolver, or a DoH proxy when ``service`` is given."""
        await self.gateway.execute(CommandId.SYSTEMCTL_RESTART, {"SERVICE": service or self.service})

    async def flush_all(self) -> None:
        await self.gateway.execute(CommandId.UNBOUND_FLUSH_ALL)

    async def flush_zone(self, zone: str) -> None:
        await self.gateway.execute(CommandId.UNBOUND_FLUSH_ZONE, {"ZONE": zone})

    async def read_logs(self, unit: str = "unbound", lines: int = 100) -> str:
        result = await self.gateway.execute(CommandId.JOURNALCTL_READ, {"UNIT": unit, "LINES": str(lines)})
        return result.stdout

    async def read_logs_since(self, since: str, unit: str = "unbound") -> str:
        result = await self.gateway.execute(CommandId.JOURNALCTL_SINCE, {"UNIT": unit, "SINCE": since})
        return result.stdout

    async def unit_status(self, service: str) -> str:
        """Human readable ``systemctl status`` for the resolver or a DoH proxy."""
        result = await self.gateway.execute(CommandId.SYSTEMCTL_STATUS, {"SERVICE": service})
        return result.stdout

    async def reload_service(self, service: str) -> None:
        await self.gateway.execute(CommandId.SYSTEMCTL_RELOAD, {"SERVICE": service})
