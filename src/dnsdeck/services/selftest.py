"""Diagnostic self-test engine.

Four steps, always run in this order:

1. config_validation: ``unbound-checkconf`` on the whole configuration
2. upstream_connectivity: TLS handshakes (DoT) or the local proxy port (DoH)
3. resolver_functionality: service active, a real A query answered and
   statistics readable
4. health_observation: SERVFAIL rate, optionally over a sampling window

The quick variant used while applying runs steps 1 and 3 only.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import time
from typing import Any, Awaitable, Callable

import dns.asyncresolver
import dns.exception

from dnsdeck.config import SelfTestConfig
from dnsdeck.errors import DnsDeckError
from dnsdeck.services.renderer import enabled_dot_providers
from dnsdeck.services.resolver import ResolverControl
from dnsdeck.storage.models import (
    STATUS_FAIL,
    STATUS_PASS,
    STATUS_WARN,
    DotProvider,
    SelfTestResult,
    SelfTestSummary,
    TestStep,
    UpstreamConfig,
    worst_status,
)
from dnsdeck.storage.upstream import UpstreamStore

logger = logging.getLogger(__name__)

LOCAL_RESOLVER = "127.0.0.1"

STEP_NAMES = (
    "config_validation",
    "upstream_connectivity",
    "resolver_functionality",
    "health_observation",
)

RECOMMENDATIONS = {
    ("config_validation", STATUS_FAIL): "Fix configuration errors before proceeding",
    ("upstream_connectivity", STATUS_FAIL): "Check upstream DNS provider connectivity",
    ("upstream_connectivity", STATUS_WARN): "Some upstream providers are unreachable",
    ("resolver_functionality", STATUS_FAIL): "Verify Unbound service is running and responding",
    ("health_observation", STATUS_FAIL): "High error rate detected - check upstream health",
    ("health_observation", STATUS_WARN): "Elevated error rate - monitor closely",
}


async def probe_tls(host: str, port: int, server_name: str, timeout: float) -> str | None:
    """Complete a verified TLS handshake; return the peer certificate CN if present."""
    context = ssl.create_default_context()
    _, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port, ssl=context, server_hostname=server_name),
        timeout=timeout,
    )
    try:
        cert = writer.get_extra_info("peercert") or {}
        for rdn in cert.get("subject", ()):
            for key, value in rdn:
                if key == "commonName":
                    return value
        return None
    finally:
        writer.close()
        await writer.wait_closed()


async def probe_tcp(host: str, port: int, timeout: float) -> None:
    _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout)
    writer.close()
    await writer.wait_closed()


async def query_a(domain: str, server: str, port: int, timeout: float) -> list[str]:
    """Ask ``server`` directly for the A records of ``domain``."""
    resolver = dns.asyncresolver.Resolver(configure=False)
    resolver.nameservers = [server]
    resolver.port = port
    answer = await resolver.resolve(domain, "A", lifetime=timeout)
    return [rdata.address for rdata in answer]


def _error_text(e: BaseException) -> str:
    if isinstance(e, asyncio.TimeoutError):
        return "timed out"
    return str(e) or e.__class__.__name__


class SelfTestEngine:
    def __init__(
        self,
        resolver: ResolverControl,
        upstream: UpstreamStore,
        settings: SelfTestConfig | None = None,
    ) -> None:
        self.resolver = resolver
        self.upstream = upstream
        self.settings = settings or SelfTestConfig()
        self.last_result: SelfTestResult | None = None

    async def run(self, observation_window: float | None = None) -> SelfTestResult:
        """Run all four steps and keep the result as ``last_result``."""
        window = self.settings.observation_window if observation_window is None else observation_window
        config = self.upstream.load()
        result = await self._run_steps(
            [
                self.check_config_validation,
                lambda: self.check_upstream_connectivity(config),
                self.check_resolver_functionality,
                lambda: self.check_health_observation(window),
            ]
        )
        self.last_result = result
        logger.info("Self-test finished: %s in %dms", result.summary.status, result.total_duration_ms)
        return result

    async def run_quick(self) -> SelfTestResult:
        """Configuration validity and resolver responsiveness only."""
        return await self._run_steps([self.check_config_validation, self.check_resolver_functionality])

    async def _run_steps(self, checks: list[Callable[[], Awaitable[TestStep]]]) -> SelfTestResult:
        start = time.monotonic()
        steps = []
        for check in checks:
            steps.append(await check())

        recommendations = [
            RECOMMENDATIONS[(s.name, s.status)] for s in steps if (s.name, s.status) in RECOMMENDATIONS
        ]
        return SelfTestResult(
            steps=steps,
            summary=SelfTestSummary(status=worst_status([s.status for s in steps]), recommendations=recommendations),
            total_duration_ms=int((time.monotonic() - start) * 1000),
        )

    async def check_config_validation(self) -> TestStep:
        start = time.monotonic()
        details: dict[str, Any] = {"method": "unbound-checkconf"}
        try:
            await self.resolver.check_config()
        except DnsDeckError as e:
            details["valid"] = False
            return _step("config_validation", STATUS_FAIL, start, details, str(e))
        details["valid"] = True
        return _step("config_validation", STATUS_PASS, start, details)

    async def check_upstream_connectivity(self, config: UpstreamConfig) -> TestStep:
        start = time.monotonic()
        details: dict[str, Any] = {"mode": config.mode}

        if config.mode == "dot":
            providers = enabled_dot_providers(config)
            details["testedCount"] = len(providers)
            if not providers:
                details.update(skipped=True, reason="No enabled DoT providers")
                return _step("upstream_connectivity", STATUS_PASS, start, details)

            results = await asyncio.gather(*(self._probe_provider(p) for p in providers))
            details["results"] = results
            failed = [r for r in results if not r["success"]]
            if failed:
                names = ", ".join(r["provider"] for r in failed)
                return _step(
                    "upstream_connectivity",
                    STATUS_FAIL,
                    start,
                    details,
                    f"TLS handshake failed for {len(failed)}/{len(results)} providers: {names}",
                )
            return _step("upstream_connectivity", STATUS_PASS, start, details)

        if config.mode == "doh":
            port = config.doh_proxy.local_port
            details.update(proxyType=config.doh_proxy.type, proxyPort=port, testedCount=1)
            try:
                await probe_tcp("127.0.0.1", port, self.settings.tcp_timeout)
            except (OSError, asyncio.TimeoutError) as e:
                return _step(
                    "upstream_connectivity",
                    STATUS_FAIL,
                    start,
                    details,
                    f"DoH proxy not reachable on 127.0.0.1:{port}: {_error_text(e)}",
                )
            return _step("upstream_connectivity", STATUS_PASS, start, details)

        details.update(skipped=True, reason="No upstreams in recursive mode")
        return _step("upstream_connectivity", STATUS_PASS, start, details)

    async def _probe_provider(self, provider: DotProvider) -> dict[str, Any]:
        start = time.monotonic()
        entry: dict[str, Any] = {"provider": provider.name or provider.address}
        try:
            cn = await probe_tls(
                provider.address,
                provider.port,
                provider.sni or provider.address,
                self.settings.tls_timeout,
            )
        except (OSError, asyncio.TimeoutError) as e:
            # ssl.SSLError is an OSError
            entry.update(success=False, error=_error_text(e))
        else:
            entry.update(success=True, certCN=cn)
        entry["latencyMs"] = int((time.monotonic() - start) * 1000)
        return entry

    async def check_resolver_functionality(self) -> TestStep:
        start = time.monotonic()
        details: dict[str, Any] = {}
        try:
            running = await self.resolver.is_running()
        except DnsDeckError as e:
            return _step("resolver_functionality", STATUS_FAIL, start, details, str(e))
        if not running:
            details["running"] = False
            return _step("resolver_functionality", STATUS_FAIL, start, details, "Unbound service is not running")
        details["running"] = True

        domain = self.settings.query_domain
        query_start = time.monotonic()
        try:
            addresses = await query_a(domain, LOCAL_RESOLVER, 53, self.settings.query_timeout)
        except (dns.exception.DNSException, OSError) as e:
            error = str(e) or e.__class__.__name__
            details["basicQuery"] = {"domain": domain, "success": False, "error": error}
            return _step("resolver_functionality", STATUS_FAIL, start, details, f"DNS resolution failed: {error}")
        details["basicQuery"] = {
            "domain": domain,
            "success": True,
            "result": addresses,
            "latencyMs": int((time.monotonic() - query_start) * 1000),
        }

        try:
            stats = await self.resolver.stats()
        except DnsDeckError as e:
            return _step("resolver_functionality", STATUS_FAIL, start, details, f"Statistics unavailable: {e}")
        details["totalQueries"] = stats.total_queries
        details["cacheHitRatio"] = round(stats.cache_hit_ratio, 2)
        return _step("resolver_functionality", STATUS_PASS, start, details)

    async def check_health_observation(self, window: float) -> TestStep:
        start = time.monotonic()
        details: dict[str, Any] = {"windowSeconds": window}
        try:
            first = await self.resolver.stats()
            if window > 0:
                await asyncio.sleep(window)
                last = await self.resolver.stats()
                queries = last.total_queries - first.total_queries
                servfail = last.servfail_count - first.servfail_count
            else:
                queries = first.total_queries
                servfail = first.servfail_count
        except DnsDeckError as e:
            return _step(
                "health_observation", STATUS_WARN, start, details, f"Could not complete observation: {e}"
            )

        details.update(queries=queries, servfail=servfail)
        if queries < self.settings.min_queries:
            details.update(skipped=True, reason=f"Fewer than {self.settings.min_queries} queries observed")
            return _step("health_observation", STATUS_PASS, start, details)

        rate = servfail / queries * 100
        details["servfailRate"] = round(rate, 2)
        if rate > self.settings.fail_percent:
            return _step("health_observation", STATUS_FAIL, start, details, f"Critical SERVFAIL rate: {rate:.1f}%")
        if rate > self.settings.warn_percent:
            return _step("health_observation", STATUS_WARN, start, details, f"Elevated SERVFAIL rate: {rate:.1f}%")
        return _step("health_observation", STATUS_PASS, start, details)


def _step(name: str, status: str, start: float, details: dict[str, Any], error: str | None = None) -> TestStep:
    return TestStep(
        name=name,
        status=status,
        duration_ms=int((time.monotonic() - start) * 1000),
        details=details,
        error=error,
    )
