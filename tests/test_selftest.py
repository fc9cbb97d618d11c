"""Tests for the diagnostic self-test engine."""

from __future__ import annotations

import ssl
from unittest.mock import AsyncMock, patch

import dns.exception
import pytest

from dnsdeck.config import SelfTestConfig
from dnsdeck.errors import ExecutionFailed, ValidationFailed
from dnsdeck.services.selftest import STEP_NAMES, SelfTestEngine
from dnsdeck.storage.models import DohProxy, ResolverStats, UpstreamConfig


QUERY = "dnsdeck.services.selftest.query_a"


@pytest.fixture
def query():
    """Stand-in for the A query sent to the local resolver."""
    with patch(QUERY, new_callable=AsyncMock, return_value=["93.184.215.14"]) as mock:
        yield mock


@pytest.fixture
def engine(resolver, upstream, query):
    resolver.is_running.return_value = True
    resolver.stats.return_value = ResolverStats(total_queries=1000, servfail_count=10)
    return SelfTestEngine(resolver, upstream, SelfTestConfig(observation_window=0))


class TestSelfTestEngine:
    @pytest.mark.asyncio
    async def test_all_pass_in_recursive_mode(self, engine):
        result = await engine.run()
        assert [s.name for s in result.steps] == list(STEP_NAMES)
        assert result.summary.status == "pass"
        assert result.summary.recommendations == []
        assert result.step("upstream_connectivity").details["skipped"] is True
        assert engine.last_result is result

    @pytest.mark.asyncio
    async def test_validation_failure_does_not_stop_later_steps(self, engine, resolver):
        resolver.check_config.side_effect = ValidationFailed("syntax error in line 3")
        result = await engine.run()
        assert len(result.steps) == 4
        assert result.step("config_validation").status == "fail"
        assert "syntax error" in result.step("config_validation").error
        assert result.summary.status == "fail"
        assert "Fix configuration errors before proceeding" in result.summary.recommendations

    @pytest.mark.asyncio
    async def test_quick_runs_two_steps(self, engine):
        result = await engine.run_quick()
        assert [s.name for s in result.steps] == ["config_validation", "resolver_functionality"]
        assert engine.last_result is None

    @pytest.mark.asyncio
    async def test_resolver_not_running(self, engine, resolver):
        resolver.is_running.return_value = False
        step = await engine.check_resolver_functionality()
        assert step.status == "fail"
        assert "not running" in step.error

    @pytest.mark.asyncio
    async def test_stats_unavailable(self, engine, resolver):
        resolver.stats.side_effect = ExecutionFailed("unbound-stats", "connection refused")
        step = await engine.check_resolver_functionality()
        assert step.status == "fail"

    @pytest.mark.asyncio
    async def test_basic_query_recorded(self, engine, query):
        step = await engine.check_resolver_functionality()

        assert step.status == "pass"
        basic = step.details["basicQuery"]
        assert basic["domain"] == "example.com"
        assert basic["success"] is True
        assert basic["result"] == ["93.184.215.14"]
        assert basic["latencyMs"] >= 0
        query.assert_awaited_once_with("example.com", "127.0.0.1", 53, 3.0)

    @pytest.mark.asyncio
    async def test_basic_query_failure_fails_step(self, engine, resolver, query):
        query.side_effect = dns.exception.Timeout()

        step = await engine.check_resolver_functionality()

        assert step.status == "fail"
        assert step.error.startswith("DNS resolution failed")
        assert step.details["running"] is True
        assert step.details["basicQuery"]["success"] is False
        resolver.stats.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_quick_fails_when_resolver_does_not_answer(self, engine, query):
        query.side_effect = ConnectionRefusedError("connection refused")
        result = await engine.run_quick()
        assert result.summary.status == "fail"
        assert "Verify Unbound service is running and responding" in result.summary.recommendations


class TestHealthObservation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "queries,servfail,expected",
        [(1000, 10, "pass"), (1000, 100, "warn"), (1000, 300, "fail"), (1000, 200, "warn")],
    )
    async def test_thresholds(self, engine, resolver, queries, servfail, expected):
        resolver.stats.return_value = ResolverStats(total_queries=queries, servfail_count=servfail)
        step = await engine.check_health_observation(0)
        assert step.status == expected

    @pytest.mark.asyncio
    async def test_too_few_queries_is_skipped(self, engine, resolver):
        resolver.stats.return_value = ResolverStats(total_queries=50, servfail_count=50)
        step = await engine.check_health_observation(0)
        assert step.status == "pass"
        assert step.details["skipped"] is True

    @pytest.mark.asyncio
    async def test_window_uses_delta(self, engine, resolver):
        resolver.stats.side_effect = [
            ResolverStats(total_queries=5000, servfail_count=0),
            ResolverStats(total_queries=5200, servfail_count=100),
        ]
        step = await engine.check_health_observation(0.01)
        assert step.details["queries"] == 200
        assert step.status == "fail"

    @pytest.mark.asyncio
    async def test_stats_error_is_warning(self, engine, resolver):
        resolver.stats.side_effect = ExecutionFailed("unbound-stats", "timed out after 5s")
        step = await engine.check_health_observation(0)
        assert step.status == "warn"


class TestUpstreamConnectivity:
    @pytest.mark.asyncio
    async def test_dot_all_reachable(self, engine, dot_config):
        with patch("dnsdeck.services.selftest.probe_tls", new_callable=AsyncMock, return_value="cloudflare-dns.com"):
            step = await engine.check_upstream_connectivity(dot_config)
        assert step.status == "pass"
        assert step.details["testedCount"] == 2
        assert all(r["success"] for r in step.details["results"])

    @pytest.mark.asyncio
    async def test_dot_any_failure_fails(self, engine, dot_config):
        async def probe(host, port, server_name, timeout):
            if host == "9.9.9.9":
                raise ssl.SSLError("certificate verify failed")
            return server_name

        with patch("dnsdeck.services.selftest.probe_tls", side_effect=probe):
            step = await engine.check_upstream_connectivity(dot_config)
        assert step.status == "fail"
        assert "1/2" in step.error

    @pytest.mark.asyncio
    async def test_dot_without_enabled_providers(self, engine):
        step = await engine.check_upstream_connectivity(UpstreamConfig(mode="dot"))
        assert step.status == "pass"
        assert step.details["skipped"] is True

    @pytest.mark.asyncio
    async def test_doh_proxy_unreachable(self, engine):
        config = UpstreamConfig(mode="doh", doh_proxy=DohProxy(local_port=5053))
        with patch("dnsdeck.services.selftest.probe_tcp", side_effect=ConnectionRefusedError("refused")):
            step = await engine.check_upstream_connectivity(config)
        assert step.status == "fail"
        assert "127.0.0.1:5053" in step.error

    @pytest.mark.asyncio
    async def test_doh_proxy_reachable(self, engine):
        with patch("dnsdeck.services.selftest.probe_tcp", new_callable=AsyncMock) as probe:
            step = await engine.check_upstream_connectivity(UpstreamConfig(mode="doh"))
        assert step.status == "pass"
        probe.assert_awaited_once_with("127.0.0.1", 5053, 3.0)
