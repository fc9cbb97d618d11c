"""Data models for dnsdeck."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from dnsdeck.errors import InvalidParameter

MODES = ("recursive", "dot", "doh")
PROXY_TYPES = ("cloudflared", "dnscrypt-proxy")

STATUS_PASS = "pass"
STATUS_WARN = "warn"
STATUS_FAIL = "fail"
_SEVERITY = {STATUS_PASS: 0, STATUS_WARN: 1, STATUS_FAIL: 2}

# Host names and IP literals. These are rendered into forward-addr lines.
HOST_PATTERN = re.compile(r"[A-Za-z0-9._:\[\]-]{1,253}")


def _host(value: Any, field_name: str) -> str:
    text = str(value)
    if not HOST_PATTERN.fullmatch(text):
        raise ValueError(f"{field_name} must be a host name or IP address, got {text!r}")
    return text


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "false"):
        return value.lower() == "true"
    raise ValueError(f"enabled must be true or false, got {value!r}")


@dataclass(frozen=True)
class ExecutionResult:
    """Result of one allowlisted command invocation."""

    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0


@dataclass
class CommandRecord:
    """A stored command history entry."""

    id: int = 0
    command: str = ""
    args: str = ""
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    duration_ms: int = 0
    created_at: str = ""


@dataclass
class DotProvider:
    id: str
    address: str
    port: int = 853
    name: str | None = None
    sni: str | None = None
    enabled: bool = True
    priority: int = 50

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DotProvider:
        try:
            return cls(
                id=str(data["id"]),
                address=_host(data["address"], "address"),
                port=int(data.get("port") or 853),
                name=data.get("name"),
                sni=_host(data["sni"], "sni") if data.get("sni") else None,
                enabled=_flag(data.get("enabled", True)),
                priority=int(data.get("priority", 50)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidParameter(f"Invalid DoT provider: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "address": self.address, "port": self.port}
        if self.name is not None:
            data["name"] = self.name
        if self.sni:
            data["sni"] = self.sni
        data["enabled"] = self.enabled
        data["priority"] = self.priority
        return data


@dataclass
class DohProvider:
    id: str
    endpoint_url: str
    name: str | None = None
    enabled: bool = True
    priority: int = 50

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DohProvider:
        try:
            return cls(
                id=str(data["id"]),
                endpoint_url=str(data.get("endpointUrl") or data["address"]),
                name=data.get("name"),
                enabled=_flag(data.get("enabled", True)),
                priority=int(data.get("priority", 50)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidParameter(f"Invalid DoH provider: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "endpointUrl": self.endpoint_url}
        if self.name is not None:
            data["name"] = self.name
        data["enabled"] = self.enabled
        data["priority"] = self.priority
        return data


@dataclass
class DohProxy:
    type: str = "cloudflared"
    local_port: int = 5053

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DohProxy:
        proxy_type = data.get("type", "cloudflared")
        if proxy_type not in PROXY_TYPES:
            raise InvalidParameter(f"Unknown DoH proxy type: {proxy_type}")
        try:
            port = int(data.get("localPort", 5053))
        except (TypeError, ValueError) as e:
            raise InvalidParameter(f"Invalid DoH proxy port: {e}") from e
        if not 1 <= port <= 65535:
            raise InvalidParameter(f"DoH proxy port out of range: {port}")
        return cls(type=proxy_type, local_port=port)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "localPort": self.local_port}


@dataclass
class UpstreamConfig:
    """Structured upstream configuration, the source the resolver config is rendered from."""

    mode: str = "recursive"
    dot_providers: list[DotProvider] = field(default_factory=list)
    doh_providers: list[DohProvider] = field(default_factory=list)
    doh_proxy: DohProxy = field(default_factory=DohProxy)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpstreamConfig:
        """Build a config from its JSON form, enforcing mode and id uniqueness."""
        if not isinstance(data, dict):
            raise InvalidParameter("Upstream config must be a JSON object")
        mode = data.get("mode", "recursive")
        if mode not in MODES:
            raise InvalidParameter(f"Unknown mode: {mode}. Allowed: {', '.join(MODES)}")

        dot = [DotProvider.from_dict(p) for p in data.get("dotProviders") or []]
        doh = [DohProvider.from_dict(p) for p in data.get("dohProviders") or []]
        _check_unique_ids("dotProviders", [p.id for p in dot])
        _check_unique_ids("dohProviders", [p.id for p in doh])

        return cls(
            mode=mode,
            dot_providers=dot,
            doh_providers=doh,
            doh_proxy=DohProxy.from_dict(data.get("dohProxy") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "dotProviders": [p.to_dict() for p in self.dot_providers],
            "dohProviders": [p.to_dict() for p in self.doh_providers],
            "dohProxy": self.doh_proxy.to_dict(),
        }


def _check_unique_ids(list_name: str, ids: list[str]) -> None:
    seen: set[str] = set()
    for provider_id in ids:
        if provider_id in seen:
            raise InvalidParameter(f"Duplicate provider id in {list_name}: {provider_id}")
        seen.add(provider_id)


@dataclass(frozen=True)
class Snapshot:
    id: str
    timestamp_iso: str
    rendered_config: str
    upstream_config: UpstreamConfig


@dataclass
class ApplyResult:
    """Outcome of one apply invocation."""

    success: bool = False
    snapshot_id: str | None = None
    validation_passed: bool = False
    reload_passed: bool = False
    self_test_passed: bool = False
    rolled_back: bool = False
    error: str | None = None
    failed_step: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "snapshotId": self.snapshot_id,
            "validationPassed": self.validation_passed,
            "reloadPassed": self.reload_passed,
            "selfTestPassed": self.self_test_passed,
            "rolledBack": self.rolled_back,
            "error": self.error,
            "failedStep": self.failed_step,
        }


@dataclass
class TestStep:
    name: str
    status: str
    duration_ms: int = 0
    details: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    # Keep pytest from collecting this as a test class
    __test__ = False


@dataclass
class SelfTestSummary:
    status: str = STATUS_PASS
    recommendations: list[str] = field(default_factory=list)


@dataclass
class SelfTestResult:
    steps: list[TestStep] = field(default_factory=list)
    summary: SelfTestSummary = field(default_factory=SelfTestSummary)
    total_duration_ms: int = 0

    def step(self, name: str) -> TestStep | None:
        for s in self.steps:
            if s.name == name:
                return s
        return None


def worst_status(statuses: list[str]) -> str:
    """Return the most severe of the given statuses (fail > warn > pass)."""
    worst = STATUS_PASS
    for status in statuses:
        if _SEVERITY[status] > _SEVERITY[worst]:
            worst = status
    return worst


@dataclass
class ResolverStatus:
    running: bool = False
    uptime: int = 0
    version: str = "unknown"
    pid: int | None = None


@dataclass
class ResolverStats:
    total_queries: float = 0
    cache_hits: float = 0
    cache_misses: float = 0
    cache_hit_ratio: float = 0.0
    servfail_count: float = 0
    nxdomain_count: float = 0
    avg_response_ms: float = 0.0
