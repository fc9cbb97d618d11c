"""Wire the services together from an AppConfig."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from dnsdeck.config import AppConfig
from dnsdeck.services.apply import ApplyOrchestrator
from dnsdeck.services.audit import AuditLogger
from dnsdeck.services.gateway import CommandGateway
from dnsdeck.services.resolver import ResolverControl
from dnsdeck.services.selftest import SelfTestEngine
from dnsdeck.services.snapshots import SnapshotManager
from dnsdeck.storage.database import HistoryStore
from dnsdeck.storage.upstream import UpstreamStore

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: AppConfig
    history: HistoryStore | None
    gateway: CommandGateway
    resolver: ResolverControl
    upstream: UpstreamStore
    snapshots: SnapshotManager
    selftest: SelfTestEngine
    audit: AuditLogger
    orchestrator: ApplyOrchestrator

    @classmethod
    def build(cls, config: AppConfig, actor: str = "cli") -> AppContext:
        history = HistoryStore(config.storage.db_path) if config.storage.enabled else None
        gateway = CommandGateway(config.paths.config_dir, history, config.resolver.max_output)
        resolver = ResolverControl(gateway, config.resolver.service)
        upstream = UpstreamStore(config.paths.upstream_path)
        snapshots = SnapshotManager(
            config.paths.snapshot_dir,
            config.paths.managed_conf,
            upstream,
            resolver,
            retention=config.paths.retention,
        )
        selftest = SelfTestEngine(resolver, upstream, config.selftest)
        audit = AuditLogger(actor)
        orchestrator = ApplyOrchestrator(config.paths.managed_conf, upstream, snapshots, resolver, selftest, audit)
        return cls(
            config=config,
            history=history,
            gateway=gateway,
            resolver=resolver,
            upstream=upstream,
            snapshots=snapshots,
            selftest=selftest,
            audit=audit,
            orchestrator=orchestrator,
        )

    async def open(self) -> None:
        if self.history is not None:
            try:
                await self.history.open()
            except Exception:
                # History is best effort; commands still run without it
                logger.exception("Could not open history database %s", self.history.db_path)

    async def close(self) -> None:
        if self.history is not None:
            await self.history.close()
