"""Shared test fixtures."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from dnsdeck.config import AppConfig, LoggingConfig, PathsConfig, ResolverConfig, SelfTestConfig, StorageConfig
from dnsdeck.services.resolver import ResolverControl
from dnsdeck.services.snapshots import SnapshotManager
from dnsdeck.storage.models import DotProvider, UpstreamConfig
from dnsdeck.storage.upstream import UpstreamStore


@pytest.fixture
def app_config(tmp_path):
    """Create a test configuration rooted in tmp_path."""
    conf_dir = tmp_path / "unbound"
    conf_dir.mkdir()
    return AppConfig(
        paths=PathsConfig(
            managed_conf=str(conf_dir / "managed.conf"),
            upstream_path=str(tmp_path / "state" / "upstream.json"),
            snapshot_dir=str(tmp_path / "backups"),
            retention=3,
        ),
        resolver=ResolverConfig(service="unbound", max_output=4096),
        selftest=SelfTestConfig(observation_window=0, tls_timeout=1, tcp_timeout=1),
        storage=StorageConfig(db_path=str(tmp_path / "history.db")),
        logging=LoggingConfig(level="DEBUG", file=str(tmp_path / "dnsdeck.log")),
    )


@pytest.fixture
def resolver():
    """ResolverControl double; its coroutine methods are AsyncMocks."""
    return MagicMock(spec=ResolverControl)


@pytest.fixture
def upstream(app_config):
    return UpstreamStore(app_config.paths.upstream_path)


@pytest.fixture
def snapshots(app_config, upstream, resolver):
    return SnapshotManager(
        app_config.paths.snapshot_dir,
        app_config.paths.managed_conf,
        upstream,
        resolver,
        retention=app_config.paths.retention,
    )


@pytest.fixture
def dot_config():
    return UpstreamConfig(
        mode="dot",
        dot_providers=[
            DotProvider(id="quad9", address="9.9.9.9", sni="dns.quad9.net", priority=20),
            DotProvider(id="cloudflare", address="1.1.1.1", sni="cloudflare-dns.com", priority=10),
        ],
    )
