"""Configuration management using TOML + environment variables."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

CONFIG_DIR = Path.home() / ".dnsdeck"
CONFIG_FILE = Path(os.environ.get("DNSDECK_CONFIG", str(CONFIG_DIR / "config.toml")))


@dataclass
class PathsConfig:
    managed_conf: str = "/etc/unbound/unbound-ui-managed.conf"
    upstream_path: str = "/var/lib/dnsdeck/upstream.json"
    snapshot_dir: str = "/var/lib/dnsdeck/backups"
    retention: int = 10

    @property
    def config_dir(self) -> Path:
        """Directory the resolver config files (and the staged file) live in."""
        return Path(self.managed_conf).expanduser().parent


@dataclass
class ResolverConfig:
    service: str = "unbound"
    max_output: int = 65536


@dataclass
class SelfTestConfig:
    observation_window: float = 10.0
    min_queries: int = 100
    warn_percent: float = 5.0
    fail_percent: float = 20.0
    tls_timeout: float = 5.0
    tcp_timeout: float = 3.0
    query_domain: str = "example.com"
    query_timeout: float = 3.0


@dataclass
class StorageConfig:
    db_path: str = "~/.dnsdeck/history.db"
    enabled: bool = True


@dataclass
class LoggingConfig:
    level: str = "WARNING"
    file: str = "~/.dnsdeck/dnsdeck.log"


@dataclass
class AppConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    selftest: SelfTestConfig = field(default_factory=SelfTestConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def ensure_config_dir() -> None:
    """Create config directory with secure permissions."""
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    os.chmod(CONFIG_DIR, 0o700)


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from TOML file with env var overrides."""
    config = AppConfig()
    config_file = path or CONFIG_FILE

    if config_file.exists():
        with open(config_file, "rb") as f:
            data = tomllib.load(f)

        paths = data.get("paths", {})
        config.paths.managed_conf = paths.get("managed_conf", config.paths.managed_conf)
        config.paths.upstream_path = paths.get("upstream_path", config.paths.upstream_path)
        config.paths.snapshot_dir = paths.get("snapshot_dir", config.paths.snapshot_dir)
        config.paths.retention = paths.get("retention", config.paths.retention)

        resolver = data.get("resolver", {})
        config.resolver.service = resolver.get("service", config.resolver.service)
        config.resolver.max_output = resolver.get("max_output", config.resolver.max_output)

        selftest = data.get("selftest", {})
        config.selftest.observation_window = selftest.get("observation_window", config.selftest.observation_window)
        config.selftest.min_queries = selftest.get("min_queries", config.selftest.min_queries)
        config.selftest.warn_percent = selftest.get("warn_percent", config.selftest.warn_percent)
        config.selftest.fail_percent = selftest.get("fail_percent", config.selftest.fail_percent)
        config.selftest.tls_timeout = selftest.get("tls_timeout", config.selftest.tls_timeout)
        config.selftest.tcp_timeout = selftest.get("tcp_timeout", config.selftest.tcp_timeout)
        config.selftest.query_domain = selftest.get("query_domain", config.selftest.query_domain)
        config.selftest.query_timeout = selftest.get("query_timeout", config.selftest.query_timeout)

        storage = data.get("storage", {})
        config.storage.db_path = storage.get("db_path", config.storage.db_path)
        config.storage.enabled = storage.get("enabled", config.storage.enabled)

        logging_cfg = data.get("logging", {})
        config.logging.level = logging_cfg.get("level", config.logging.level)
        config.logging.file = logging_cfg.get("file", config.logging.file)

    # Environment variable overrides
    if env_managed := os.environ.get("DNSDECK_MANAGED_CONF"):
        config.paths.managed_conf = env_managed
    if env_upstream := os.environ.get("DNSDECK_UPSTREAM_PATH"):
        config.paths.upstream_path = env_upstream
    if env_snapshots := os.environ.get("DNSDECK_SNAPSHOT_DIR"):
        config.paths.snapshot_dir = env_snapshots
    if env_retention := os.environ.get("DNSDECK_RETENTION"):
        config.paths.retention = int(env_retention)
    if env_window := os.environ.get("DNSDECK_OBSERVATION_WINDOW"):
        config.selftest.observation_window = float(env_window)
    if env_db := os.environ.get("DNSDECK_DB_PATH"):
        config.storage.db_path = env_db
    if env_log_level := os.environ.get("DNSDECK_LOG_LEVEL"):
        config.logging.level = env_log_level

    return config


def save_config(config: AppConfig, path: Path | None = None) -> None:
    """Save configuration to TOML file."""
    config_file = path or CONFIG_FILE
    if config_file.parent == CONFIG_DIR:
        ensure_config_dir()
    else:
        config_file.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "paths": {
            "managed_conf": config.paths.managed_conf,
            "upstream_path": config.paths.upstream_path,
            "snapshot_dir": config.paths.snapshot_dir,
            "retention": config.paths.retention,
        },
        "resolver": {
            "service": config.resolver.service,
            "max_output": config.resolver.max_output,
        },
        "selftest": {
            "observation_window": config.selftest.observation_window,
            "min_queries": config.selftest.min_queries,
            "warn_percent": config.selftest.warn_percent,
            "fail_percent": config.selftest.fail_percent,
            "tls_timeout": config.selftest.tls_timeout,
            "tcp_timeout": config.selftest.tcp_timeout,
            "query_domain": config.selftest.query_domain,
            "query_timeout": config.selftest.query_timeout,
        },
        "storage": {
            "db_path": config.storage.db_path,
            "enabled": config.storage.enabled,
        },
        "logging": {
            "level": config.logging.level,
            "file": config.logging.file,
        },
    }

    with open(config_file, "wb") as f:
        tomli_w.dump(data, f)

    os.chmod(config_file, 0o600)
