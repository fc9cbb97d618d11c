"""CLI entry point using typer."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from dnsdeck import __version__
from dnsdeck.config import (
    CONFIG_FILE,
    AppConfig,
    LoggingConfig,
    PathsConfig,
    ResolverConfig,
    SelfTestConfig,
    StorageConfig,
    load_config,
    save_config,
)
from dnsdeck.context import AppContext
from dnsdeck.errors import DnsDeckError, InvalidParameter
from dnsdeck.services.gateway import CommandGateway
from dnsdeck.services.renderer import render as render_config
from dnsdeck.storage.models import STATUS_FAIL, UpstreamConfig
from dnsdeck.storage.upstream import UpstreamStore
from dnsdeck.utils.formatting import (
    format_apply_result,
    format_duration,
    format_uptime,
    selftest_table,
    stats_table,
)
from dnsdeck.utils.system import REQUIRED_TOOLS, check_config_dir, check_tool, check_unbound

T = TypeVar("T")

app = typer.Typer(
    name="dnsdeck",
    help="Safe configuration changes for an Unbound DNS resolver.",
    add_completion=False,
)
console = Console()


def _load() -> AppConfig:
    return load_config(CONFIG_FILE)


def _setup_logging(config: AppConfig) -> None:
    log_path = Path(config.logging.file).expanduser().resolve()
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.WARNING),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(str(log_path)),
            logging.StreamHandler(),
        ],
    )


def _run(fn: Callable[[AppContext], Awaitable[T]]) -> T:
    """Build the service context, run ``fn`` in it and map errors to exit code 1."""
    config = _load()
    _setup_logging(config)

    async def runner() -> T:
        ctx = AppContext.build(config)
        await ctx.open()
        try:
            return await fn(ctx)
        finally:
            await ctx.close()

    try:
        return asyncio.run(runner())
    except DnsDeckError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)


def _load_candidate(path: Path) -> UpstreamConfig:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(1)
    except ValueError as e:
        console.print(f"[red]Invalid JSON in {path}: {e}[/red]")
        raise typer.Exit(1)
    try:
        return UpstreamConfig.from_dict(data)
    except InvalidParameter as e:
        console.print(f"[red]Invalid upstream config: {e}[/red]")
        raise typer.Exit(1)


def _print_json(data: Any) -> None:
    console.print_json(json.dumps(data, default=str))


def _unbound_version() -> tuple[bool, str]:
    # unbound -V takes no file arguments, so the default config dir is enough
    return asyncio.run(check_unbound(CommandGateway(PathsConfig().config_dir)))


@app.command()
def init() -> None:
    """Interactive setup wizard."""
    console.print(f"\n[bold]dnsdeck v{__version__}[/bold]")
    console.print("Interactive Setup\n")

    # 1. Check the resolver tooling
    console.print("[dim]Checking Unbound...[/dim]")
    installed, version_info = _unbound_version()
    if installed:
        console.print(f"  Unbound: [green]{version_info}[/green]")
    else:
        console.print(f"  [yellow]Warning: {version_info}[/yellow]")
    for tool in REQUIRED_TOOLS:
        found, location = check_tool(tool)
        if not found:
            console.print(f"  [yellow]Warning: {location}[/yellow]")

    defaults = PathsConfig()

    # 2. Managed include file
    console.print("\n[bold]Step 1:[/bold] Managed Unbound include file")
    console.print("  This file is rewritten on every apply. Include it from unbound.conf.")
    managed_conf = typer.prompt("  Path", default=defaults.managed_conf)
    valid, resolved = check_config_dir(Path(managed_conf).expanduser().parent)
    if not valid:
        console.print(f"  [yellow]Warning: {resolved}[/yellow]")

    # 3. Structured config and snapshots
    console.print("\n[bold]Step 2:[/bold] State directory")
    upstream_path = typer.prompt("  Upstream config (JSON)", default=defaults.upstream_path)
    snapshot_dir = typer.prompt("  Snapshot directory", default=defaults.snapshot_dir)
    retention = typer.prompt("  Snapshots to keep", default=defaults.retention, type=int)
    if retention < 1:
        console.print("[red]At least one snapshot must be kept.[/red]")
        raise typer.Exit(1)

    # 4. Resolver service
    console.print("\n[bold]Step 3:[/bold] Resolver service unit")
    service = typer.prompt("  Service", default=ResolverConfig().service)

    config = AppConfig(
        paths=PathsConfig(
            managed_conf=managed_conf,
            upstream_path=upstream_path,
            snapshot_dir=snapshot_dir,
            retention=retention,
        ),
        resolver=ResolverConfig(service=service),
        selftest=SelfTestConfig(),
        storage=StorageConfig(),
        logging=LoggingConfig(),
    )
    save_config(config, CONFIG_FILE)

    console.print(f"\n[green]Configuration saved to {CONFIG_FILE}[/green]")
    console.print("\nNext steps:")
    console.print("  [bold]dnsdeck selftest[/bold]          Check the resolver")
    console.print("  [bold]dnsdeck apply upstream.json[/bold] Apply an upstream configuration\n")


@app.command()
def config(
    key: str = typer.Argument(None, help="Config key (e.g., paths.retention)"),
    value: str = typer.Argument(None, help="New value"),
) -> None:
    """View or modify configuration."""
    if not CONFIG_FILE.exists():
        console.print("[red]Not configured. Run 'dnsdeck init'.[/red]")
        raise typer.Exit(1)

    cfg = _load()
    section_map = {
        "paths": cfg.paths,
        "resolver": cfg.resolver,
        "selftest": cfg.selftest,
        "storage": cfg.storage,
        "logging": cfg.logging,
    }

    if key is None:
        # Show all config
        table = Table(title="Configuration")
        table.add_column("Key", style="cyan")
        table.add_column("Value", style="green")
        for section, obj in section_map.items():
            for attr, current in vars(obj).items():
                table.add_row(f"{section}.{attr}", str(current))
        console.print(table)
        return

    if value is None:
        console.print("[red]Usage: dnsdeck config <key> <value>[/red]")
        raise typer.Exit(1)

    parts = key.split(".")
    if len(parts) != 2:
        console.print("[red]Key format: section.key (e.g., paths.retention)[/red]")
        raise typer.Exit(1)

    section, attr = parts
    if section not in section_map:
        console.print(f"[red]Unknown section: {section}[/red]")
        raise typer.Exit(1)

    obj = section_map[section]
    if attr not in vars(obj):
        console.print(f"[red]Unknown key: {key}[/red]")
        raise typer.Exit(1)

    # Type coercion
    current = getattr(obj, attr)
    try:
        if isinstance(current, bool):
            typed_value: Any = value.lower() in ("true", "1", "yes")
        elif isinstance(current, int):
            typed_value = int(value)
        elif isinstance(current, float):
            typed_value = float(value)
        else:
            typed_value = value
    except ValueError:
        console.print(f"[red]Invalid value type for {key}[/red]")
        raise typer.Exit(1)

    setattr(obj, attr, typed_value)
    save_config(cfg, CONFIG_FILE)
    console.print(f"[green]{key} = {typed_value}[/green]")


@app.command()
def render(
    file: Path = typer.Argument(None, help="Upstream config JSON (defaults to the live config)"),
) -> None:
    """Print the Unbound include file a configuration would produce."""
    if file is None:
        candidate = UpstreamStore(_load().paths.upstream_path).load()
    else:
        candidate = _load_candidate(file)
    console.print(render_config(candidate), markup=False, highlight=False, soft_wrap=True, end="")


@app.command()
def apply(
    file: Path = typer.Argument(..., help="Upstream config JSON to apply"),
    no_self_test: bool = typer.Option(False, "--no-self-test", help="Skip the post-reload self-test"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Apply an upstream configuration with snapshot and automatic rollback."""
    candidate = _load_candidate(file)

    async def do_apply(ctx: AppContext):
        previous_mode = ctx.upstream.load().mode
        result = await ctx.orchestrator.apply(candidate, run_self_test=not no_self_test)
        if result.success and previous_mode != candidate.mode:
            ctx.audit.record("mode_change", True, {"from": previous_mode, "to": candidate.mode})
        return result

    result = _run(do_apply)
    if as_json:
        _print_json(result.to_dict())
    else:
        console.print(format_apply_result(result))
    if not result.success:
        raise typer.Exit(1)


@app.command()
def snapshots(
    create: bool = typer.Option(False, "--create", help="Take a snapshot of the live config first"),
) -> None:
    """List configuration snapshots, newest first."""

    async def do_list(ctx: AppContext):
        if create:
            snapshot_id = await ctx.orchestrator.snapshot()
            console.print(f"[green]Created {snapshot_id}[/green]")
        return ctx.snapshots.list()

    items = _run(do_list)
    if not items:
        console.print("[dim]No snapshots.[/dim]")
        return

    table = Table(title="Snapshots")
    table.add_column("ID", style="cyan")
    table.add_column("Taken", style="green")
    table.add_column("Mode")
    for snapshot in items:
        table.add_row(snapshot.id, snapshot.timestamp_iso, snapshot.upstream_config.mode)
    console.print(table)


@app.command()
def rollback(
    snapshot_id: str = typer.Argument(None, help="Snapshot to restore (defaults to the latest)"),
) -> None:
    """Restore a snapshot and reload the resolver."""

    async def do_rollback(ctx: AppContext) -> str:
        target = snapshot_id or ctx.snapshots.latest_id()
        if target is None:
            raise DnsDeckError("No snapshots available")
        await ctx.orchestrator.rollback(target)
        return target

    restored = _run(do_rollback)
    console.print(f"[green]Restored {restored}[/green]")


@app.command()
def selftest(
    window: float = typer.Option(None, "--window", "-w", help="Observation window in seconds (0 to skip sampling)"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Run the diagnostic self-test."""

    async def do_selftest(ctx: AppContext):
        result = await ctx.selftest.run(window)
        ctx.audit.record(
            "self_test",
            result.summary.status != STATUS_FAIL,
            {"status": result.summary.status, "durationMs": result.total_duration_ms},
        )
        return result

    result = _run(do_selftest)
    if as_json:
        _print_json(
            {
                "steps": [vars(s) for s in result.steps],
                "summary": vars(result.summary),
                "totalDurationMs": result.total_duration_ms,
            }
        )
    else:
        console.print(selftest_table(result))
        for recommendation in result.summary.recommendations:
            console.print(f"  - {recommendation}")
        console.print(f"[dim]Total: {format_duration(result.total_duration_ms)}[/dim]")
    if result.summary.status == STATUS_FAIL:
        raise typer.Exit(1)


@app.command()
def status(
    service: str = typer.Option(None, "--service", "-s", help="Show 'systemctl status' for this unit instead"),
) -> None:
    """Show resolver status and the active upstream mode."""
    if service:
        console.print(_run(lambda ctx: ctx.resolver.unit_status(service)), markup=False, highlight=False)
        return

    if not CONFIG_FILE.exists():
        console.print("[yellow]Not configured. Run 'dnsdeck init'. Using defaults.[/yellow]\n")

    async def do_status(ctx: AppContext):
        return await ctx.resolver.status(), ctx.upstream.load(), ctx.snapshots.latest_id()

    resolver_status, upstream, latest = _run(do_status)
    if resolver_status.running:
        console.print(f"[green]Unbound is running[/green] (PID: {resolver_status.pid or 'unknown'})")
        console.print(f"Version: {resolver_status.version}")
        console.print(f"Uptime: {format_uptime(resolver_status.uptime)}")
    else:
        console.print("[red]Unbound is not running.[/red]")

    console.print(f"\nMode: {upstream.mode}")
    console.print(f"Latest snapshot: {latest or '(none)'}")


@app.command()
def stats() -> None:
    """Show resolver statistics."""
    result = _run(lambda ctx: ctx.resolver.stats())
    console.print(stats_table(result))


def _service_action(event: str, action: Callable[[AppContext], Awaitable[None]], details: dict) -> None:
    async def do_action(ctx: AppContext) -> None:
        try:
            await action(ctx)
        except DnsDeckError as e:
            ctx.audit.record(event, False, details, str(e))
            raise
        ctx.audit.record(event, True, details)

    _run(do_action)


@app.command()
def reload(
    service: str = typer.Option(None, "--service", "-s", help="Reload a DoH proxy unit instead of the resolver"),
) -> None:
    """Reload the resolver configuration, or a DoH proxy service."""
    if service:
        _service_action("service_reload", lambda ctx: ctx.resolver.reload_service(service), {"service": service})
        console.print(f"[green]{service} reloaded.[/green]")
        return
    _service_action("service_reload", lambda ctx: ctx.resolver.reload(), {"service": "unbound"})
    console.print("[green]Unbound reloaded.[/green]")


@app.command()
def restart(
    service: str = typer.Option(None, "--service", "-s", help="Service to restart (defaults to the resolver)"),
) -> None:
    """Restart the resolver or a DoH proxy service."""
    target = service or _load().resolver.service

    _service_action("service_restart", lambda ctx: ctx.resolver.restart(target), {"service": target})
    console.print(f"[green]{target} restarted.[/green]")


@app.command()
def flush(
    zone: str = typer.Option(None, "--zone", "-z", help="Flush only this zone"),
) -> None:
    """Flush the resolver cache."""
    if zone:
        _service_action("cache_flush", lambda ctx: ctx.resolver.flush_zone(zone), {"zone": zone})
        console.print(f"[green]Flushed {zone}.[/green]")
    else:
        _service_action("cache_flush", lambda ctx: ctx.resolver.flush_all(), {"zone": "."})
        console.print("[green]Cache flushed.[/green]")


@app.command()
def history(
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries"),
) -> None:
    """Show recent command executions."""

    async def do_history(ctx: AppContext):
        if ctx.history is None or not ctx.history.is_open:
            raise DnsDeckError("Command history is disabled")
        return await ctx.history.recent(limit)

    records = _run(do_history)
    if not records:
        console.print("[dim]No commands recorded.[/dim]")
        return

    table = Table(title="Command history")
    table.add_column("When", style="dim")
    table.add_column("Command", style="cyan")
    table.add_column("Args")
    table.add_column("Exit", justify="right")
    table.add_column("Duration", justify="right")
    for record in records:
        exit_style = "green" if record.exit_code == 0 else "red"
        table.add_row(
            str(record.created_at),
            record.command,
            record.args,
            f"[{exit_style}]{record.exit_code}[/{exit_style}]",
            format_duration(record.duration_ms or 0),
        )
    console.print(table)


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines"),
    unit: str = typer.Option("unbound", "--unit", "-u", help="Systemd unit to read"),
    since: str = typer.Option(None, "--since", help="Only entries after this timestamp (YYYY-MM-DD[THH:MM:SS])"),
) -> None:
    """View service logs from the journal."""

    async def do_logs(ctx: AppContext) -> str:
        if since:
            return await ctx.resolver.read_logs_since(since, unit)
        return await ctx.resolver.read_logs(unit, lines)

    output = _run(do_logs)
    entries = output.strip().splitlines()
    if not entries:
        console.print("[dim]No log entries.[/dim]")
        return
    for line in entries[-lines:]:
        try:
            entry = json.loads(line)
        except ValueError:
            console.print(line, markup=False)
            continue
        console.print(str(entry.get("MESSAGE", "")), markup=False)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"dnsdeck v{__version__}")

    installed, version_info = _unbound_version()
    if installed:
        console.print(f"Unbound: {version_info}")
    else:
        console.print("Unbound: [yellow]not installed[/yellow]")

    console.print(f"Python: {sys.version.split()[0]}")
    console.print(f"Config: {CONFIG_FILE}")


if __name__ == "__main__":
    app()
