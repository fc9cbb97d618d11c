"""Formatting helpers for terminal output."""

from __future__ import annotations

from rich.table import Table

from dnsdeck.storage.models import STATUS_FAIL, STATUS_PASS, ApplyResult, ResolverStats, SelfTestResult

STATUS_STYLES = {STATUS_PASS: "green", "warn": "yellow", STATUS_FAIL: "red"}


def format_duration(ms: int) -> str:
    """Format milliseconds to human-readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    elif ms < 60000:
        return f"{ms / 1000:.1f}s"
    else:
        minutes = ms // 60000
        seconds = (ms % 60000) // 1000
        return f"{minutes}m {seconds}s"


def format_uptime(seconds: int) -> str:
    days, rest = divmod(seconds, 86400)
    hours, rest = divmod(rest, 3600)
    minutes = rest // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m {rest % 60}s"


def format_status(status: str) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.upper()}[/{style}]"


def format_apply_result(result: ApplyResult) -> str:
    """One-paragraph summary of an apply outcome."""
    if result.success:
        return f"[green]Applied[/green] (snapshot {result.snapshot_id})"

    lines = [f"[red]Apply failed[/red] at {result.failed_step or 'unknown step'}: {result.error}"]
    if result.rolled_back:
        lines.append(f"Rolled back to snapshot {result.snapshot_id}")
    elif result.snapshot_id:
        lines.append(f"[bold red]Rollback did not complete[/bold red]; snapshot {result.snapshot_id} is kept")
    return "\n".join(lines)


def selftest_table(result: SelfTestResult) -> Table:
    table = Table(title=f"Self-test: {format_status(result.summary.status)}")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Detail")

    for step in result.steps:
        detail = step.error or ""
        if step.details.get("skipped"):
            detail = f"skipped: {step.details.get('reason', '')}"
        table.add_row(step.name, format_status(step.status), format_duration(step.duration_ms), detail)
    return table


def stats_table(stats: ResolverStats) -> Table:
    table = Table(title="Resolver statistics")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")

    table.add_row("Total queries", f"{stats.total_queries:.0f}")
    table.add_row("Cache hits", f"{stats.cache_hits:.0f}")
    table.add_row("Cache misses", f"{stats.cache_misses:.0f}")
    table.add_row("Cache hit ratio", f"{stats.cache_hit_ratio:.1f}%")
    table.add_row("SERVFAIL", f"{stats.servfail_count:.0f}")
    table.add_row("NXDOMAIN", f"{stats.nxdomain_count:.0f}")
    table.add_row("Avg response", f"{stats.avg_response_ms:.1f}ms")
    return table
