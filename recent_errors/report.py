from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Sequence, Tuple

from rich.console import Console

from recent_errors import console as con
from recent_errors import powershell
from recent_errors.eventlog_collect import EventSource, LogQueryResult, PowerShellEventSource, collect_errors, collect_extended
from recent_errors.session import RunContext, new_context, new_session
from recent_errors.settings import Settings, load_settings
from recent_errors.system_info import SystemSnapshot, collect_system_info, read_system_snapshot


PRIMARY_SOURCES: Tuple[str, ...] = ("System", "Application")

# (表示名, ログ名) の順序付きリスト
EXTENDED_SOURCES: Tuple[Tuple[str, str], ...] = (
    ("Windows Error Reporting", "Microsoft-Windows-Windows Error Reporting/Operational"),
    ("Diagnostics Performance", "Microsoft-Windows-Diagnostics-Performance/Operational"),
    ("PowerShell", "Microsoft-Windows-PowerShell/Operational"),
)


@dataclass
class RunSummary:
    output_path: str
    primary: List[LogQueryResult] = field(default_factory=list)
    extended: List[LogQueryResult] = field(default_factory=list)
    snapshot: Optional[SystemSnapshot] = None
    failed_writes: int = 0

    @property
    def primary_errors(self) -> int:
        return sum(r.errors for r in self.primary)

    @property
    def extended_errors(self) -> int:
        return sum(r.errors for r in self.extended)

    @property
    def extended_warnings(self) -> int:
        return sum(r.warnings for r in self.extended)


def primary_summary_line(results: Sequence[LogQueryResult]) -> str:
    return ", ".join(f"{r.source} Errors: {r.errors}" for r in results)


def extended_summary_line(results: Sequence[LogQueryResult]) -> str:
    errors = sum(r.errors for r in results)
    warnings = sum(r.warnings for r in results)
    return f"Total Errors: {errors}, Total Warnings: {warnings}"


def run(
    settings: Settings,
    console: Console,
    *,
    events_source: Optional[EventSource] = None,
    read_snapshot: Optional[Callable[[], SystemSnapshot]] = None,
    relax_policy: Optional[Callable[[], Optional[str]]] = None,
    primary_sources: Sequence[str] = PRIMARY_SOURCES,
    extended_sources: Sequence[Tuple[str, str]] = EXTENDED_SOURCES,
    now: Optional[datetime] = None,
) -> RunSummary:
    """収集の一連の流れ。どのソースが失敗しても最後まで進む。"""
    err = (relax_policy or powershell.relax_execution_policy)()
    if err:
        con.warn(console, f"Could not set execution policy for this process: {err}")

    con.banner(console, "Recent Errors and System Information Report")

    session = new_session(output_dir=settings.output_dir, lookback_hours=settings.lookback_hours, now=now)
    ctx: RunContext = new_context(session, console, max_events=settings.max_events)
    ctx.report.append(f"Recent Errors Report - generated {session.started_at.strftime('%Y-%m-%d %H:%M:%S')}")
    ctx.report.append(f"Events since: {session.cutoff.strftime('%Y-%m-%d %H:%M:%S')}")

    source = events_source or PowerShellEventSource(timeout_s=settings.query_timeout_s)
    summary = RunSummary(output_path=str(session.output_path))

    for name in primary_sources:
        summary.primary.append(collect_errors(ctx, name, source))

    line = primary_summary_line(summary.primary)
    con.heading(console, f"Summary of errors in the last {settings.lookback_hours} hours:")
    con.info(console, line)
    con.info(console, f"Total Errors: {summary.primary_errors}")
    ctx.report.append(f"Summary: {line}, Total Errors: {summary.primary_errors}")

    summary.snapshot = collect_system_info(
        ctx,
        read_snapshot=read_snapshot or (lambda: read_system_snapshot(settings.query_timeout_s)),
    )

    for friendly, log_name in extended_sources:
        summary.extended.append(collect_extended(ctx, friendly, log_name, source))

    line = extended_summary_line(summary.extended)
    con.heading(console, "Summary of additional event logs:")
    con.info(console, line)
    ctx.report.append(f"Additional logs summary: {line}")

    summary.failed_writes = ctx.report.failed_writes

    con.banner(console, "Report complete")
    if summary.failed_writes:
        con.error(console, f"{summary.failed_writes} line(s) could not be written to the report file")
    con.ok(console, f"Report saved to: {session.output_path}")
    return summary


def main() -> int:
    console = con.make_console()
    run(load_settings(), console)
    return 0
