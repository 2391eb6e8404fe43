from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from recent_errors import console as con
from recent_errors import powershell
from recent_errors.powershell import PowerShellError
from recent_errors.session import RunContext


# Get-WinEvent の Level 値
LEVEL_NAMES: Dict[int, str] = {
    1: "Critical",
    2: "Error",
    3: "Warning",
    4: "Information",
    5: "Verbose",
}
LEVEL_VALUES: Dict[str, int] = {v: k for k, v in LEVEL_NAMES.items()}

STATUS_OK = "ok"
STATUS_UNAVAILABLE = "unavailable"
STATUS_QUERY_FAILED = "query_failed"

# PowerShell の単一引用符や特殊文字でコマンドが壊れたり注入にならないよう、ログ名を制限する。
# 例: Microsoft-Windows-Windows Error Reporting/Operational
_LOG_NAME_RE = re.compile(r"[A-Za-z0-9 _\-\/().]+")

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


class EventQueryError(RuntimeError):
    pass


@dataclass(frozen=True)
class LogEvent:
    time_created: datetime
    event_id: int
    level: str
    message: str


@dataclass(frozen=True)
class LogQueryResult:
    """ソース1つ分の結果。status で Ok / Unavailable / QueryFailed を区別する。"""

    source: str
    name: str
    status: str
    errors: int = 0
    warnings: int = 0
    reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.status == STATUS_OK

    @classmethod
    def ok(cls, source: str, name: str, *, errors: int = 0, warnings: int = 0) -> "LogQueryResult":
        return cls(source=source, name=name, status=STATUS_OK, errors=errors, warnings=warnings)

    @classmethod
    def unavailable(cls, source: str, name: str, reason: Optional[str] = None) -> "LogQueryResult":
        return cls(source=source, name=name, status=STATUS_UNAVAILABLE, reason=reason)

    @classmethod
    def query_failed(cls, source: str, name: str, reason: str) -> "LogQueryResult":
        return cls(source=source, name=name, status=STATUS_QUERY_FAILED, reason=reason)


class EventSource(Protocol):
    def exists(self, log_name: str) -> bool:
        ...

    def query(
        self,
        log_name: str,
        levels: Sequence[str],
        since: datetime,
        max_events: int = 0,
    ) -> List[LogEvent]:
        ...


def validate_log_name(log_name: str) -> str:
    name = (log_name or "").strip()
    if not name or not _LOG_NAME_RE.fullmatch(name):
        raise EventQueryError(f"Invalid log name {log_name!r}. Allowed chars: letters, numbers, space, _-/.()")
    return name


def _to_unix_ms(dt: datetime) -> int:
    # naive はローカル時刻として扱われる
    return int(dt.timestamp() * 1000)


def parse_event(row: Dict[str, Any]) -> Optional[LogEvent]:
    try:
        ms = int(row.get("TimeCreated"))
        event_id = int(row.get("Id"))
        level_value = int(row.get("Level"))
        time_created = datetime.fromtimestamp(ms / 1000)
    except (TypeError, ValueError, OverflowError, OSError):
        # 範囲外の TimeCreated も含め、壊れた行は捨てる
        return None

    return LogEvent(
        time_created=time_created,
        event_id=event_id,
        level=LEVEL_NAMES.get(level_value, str(level_value)),
        message=str(row.get("Message") or ""),
    )


class PowerShellEventSource:
    """Get-WinEvent を PowerShell 経由で叩くイベントソース（Windows専用）。"""

    def __init__(self, *, timeout_s: int = 60) -> None:
        self.timeout_s = timeout_s

    def _check_platform(self) -> None:
        if not powershell.is_windows():
            raise EventQueryError("Not running on Windows")

    def exists(self, log_name: str) -> bool:
        self._check_platform()
        name = validate_log_name(log_name)
        ps = (
            "try { "
            f"  $null = Get-WinEvent -ListLog '{name}' -ErrorAction Stop; "
            "  $r = @{ exists = $true }; "
            "} catch { "
            "  $r = @{ exists = $false }; "
            "}; "
            + powershell.to_base64_json("$r")
        )
        try:
            data = powershell.run_json(ps, self.timeout_s)
        except PowerShellError as e:
            raise EventQueryError(str(e)) from e
        rows = powershell.as_list(data)
        return bool(rows and rows[0].get("exists"))

    def build_query(self, log_name: str, levels: Sequence[str], since: datetime, max_events: int = 0) -> str:
        name = validate_log_name(log_name)
        try:
            level_values = ",".join(str(LEVEL_VALUES[lvl]) for lvl in levels)
        except KeyError as e:
            raise EventQueryError(f"Unknown level {e.args[0]!r}") from e
        max_clause = f" -MaxEvents {int(max_events)}" if max_events > 0 else ""

        return (
            "$ErrorActionPreference = 'Stop'; "
            f"$since = [DateTimeOffset]::FromUnixTimeMilliseconds({_to_unix_ms(since)}).LocalDateTime; "
            # 0件は例外になるので空配列として扱い、それ以外（アクセス拒否など）は失敗にする
            "try { "
            f"  $events = Get-WinEvent -FilterHashtable @{{LogName='{name}'; Level={level_values}; StartTime=$since}}{max_clause}; "
            "} catch { "
            "  if ($_.FullyQualifiedErrorId -like 'NoMatchingEventsFound*') { $events = @() } else { throw } "
            "}; "
            "$items = @($events) | Select-Object "
            "@{n='TimeCreated';e={([DateTimeOffset]$_.TimeCreated).ToUnixTimeMilliseconds()}}, Id, Level, Message; "
            + powershell.to_base64_json("@($items)")
        )

    def query(
        self,
        log_name: str,
        levels: Sequence[str],
        since: datetime,
        max_events: int = 0,
    ) -> List[LogEvent]:
        self._check_platform()
        ps = self.build_query(log_name, levels, since, max_events)
        try:
            data = powershell.run_json(ps, self.timeout_s)
        except PowerShellError as e:
            raise EventQueryError(str(e)) from e

        events: List[LogEvent] = []
        for row in powershell.as_list(data):
            ev = parse_event(row)
            if ev is not None:
                events.append(ev)
        return events


def select_events(events: Iterable[LogEvent], levels: Sequence[str], cutoff: datetime) -> List[LogEvent]:
    """レベルとカットオフで絞り込む。クエリ側でも絞っているが、ここで必ず保証する。"""
    wanted = set(levels)
    selected = [e for e in events if e.level in wanted and e.time_created >= cutoff]
    selected.sort(key=lambda e: e.time_created, reverse=True)
    return selected


def one_line(text: str) -> str:
    return " ".join((text or "").split())


def format_event_line(event: LogEvent) -> str:
    return (
        f"Time: {event.time_created.strftime(TIME_FORMAT)}, ID: {event.event_id}, "
        f"Level: {event.level}, Message: {one_line(event.message)}"
    )


def format_event_status(event: LogEvent, limit: int = 120) -> str:
    msg = one_line(event.message)
    if len(msg) > limit:
        msg = msg[:limit] + "..."
    return f"  [{event.time_created.strftime(TIME_FORMAT)}] {event.level} (ID {event.event_id}): {msg}"


def _emit(ctx: RunContext, events: List[LogEvent]) -> None:
    for ev in events:
        ctx.report.append(format_event_line(ev))
        con.level_line(ctx.console, ev.level, format_event_status(ev))


def collect_errors(ctx: RunContext, source: str, events_source: EventSource) -> LogQueryResult:
    """source から cutoff 以降の Error を集めて書き出す。例外は外に出さない。"""
    since = ctx.session.cutoff
    con.heading(ctx.console, f"Checking {source} log for errors since {since.strftime(TIME_FORMAT)}...")
    ctx.report.append(f"===== {source} Log Errors (since {since.strftime(TIME_FORMAT)}) =====")

    try:
        found = events_source.query(source, ("Error",), since, ctx.max_events)
    except EventQueryError as e:
        con.warn(ctx.console, f"Unable to read {source} log: {e}")
        ctx.report.append(f"Unable to read {source} log: {e}")
        return LogQueryResult.query_failed(source, source, str(e))

    errors = select_events(found, ("Error",), since)
    _emit(ctx, errors)

    if errors:
        con.level_line(ctx.console, "Error", f"{len(errors)} error(s) found in {source} log")
    else:
        con.ok(ctx.console, f"No errors found in {source} log")
        ctx.report.append(f"No errors found in {source} log")
    return LogQueryResult.ok(source, source, errors=len(errors))


def collect_extended(ctx: RunContext, name: str, source: str, events_source: EventSource) -> LogQueryResult:
    """存在確認してから Error/Warning を集める。存在しなければクエリせずにスキップする。"""
    since = ctx.session.cutoff
    con.heading(ctx.console, f"Checking {name} ({source})...")

    try:
        present = events_source.exists(source)
        reason = None if present else "log not found"
    except EventQueryError as e:
        present = False
        reason = str(e)

    if not present:
        con.warn(ctx.console, f"{name} log not available, skipping ({reason})")
        ctx.report.append(f"{name} log ({source}) not available, skipping")
        return LogQueryResult.unavailable(source, name, reason)

    ctx.report.append(f"===== {name} Events (since {since.strftime(TIME_FORMAT)}) =====")
    levels = ("Error", "Warning")
    try:
        found = events_source.query(source, levels, since, ctx.max_events)
    except EventQueryError as e:
        con.warn(ctx.console, f"Unable to read {name} log: {e}")
        ctx.report.append(f"Unable to read {name} log: {e}")
        return LogQueryResult.query_failed(source, name, str(e))

    selected = select_events(found, levels, since)
    _emit(ctx, selected)

    errors = sum(1 for e in selected if e.level == "Error")
    warnings = len(selected) - errors
    if selected:
        con.info(ctx.console, f"{name}: {errors} error(s), {warnings} warning(s)")
    else:
        con.ok(ctx.console, f"No errors or warnings found in {name} log")
        ctx.report.append(f"No errors or warnings found in {name} log")
    return LogQueryResult.ok(source, name, errors=errors, warnings=warnings)
