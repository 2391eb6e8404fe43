from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from rich.console import Console

from recent_errors.report_log import ReportLog


REPORT_PREFIX = "RecentErrors-"
REPORT_SUFFIX = ".log"


@dataclass(frozen=True)
class Session:
    started_at: datetime
    output_path: Path
    cutoff: datetime


@dataclass
class RunContext:
    """各コレクタに明示的に渡す実行コンテキスト。"""

    session: Session
    report: ReportLog
    console: Console
    max_events: int = 0


def report_file_name(started_at: datetime) -> str:
    return f"{REPORT_PREFIX}{started_at.strftime('%Y%m%d_%H%M%S')}{REPORT_SUFFIX}"


def _unique_path(directory: Path, name: str) -> Path:
    # 同じ秒に2回実行されても既存のレポートに追記しないよう、連番を付ける
    candidate = directory / name
    stem = candidate.stem
    n = 1
    while candidate.exists():
        candidate = directory / f"{stem}-{n}{REPORT_SUFFIX}"
        n += 1
    return candidate


def new_session(
    *,
    output_dir: Path,
    lookback_hours: int = 24,
    now: Optional[datetime] = None,
) -> Session:
    """実行1回分のセッションを作る。時刻はローカル時刻（naive）で扱う。"""
    started_at = now or datetime.now()
    output_path = _unique_path(Path(output_dir), report_file_name(started_at))
    return Session(
        started_at=started_at,
        output_path=output_path,
        cutoff=started_at - timedelta(hours=lookback_hours),
    )


def new_context(session: Session, console: Console, *, max_events: int = 0) -> RunContext:
    return RunContext(
        session=session,
        report=ReportLog(session.output_path, console),
        console=console,
        max_events=max_events,
    )
