from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console

from recent_errors import console as con


TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class ReportLog:
    """セッションのレポートファイルへ1行ずつ追記する。

    書き込みは best-effort。OSError はコンソールに赤で表示して件数だけ数え、
    実行自体は止めない（コンソール側には同じ内容が出ている）。
    """

    def __init__(
        self,
        path: Path,
        console: Console,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.path = Path(path)
        self.console = console
        self.clock = clock
        self.lines_written = 0
        self.failed_writes = 0
        self.last_error: Optional[str] = None

    def format_line(self, line: str, with_timestamp: bool = False) -> str:
        if with_timestamp:
            return f"{self.clock().strftime(TIMESTAMP_FORMAT)} - {line}"
        return line

    def append(self, line: str, with_timestamp: bool = False) -> bool:
        text = self.format_line(line, with_timestamp)
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(text + "\n")
        except OSError as e:
            self.failed_writes += 1
            self.last_error = str(e)
            con.error(self.console, f"could not write to {self.path}: {e}")
            return False
        self.lines_written += 1
        return True
