from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv


# .env is read from the working directory (where the report is written by default)
ENV_FILE_NAME = ".env"


def _safe_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except Exception:
        return default


@dataclass(frozen=True)
class Settings:
    lookback_hours: int = 24
    output_dir: Path = Path(".")
    query_timeout_s: int = 60
    # 0 は無制限
    max_events: int = 0


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """.env と環境変数から設定を読み込む。未設定・不正値はデフォルトに戻す。"""
    load_dotenv(dotenv_path=env_path or Path.cwd() / ENV_FILE_NAME, override=False)

    lookback = _safe_int(os.getenv("RECENT_ERRORS_LOOKBACK_HOURS"), 24)
    timeout = _safe_int(os.getenv("RECENT_ERRORS_QUERY_TIMEOUT_S"), 60)
    max_events = _safe_int(os.getenv("RECENT_ERRORS_MAX_EVENTS"), 0)

    output_dir_raw = (os.getenv("RECENT_ERRORS_OUTPUT_DIR") or "").strip()
    output_dir = Path(output_dir_raw) if output_dir_raw else Path.cwd()

    return Settings(
        lookback_hours=max(1, min(24 * 365, lookback)),
        output_dir=output_dir,
        query_timeout_s=max(5, min(600, timeout)),
        max_events=max(0, min(100_000, max_events)),
    )
