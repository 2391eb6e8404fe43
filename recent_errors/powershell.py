from __future__ import annotations

import base64
import json
import platform
import subprocess
from typing import Any, Optional, Tuple


POWERSHELL_EXE = "powershell"


class PowerShellError(RuntimeError):
    pass


def is_windows() -> bool:
    return platform.system().lower() == "windows"


def to_base64_json(expr: str) -> str:
    """PowerShell 側で式の結果を UTF-8 Base64(JSON) にする末尾スクリプト。"""
    return (
        f"$json = {expr} | ConvertTo-Json -Depth 4 -Compress; "
        "if (-not $json) { $json = '[]' }; "
        "[System.Convert]::ToBase64String([System.Text.Encoding]::UTF8.GetBytes($json))"
    )


def _run(command: str, timeout_s: int) -> subprocess.CompletedProcess:
    return subprocess.run(
        [POWERSHELL_EXE, "-NoProfile", "-ExecutionPolicy", "Bypass", "-Command", command],
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="ignore",
        timeout=timeout_s,
    )


def run_powershell_base64_json(command: str, timeout_s: int) -> Tuple[Optional[Any], Optional[str]]:
    """PowerShell を実行して Base64(JSON) を受け取る。

    Windows PowerShell の出力エンコーディング差異や、メッセージ本文に含まれる文字が原因で
    JSON が壊れるケースがあるため、PowerShell 側で UTF-8 の Base64 にしてから受け取る。
    戻り値は (data, err)。err が None でなければ data は使わない。
    """
    try:
        result = _run(command, timeout_s)
    except subprocess.TimeoutExpired:
        return None, f"powershell timed out after {timeout_s}s"
    except OSError as e:
        return None, f"powershell execution failed: {e}"

    if result.returncode != 0:
        err = (result.stderr or "").strip() or (result.stdout or "").strip()
        return None, f"powershell returned {result.returncode}: {err}"

    raw = (result.stdout or "").strip()
    if not raw:
        return [], None

    try:
        data = base64.b64decode(raw.encode("ascii"), validate=False)
        text = data.decode("utf-8", errors="strict")
        return json.loads(text), None
    except (ValueError, UnicodeError) as e:
        return None, f"failed to decode base64 json: {e}"


def run_json(command: str, timeout_s: int) -> Any:
    """run_powershell_base64_json の例外版。"""
    data, err = run_powershell_base64_json(command, timeout_s)
    if err:
        raise PowerShellError(err)
    return data


def as_list(data: Any) -> list:
    # 0件/1件/複数件を配列に統一
    if data is None:
        return []
    if isinstance(data, list):
        return [x for x in data if isinstance(x, dict)]
    if isinstance(data, dict):
        return [data]
    return []


def relax_execution_policy(timeout_s: int = 30) -> Optional[str]:
    """Process スコープで実行ポリシーを Bypass に緩められるかを確認する。

    Set-ExecutionPolicy は使い捨ての子 PowerShell で実行されるため、その効果は残らない。
    実際の緩和は各呼び出しの `-ExecutionPolicy Bypass`（_run）で行っており、
    ここでは グループポリシー等で拒否されるかどうかだけを見る。
    失敗時はエラーメッセージを返す。呼び出し側は警告を出して続行する。
    """
    command = "Set-ExecutionPolicy -Scope Process -ExecutionPolicy Bypass -Force -ErrorAction Stop"
    try:
        result = _run(command, timeout_s)
    except subprocess.TimeoutExpired:
        return f"powershell timed out after {timeout_s}s"
    except OSError as e:
        return f"powershell execution failed: {e}"

    if result.returncode != 0:
        err = (result.stderr or "").strip() or (result.stdout or "").strip()
        return f"powershell returned {result.returncode}: {err}"
    return None
