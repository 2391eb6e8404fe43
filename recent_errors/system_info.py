from __future__ import annotations

import socket
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import psutil

from recent_errors import console as con
from recent_errors import powershell
from recent_errors.powershell import PowerShellError
from recent_errors.session import RunContext


GIB = 1024 ** 3


class SystemInfoError(RuntimeError):
    pass


@dataclass(frozen=True)
class SystemSnapshot:
    hostname: str
    os_caption: str
    os_build: str
    os_version: str
    os_architecture: str
    manufacturer: str
    model: str
    cpu_name: str
    total_memory_bytes: int
    boot_time: datetime


def memory_gib(total_bytes: int) -> float:
    return round(total_bytes / GIB, 2)


def uptime_hours(now: datetime, boot_time: datetime) -> float:
    return round((now - boot_time).total_seconds() / 3600, 2)


def _cim_info(timeout_s: int) -> Dict[str, Any]:
    # Win32_OperatingSystem / Win32_ComputerSystem / Win32_Processor の主要項目
    ps = (
        "$ErrorActionPreference = 'Stop'; "
        "$os = Get-CimInstance Win32_OperatingSystem; "
        "$cs = Get-CimInstance Win32_ComputerSystem; "
        "$cpu = Get-CimInstance Win32_Processor | Select-Object -First 1; "
        "$r = [pscustomobject]@{ "
        "Caption = $os.Caption; BuildNumber = $os.BuildNumber; Version = $os.Version; "
        "OSArchitecture = $os.OSArchitecture; Manufacturer = $cs.Manufacturer; Model = $cs.Model; "
        "CpuName = $cpu.Name }; "
        + powershell.to_base64_json("$r")
    )
    try:
        data = powershell.run_json(ps, timeout_s)
    except PowerShellError as e:
        raise SystemInfoError(str(e)) from e

    rows = powershell.as_list(data)
    if not rows:
        raise SystemInfoError("CIM returned no data")
    return rows[0]


def read_system_snapshot(timeout_s: int = 60) -> SystemSnapshot:
    """OS/ハードウェア情報を1回だけ読む。途中で失敗したら SystemInfoError。"""
    if not powershell.is_windows():
        raise SystemInfoError("Not running on Windows")

    info = _cim_info(timeout_s)
    try:
        total = int(psutil.virtual_memory().total)
        boot = datetime.fromtimestamp(psutil.boot_time())
    except (psutil.Error, OSError) as e:
        raise SystemInfoError(str(e)) from e

    def _s(key: str) -> str:
        value = info.get(key)
        return str(value).strip() if value is not None else ""

    return SystemSnapshot(
        hostname=socket.gethostname(),
        os_caption=_s("Caption"),
        os_build=_s("BuildNumber"),
        os_version=_s("Version"),
        os_architecture=_s("OSArchitecture"),
        manufacturer=_s("Manufacturer"),
        model=_s("Model"),
        cpu_name=_s("CpuName"),
        total_memory_bytes=total,
        boot_time=boot,
    )


def format_snapshot(snapshot: SystemSnapshot, now: datetime) -> List[str]:
    return [
        f"Computer Name: {snapshot.hostname}",
        f"OS: {snapshot.os_caption}",
        f"OS Build: {snapshot.os_build}",
        f"OS Version: {snapshot.os_version}",
        f"Architecture: {snapshot.os_architecture}",
        f"Manufacturer: {snapshot.manufacturer}",
        f"Model: {snapshot.model}",
        f"Processor: {snapshot.cpu_name}",
        f"Total Memory (GB): {memory_gib(snapshot.total_memory_bytes)}",
        f"Last Boot Time: {snapshot.boot_time.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Uptime (hours): {uptime_hours(now, snapshot.boot_time)}",
    ]


def collect_system_info(
    ctx: RunContext,
    *,
    read_snapshot: Callable[[], SystemSnapshot] = read_system_snapshot,
    now: Optional[Callable[[], datetime]] = None,
) -> Optional[SystemSnapshot]:
    con.heading(ctx.console, "Collecting system information...")
    ctx.report.append("===== System Information =====")

    try:
        snapshot = read_snapshot()
        lines = format_snapshot(snapshot, (now or datetime.now)())
    except SystemInfoError as e:
        msg = f"Unable to collect system information: {e}"
        con.warn(ctx.console, msg)
        ctx.report.append(msg, with_timestamp=True)
        return None

    for line in lines:
        con.info(ctx.console, line)
        ctx.report.append(line, with_timestamp=True)
    return snapshot
