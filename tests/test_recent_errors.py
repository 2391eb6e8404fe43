import io

from conftest import RUN_START, FakeEventSource, make_event
from recent_errors.console import make_console
from recent_errors.eventlog_collect import LogQueryResult
from recent_errors.report import EXTENDED_SOURCES, extended_summary_line, main, primary_summary_line, run
from recent_errors.settings import Settings
from recent_errors.system_info import SystemInfoError


WER = "Microsoft-Windows-Windows Error Reporting/Operational"
DIAG = "Microsoft-Windows-Diagnostics-Performance/Operational"
PWSH = "Microsoft-Windows-PowerShell/Operational"


def no_snapshot():
    raise SystemInfoError("CIM unavailable")


def scenario_source():
    return FakeEventSource(
        logs={
            "System": [make_event(1, event_id=7031), make_event(2, event_id=7034), make_event(30)],
            "Application": [make_event(3, level="Warning")],
            DIAG: [make_event(4, level="Error", event_id=100), make_event(5, level="Warning", event_id=200)],
            PWSH: [],
        }
    )


def run_scenario(tmp_path, console, source=None, relax_policy=lambda: None):
    return run(
        Settings(output_dir=tmp_path),
        console,
        events_source=source or scenario_source(),
        read_snapshot=no_snapshot,
        relax_policy=relax_policy,
        now=RUN_START,
    )


class TestRun:
    def test_primary_summary(self, tmp_path, console, output):
        summary = run_scenario(tmp_path, console)

        assert [r.errors for r in summary.primary] == [2, 0]
        assert summary.primary_errors == 2
        assert "System Errors: 2, Application Errors: 0" in output.getvalue()

    def test_extended_summary(self, tmp_path, console, output):
        summary = run_scenario(tmp_path, console)

        assert [r.source for r in summary.extended] == [WER, DIAG, PWSH]
        assert [r.available for r in summary.extended] == [False, True, True]
        assert (summary.extended_errors, summary.extended_warnings) == (1, 1)
        assert "Total Errors: 1, Total Warnings: 1" in output.getvalue()

    def test_totals_match_written_lines(self, tmp_path, console):
        summary = run_scenario(tmp_path, console)

        lines = (tmp_path / "RecentErrors-20240115_103000.log").read_text(encoding="utf-8").splitlines()
        written = [line for line in lines if line.startswith("Time: ")]
        assert len(written) == summary.primary_errors + summary.extended_errors + summary.extended_warnings

    def test_report_path(self, tmp_path, console, output):
        summary = run_scenario(tmp_path, console)

        assert summary.output_path == str(tmp_path / "RecentErrors-20240115_103000.log")
        assert "Report saved to:" in output.getvalue()
        assert summary.failed_writes == 0

    def test_policy_failure_is_not_fatal(self, tmp_path, console, output):
        summary = run_scenario(tmp_path, console, relax_policy=lambda: "blocked by group policy")

        assert "Could not set execution policy" in output.getvalue()
        assert summary.primary_errors == 2

    def test_everything_unavailable_still_completes(self, tmp_path, console, output):
        summary = run_scenario(tmp_path, console, source=FakeEventSource())

        assert summary.primary_errors == 0
        assert summary.extended_errors == 0
        assert all(not r.available for r in summary.primary + summary.extended)
        assert summary.snapshot is None
        assert "Report complete" in output.getvalue()
        assert "Unable to collect system information" in output.getvalue()

    def test_unwritable_output_dir_is_best_effort(self, tmp_path, console, output):
        summary = run(
            Settings(output_dir=tmp_path / "does-not-exist"),
            console,
            events_source=scenario_source(),
            read_snapshot=no_snapshot,
            relax_policy=lambda: None,
            now=RUN_START,
        )

        assert summary.failed_writes > 0
        assert summary.primary_errors == 2
        assert "could not be written to the report file" in output.getvalue()

    def test_second_run_does_not_touch_first_report(self, tmp_path, console):
        first = run_scenario(tmp_path, console)
        before = (tmp_path / "RecentErrors-20240115_103000.log").read_text(encoding="utf-8")

        second = run_scenario(tmp_path, console)

        assert second.output_path != first.output_path
        assert (tmp_path / "RecentErrors-20240115_103000.log").read_text(encoding="utf-8") == before


def test_summary_lines():
    primary = [
        LogQueryResult.ok("System", "System", errors=3),
        LogQueryResult.ok("Application", "Application", errors=4),
    ]
    extended = [
        LogQueryResult.ok(WER, "Windows Error Reporting", errors=2, warnings=2),
        LogQueryResult.unavailable(DIAG, "Diagnostics Performance"),
        LogQueryResult.ok(PWSH, "PowerShell", errors=3),
    ]

    assert primary_summary_line(primary) == "System Errors: 3, Application Errors: 4"
    assert extended_summary_line(extended) == "Total Errors: 5, Total Warnings: 2"


def test_extended_sources_are_ordered():
    assert [name for name, _ in EXTENDED_SOURCES] == [
        "Windows Error Reporting",
        "Diagnostics Performance",
        "PowerShell",
    ]


def test_main_exits_zero(monkeypatch, tmp_path):
    from recent_errors import report

    monkeypatch.setattr(report, "load_settings", lambda: Settings(output_dir=tmp_path))
    monkeypatch.setattr(report.powershell, "relax_execution_policy", lambda: "no powershell")
    monkeypatch.setattr(report.powershell, "is_windows", lambda: False)

    assert main() == 0
    assert len(list(tmp_path.glob("RecentErrors-*.log"))) == 1


def test_unencodable_console_output_does_not_stop_the_run(tmp_path):
    stream = io.TextIOWrapper(io.BytesIO(), encoding="cp1252")
    source = FakeEventSource(
        logs={
            "System": [make_event(1, event_id=7031, message="サービスが停止しました")],
            "Application": [],
        }
    )

    summary = run_scenario(tmp_path, make_console(file=stream), source=source)

    assert summary.primary_errors == 1
    assert [r.source for r in summary.extended] == [WER, DIAG, PWSH]
    report = (tmp_path / "RecentErrors-20240115_103000.log").read_text(encoding="utf-8")
    assert "Message: サービスが停止しました" in report

    stream.flush()
    text = stream.buffer.getvalue().decode("cp1252")
    assert "Report saved to:" in text
    assert "?????" in text
