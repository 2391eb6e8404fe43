import io
from datetime import datetime, timedelta

import pytest

from recent_errors.console import make_console
from recent_errors.eventlog_collect import EventQueryError, LogEvent
from recent_errors.session import new_context, new_session


RUN_START = datetime(2024, 1, 15, 10, 30, 0)


class FakeEventSource:
    """In-memory event source. Missing logs are those not in `logs`."""

    def __init__(self, logs=None, failing=None):
        self.logs = logs or {}
        self.failing = failing or {}
        self.queries = []
        self.probes = []

    def exists(self, log_name):
        self.probes.append(log_name)
        return log_name in self.logs or log_name in self.failing

    def query(self, log_name, levels, since, max_events=0):
        self.queries.append((log_name, tuple(levels), since))
        if log_name in self.failing:
            raise EventQueryError(self.failing[log_name])
        if log_name not in self.logs:
            raise EventQueryError(f"The specified channel could not be found: {log_name}")
        return list(self.logs[log_name])


def make_event(hours_ago, level="Error", event_id=1000, message="Something failed"):
    return LogEvent(
        time_created=RUN_START - timedelta(hours=hours_ago),
        event_id=event_id,
        level=level,
        message=message,
    )


@pytest.fixture
def run_start():
    return RUN_START


@pytest.fixture
def output():
    return io.StringIO()


@pytest.fixture
def console(output):
    return make_console(file=output)


@pytest.fixture
def session(tmp_path):
    return new_session(output_dir=tmp_path, lookback_hours=24, now=RUN_START)


@pytest.fixture
def ctx(session, console):
    return new_context(session, console)


def read_report(ctx):
    if not ctx.session.output_path.exists():
        return []
    return ctx.session.output_path.read_text(encoding="utf-8").splitlines()


def event_lines(ctx):
    return [line for line in read_report(ctx) if line.startswith("Time: ")]
