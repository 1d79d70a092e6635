"""Tests for console output and structured file logging."""

import io
import json
import logging

import pytest
import structlog
from rich.console import Console

from edr_loadgen import logging as console
from edr_loadgen.config import Config, SystemConfig
from edr_loadgen.runner import PidResult, summarize
from tests.conftest import make_sample


@pytest.fixture
def captured():
    """Redirect the Rich console to a buffer."""
    buf = io.StringIO()
    test_console = Console(file=buf, width=200, highlight=False, no_color=True)
    original = console._console
    console._console = test_console
    yield buf
    console._console = original


def make_row(pid: int, name: str) -> PidResult:
    return PidResult.from_samples(pid, name, make_sample(1.0, 1.0), make_sample(2.0, 1.5), 10.0)


class TestConsole:
    """Tests for the console helpers."""

    def test_levels(self, captured):
        """Each level is labeled."""
        console.info("hello")
        console.warn("careful")
        console.error("broken")
        out = captured.getvalue()
        assert "[info] hello" in out
        assert "[warn] careful" in out
        assert "[err]" in out and "broken" in out

    def test_run_started(self, captured):
        """Run parameters are shown with four decimals."""
        console.run_started("edr-loadgen", "/bin/true", 0.1, 60.0)
        out = captured.getvalue()
        assert "edr-loadgen: exec '/bin/true', every 0.1000 seconds" in out
        assert "duration: 60.0000 seconds" in out

    def test_run_started_truncates_command(self, captured):
        """Long commands are shortened."""
        command = "/usr/bin/python3 -c 'import time; time.sleep(1)'"
        console.run_started("edr-loadgen", command, 0.1, 60.0)
        assert f"'{command[:28]}..'" in captured.getvalue()

    def test_clock_ticks(self, captured):
        """The clock-tick frequency is reported."""
        console.clock_ticks(100)
        assert "CLK_TCK = 100" in captured.getvalue()

    def test_spawn_summary(self, captured):
        """The launch count is reported as events."""
        console.spawn_summary(598)
        assert "598 events generated." in captured.getvalue()

    def test_pid_result(self, captured):
        """Per-PID lines show seconds and percent."""
        console.pid_result(make_row(100, "auditd"))
        out = captured.getvalue()
        assert "PID 100[auditd]" in out
        assert "user+sys: 1.00+0.50 = 1.50 seconds" in out
        assert "10.000+5.000 = 15.000 percent" in out

    def test_sum_result(self, captured):
        """The SUM line shows totals only."""
        total = summarize([make_row(1, "a"), make_row(2, "b")])
        console.sum_result(total)
        assert "SUM: 3.00 seconds / 30.000 percent" in captured.getvalue()

    def test_report_lines(self, captured):
        """Report outcomes are reported."""
        console.report_written("/tmp/r.csv", 3)
        console.report_failed("disk full")
        out = captured.getvalue()
        assert "3 rows appended to /tmp/r.csv" in out
        assert "Report not written: disk full" in out


class TestConfigure:
    """Tests for structlog file configuration."""

    def test_writes_json_lines(self, isolated_home, restore_logging):
        """Library events land in the log file as JSON with a source field."""
        config = Config(system=SystemConfig(log_max_bytes=10_000, log_backup_count=1))
        console.configure(config)

        structlog.get_logger().info("run_started", delay=0.1, pids=[1, 2])
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = config.log_path.read_text().splitlines()
        event = json.loads(lines[-1])
        assert event["event"] == "run_started"
        assert event["source"] == "loadgen"
        assert event["level"] == "info"
        assert event["delay"] == 0.1
        assert event["pids"] == [1, 2]
        assert "ts" in event

    def test_stdlib_records_are_json(self, isolated_home, restore_logging):
        """Plain logging records share the file and format."""
        config = Config()
        console.configure(config)

        logging.getLogger("other").warning("plain message")
        for handler in logging.getLogger().handlers:
            handler.flush()

        event = json.loads(config.log_path.read_text().splitlines()[-1])
        assert event["event"] == "plain message"
        assert event["source"] == "loadgen"
        assert event["level"] == "warning"
