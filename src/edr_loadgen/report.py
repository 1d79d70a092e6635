"""CSV report of run results, appended one row per observed PID."""

import csv
from pathlib import Path

from edr_loadgen.formatting import format_percent, format_seconds, format_ticks
from edr_loadgen.runner import RunResult


class ReportWriteError(Exception):
    """Raised when the report file cannot be written."""


def result_rows(result: RunResult) -> list[list[str]]:
    """Build CSV rows for a run: one per PID, then SUM when present."""
    rows = []
    for row in result.rows:
        rows.append(
            [
                str(int(result.timestamp)),
                format_ticks(result.intended_ticks),
                str(result.spawn_count),
                "" if row.pid is None else str(row.pid),
                row.name,
                format_seconds(row.delta_user),
                format_seconds(row.delta_system),
                format_seconds(row.delta_total),
                format_percent(row.user_percent),
                format_percent(row.system_percent),
                format_percent(row.total_percent),
            ]
        )
    return rows


def write_report(path: Path, result: RunResult) -> int:
    """Append a run's rows to the CSV file at `path`, creating it if needed.

    Returns:
        Number of rows written.

    Raises:
        ReportWriteError: If the file cannot be opened or written.
    """
    rows = result_rows(result)
    try:
        with open(path, "a", newline="") as f:
            csv.writer(f).writerows(rows)
    except OSError as e:
        raise ReportWriteError(f"write report {path}: {e}") from e
    return len(rows)
