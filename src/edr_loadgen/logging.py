"""Centralized console logging with Rich formatting.

This module provides:
1. Icon vocabulary (Icon class namespace)
2. Level-based styling
3. Core log functions (log, info, warn, error)
4. Domain-specific helpers (run_started, pid_result, report_written, etc.)
5. Structlog configuration (configure)

Console output uses Rich markup for colors. JSON file output via structlog
remains separate (machine-parseable, no colors).
"""

from __future__ import annotations

import logging
import logging.handlers
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from rich.console import Console
from rich.markup import escape

from edr_loadgen.formatting import format_percent, format_seconds, truncate_command

if TYPE_CHECKING:
    from edr_loadgen.config import Config
    from edr_loadgen.runner import PidResult

# Rich console for colorful human-readable output, on stderr like a log
_console = Console(highlight=False, stderr=True)


# ─────────────────────────────────────────────────────────────────────────────
# Icons
# ─────────────────────────────────────────────────────────────────────────────


class Icon:
    """Icon vocabulary for console output.

    Use via autocomplete: Icon.<TAB> to see all available icons.
    """

    OK = "[bold green]✓[/]"
    FAIL = "[bold red]✗[/]"
    WAIT = "⏳"
    SPAWN = "[bright_green]▲[/]"
    SAMPLE = "📸"
    SAVE = "💾"


# ─────────────────────────────────────────────────────────────────────────────
# Level Styles
# ─────────────────────────────────────────────────────────────────────────────

_LEVEL_STYLES = {
    "info": "[bright_blue]\\[info][/]",
    "warn": "[yellow]\\[warn][/]",
    "error": "[bold red]\\[err][/] ",
}


# ─────────────────────────────────────────────────────────────────────────────
# Core Functions
# ─────────────────────────────────────────────────────────────────────────────


def log(level: str, msg: str, icon: str = "") -> None:
    """Print a log message with timestamp and level.

    Args:
        level: Log level (info, warn, error)
        msg: Message to print (can include Rich markup)
        icon: Optional icon to show after level (e.g., Icon.OK)
    """
    ts = datetime.now().strftime("%H:%M:%S")
    lvl = _LEVEL_STYLES.get(level, f"[{level}]")
    icon_part = f" {icon}" if icon else ""
    _console.print(f"[dim]{ts}[/] {lvl}{icon_part} {msg}")


def info(msg: str, icon: str = "") -> None:
    """Log an info message."""
    log("info", msg, icon)


def warn(msg: str, icon: str = "") -> None:
    """Log a warning message."""
    log("warn", msg, icon)


def error(msg: str, icon: str = "") -> None:
    """Log an error message."""
    log("error", msg, icon)


# ─────────────────────────────────────────────────────────────────────────────
# Domain Helpers
# ─────────────────────────────────────────────────────────────────────────────


def run_started(program: str, command: str, delay: float, duration: float) -> None:
    """Log run parameters."""
    info(
        f"{program}: exec [cyan]'{escape(truncate_command(command))}'[/], "
        f"every [cyan]{delay:.4f}[/] seconds, duration: [cyan]{duration:.4f}[/] seconds"
    )


def clock_ticks(clk_tck: int) -> None:
    """Log the clock-tick frequency used for CPU time conversion."""
    info(f"CLK_TCK = [cyan]{clk_tck}[/]")


def sampling(phase: str, count: int) -> None:
    """Log a before/after snapshot."""
    suffix = "s" if count != 1 else ""
    info(f"[dim]Sampling {phase}: {count} PID{suffix}[/]", Icon.SAMPLE)


def spawning(duration: float) -> None:
    """Log spawning started."""
    info(f"Spawning for [cyan]{duration:g}s[/]...", Icon.WAIT)


def spawn_summary(count: int) -> None:
    """Log the number of children launched."""
    info(f"[cyan]{count}[/] events generated.", Icon.SPAWN)


def pid_result(row: PidResult) -> None:
    """Log CPU consumed by one observed PID."""
    info(
        f"PID [bold]{row.pid}[/][dim]\\[{escape(truncate_command(row.name))}][/]: user+sys: "
        f"{format_seconds(row.delta_user)}+{format_seconds(row.delta_system)} = "
        f"[cyan]{format_seconds(row.delta_total)}[/] seconds / "
        f"{format_percent(row.user_percent)}+{format_percent(row.system_percent)} = "
        f"[cyan]{format_percent(row.total_percent)}[/] percent"
    )


def sum_result(row: PidResult) -> None:
    """Log the cross-PID SUM."""
    info(
        f"[bold]SUM[/]: [cyan]{format_seconds(row.delta_total)}[/] seconds / "
        f"[cyan]{format_percent(row.total_percent)}[/] percent"
    )


def report_written(path: str, rows: int) -> None:
    """Log report rows appended."""
    suffix = "s" if rows != 1 else ""
    info(f"[dim]Report: {rows} row{suffix} appended to {path}[/]", Icon.SAVE)


def report_failed(error_msg: str) -> None:
    """Log report write failure (non-fatal)."""
    warn(f"Report not written: {escape(error_msg)}")


def run_failed(error_msg: str) -> None:
    """Log a fatal run error."""
    error(escape(error_msg), Icon.FAIL)


def run_complete() -> None:
    """Log run finished."""
    info("Run complete", Icon.OK)


def config_created(path: str) -> None:
    """Log config file created."""
    info(f"Created config at [cyan]{path}[/]")


# ─────────────────────────────────────────────────────────────────────────────
# Structlog Configuration
# ─────────────────────────────────────────────────────────────────────────────


def _add_source(source: str) -> structlog.types.Processor:
    """Create a processor that adds a source field to log events."""

    def processor(
        logger: structlog.types.WrappedLogger,
        method_name: str,
        event_dict: structlog.types.EventDict,
    ) -> structlog.types.EventDict:
        event_dict["source"] = source
        return event_dict

    return processor


def configure(config: Config) -> None:
    """Configure structlog to write JSON Lines to a rotating log file.

    Console output stays with the Rich helpers above; structlog events from
    the library modules (sampler, spawner, runner) go to the file only.

    Args:
        config: Application config with paths and rotation limits
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        config.log_path,
        maxBytes=config.system.log_max_bytes,
        backupCount=config.system.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processor=structlog.processors.JSONRenderer(),
            foreign_pre_chain=[
                structlog.contextvars.merge_contextvars,
                structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
                structlog.processors.add_log_level,
                _add_source("loadgen"),
                structlog.processors.format_exc_info,
            ],
        )
    )

    stdlib_root = logging.getLogger()
    stdlib_root.setLevel(logging.INFO)
    stdlib_root.handlers.clear()
    stdlib_root.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=False, key="ts"),
            structlog.processors.add_log_level,
            _add_source("loadgen"),
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

