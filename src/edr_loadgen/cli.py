"""CLI commands for edr-loadgen."""

from pathlib import Path
from typing import TYPE_CHECKING

import click

from edr_loadgen.child import exit_if_spawned_child

if TYPE_CHECKING:
    from edr_loadgen.config import Config

PROGRAM = "edr-loadgen"

_config_option = click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/edr-loadgen/config.toml)",
)


def _load_config(path: Path | None) -> "Config":
    """Load config or exit with a diagnostic."""
    from edr_loadgen import logging as console
    from edr_loadgen.config import Config, ConfigurationError

    try:
        return Config.load(path)
    except ConfigurationError as e:
        console.run_failed(str(e))
        raise SystemExit(1) from e


@click.group()
@click.version_option(package_name=PROGRAM)
def main() -> None:
    """Stress-test monitoring agents by spawning processes at a fixed rate."""
    exit_if_spawned_child()


@main.command()
@click.argument("pids", nargs=-1, type=click.IntRange(min=0))
@click.option("--command", "-c", default=None, help="Command to run [default: /bin/true]")
@click.option("--delay", "-d", type=float, default=None, help="Delay between execs in seconds")
@click.option("--duration", "-t", type=float, default=None, help="Total duration in seconds")
@click.option(
    "--report",
    "-r",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="CSV report file, appended to",
)
@click.option("--workers", "-w", type=int, default=None, help="Concurrent launch workers")
@click.option("--self-spawn", is_flag=True, help="Spawn this tool itself; children exit at once")
@_config_option
def run(
    pids: tuple[int, ...],
    command: str | None,
    delay: float | None,
    duration: float | None,
    report: Path | None,
    workers: int | None,
    self_spawn: bool,
    config_path: Path | None,
) -> None:
    """Spawn processes at a fixed rate and measure CPU time of PIDS.

    Samples the PIDS, launches the command once per delay for the whole
    duration, samples again and prints the difference.
    """
    import shlex

    from edr_loadgen import logging as console
    from edr_loadgen.config import ConfigurationError, RunConfig
    from edr_loadgen.report import ReportWriteError, write_report
    from edr_loadgen.runner import RunController, RunPhase
    from edr_loadgen.sampler import ProcfsSampler, SampleError, get_sampler
    from edr_loadgen.child import self_command
    from edr_loadgen.spawner import LaunchError

    cfg = _load_config(config_path)

    if not pids:
        console.run_failed("No PIDs specified")
        raise SystemExit(1)

    command_line = command if command is not None else cfg.run.command
    try:
        argv = self_command() if self_spawn else tuple(shlex.split(command_line))
    except ValueError as e:
        console.run_failed(f"Cannot parse command {command_line!r}: {e}")
        raise SystemExit(1) from e
    run_config = RunConfig(
        command=argv,
        tick_interval=delay if delay is not None else cfg.run.delay,
        total_duration=duration if duration is not None else cfg.run.duration,
        target_pids=frozenset(pids),
        workers=workers if workers is not None else cfg.run.workers,
        handoff_capacity=cfg.run.handoff_capacity,
        self_spawn=self_spawn,
    )
    report_path = report or (Path(cfg.run.report) if cfg.run.report else None)

    console.configure(cfg)
    console.run_started(
        PROGRAM,
        shlex.join(run_config.command),
        run_config.tick_interval,
        run_config.total_duration,
    )

    sampler = get_sampler()
    if isinstance(sampler, ProcfsSampler):
        console.clock_ticks(sampler.clk_tck)

    def on_phase(phase: RunPhase) -> None:
        if phase is RunPhase.SAMPLING_BEFORE:
            console.sampling("before", len(run_config.target_pids))
        elif phase is RunPhase.RUNNING:
            console.spawning(run_config.total_duration)
        elif phase is RunPhase.SAMPLING_AFTER:
            console.sampling("after", len(run_config.target_pids))

    controller = RunController(run_config, sampler, on_phase=on_phase)
    try:
        result = controller.run()
    except (ConfigurationError, SampleError, LaunchError) as e:
        console.run_failed(str(e))
        raise SystemExit(1) from e

    console.spawn_summary(result.spawn_count)
    for row in result.pids:
        console.pid_result(row)
    if result.total is not None:
        console.sum_result(result.total)

    if report_path is not None:
        try:
            rows = write_report(report_path, result)
        except ReportWriteError as e:
            console.report_failed(str(e))
        else:
            console.report_written(str(report_path), rows)

    console.run_complete()


@main.command()
@click.argument("pids", nargs=-1, required=True, type=click.IntRange(min=0))
@_config_option
def sample(pids: tuple[int, ...], config_path: Path | None) -> None:
    """Show cumulative CPU time of PIDS."""
    from edr_loadgen import logging as console
    from edr_loadgen.formatting import format_seconds
    from edr_loadgen.sampler import SampleError, get_sampler

    cfg = _load_config(config_path)
    console.configure(cfg)

    sampler = get_sampler()
    names = sampler.resolve_names(pids)
    try:
        samples = sampler.sample_all(pids)
    except SampleError as e:
        console.run_failed(str(e))
        raise SystemExit(1) from e

    click.echo(f"{'PID':>7}  {'User':>10}  {'System':>10}  {'Total':>10}  Name")
    click.echo("-" * 60)
    for pid, cpu in samples.items():
        click.echo(
            f"{pid:>7}  {format_seconds(cpu.user_seconds):>10}  "
            f"{format_seconds(cpu.system_seconds):>10}  "
            f"{format_seconds(cpu.total_seconds):>10}  {names[pid]}"
        )


@main.group()
def config() -> None:
    """Manage configuration."""
    pass


@config.command("show")
@_config_option
def config_show(config_path: Path | None) -> None:
    """Display current configuration."""
    cfg = _load_config(config_path)
    path = config_path or cfg.config_path

    click.echo(f"Config file: {path}")
    click.echo(f"Exists: {path.exists()}")
    click.echo()
    click.echo("[run]")
    click.echo(f"  command = {cfg.run.command}")
    click.echo(f"  delay = {cfg.run.delay}")
    click.echo(f"  duration = {cfg.run.duration}")
    click.echo(f"  workers = {cfg.run.workers}")
    click.echo(f"  handoff_capacity = {cfg.run.handoff_capacity}")
    click.echo(f"  report = {cfg.run.report}")
    click.echo()
    click.echo("[system]")
    click.echo(f"  log_max_bytes = {cfg.system.log_max_bytes}")
    click.echo(f"  log_backup_count = {cfg.system.log_backup_count}")


@config.command("init")
@_config_option
def config_init(config_path: Path | None) -> None:
    """Write a default config file if none exists."""
    from edr_loadgen import logging as console
    from edr_loadgen.config import Config

    cfg = Config()
    path = config_path or cfg.config_path
    if path.exists():
        click.echo(f"Config already exists at {path}")
        return

    cfg.save(path)
    console.config_created(str(path))


@config.command("reset")
@click.confirmation_option(prompt="Reset config to defaults?")
@_config_option
def config_reset(config_path: Path | None) -> None:
    """Reset configuration to defaults."""
    from edr_loadgen.config import Config

    cfg = Config()
    path = config_path or cfg.config_path
    cfg.save(path)
    click.echo(f"Config reset to defaults at {path}")
