"""Configuration system for edr-loadgen."""

from dataclasses import dataclass, field, fields
from pathlib import Path

import tomlkit

DEFAULT_WORKERS = 32  # Launch and reap workers per pool
DEFAULT_HANDOFF_CAPACITY = 100_000  # Spawned handles waiting to be reaped


class ConfigurationError(Exception):
    """Raised when a run or config file is set up in a way that cannot work."""


@dataclass
class RunDefaults:
    """Defaults for the `run` command. CLI flags override these."""

    command: str = "/bin/true"  # Command to spawn on every tick
    delay: float = 0.1  # Seconds between spawns
    duration: float = 60.0  # Total run duration in seconds
    workers: int = DEFAULT_WORKERS  # Concurrent launch workers (and reapers)
    handoff_capacity: int = DEFAULT_HANDOFF_CAPACITY
    report: str = ""  # CSV report path, empty for none


@dataclass
class SystemConfig:
    """Logging configuration."""

    log_max_bytes: int = 5 * 1024 * 1024  # Max log file size (5MB)
    log_backup_count: int = 3  # Number of backup log files to keep


@dataclass(frozen=True)
class RunConfig:
    """Everything one measurement run needs.

    A run spawns `command` every `tick_interval` seconds for `total_duration`
    seconds while measuring the CPU time of `target_pids`.
    """

    command: tuple[str, ...]
    tick_interval: float
    total_duration: float
    target_pids: frozenset[int]
    workers: int = DEFAULT_WORKERS
    handoff_capacity: int = DEFAULT_HANDOFF_CAPACITY
    self_spawn: bool = False

    @property
    def intended_ticks(self) -> float:
        """Number of ticks the run would issue with perfect timing."""
        return self.total_duration / self.tick_interval

    def validate(self) -> None:
        """Reject configurations that cannot produce a meaningful run.

        Raises:
            ConfigurationError: On the first violated constraint.
        """
        if not self.target_pids:
            raise ConfigurationError("No PIDs specified")
        if not self.command:
            raise ConfigurationError("Command cannot be empty")
        if self.tick_interval <= 0:
            raise ConfigurationError("delay cannot be 0")
        if self.total_duration <= 0:
            raise ConfigurationError("duration must be positive")
        if self.tick_interval > self.total_duration / 10:
            raise ConfigurationError("delay must be much smaller than duration")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be >= 1, got {self.workers}")
        if self.handoff_capacity < 1:
            raise ConfigurationError(
                f"handoff_capacity must be >= 1, got {self.handoff_capacity}"
            )


def _dataclass_to_table(obj: object) -> tomlkit.items.Table:
    """Convert a flat dataclass instance to a tomlkit Table."""
    table = tomlkit.table()
    for f in fields(obj):  # type: ignore[arg-type]
        table.add(f.name, getattr(obj, f.name))
    return table


@dataclass
class Config:
    """Main configuration container."""

    run: RunDefaults = field(default_factory=RunDefaults)
    system: SystemConfig = field(default_factory=SystemConfig)

    @property
    def config_dir(self) -> Path:
        """Configuration directory."""
        return Path.home() / ".config" / "edr-loadgen"

    @property
    def config_path(self) -> Path:
        """Path to config file."""
        return self.config_dir / "config.toml"

    @property
    def state_dir(self) -> Path:
        """State directory for logs."""
        return Path.home() / ".local" / "state" / "edr-loadgen"

    @property
    def log_path(self) -> Path:
        """JSON log path."""
        return self.state_dir / "loadgen.log"

    def save(self, path: Path | None = None) -> None:
        """Save config to TOML file."""
        path = path or self.config_path
        path.parent.mkdir(parents=True, exist_ok=True)

        doc = tomlkit.document()
        for name in ("run", "system"):
            doc.add(name, _dataclass_to_table(getattr(self, name)))
            doc.add(tomlkit.nl())

        path.write_text(tomlkit.dumps(doc))

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Load config from TOML file, returning defaults for missing values.

        Raises:
            ConfigurationError: If the file cannot be parsed or holds invalid values.
        """
        defaults = cls()
        path = path or defaults.config_path
        if not path.exists():
            return defaults

        try:
            with open(path) as f:
                data = tomlkit.load(f)
        except tomlkit.exceptions.TOMLKitError as e:
            raise ConfigurationError(f"Failed to parse config file {path}: {e}") from e

        return cls(
            run=_load_run_defaults(data.get("run", {})),
            system=_load_system_config(data.get("system", {})),
        )


def _load_run_defaults(data: dict) -> RunDefaults:
    """Load [run] from TOML data, using dataclass defaults for missing fields."""
    d = RunDefaults()
    try:
        run = RunDefaults(
            command=str(data.get("command", d.command)),
            delay=float(data.get("delay", d.delay)),
            duration=float(data.get("duration", d.duration)),
            workers=int(data.get("workers", d.workers)),
            handoff_capacity=int(data.get("handoff_capacity", d.handoff_capacity)),
            report=str(data.get("report", d.report)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid [run] value: {e}") from e

    if not run.command.strip():
        raise ConfigurationError("run.command cannot be empty")
    if run.delay <= 0:
        raise ConfigurationError(f"run.delay must be > 0, got {run.delay}")
    if run.duration <= 0:
        raise ConfigurationError(f"run.duration must be > 0, got {run.duration}")
    if run.workers < 1:
        raise ConfigurationError(f"run.workers must be >= 1, got {run.workers}")
    if run.handoff_capacity < 1:
        raise ConfigurationError(
            f"run.handoff_capacity must be >= 1, got {run.handoff_capacity}"
        )
    return run


def _load_system_config(data: dict) -> SystemConfig:
    """Load [system] from TOML data."""
    d = SystemConfig()
    try:
        return SystemConfig(
            log_max_bytes=int(data.get("log_max_bytes", d.log_max_bytes)),
            log_backup_count=int(data.get("log_backup_count", d.log_backup_count)),
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid [system] value: {e}") from e
