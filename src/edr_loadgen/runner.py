"""Run controller: one before/after CPU measurement around a spawn run."""

import subprocess
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from queue import Queue

import structlog

from edr_loadgen.config import RunConfig
from edr_loadgen.sampler import CpuSample, ProcessSampler, get_sampler
from edr_loadgen.spawner import ReapPool, SpawnCounter, SpawnScheduler

log = structlog.get_logger()

SUM_LABEL = "SUM"


class RunPhase(Enum):
    """Lifecycle of a run."""

    IDLE = "idle"
    SAMPLING_BEFORE = "sampling_before"
    RUNNING = "running"
    SAMPLING_AFTER = "sampling_after"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


@dataclass(slots=True, frozen=True)
class PidResult:
    """CPU consumed by one observed process (or the SUM of all) during a run."""

    pid: int | None  # None for the SUM row
    name: str
    delta_user: float
    delta_system: float
    user_percent: float
    system_percent: float

    @property
    def delta_total(self) -> float:
        return self.delta_user + self.delta_system

    @property
    def total_percent(self) -> float:
        return self.user_percent + self.system_percent

    @classmethod
    def from_samples(
        cls,
        pid: int,
        name: str,
        before: CpuSample,
        after: CpuSample,
        duration: float,
    ) -> "PidResult":
        """Compute deltas and percent of `duration` from a before/after pair."""
        delta_user = after.user_seconds - before.user_seconds
        delta_system = after.system_seconds - before.system_seconds
        return cls(
            pid=pid,
            name=name,
            delta_user=delta_user,
            delta_system=delta_system,
            user_percent=100 * delta_user / duration,
            system_percent=100 * delta_system / duration,
        )


@dataclass(slots=True, frozen=True)
class RunResult:
    """Outcome of one run."""

    timestamp: float  # Unix time the run finished
    intended_ticks: float
    spawn_count: int
    pids: tuple[PidResult, ...]
    total: PidResult | None  # Present when more than one PID was observed

    @property
    def rows(self) -> tuple[PidResult, ...]:
        """Per-PID rows followed by the SUM row, if any."""
        return self.pids + ((self.total,) if self.total is not None else ())


def summarize(pids: list[PidResult]) -> PidResult | None:
    """Return the cross-PID SUM row, or None for fewer than two PIDs."""
    if len(pids) < 2:
        return None
    return PidResult(
        pid=None,
        name=SUM_LABEL,
        delta_user=sum(p.delta_user for p in pids),
        delta_system=sum(p.delta_system for p in pids),
        user_percent=sum(p.user_percent for p in pids),
        system_percent=sum(p.system_percent for p in pids),
    )


class RunController:
    """
    Orchestrates one measurement run.

    Phases: validate the config, sample the observed PIDs, spawn for the run
    duration, stop the ticker, sample again, compute deltas. Launch workers
    and reapers are drained before `run()` returns.
    """

    def __init__(
        self,
        config: RunConfig,
        sampler: ProcessSampler | None = None,
        on_phase: Callable[[RunPhase], None] | None = None,
    ) -> None:
        """
        Initialize the RunController.

        Args:
            config: What to spawn, how often, for how long, and which PIDs to observe.
            sampler: CPU sampler; defaults to the platform's variant.
            on_phase: Called with each phase as the run enters it.
        """
        self.config = config
        self.sampler = sampler or get_sampler()
        self.counter = SpawnCounter()
        self.phase = RunPhase.IDLE
        self.names: dict[int, str] = {}
        self.reaped = 0
        self._on_phase = on_phase

    def run(self) -> RunResult:
        """Execute the run.

        Raises:
            ConfigurationError: If the config is invalid; nothing is spawned.
            SampleError: If either snapshot fails.
            LaunchError: If the command cannot be executed.
        """
        try:
            return self._run()
        except Exception:
            self._enter(RunPhase.FAILED)
            raise

    def _run(self) -> RunResult:
        cfg = self.config
        cfg.validate()

        self.names = self.sampler.resolve_names(cfg.target_pids)

        self._enter(RunPhase.SAMPLING_BEFORE)
        before = self.sampler.sample_all(cfg.target_pids)

        self._enter(RunPhase.RUNNING)
        handoff: Queue[subprocess.Popen | None] = Queue(maxsize=cfg.handoff_capacity)
        reaper = ReapPool(handoff, workers=cfg.workers)
        scheduler = SpawnScheduler(
            cfg.command,
            cfg.tick_interval,
            self.counter,
            handoff,
            workers=cfg.workers,
            self_spawn=cfg.self_spawn,
        )
        log.info(
            "run_started",
            command=list(cfg.command),
            delay=cfg.tick_interval,
            duration=cfg.total_duration,
            pids=sorted(cfg.target_pids),
            workers=cfg.workers,
        )
        reaper.start()
        scheduler.start()
        try:
            # Returns early only if a launch failed
            scheduler.failed.wait(timeout=cfg.total_duration)
            scheduler.stop()

            if scheduler.error is not None:
                raise scheduler.error

            self._enter(RunPhase.SAMPLING_AFTER)
            after = self.sampler.sample_all(cfg.target_pids)
        finally:
            scheduler.stop()
            scheduler.join()
            reaper.close()
            reaper.join()
            self.reaped = reaper.reaped

        self._enter(RunPhase.REPORTING)
        result = self._build_result(before, after)
        log.info(
            "run_finished",
            spawned=result.spawn_count,
            reaped=self.reaped,
            ticks_issued=scheduler.ticks_issued,
            ticks_dropped=scheduler.ticks_dropped,
        )
        self._enter(RunPhase.DONE)
        return result

    def _enter(self, phase: RunPhase) -> None:
        self.phase = phase
        if self._on_phase is not None:
            self._on_phase(phase)

    def _build_result(
        self,
        before: dict[int, CpuSample],
        after: dict[int, CpuSample],
    ) -> RunResult:
        cfg = self.config
        rows = [
            PidResult.from_samples(
                pid,
                self.names.get(pid, ""),
                before[pid],
                after[pid],
                cfg.total_duration,
            )
            for pid in sorted(cfg.target_pids)
        ]
        return RunResult(
            timestamp=time.time(),
            intended_ticks=cfg.intended_ticks,
            spawn_count=self.counter.value,
            pids=tuple(rows),
            total=summarize(rows),
        )
