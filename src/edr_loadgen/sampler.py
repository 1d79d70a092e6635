"""Per-process CPU accounting.

Each sampler reports the cumulative user and system CPU time a process has
consumed since it started, plus a human-readable name for it. The run
controller only talks to the `ProcessSampler` interface; `get_sampler()` picks
the variant for the running platform:

- Linux: `ProcfsSampler` (clock ticks from /proc/<pid>/stat)
- Windows: `HandleSampler` (GetProcessTimes on a query handle)
- macOS: `LibprocSampler` (proc_pid_rusage)
- anything else: `PsutilSampler`
"""

import os
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass
from functools import cache
from pathlib import Path

import psutil
import structlog

log = structlog.get_logger()

UNKNOWN_NAME = "<unknown>"

# Fields of /proc/<pid>/stat after the ")" closing the command name. The
# first one is field 3 (state) in proc(5), so utime (14) and stime (15) sit
# at offsets 11 and 12.
_STAT_UTIME = 11
_STAT_STIME = 12


class SampleError(Exception):
    """Raised when a process's CPU time cannot be read."""


@dataclass(slots=True, frozen=True)
class CpuSample:
    """Cumulative CPU time of one process at the instant of sampling."""

    user_seconds: float
    system_seconds: float

    @property
    def total_seconds(self) -> float:
        """User plus system time."""
        return self.user_seconds + self.system_seconds


class ProcessSampler(ABC):
    """Reads CPU time and names of processes by PID."""

    @abstractmethod
    def sample(self, pid: int) -> CpuSample:
        """Return the cumulative CPU time of `pid`.

        Raises:
            SampleError: If the process cannot be queried.
        """

    @abstractmethod
    def name(self, pid: int) -> str:
        """Return a human-readable name for `pid`.

        Raises:
            SampleError: If the name cannot be determined.
        """

    def sample_all(self, pids: Iterable[int]) -> dict[int, CpuSample]:
        """Sample every PID, in ascending order.

        The first failure propagates; a partial before/after comparison is
        meaningless.

        Raises:
            SampleError: If any PID cannot be sampled.
        """
        return {pid: self.sample(pid) for pid in sorted(pids)}

    def resolve_names(self, pids: Iterable[int]) -> dict[int, str]:
        """Resolve names for every PID, substituting `UNKNOWN_NAME` on failure."""
        names: dict[int, str] = {}
        for pid in sorted(pids):
            try:
                names[pid] = self.name(pid) or UNKNOWN_NAME
            except SampleError as e:
                log.warning("name_unresolved", pid=pid, error=str(e))
                names[pid] = UNKNOWN_NAME
        return names


# ─────────────────────────────────────────────────────────────────────────────
# Linux: /proc
# ─────────────────────────────────────────────────────────────────────────────


@cache
def clock_ticks() -> int:
    """Return the scheduler clock-tick frequency (SC_CLK_TCK), queried once."""
    return os.sysconf("SC_CLK_TCK")


class ProcfsSampler(ProcessSampler):
    """Tick-based accounting from the /proc pseudo-filesystem."""

    def __init__(self, proc_root: Path = Path("/proc"), clk_tck: int | None = None) -> None:
        """
        Initialize the ProcfsSampler.

        Args:
            proc_root: Mount point of procfs.
            clk_tck: Ticks per second; defaults to the system's SC_CLK_TCK.
        """
        self._proc_root = proc_root
        self._clk_tck = clk_tck or clock_ticks()

    @property
    def clk_tck(self) -> int:
        """Clock ticks per second used for conversion."""
        return self._clk_tck

    def _read_stat(self, pid: int) -> str:
        try:
            return (self._proc_root / str(pid) / "stat").read_text()
        except OSError as e:
            raise SampleError(f"read stat for PID {pid}: {e}") from e

    def sample(self, pid: int) -> CpuSample:
        stat = self._read_stat(pid)
        _, paren, rest = stat.rpartition(")")
        parts = rest.split()
        if not paren or len(parts) <= _STAT_STIME:
            raise SampleError(f"wrong data in stat for PID {pid}")
        try:
            utime = int(parts[_STAT_UTIME])
            stime = int(parts[_STAT_STIME])
        except ValueError as e:
            raise SampleError(f"wrong data in stat for PID {pid}: {e}") from e
        return CpuSample(
            user_seconds=utime / self._clk_tck,
            system_seconds=stime / self._clk_tck,
        )

    def name(self, pid: int) -> str:
        try:
            raw = (self._proc_root / str(pid) / "cmdline").read_bytes()
        except OSError as e:
            raise SampleError(f"read cmdline for PID {pid}: {e}") from e
        cmdline = raw.replace(b"\x00", b" ").decode("utf-8", errors="replace").strip()
        if cmdline:
            return cmdline
        # Kernel threads have an empty cmdline; use the command name instead
        stat = self._read_stat(pid)
        start, end = stat.find("("), stat.rfind(")")
        if start == -1 or end < start:
            raise SampleError(f"wrong data in stat for PID {pid}")
        return f"[{stat[start + 1 : end]}]"


# ─────────────────────────────────────────────────────────────────────────────
# Windows: process handles
# ─────────────────────────────────────────────────────────────────────────────


class HandleSampler(ProcessSampler):
    """Handle-based accounting via OpenProcess/GetProcessTimes."""

    def __init__(self) -> None:
        from edr_loadgen import winapi

        self._winapi = winapi

    def sample(self, pid: int) -> CpuSample:
        try:
            with self._winapi.open_process(pid) as handle:
                user, kernel = self._winapi.get_process_times(handle)
        except OSError as e:
            raise SampleError(f"query times for PID {pid}: {e}") from e
        return CpuSample(user_seconds=user, system_seconds=kernel)

    def name(self, pid: int) -> str:
        try:
            with self._winapi.open_process(pid) as handle:
                return self._winapi.get_image_name(handle)
        except OSError as e:
            raise SampleError(f"query image name for PID {pid}: {e}") from e


# ─────────────────────────────────────────────────────────────────────────────
# macOS: libproc
# ─────────────────────────────────────────────────────────────────────────────


class LibprocSampler(ProcessSampler):
    """Accounting via proc_pid_rusage."""

    def __init__(self) -> None:
        from edr_loadgen import libproc

        self._libproc = libproc

    def sample(self, pid: int) -> CpuSample:
        times = self._libproc.get_cpu_times(pid)
        if times is None:
            raise SampleError(f"proc_pid_rusage failed for PID {pid}")
        user, system = times
        return CpuSample(user_seconds=user, system_seconds=system)

    def name(self, pid: int) -> str:
        name = self._libproc.get_process_name(pid)
        if not name:
            raise SampleError(f"proc_name failed for PID {pid}")
        return name


# ─────────────────────────────────────────────────────────────────────────────
# Fallback: psutil
# ─────────────────────────────────────────────────────────────────────────────


class PsutilSampler(ProcessSampler):
    """Accounting through psutil, for platforms without a native variant."""

    def sample(self, pid: int) -> CpuSample:
        try:
            times = psutil.Process(pid).cpu_times()
        except (psutil.Error, ValueError) as e:
            raise SampleError(f"cpu_times for PID {pid}: {e}") from e
        return CpuSample(user_seconds=times.user, system_seconds=times.system)

    def name(self, pid: int) -> str:
        try:
            proc = psutil.Process(pid)
            with proc.oneshot():
                cmdline = proc.cmdline()
                return " ".join(cmdline) if cmdline else proc.name()
        except (psutil.Error, ValueError) as e:
            raise SampleError(f"name for PID {pid}: {e}") from e


def get_sampler(platform: str | None = None) -> ProcessSampler:
    """Return the sampler variant for `platform` (defaults to sys.platform)."""
    platform = platform or sys.platform
    if platform.startswith("linux"):
        return ProcfsSampler()
    if platform == "win32":
        return HandleSampler()
    if platform == "darwin":
        return LibprocSampler()
    return PsutilSampler()
