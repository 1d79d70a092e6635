"""Fixed-rate process spawning and reaping.

`SpawnScheduler` runs one ticker thread and a pool of launch workers. The
ticker offers a tick to a single-slot queue every period; whichever worker is
idle takes it and launches the command. A tick that finds every worker busy is
dropped, so slow launches never delay the ticker. Launched processes go to a
bounded handoff queue drained by `ReapPool`, whose workers wait for each child
to exit.
"""

import os
import subprocess
import threading
import time
from collections.abc import Sequence
from queue import Full, Queue

import structlog

from edr_loadgen.child import CHILD_ENV_VAR
from edr_loadgen.config import DEFAULT_WORKERS

log = structlog.get_logger()

# Close marker for the tick and handoff queues, one per consuming worker
_CLOSED = None


class LaunchError(Exception):
    """Raised when the configured command cannot be executed."""


class SpawnCounter:
    """Count of successfully launched children, shared by all launch workers."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self) -> int:
        """Add one launch and return the new count."""
        with self._lock:
            self._value += 1
            return self._value

    @property
    def value(self) -> int:
        """Current count. Exact only once the scheduler has been joined."""
        return self._value


class SpawnScheduler:
    """
    Launches `command` once per tick from a pool of worker threads.

    Launch failures are fatal: the first one stops the ticker, is kept in
    `error`, and sets the `failed` event for whoever is waiting on the run.
    """

    def __init__(
        self,
        command: Sequence[str],
        tick_interval: float,
        counter: SpawnCounter,
        handoff: "Queue[subprocess.Popen | None]",
        workers: int = DEFAULT_WORKERS,
        self_spawn: bool = False,
    ) -> None:
        """
        Initialize the SpawnScheduler.

        Args:
            command: Program path and arguments to launch on each tick.
            tick_interval: Seconds between ticks.
            counter: Incremented once per successful launch.
            handoff: Queue receiving every launched process for reaping.
            workers: Number of concurrent launch workers.
            self_spawn: Mark children with CHILD_ENV_VAR so they exit at once.
        """
        self._command = list(command)
        self._interval = tick_interval
        self._counter = counter
        self._handoff = handoff
        self._worker_count = workers
        self._env = {**os.environ, CHILD_ENV_VAR: "1"} if self_spawn else None

        self._ticks: Queue[float | None] = Queue(maxsize=1)
        self._stop_event = threading.Event()
        self._failed = threading.Event()
        self._error: LaunchError | None = None
        self._error_lock = threading.Lock()
        self._ticker: threading.Thread | None = None
        self._workers: list[threading.Thread] = []

        # Written by the ticker thread only
        self.ticks_issued = 0
        self.ticks_dropped = 0

    @property
    def is_running(self) -> bool:
        """Check if the ticker or any launch worker is alive."""
        threads = [self._ticker, *self._workers]
        return any(t is not None and t.is_alive() for t in threads)

    @property
    def failed(self) -> threading.Event:
        """Set when a launch has failed."""
        return self._failed

    @property
    def error(self) -> LaunchError | None:
        """The first launch failure, if any."""
        return self._error

    def start(self) -> None:
        """Start the launch workers and the ticker."""
        if self.is_running:
            return

        self._stop_event.clear()
        self._workers = [
            threading.Thread(target=self._launch_loop, daemon=True, name=f"Launcher-{i}")
            for i in range(self._worker_count)
        ]
        for worker in self._workers:
            worker.start()

        self._ticker = threading.Thread(target=self._tick_loop, daemon=True, name="Ticker")
        self._ticker.start()

    def stop(self) -> None:
        """Stop issuing ticks. Launches already in flight still complete."""
        self._stop_event.set()

    def join(self, timeout: float | None = None) -> None:
        """Wait for the ticker and every launch worker to exit."""
        for thread in [self._ticker, *self._workers]:
            if thread is not None:
                thread.join(timeout=timeout)

    def _tick_loop(self) -> None:
        """Issue ticks against a monotonic schedule, then close the tick source."""
        next_tick = time.monotonic() + self._interval
        while not self._stop_event.wait(timeout=max(0.0, next_tick - time.monotonic())):
            try:
                self._ticks.put_nowait(next_tick)
                self.ticks_issued += 1
            except Full:
                # Every worker is still launching
                self.ticks_dropped += 1
            next_tick += self._interval

        for _ in self._workers:
            self._ticks.put(_CLOSED)

    def _launch_loop(self) -> None:
        """Consume ticks until the tick source closes."""
        while True:
            tick = self._ticks.get()
            if tick is _CLOSED:
                return
            if self._failed.is_set():
                continue

            try:
                proc = self._launch()
            except LaunchError as e:
                self._fail(e)
                continue

            self._counter.increment()
            self._handoff.put(proc)

    def _launch(self) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                self._command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                env=self._env,
            )
        except (OSError, ValueError, TypeError, subprocess.SubprocessError) as e:
            # ValueError and TypeError come from malformed argv, e.g. an embedded NUL
            raise LaunchError(f"exec {self._command[0]!r}: {e}") from e

    def _fail(self, error: LaunchError) -> None:
        with self._error_lock:
            if self._error is not None:
                return
            self._error = error
        log.error("launch_failed", command=self._command, error=str(error))
        self._failed.set()
        self._stop_event.set()


class ReapPool:
    """Worker threads that wait on every spawned child so none is left a zombie."""

    def __init__(
        self,
        handoff: "Queue[subprocess.Popen | None]",
        workers: int = DEFAULT_WORKERS,
    ) -> None:
        """
        Initialize the ReapPool.

        Args:
            handoff: Queue of launched processes to wait on.
            workers: Number of reaper threads.
        """
        self._handoff = handoff
        self._worker_count = workers
        self._workers: list[threading.Thread] = []
        self._reaped = 0
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        """Check if any reaper is alive."""
        return any(t.is_alive() for t in self._workers)

    @property
    def reaped(self) -> int:
        """Number of children waited on so far."""
        return self._reaped

    def start(self) -> None:
        """Start the reaper threads."""
        if self.is_running:
            return

        self._workers = [
            threading.Thread(target=self._reap_loop, daemon=True, name=f"Reaper-{i}")
            for i in range(self._worker_count)
        ]
        for worker in self._workers:
            worker.start()

    def close(self) -> None:
        """
        Close the handoff queue.

        Call only once nothing else will be put on the queue. Reapers finish
        every process queued ahead of the close markers, then exit.
        """
        for _ in self._workers:
            self._handoff.put(_CLOSED)

    def join(self, timeout: float | None = None) -> None:
        """Wait for every reaper to exit."""
        for worker in self._workers:
            worker.join(timeout=timeout)

    def _reap_loop(self) -> None:
        while True:
            proc = self._handoff.get()
            if proc is _CLOSED:
                return
            # Exit status is irrelevant for load generation
            proc.wait()
            with self._lock:
                self._reaped += 1
