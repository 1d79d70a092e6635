"""Tests for the spawn scheduler and reap pool."""

import subprocess
import sys
import threading
import time
from queue import Queue

import pytest

from edr_loadgen.child import CHILD_ENV_VAR
from edr_loadgen.spawner import LaunchError, ReapPool, SpawnCounter, SpawnScheduler
from tests.conftest import PYTHON_NOOP


def run_scheduler(
    command,
    interval: float,
    duration: float,
    workers: int = 4,
    self_spawn: bool = False,
) -> tuple[SpawnScheduler, SpawnCounter, ReapPool]:
    """Run a scheduler and reap pool for `duration` seconds, then drain both."""
    handoff: Queue[subprocess.Popen | None] = Queue(maxsize=1000)
    counter = SpawnCounter()
    reaper = ReapPool(handoff, workers=workers)
    scheduler = SpawnScheduler(
        command, interval, counter, handoff, workers=workers, self_spawn=self_spawn
    )
    reaper.start()
    scheduler.start()
    scheduler.failed.wait(timeout=duration)
    scheduler.stop()
    scheduler.join(timeout=10.0)
    reaper.close()
    reaper.join(timeout=10.0)
    return scheduler, counter, reaper


class TestSpawnCounter:
    """Tests for SpawnCounter."""

    def test_starts_at_zero(self):
        """A new counter reads zero."""
        assert SpawnCounter().value == 0

    def test_increment_returns_new_value(self):
        """increment() returns the updated count."""
        counter = SpawnCounter()
        assert counter.increment() == 1
        assert counter.increment() == 2
        assert counter.value == 2

    def test_concurrent_increments(self):
        """No increments are lost across threads."""
        counter = SpawnCounter()

        def bump():
            for _ in range(1000):
                counter.increment()

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert counter.value == 8000


class TestReapPool:
    """Tests for ReapPool."""

    def test_reaps_every_child(self):
        """Every queued child is waited on before the pool exits."""
        handoff: Queue[subprocess.Popen | None] = Queue()
        pool = ReapPool(handoff, workers=3)
        pool.start()

        procs = [subprocess.Popen(PYTHON_NOOP) for _ in range(5)]
        for proc in procs:
            handoff.put(proc)
        pool.close()
        pool.join(timeout=10.0)

        assert not pool.is_running
        assert pool.reaped == 5
        assert all(proc.returncode is not None for proc in procs)

    def test_close_without_children(self):
        """Closing an idle pool stops every reaper."""
        handoff: Queue[subprocess.Popen | None] = Queue()
        pool = ReapPool(handoff, workers=4)
        pool.start()
        assert pool.is_running

        pool.close()
        pool.join(timeout=5.0)

        assert not pool.is_running
        assert pool.reaped == 0

    def test_worker_threads_are_daemons(self):
        """Reapers never keep the interpreter alive."""
        handoff: Queue[subprocess.Popen | None] = Queue()
        pool = ReapPool(handoff, workers=2)
        pool.start()
        try:
            assert all(t.daemon for t in pool._workers)
            assert pool._workers[0].name == "Reaper-0"
        finally:
            pool.close()
            pool.join(timeout=5.0)


class TestSpawnScheduler:
    """Tests for SpawnScheduler."""

    def test_not_running_before_start(self):
        """A new scheduler has no threads."""
        scheduler = SpawnScheduler(PYTHON_NOOP, 0.1, SpawnCounter(), Queue())
        assert not scheduler.is_running
        assert scheduler.error is None

    def test_spawn_count_bounded_by_elapsed_ticks(self):
        """Every issued tick becomes one launch, and no more than elapsed ticks."""
        interval, duration = 0.05, 0.5
        start = time.monotonic()
        scheduler, counter, reaper = run_scheduler(PYTHON_NOOP, interval, duration)
        elapsed = time.monotonic() - start

        assert not scheduler.is_running
        assert counter.value > 0
        assert counter.value == scheduler.ticks_issued
        assert counter.value <= elapsed / interval + 1
        assert reaper.reaped == counter.value

    def test_launch_failure_is_reported(self, tmp_path):
        """A command that cannot be executed fails the run without retrying."""
        missing = str(tmp_path / "no-such-binary")
        start = time.monotonic()
        scheduler, counter, reaper = run_scheduler([missing], 0.01, 5.0)

        assert time.monotonic() - start < 5.0
        assert scheduler.failed.is_set()
        assert isinstance(scheduler.error, LaunchError)
        assert "no-such-binary" in str(scheduler.error)
        assert counter.value == 0
        assert reaper.reaped == 0
        assert not scheduler.is_running

    def test_malformed_command_is_reported(self):
        """An argv the OS cannot accept fails the run and lets every thread exit."""
        scheduler, counter, reaper = run_scheduler(("/bin/tr\x00ue",), 0.01, 5.0, workers=2)

        assert scheduler.failed.is_set()
        assert isinstance(scheduler.error, LaunchError)
        assert isinstance(scheduler.error.__cause__, ValueError)
        assert not scheduler.is_running
        assert counter.value == 0
        assert reaper.reaped == 0

    def test_self_spawn_marks_children(self, tmp_path):
        """With self_spawn the child environment carries the marker."""
        out = tmp_path / "env.txt"
        script = f"import os; open({str(out)!r}, 'a').write(os.environ.get({CHILD_ENV_VAR!r}, '-'))"
        _, counter, _ = run_scheduler(
            (sys.executable, "-c", script), 0.05, 0.3, workers=1, self_spawn=True
        )

        assert counter.value > 0
        assert set(out.read_text()) == {"1"}

    def test_children_not_marked_by_default(self, tmp_path, monkeypatch):
        """Without self_spawn the marker is not added."""
        monkeypatch.delenv(CHILD_ENV_VAR, raising=False)
        out = tmp_path / "env.txt"
        script = f"import os; open({str(out)!r}, 'a').write(os.environ.get({CHILD_ENV_VAR!r}, '-'))"
        _, counter, _ = run_scheduler((sys.executable, "-c", script), 0.05, 0.3, workers=1)

        assert counter.value > 0
        assert set(out.read_text()) == {"-"}

    def test_thread_names(self):
        """Ticker and launchers are named daemon threads."""
        scheduler = SpawnScheduler(PYTHON_NOOP, 10.0, SpawnCounter(), Queue(), workers=2)
        scheduler.start()
        try:
            assert scheduler.is_running
            assert scheduler._ticker is not None
            assert scheduler._ticker.name == "Ticker"
            assert [t.name for t in scheduler._workers] == ["Launcher-0", "Launcher-1"]
            assert all(t.daemon for t in scheduler._workers)
        finally:
            scheduler.stop()
            scheduler.join(timeout=5.0)
        assert not scheduler.is_running
