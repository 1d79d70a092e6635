"""Shared test fixtures for edr-loadgen."""

import logging
import sys
from collections.abc import Iterable
from pathlib import Path

import pytest
import structlog

from edr_loadgen.sampler import CpuSample, ProcessSampler, SampleError

# A PID far above any kernel's pid_max
MISSING_PID = 99_999_999

# Short-lived child that works wherever the test interpreter does
PYTHON_NOOP = (sys.executable, "-c", "pass")


def make_sample(user: float = 0.0, system: float = 0.0) -> CpuSample:
    """Create a CpuSample for testing."""
    return CpuSample(user_seconds=user, system_seconds=system)


class FakeSampler(ProcessSampler):
    """Sampler returning scripted samples.

    Each PID maps to a list of samples handed out in order; the last one
    repeats once the list is exhausted. PIDs in `failing` raise SampleError.
    """

    def __init__(
        self,
        samples: dict[int, list[CpuSample]] | None = None,
        names: dict[int, str] | None = None,
        failing: Iterable[int] = (),
    ) -> None:
        self.samples = samples or {}
        self.names = names or {}
        self.failing = set(failing)
        self.calls: list[int] = []

    def sample(self, pid: int) -> CpuSample:
        self.calls.append(pid)
        if pid in self.failing or pid not in self.samples:
            raise SampleError(f"no such process {pid}")
        queue = self.samples[pid]
        return queue.pop(0) if len(queue) > 1 else queue[0]

    def name(self, pid: int) -> str:
        if pid not in self.names:
            raise SampleError(f"no name for {pid}")
        return self.names[pid]


@pytest.fixture
def fake_sampler() -> FakeSampler:
    """Two PIDs whose CPU time grows between the first and second sample."""
    return FakeSampler(
        samples={
            100: [make_sample(1.0, 0.5), make_sample(1.5, 0.75)],
            200: [make_sample(10.0, 2.0), make_sample(10.1, 2.2)],
        },
        names={100: "edr-agent --daemon", 200: "auditd"},
    )


@pytest.fixture
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME at a temporary directory so config and logs stay out of ~."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setattr(Path, "home", classmethod(lambda cls: home))
    return home


@pytest.fixture
def restore_logging():
    """Undo edr_loadgen.logging.configure() after the test."""
    root = logging.getLogger()
    handlers = root.handlers[:]
    level = root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
