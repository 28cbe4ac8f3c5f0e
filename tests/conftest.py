"""
Shared pytest configuration for daily tests.

Sets environment variables at module level BEFORE any project imports so
that any Settings() built during collection points at a throwaway archive
root instead of ~/.claude/daily.
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="daily-tests-"))
os.environ.setdefault("DAILY_STORAGE_PATH", str(_TEST_ROOT / "daily"))
os.environ.setdefault("DAILY_PROJECTS_DIR", str(_TEST_ROOT / "projects"))
os.environ.pop("DAILY_JOB_ID", None)
os.environ.pop("DAILY_JOBS_DIR", None)

from config import Settings  # noqa: E402
from jobs.registry import JobRegistry  # noqa: E402
from jobs.supervisor import TerminateResult  # noqa: E402
from archive.store import ArchiveStore  # noqa: E402


class FakeSupervisor:
    """ProcessSupervisor stand-in: no real processes, liveness is a set of pids."""

    def __init__(self, first_pid: int = 40000):
        self.next_pid = first_pid
        self.alive: set[int] = set()
        self.spawned: list[dict] = []
        self.terminated: list[int] = []
        self.fail_with = None

    def spawn(self, command, args, cwd, log_path, env=None):
        if self.fail_with is not None:
            raise self.fail_with
        pid = self.next_pid
        self.next_pid += 1
        self.alive.add(pid)
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        Path(log_path).touch()
        self.spawned.append({"command": command, "args": list(args), "cwd": cwd, "env": env, "pid": pid})
        return pid, None

    def is_alive(self, pid):
        return pid in self.alive

    def terminate(self, pid):
        if pid not in self.alive:
            return TerminateResult.ALREADY_FINISHED
        self.alive.discard(pid)
        self.terminated.append(pid)
        return TerminateResult.SIGNALED

    def exit(self, pid):
        self.alive.discard(pid)


class FixedClock:
    """Callable clock that tests can move."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def settings(tmp_path):
    return Settings(
        storage_path=tmp_path / "daily",
        projects_dir=tmp_path / "projects",
        claude_bin="claude",
        auto_summarize_enabled=True,
        auto_summarize_on_show=True,
    )


@pytest.fixture
def supervisor():
    return FakeSupervisor()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 15, 14, 30, 0))


@pytest.fixture
def registry(settings, supervisor, clock):
    return JobRegistry(settings.jobs_dir, supervisor=supervisor, clock=clock)


@pytest.fixture
def store(settings):
    return ArchiveStore(settings.storage_path)
