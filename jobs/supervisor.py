"""
Process supervision for background jobs.

Spawns each unit of work as an independent OS process so the hook that
triggered it can exit immediately. Children are started with
start_new_session=True: each becomes the leader of its own session and
process group, so it is not killed when the editor tears down the hook's
process group, and terminate() can signal the whole group (the worker plus
the assistant subprocess it is waiting on).
"""

import logging
import os
import signal
import subprocess
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from errors import SpawnError

logger = logging.getLogger("daily.jobs.supervisor")


class TerminateResult(str, Enum):
    SIGNALED = "signaled"
    ALREADY_FINISHED = "already_finished"


class ProcessSupervisor:
    """
    Spawns detached processes, probes their liveness and signals them.

    Handles of processes spawned by this instance are kept so liveness can
    be answered with Popen.poll(), which also reaps exited children instead
    of leaving zombies that a signal-0 probe would report as alive.
    """

    def __init__(self):
        self._handles: dict[int, subprocess.Popen] = {}

    def spawn(
        self,
        command: str,
        args: Sequence[str],
        cwd: Optional[Path],
        log_path: Path,
        env: Optional[dict[str, str]] = None,
    ) -> tuple[int, subprocess.Popen]:
        """
        Start `command args...` detached, with stdout/stderr appended to log_path.

        Raises SpawnError synchronously if the process cannot be started.
        """
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        child_env = dict(os.environ)
        if env:
            child_env.update(env)

        log_fd = open(log_path, "ab")
        try:
            proc = subprocess.Popen(
                [command, *args],
                cwd=str(cwd) if cwd else None,
                stdin=subprocess.DEVNULL,
                stdout=log_fd,
                stderr=subprocess.STDOUT,
                env=child_env,
                start_new_session=True,
                close_fds=True,
            )
        except OSError as e:
            # Binary missing, permission denied, bad cwd
            raise SpawnError(f"Failed to spawn {command}: {e}") from e
        finally:
            # Close parent's copy of the log fd (child inherited it)
            log_fd.close()

        self._handles[proc.pid] = proc
        logger.info(f"Spawned {command} (PID: {proc.pid}), log: {log_path}")
        return proc.pid, proc

    def is_alive(self, pid: int) -> bool:
        """Liveness probe. Does not signal or otherwise disturb the process."""
        if pid <= 0:
            return False

        handle = self._handles.get(pid)
        if handle is not None:
            if handle.poll() is None:
                return True
            # Reaped: forget the handle, the pid may be reused
            self._handles.pop(pid, None)
            return False

        try:
            os.kill(pid, 0)
            return True
        except ProcessLookupError:
            return False
        except PermissionError:
            return True  # Process exists but we don't own it
        except OSError:
            return False

    def terminate(self, pid: int) -> TerminateResult:
        """
        Send SIGTERM to the process group led by pid.

        Returns once the signal is delivered; the process exits eventually.
        A pid that is already gone is reported, not raised.
        """
        if not self.is_alive(pid):
            return TerminateResult.ALREADY_FINISHED

        try:
            os.killpg(pid, signal.SIGTERM)
        except ProcessLookupError:
            # Not a group leader (spawned elsewhere) or already gone
            try:
                os.kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                return TerminateResult.ALREADY_FINISHED

        logger.info(f"Sent SIGTERM to process group {pid}")
        return TerminateResult.SIGNALED

    def wait(self, pid: int, timeout: Optional[float] = None) -> Optional[int]:
        """Wait for a child spawned by this supervisor. Returns its exit code."""
        handle = self._handles.get(pid)
        if handle is None:
            return None
        code = handle.wait(timeout=timeout)
        self._handles.pop(pid, None)
        return code
