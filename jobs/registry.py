"""
Job Registry

Persists one JSON record per background job under the jobs directory and
composes ProcessSupervisor + LogSink to spawn, track, kill and clean up
detached workers.

Two-phase protocol:
1. create() runs in the caller (often a hook that must return in
   milliseconds): dedup check, spawn, persist a Running record. It never
   waits on the worker.
2. The detached worker does the work and calls complete()/fail() on its own
   record before exiting (see jobs.worker).

All record writes happen under an exclusive flock on <jobs-dir>/.registry.lock
and go through temp-file-then-rename, so readers (which never lock) see
either the old record or the new one. create() holds the lock across the
spawn, so a fast worker's complete() waits until its Running record exists.
"""

from __future__ import annotations

import logging
import re
import secrets
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Optional, Sequence

from errors import JobNotFoundError, JobNotRunningError
from jobs.log_sink import LogSink
from jobs.models import (
    CreateResult,
    Job,
    JobState,
    JobType,
    REASON_KILLED,
    REASON_VANISHED,
)
from jobs.supervisor import ProcessSupervisor, TerminateResult
from storage.file_io import atomic_json_write, file_lock, read_json

logger = logging.getLogger("daily.jobs")

# Environment variables handed to every spawned worker
JOB_ID_ENV = "DAILY_JOB_ID"
JOBS_DIR_ENV = "DAILY_JOBS_DIR"

LOCK_FILE = ".registry.lock"


def sanitize_name(name: str) -> str:
    """Lowercase, first 20 chars, anything not ASCII alphanumeric or '-' becomes '-'."""
    return "".join(
        c if (c.isascii() and c.isalnum()) or c == "-" else "-" for c in name[:20]
    ).lower()


def generate_job_id(task_name: str, now: Optional[datetime] = None) -> str:
    """Time-based id with a random suffix: sorts by creation time, no collisions."""
    now = now or datetime.now()
    return f"{now.strftime('%Y%m%d-%H%M%S')}-{sanitize_name(task_name)}-{secrets.token_hex(3)}"


_JOB_ID_RE = re.compile(r"^[A-Za-z0-9._-]+$")


class JobRegistry:
    """
    Durable registry of background jobs, backed only by the filesystem.

    Usage:
        registry = JobRegistry(settings.jobs_dir)
        result = registry.create("fix-bug", JobType.MANUAL, ["daily", "digest"])
        if result.duplicate:
            ...  # already in progress
    """

    def __init__(
        self,
        jobs_dir: Path,
        supervisor: Optional[ProcessSupervisor] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.jobs_dir = Path(jobs_dir)
        self.supervisor = supervisor or ProcessSupervisor()
        self.clock = clock
        self.jobs_dir.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def job_path(self, job_id: str) -> Path:
        if not _JOB_ID_RE.match(job_id):
            raise JobNotFoundError(job_id)
        return self.jobs_dir / f"{job_id}.json"

    def log_path(self, job_id: str) -> Path:
        return self.jobs_dir / f"{job_id}.log"

    def log_sink(self, job_id: str) -> LogSink:
        return LogSink(self.log_path(job_id))

    def _lock(self):
        return file_lock(self.jobs_dir / LOCK_FILE)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _save(self, job: Job) -> None:
        atomic_json_write(self.job_path(job.id), job.to_dict())

    def _load(self, job_id: str) -> Job:
        """Load the record exactly as persisted (no reconciliation)."""
        data = read_json(self.job_path(job_id))
        if not isinstance(data, dict):
            raise JobNotFoundError(job_id)
        try:
            return Job.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Unreadable job record {job_id}: {e}")
            raise JobNotFoundError(job_id) from e

    def _load_all(self) -> list[Job]:
        jobs = []
        for path in self.jobs_dir.glob("*.json"):
            if path.name.startswith("."):
                continue
            data = read_json(path)
            if not isinstance(data, dict):
                continue
            try:
                jobs.append(Job.from_dict(data))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable job record {path.name}: {e}")
        return jobs

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def _effective(self, job: Job) -> Job:
        """
        Read-time view of a record: a Running job whose process is gone
        is reported as Failed("process vanished"). Nothing is written.
        """
        if job.is_running and not self.supervisor.is_alive(job.pid):
            job.status = JobState.FAILED
            job.error = REASON_VANISHED
            job.finished_at = job.finished_at or self.clock()
        return job

    def _reconcile_locked(self) -> list[Job]:
        """Persist vanished-process corrections. Caller holds the lock."""
        fixed = []
        for job in self._load_all():
            if job.is_running and not self.supervisor.is_alive(job.pid):
                self._effective(job)
                self._save(job)
                fixed.append(job)
                logger.warning(f"Job {job.id} (PID {job.pid}) vanished, marked failed")
        return fixed

    def reconcile(self) -> list[Job]:
        """Mark Running records whose process is gone as failed, on disk."""
        with self._lock():
            return self._reconcile_locked()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def create(
        self,
        task_name: str,
        job_type: JobType,
        command: Sequence[str],
        cwd: Optional[Path] = None,
        date: Optional[str] = None,
        transcript_path: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
    ) -> CreateResult:
        """
        Spawn a detached worker and persist its Running record.

        If a Running job already holds (date, task_name), nothing is spawned
        and the existing job is returned with created=False.

        Raises SpawnError if the worker can't be started; no record is written.
        """
        if not command:
            raise ValueError("command must not be empty")

        now = self.clock()
        date = date or now.strftime("%Y-%m-%d")

        with self._lock():
            self._reconcile_locked()

            for existing in self._load_all():
                if existing.is_running and existing.key == (date, task_name):
                    logger.info(
                        f"Job for {task_name} on {date} already in progress ({existing.id}), not spawning"
                    )
                    return CreateResult(job=existing, created=False)

            job_id = generate_job_id(task_name, now)
            self.job_path(job_id)  # Validate before anything is spawned
            log_path = self.log_path(job_id)

            child_env = {JOB_ID_ENV: job_id, JOBS_DIR_ENV: str(self.jobs_dir)}
            if env:
                child_env.update(env)

            pid, _ = self.supervisor.spawn(
                command[0], list(command[1:]), cwd, log_path, env=child_env
            )

            job = Job(
                id=job_id,
                task_name=task_name,
                job_type=job_type,
                pid=pid,
                date=date,
                log_path=log_path,
                started_at=now,
                transcript_path=transcript_path,
                command=list(command),
            )
            try:
                self._save(job)
            except Exception:
                # A worker without a record can't be listed or killed
                logger.error(f"Failed to record job {job_id}, terminating PID {pid}")
                self.supervisor.terminate(pid)
                raise

        logger.info(f"Started {job_type.value} job {job_id} for {task_name} (PID: {pid})")
        return CreateResult(job=job, created=True)

    def _finish(self, job_id: str, status: JobState, error: Optional[str] = None) -> bool:
        with self._lock():
            job = self._load(job_id)
            if job.is_terminal:
                logger.warning(
                    f"Job {job_id} already {job.status_label}, ignoring transition to {status.value}"
                )
                return False
            job.status = status
            job.error = error
            job.finished_at = self.clock()
            self._save(job)
        logger.info(f"Job {job_id} -> {job.status_label}")
        return True

    def complete(self, job_id: str) -> bool:
        """Mark a Running job completed. Returns False if it was already terminal."""
        return self._finish(job_id, JobState.COMPLETED)

    def fail(self, job_id: str, reason: str) -> bool:
        """Mark a Running job failed. Returns False if it was already terminal."""
        return self._finish(job_id, JobState.FAILED, reason)

    def get(self, job_id: str) -> Job:
        """Load a job with read-time reconciliation applied."""
        return self._effective(self._load(job_id))

    def list(self, include_all: bool = False) -> list[Job]:
        """
        All jobs (include_all=True) or only running ones, newest first.

        Running records whose process is gone are reported as failed.
        """
        jobs = [self._effective(job) for job in self._load_all()]
        if not include_all:
            jobs = [job for job in jobs if job.is_running]
        jobs.sort(key=lambda j: (j.started_at, j.id), reverse=True)
        return jobs

    def running_for(self, date: str, task_name: str) -> Optional[Job]:
        for job in self.list():
            if job.key == (date, task_name):
                return job
        return None

    def kill(self, job_id: str) -> TerminateResult:
        """
        Terminate a running job and mark it Failed("killed").

        Raises JobNotRunningError (no side effects) if the job already
        finished. Termination is asynchronous: the signal is sent, the
        exit is observed later.
        """
        with self._lock():
            job = self._effective(self._load(job_id))
            if job.is_terminal:
                raise JobNotRunningError(job_id, job.status_label)

            result = self.supervisor.terminate(job.pid)
            if result == TerminateResult.ALREADY_FINISHED:
                # Exited between the liveness check and the signal
                job.status = JobState.FAILED
                job.error = REASON_VANISHED
                job.finished_at = self.clock()
                self._save(job)
                raise JobNotRunningError(job_id, job.status_label)

            job.status = JobState.FAILED
            job.error = REASON_KILLED
            job.finished_at = self.clock()
            self._save(job)

        self.log_sink(job_id).write("Killed by user")
        logger.info(f"Killed job {job_id} (PID: {job.pid})")
        return result

    def cleanup(self, older_than_days: int = 7, dry_run: bool = False) -> list[Job]:
        """
        Remove terminal jobs (record + log) started before the cutoff.

        Running jobs are never removed, whatever their age. Returns the jobs
        removed, or with dry_run=True, exactly the jobs a real run would remove.
        """
        cutoff = self.clock() - timedelta(days=older_than_days)

        with self._lock():
            if dry_run:
                jobs = [self._effective(job) for job in self._load_all()]
            else:
                self._reconcile_locked()
                jobs = self._load_all()

            candidates = [job for job in jobs if job.is_terminal and job.started_at < cutoff]
            candidates.sort(key=lambda j: j.started_at)

            if dry_run:
                return candidates

            for job in candidates:
                self.job_path(job.id).unlink(missing_ok=True)
                self.log_path(job.id).unlink(missing_ok=True)
                logger.info(f"Removed job {job.id} ({job.task_name})")

        return candidates
