"""
Background jobs.

Components:
- ProcessSupervisor: spawns detached workers, probes and signals them
- LogSink: per-job append-only log with follow and size bounding
- JobRegistry: one durable JSON record per job (create/complete/fail/list/kill/cleanup)
- run_as_job: worker-side finalization of a job record

Usage:
    from jobs import JobRegistry, JobType

    registry = JobRegistry(settings.jobs_dir)
    registry.create("my-project-1a2b3c4d", JobType.SESSION_END, command)
"""

from jobs.models import (
    Job,
    JobType,
    JobState,
    CreateResult,
    REASON_KILLED,
    REASON_VANISHED,
)
from jobs.supervisor import ProcessSupervisor, TerminateResult
from jobs.log_sink import LogSink
from jobs.registry import JobRegistry, generate_job_id, sanitize_name
from jobs.worker import run_as_job, current_job_id, registry_for_worker

__all__ = [
    # Models
    "Job",
    "JobType",
    "JobState",
    "CreateResult",
    "REASON_KILLED",
    "REASON_VANISHED",
    # Processes
    "ProcessSupervisor",
    "TerminateResult",
    # Logs
    "LogSink",
    # Registry
    "JobRegistry",
    "generate_job_id",
    "sanitize_name",
    # Worker
    "run_as_job",
    "current_job_id",
    "registry_for_worker",
]
