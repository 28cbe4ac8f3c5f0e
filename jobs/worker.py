"""
Worker-side half of the job protocol.

Runs inside the detached process. Whatever the unit of work does, the job
record ends in exactly one terminal state and the log is bounded.
"""

import logging
import os
from pathlib import Path
from typing import Callable, Optional, TypeVar

from errors import DailyError
from jobs.registry import JOB_ID_ENV, JOBS_DIR_ENV, JobRegistry

logger = logging.getLogger("daily.jobs.worker")

T = TypeVar("T")


def current_job_id() -> Optional[str]:
    """Job id handed to this process by JobRegistry.create, if any."""
    return os.environ.get(JOB_ID_ENV) or None


def registry_for_worker(default_jobs_dir: Path) -> JobRegistry:
    """Registry pointing at the jobs dir of the process that spawned us."""
    return JobRegistry(Path(os.environ.get(JOBS_DIR_ENV) or default_jobs_dir))


def run_as_job(registry: Optional[JobRegistry], job_id: Optional[str], fn: Callable[[], T]) -> T:
    """
    Run fn() and record the outcome on the job.

    Success marks the job completed. Any exception marks it failed with the
    exception text and is re-raised so the process exits non-zero. Without a
    job id (plain foreground use) fn() just runs.
    """
    if registry is None or job_id is None:
        return fn()

    try:
        result = fn()
    except Exception as e:
        reason = str(e) or type(e).__name__
        if not isinstance(e, DailyError):
            logger.error(f"Job {job_id} crashed: {reason}", exc_info=True)
        try:
            registry.fail(job_id, reason)
        except DailyError as update_err:
            logger.warning(f"Failed to update job status: {update_err}")
        raise
    else:
        try:
            registry.complete(job_id)
        except DailyError as update_err:
            logger.warning(f"Failed to update job status: {update_err}")
        return result
    finally:
        try:
            registry.log_sink(job_id).truncate_if_needed()
        except OSError as e:
            logger.warning(f"Failed to truncate job log: {e}")
