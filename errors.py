"""
Error taxonomy for the daily archive.

Each error carries a stable exit code so the CLI can report failures
consistently. Duplicate/contention is deliberately not here: an
"already in progress" job is a normal result, not an error.
"""


class DailyError(Exception):
    """Base class for all expected failures."""

    exit_code = 1


class SpawnError(DailyError):
    """The background worker could not be started (binary missing, permission denied)."""

    exit_code = 10


class SummarizerError(DailyError):
    """The assistant subprocess failed or returned unusable output."""

    exit_code = 11


class JobNotFoundError(DailyError):
    exit_code = 12

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class JobNotRunningError(DailyError):
    """Raised when killing a job that already reached a terminal state."""

    exit_code = 13

    def __init__(self, job_id: str, status: str):
        super().__init__(f"Job {job_id} is not running (already finished: {status})")
        self.job_id = job_id
        self.status = status


class ArchiveWriteError(DailyError):
    """Filesystem failure while writing or removing archive files."""

    exit_code = 14


class HookInputError(DailyError):
    exit_code = 15


class ConfigError(DailyError):
    exit_code = 16
