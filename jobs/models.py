"""Data models for background jobs."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional


class JobType(str, Enum):
    SESSION_END = "session_end"        # Spawned by the SessionEnd hook
    AUTO_SUMMARIZE = "auto_summarize"  # Missed session picked up by inactivity scan
    MANUAL = "manual"                  # CLI / auto-digest


class JobState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED)

# Failure reasons written by the registry itself
REASON_KILLED = "killed"
REASON_VANISHED = "process vanished"


@dataclass
class Job:
    """
    A tracked unit of background work, persisted as <jobs-dir>/<id>.json.

    Created Running at spawn time. Only the job's own process (complete/fail)
    or an explicit kill moves it to a terminal state, and terminal states
    never change again.
    """

    id: str
    task_name: str
    job_type: JobType
    pid: int
    date: str                  # YYYY-MM-DD; with task_name forms the uniqueness key
    log_path: Path
    started_at: datetime = field(default_factory=datetime.now)
    status: JobState = JobState.RUNNING
    error: Optional[str] = None  # Failure reason
    finished_at: Optional[datetime] = None
    transcript_path: Optional[str] = None
    command: list[str] = field(default_factory=list)

    @property
    def key(self) -> tuple[str, str]:
        return (self.date, self.task_name)

    @property
    def is_running(self) -> bool:
        return self.status == JobState.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def status_type(self) -> str:
        return self.status.value

    @property
    def status_label(self) -> str:
        if self.status == JobState.FAILED:
            return f"Failed: {self.error}"
        return self.status.value.capitalize()

    def elapsed_seconds(self, now: Optional[datetime] = None) -> int:
        end = self.finished_at or now or datetime.now()
        return max(0, int((end - self.started_at).total_seconds()))

    def elapsed_human(self, now: Optional[datetime] = None) -> str:
        secs = self.elapsed_seconds(now)
        if secs < 60:
            return f"{secs}s"
        if secs < 3600:
            return f"{secs // 60}m {secs % 60}s"
        return f"{secs // 3600}h {(secs % 3600) // 60}m"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "task_name": self.task_name,
            "job_type": self.job_type.value,
            "pid": self.pid,
            "date": self.date,
            "log_path": str(self.log_path),
            "started_at": self.started_at.isoformat(),
            "status": self.status.value,
            "error": self.error,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "transcript_path": self.transcript_path,
            "command": list(self.command),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Job":
        return cls(
            id=data["id"],
            task_name=data["task_name"],
            job_type=JobType(data["job_type"]),
            pid=int(data["pid"]),
            date=data["date"],
            log_path=Path(data["log_path"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            status=JobState(data["status"]),
            error=data.get("error"),
            finished_at=datetime.fromisoformat(data["finished_at"]) if data.get("finished_at") else None,
            transcript_path=data.get("transcript_path"),
            command=list(data.get("command") or []),
        )


@dataclass
class CreateResult:
    """Outcome of JobRegistry.create: a new job, or the Running job that already holds the key."""

    job: Job
    created: bool

    @property
    def duplicate(self) -> bool:
        return not self.created
