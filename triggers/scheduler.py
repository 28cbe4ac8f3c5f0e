"""
Trigger Scheduler

Decides what background work a hook or command should kick off. There is
no daemon and no timer: every check runs on an entry point (session start,
opening the dashboard) and any resulting work goes through
JobRegistry.create, so the per-(date, task_name) dedup guard applies.

The plan_* / should_* functions are pure: they take the current time and
a snapshot of the filesystem and return decisions. TriggerScheduler does
the scanning and the enqueueing.
"""

import json
import logging
import os
import sys
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from pathlib import Path
from typing import Callable, Iterable, Optional, Sequence

from archive.models import DateEntry
from archive.store import ArchiveStore
from errors import SpawnError
from jobs.models import CreateResult, JobType
from jobs.registry import JobRegistry
from storage.file_io import atomic_json_write, read_json

logger = logging.getLogger("daily.triggers")

# Most auto-summarize jobs started by one evaluation
MAX_AUTO_SUMMARIZE = 3

DIGEST_TASK_NAME = "digest"
LAST_AUTO_SUMMARIZE_KEY = "last_auto_summarize_check"

# How far into a transcript to look for the session's cwd
CWD_PEEK_LINES = 50


@dataclass
class TranscriptInfo:
    path: Path
    modified_at: datetime

    @property
    def session_id(self) -> str:
        return self.path.stem


def task_name_for(cwd: Optional[str], session_id: str) -> str:
    """
    <project>-<first 8 chars of session id>.

    The SessionEnd hook and the auto-summarize scan both derive the task name
    this way, so two jobs for the same session share a dedup key.
    """
    project = Path(cwd).name if cwd else ""
    return f"{project or 'session'}-{session_id[:8]}"


# ----------------------------------------------------------------------
# Pure decisions
# ----------------------------------------------------------------------

def plan_auto_digest(
    now: datetime,
    dates: Iterable[DateEntry],
    enabled: bool,
    digest_time: time,
) -> list[str]:
    """Dates before today that still have loose sessions, once now >= digest_time."""
    if not enabled or now.time() < digest_time:
        return []
    today = now.strftime("%Y-%m-%d")
    return sorted(entry.date for entry in dates if entry.date < today and entry.session_count > 0)


def plan_auto_summarize(
    now: datetime,
    transcripts: Iterable[TranscriptInfo],
    archived: set[str],
    inactive_minutes: int,
    limit: int = MAX_AUTO_SUMMARIZE,
) -> list[TranscriptInfo]:
    """
    Transcripts that look like sessions which ended without a SessionEnd hook.

    A candidate was last modified today or yesterday, has been idle for at
    least inactive_minutes, and isn't the transcript_path of any archive.
    At most `limit` are returned, least recently modified first.
    """
    recent_days = {now.date(), (now - timedelta(days=1)).date()}
    idle_cutoff = now - timedelta(minutes=inactive_minutes)

    candidates = [
        t for t in transcripts
        if t.modified_at.date() in recent_days
        and t.modified_at <= idle_cutoff
        and str(t.path) not in archived
    ]
    candidates.sort(key=lambda t: t.modified_at)
    return candidates[:limit]


def should_run_timed_auto_summarize(
    now: datetime,
    enabled: bool,
    trigger_time: time,
    last_check: Optional[datetime],
) -> bool:
    """Once per day, on the first evaluation at or after trigger_time."""
    if not enabled or now.time() < trigger_time:
        return False
    if last_check is not None and last_check.date() == now.date() and last_check.time() >= trigger_time:
        return False
    return True


# ----------------------------------------------------------------------
# Filesystem scans
# ----------------------------------------------------------------------

def find_transcripts(projects_dir: Path) -> list[TranscriptInfo]:
    """<projects_dir>/<project>/<session>.jsonl, skipping agent-* and empty files."""
    projects_dir = Path(projects_dir)
    if not projects_dir.is_dir():
        return []

    found = []
    for path in projects_dir.glob("*/*.jsonl"):
        if path.name.startswith("agent-"):
            continue
        try:
            stat = path.stat()
        except FileNotFoundError:
            continue
        if stat.st_size == 0:
            continue
        found.append(TranscriptInfo(path=path, modified_at=datetime.fromtimestamp(stat.st_mtime)))
    return found


def peek_transcript_cwd(path: Path, max_lines: int = CWD_PEEK_LINES) -> Optional[str]:
    """The session's working directory, from the first transcript lines that carry one."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for i, line in enumerate(f):
                if i >= max_lines:
                    break
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(entry, dict) and isinstance(entry.get("cwd"), str):
                    return entry["cwd"]
    except OSError as e:
        logger.debug(f"Could not read {path}: {e}")
    return None


def default_worker_command() -> list[str]:
    """How to re-invoke this CLI in a worker process."""
    return [sys.executable, "-m", "daily"]


class TriggerScheduler:
    """
    Usage:
        scheduler = TriggerScheduler(settings, registry, store)
        scheduler.on_session_start()   # auto-digest + timed auto-summarize
        scheduler.on_show()            # auto-summarize-on-show
    """

    def __init__(
        self,
        settings,
        registry: JobRegistry,
        store: ArchiveStore,
        clock: Callable[[], datetime] = datetime.now,
        worker_command: Optional[Sequence[str]] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.store = store
        self.clock = clock
        self.worker_command = list(worker_command or default_worker_command())

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def last_auto_summarize_check(self) -> Optional[datetime]:
        state = read_json(self.settings.state_file, default={})
        value = state.get(LAST_AUTO_SUMMARIZE_KEY) if isinstance(state, dict) else None
        if not value:
            return None
        try:
            return datetime.fromisoformat(value)
        except (TypeError, ValueError):
            return None

    def _record_auto_summarize_check(self, now: datetime) -> None:
        state = read_json(self.settings.state_file, default={})
        if not isinstance(state, dict):
            state = {}
        state[LAST_AUTO_SUMMARIZE_KEY] = now.isoformat(timespec="seconds")
        atomic_json_write(self.settings.state_file, state)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def on_session_start(self, now: Optional[datetime] = None) -> list[CreateResult]:
        """Enqueue auto-digest of earlier dates and, once a day, auto-summarize."""
        now = now or self.clock()
        results = self.enqueue_auto_digest(now)

        if should_run_timed_auto_summarize(
            now,
            self.settings.auto_summarize_enabled,
            self.settings.auto_summarize_time_of_day,
            self.last_auto_summarize_check(),
        ):
            results += self.enqueue_auto_summarize(now)
            self._record_auto_summarize_check(now)

        return results

    def on_show(self, now: Optional[datetime] = None) -> list[CreateResult]:
        """Enqueue auto-summarize when the dashboard opens, if enabled."""
        if not (self.settings.auto_summarize_enabled and self.settings.auto_summarize_on_show):
            return []
        return self.enqueue_auto_summarize(now or self.clock())

    # ------------------------------------------------------------------
    # Enqueueing
    # ------------------------------------------------------------------

    def _create(self, task_name: str, job_type: JobType, args: list[str], **kwargs) -> Optional[CreateResult]:
        try:
            return self.registry.create(task_name, job_type, self.worker_command + args, **kwargs)
        except SpawnError as e:
            logger.error(f"Could not start {job_type.value} job for {task_name}: {e}")
            return None

    def enqueue_auto_digest(self, now: datetime) -> list[CreateResult]:
        dates = plan_auto_digest(
            now,
            self.store.list_dates(),
            self.settings.auto_digest_enabled,
            self.settings.digest_time_of_day,
        )
        results = []
        for date in dates:
            logger.info(f"Auto-digest: {date} has undigested sessions")
            result = self._create(DIGEST_TASK_NAME, JobType.MANUAL, ["digest", "--date", date], date=date)
            if result is not None:
                results.append(result)
        return results

    def enqueue_auto_summarize(self, now: datetime) -> list[CreateResult]:
        picks = plan_auto_summarize(
            now,
            find_transcripts(self.settings.projects_dir),
            self.store.archived_transcript_paths(),
            self.settings.auto_summarize_inactive_minutes,
        )

        results = []
        for transcript in picks:
            cwd = peek_transcript_cwd(transcript.path)
            task_name = task_name_for(cwd, transcript.session_id)
            args = ["summarize", "--transcript", str(transcript.path), "--task-name", task_name, "--foreground"]
            if cwd:
                args += ["--cwd", cwd]
            logger.info(f"Auto-summarize: {transcript.path.name} idle since {transcript.modified_at:%H:%M}")
            result = self._create(
                task_name,
                JobType.AUTO_SUMMARIZE,
                args,
                cwd=Path(cwd) if cwd and os.path.isdir(cwd) else None,
                transcript_path=str(transcript.path),
            )
            if result is not None:
                results.append(result)
        return results
