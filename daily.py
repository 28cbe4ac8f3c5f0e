#!/usr/bin/env python3
"""
daily: archive AI coding sessions and digest them per day.

Usage:
    daily hook session-end < payload.json     # Editor SessionEnd hook
    daily hook session-start < payload.json   # Editor SessionStart hook
    daily summarize --transcript PATH         # Archive one session (background)
    daily digest yesterday                    # Consolidate a date into daily.md
    daily jobs list --all                     # Background jobs
    daily jobs log <id> --follow
    daily jobs kill <id>
    daily jobs cleanup --days 7 --dry-run
    daily extract-skill --date 2024-01-15     # Draft a skill from a session
    daily dates                               # Archived dates
    daily show                                # Dashboard API

Workers re-enter this module as `python -m daily ... --foreground`, with
DAILY_JOB_ID in their environment so they can finalize their job record.

Exit codes: 0 success, 1 unexpected error, 2 usage, then the codes in
errors.py (10 spawn, 11 summarizer, 12 job not found, 13 job not running,
14 archive write, 15 hook input, 16 config).
"""

import argparse
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from archive.digest import DigestConsolidator
from archive.store import ArchiveStore, is_valid_date
from config import Settings, get_settings
from errors import ConfigError, DailyError
from hooks.gateway import HookGateway
from hooks.input import SESSION_END, SESSION_START
from jobs.models import JobType
from jobs.registry import JobRegistry
from jobs.worker import current_job_id, registry_for_worker, run_as_job
from summarizer.engine import SummarizerEngine, command_name, skill_name
from triggers.scheduler import DIGEST_TASK_NAME, TriggerScheduler, default_worker_command, task_name_for

logger = logging.getLogger("daily.cli")

LOG_FORMAT = '%(asctime)s [%(name)s] %(levelname)s: %(message)s'
PREVIEW_LINES = 20

HOOK_EVENTS = {
    "session-start": SESSION_START,
    "session-end": SESSION_END,
}


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stderr,
    )


def resolve_date(when: Optional[str], date: Optional[str], now: Optional[datetime] = None) -> str:
    """today / yesterday / YYYY-MM-DD; --date wins over the positional form."""
    now = now or datetime.now()
    value = date or when or "today"
    lowered = value.lower()
    if lowered == "today":
        return now.strftime("%Y-%m-%d")
    if lowered in ("yesterday", "yest"):
        return (now - timedelta(days=1)).strftime("%Y-%m-%d")
    if not is_valid_date(value):
        raise ValueError(f"Invalid date: {value!r} (expected today, yesterday or YYYY-MM-DD)")
    return value


def _registry(settings: Settings) -> JobRegistry:
    return JobRegistry(settings.jobs_dir)


def _store(settings: Settings) -> ArchiveStore:
    return ArchiveStore(settings.storage_path)


def _worker_registry(settings: Settings) -> tuple[Optional[JobRegistry], Optional[str]]:
    """The registry and job id this process should finalize, if it is a job worker."""
    job_id = current_job_id()
    if job_id is None:
        return None, None
    return registry_for_worker(settings.jobs_dir), job_id


# =============================================================================
# Commands
# =============================================================================

def cmd_hook(args, settings: Settings) -> int:
    try:
        registry = _registry(settings)
        scheduler = TriggerScheduler(settings, registry, _store(settings))
    except OSError as e:
        logger.error(f"Cannot open jobs directory, skipping hook: {e}")
        return 0
    return HookGateway(settings, registry, scheduler).run(HOOK_EVENTS[args.event], sys.stdin)


def cmd_summarize(args, settings: Settings) -> int:
    transcript = Path(args.transcript).expanduser()
    task_name = args.task_name or task_name_for(args.cwd, transcript.stem)

    if not args.foreground:
        command = default_worker_command() + [
            "summarize", "--transcript", str(transcript), "--task-name", task_name, "--foreground",
        ]
        if args.cwd:
            command += ["--cwd", args.cwd]
        result = _registry(settings).create(
            task_name, JobType.MANUAL, command, transcript_path=str(transcript)
        )
        if result.duplicate:
            print(f"Already in progress: {result.job.id}")
        else:
            print(f"Started job {result.job.id} (PID {result.job.pid})")
            print(f"  Log: daily jobs log {result.job.id} --follow")
        return 0

    engine = SummarizerEngine.from_settings(settings)
    store = _store(settings)

    def work():
        archive = engine.summarize_session(transcript, task_name, args.cwd)
        archive = store.save_session(archive)
        print(f"Archived {archive.date}/{archive.name}.md")
        return archive

    registry, job_id = _worker_registry(settings)
    run_as_job(registry, job_id, work)
    return 0


def cmd_digest(args, settings: Settings) -> int:
    try:
        date = resolve_date(args.when, args.date)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    store = _store(settings)

    if args.background:
        session_count = len(store.session_names(date))
        if session_count == 0 and not args.force:
            print(f"Nothing to digest for {date}")
            return 0
        command = default_worker_command() + ["digest", "--date", date]
        if args.force:
            command.append("--force")
        result = _registry(settings).create(DIGEST_TASK_NAME, JobType.MANUAL, command, date=date)
        if result.duplicate:
            print(f"Digest for {date} already in progress: {result.job.id}")
        else:
            print(f"Started digest of {date} ({session_count} sessions): job {result.job.id}")
        return 0

    registry, job_id = _worker_registry(settings)
    if job_id is None:
        # A plain foreground run yields to a background digest of the same date
        running = _registry(settings).running_for(date, DIGEST_TASK_NAME)
        if running is not None:
            print(f"Digest for {date} already in progress: {running.id}")
            return 0

    consolidator = DigestConsolidator(store, SummarizerEngine.from_settings(settings))
    result = run_as_job(registry, job_id, lambda: consolidator.run(date, force=args.force))
    print(result.message)
    return 0


def cmd_jobs_list(args, settings: Settings) -> int:
    jobs = _registry(settings).list(include_all=args.all)
    if not jobs:
        print("No jobs." if args.all else "No running jobs.")
        return 0

    now = datetime.now()
    print(f"{'ID':<42} {'TYPE':<15} {'ELAPSED':>8}  {'STATUS':<20} TASK")
    for job in jobs:
        print(
            f"{job.id:<42} {job.job_type.value:<15} {job.elapsed_human(now):>8}  "
            f"{job.status_label:<20} {job.task_name}"
        )
    return 0


def cmd_jobs_log(args, settings: Settings) -> int:
    registry = _registry(settings)
    registry.get(args.job_id)  # JobNotFoundError for unknown ids
    sink = registry.log_sink(args.job_id)

    if args.follow:
        try:
            for chunk in sink.follow(lambda: registry.get(args.job_id).is_terminal):
                sys.stdout.write(chunk)
                sys.stdout.flush()
        except KeyboardInterrupt:
            pass
        return 0

    try:
        content = sink.read(tail=args.tail)
    except FileNotFoundError:
        print("(no log output yet)")
        return 0
    sys.stdout.write(content if content.endswith("\n") or not content else content + "\n")
    return 0


def cmd_jobs_kill(args, settings: Settings) -> int:
    _registry(settings).kill(args.job_id)
    print(f"Sent SIGTERM to job {args.job_id}")
    return 0


def cmd_jobs_cleanup(args, settings: Settings) -> int:
    days = args.days if args.days is not None else settings.job_retention_days
    removed = _registry(settings).cleanup(older_than_days=days, dry_run=args.dry_run)

    verb = "Would remove" if args.dry_run else "Removed"
    if not removed:
        print(f"No finished jobs older than {days} days.")
        return 0
    for job in removed:
        print(f"  {job.id}  {job.status_label}  {job.task_name}")
    print(f"{verb} {len(removed)} job(s).")
    return 0


def _extract(args, settings: Settings, kind: str) -> int:
    try:
        date = resolve_date(None, args.date)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    store = _store(settings)
    if args.session:
        try:
            content = store.read_session(date, args.session).to_markdown()
        except FileNotFoundError:
            print(f"Error: Session not found: {date}/{args.session}", file=sys.stderr)
            return 1
    else:
        names = store.session_names(date)
        digest = store.read_digest(date)
        if names:
            content = store.read_session(date, names[-1]).to_markdown()
        elif digest is not None:
            content = digest.to_markdown()
        else:
            print(f"Error: No sessions found for {date}", file=sys.stderr)
            return 1

    engine = SummarizerEngine.from_settings(settings)
    if kind == "skill":
        markdown = engine.extract_skill(content, hint=args.hint)
        slug = skill_name(markdown)
    else:
        markdown = engine.extract_command(content, hint=args.hint)
        slug = command_name(markdown)

    path = store.write_pending_skill(date, slug, markdown, kind=kind)
    print(f"Extracted {kind} to: {path}")
    print("-" * 50)
    lines = markdown.splitlines()
    print("\n".join(lines[:PREVIEW_LINES]))
    if len(lines) > PREVIEW_LINES:
        print("...")
    print("-" * 50)
    return 0


def cmd_extract_skill(args, settings: Settings) -> int:
    return _extract(args, settings, "skill")


def cmd_extract_command(args, settings: Settings) -> int:
    return _extract(args, settings, "command")


def cmd_dates(args, settings: Settings) -> int:
    entries = _store(settings).list_dates()
    if not entries:
        print("No archives yet.")
        return 0
    for entry in entries:
        digest = "digest" if entry.has_digest else "      "
        print(f"{entry.date}  {digest}  {entry.session_count} session(s)")
    return 0


def cmd_show(args, settings: Settings) -> int:
    import uvicorn
    from api.dashboard import create_app

    print(f"Dashboard API on http://{args.host}:{args.port}/api/dates")
    uvicorn.run(create_app(settings), host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


# =============================================================================
# Argument parsing
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="daily", description="Archive and digest AI coding sessions")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("hook", help="Handle an editor lifecycle hook (payload on stdin)")
    p.add_argument("event", choices=sorted(HOOK_EVENTS))
    p.set_defaults(func=cmd_hook)

    p = sub.add_parser("summarize", help="Summarize a transcript into a session archive")
    p.add_argument("--transcript", required=True, help="Path to the session's JSONL transcript")
    p.add_argument("--task-name", help="Job task name (default: <project>-<session id prefix>)")
    p.add_argument("--cwd", help="Working directory of the session")
    p.add_argument("--foreground", action="store_true", help="Run here instead of as a background job")
    p.set_defaults(func=cmd_summarize)

    p = sub.add_parser("digest", help="Consolidate a date's sessions into daily.md")
    p.add_argument("when", nargs="?", help="today, yesterday, or YYYY-MM-DD")
    p.add_argument("--date", help="Date to digest (YYYY-MM-DD)")
    p.add_argument("--background", action="store_true", help="Run as a background job")
    p.add_argument("--force", action="store_true", help="Regenerate an existing digest")
    p.set_defaults(func=cmd_digest)

    jobs = sub.add_parser("jobs", help="Manage background jobs")
    jobs_sub = jobs.add_subparsers(dest="jobs_command", required=True)

    p = jobs_sub.add_parser("list", help="List running jobs")
    p.add_argument("--all", action="store_true", help="Include finished jobs")
    p.set_defaults(func=cmd_jobs_list)

    p = jobs_sub.add_parser("log", help="Show a job's log")
    p.add_argument("job_id")
    p.add_argument("--tail", type=int, help="Only the last N lines")
    p.add_argument("--follow", "-f", action="store_true", help="Keep printing until the job finishes")
    p.set_defaults(func=cmd_jobs_log)

    p = jobs_sub.add_parser("kill", help="Terminate a running job")
    p.add_argument("job_id")
    p.set_defaults(func=cmd_jobs_kill)

    p = jobs_sub.add_parser("cleanup", help="Remove old finished jobs")
    p.add_argument("--days", type=int, help="Age cutoff in days (default: DAILY_JOB_RETENTION_DAYS)")
    p.add_argument("--dry-run", action="store_true", help="Only report what would be removed")
    p.set_defaults(func=cmd_jobs_cleanup)

    for name, func, what in (
        ("extract-skill", cmd_extract_skill, "a reusable skill"),
        ("extract-command", cmd_extract_command, "a slash command"),
    ):
        p = sub.add_parser(name, help=f"Draft {what} from an archived session")
        p.add_argument("--date", help="Archive date (default: today)")
        p.add_argument("--session", help="Session name (default: latest)")
        p.add_argument("--hint", help="What to focus the extraction on")
        p.set_defaults(func=func)

    p = sub.add_parser("dates", help="List archived dates")
    p.set_defaults(func=cmd_dates)

    p = sub.add_parser("show", help="Serve the dashboard API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8765)
    p.set_defaults(func=cmd_show)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging()
        if args.command == "hook":
            logger.error(f"Invalid configuration, skipping hook: {e}")
            return 0
        err = ConfigError(f"Invalid configuration: {e}")
        print(f"Error: {err}", file=sys.stderr)
        return err.exit_code

    setup_logging(settings.log_level)

    try:
        return args.func(args, settings)
    except DailyError as e:
        print(f"Error: {e}", file=sys.stderr)
        return e.exit_code
    except KeyboardInterrupt:
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
