"""
Dashboard API

Read-mostly JSON API behind the archive viewer (`daily show`). Opening the
viewer is also a trigger point: app startup runs the auto-summarize-on-show
check.

Every response uses the same envelope:

    {"success": true, "data": {...}}
    {"success": false, "error": "Job not found: ..."}
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse

from archive.models import DailyDigest, SessionArchive
from archive.store import ArchiveStore, is_valid_date
from config import Settings, get_settings
from errors import DailyError, JobNotFoundError, JobNotRunningError
from jobs.models import Job, JobType
from jobs.registry import JobRegistry
from triggers.scheduler import DIGEST_TASK_NAME, TriggerScheduler

logger = logging.getLogger("daily.api")

SUMMARY_PREVIEW_CHARS = 200
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


# =============================================================================
# Envelope
# =============================================================================

def ok(data: Any) -> dict:
    return {"success": True, "data": data}


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# =============================================================================
# DTOs
# =============================================================================

def job_dto(job: Job, now: Optional[datetime] = None) -> dict:
    return {
        "id": job.id,
        "pid": job.pid,
        "task_name": job.task_name,
        "job_type": job.job_type.value,
        "date": job.date,
        "status": job.status_label,
        "status_type": job.status_type,
        "error": job.error,
        "started_at": job.started_at.strftime(TIME_FORMAT),
        "finished_at": job.finished_at.strftime(TIME_FORMAT) if job.finished_at else None,
        "elapsed": job.elapsed_human(now),
    }


def session_brief(session: SessionArchive) -> dict:
    summary = session.summary_text()
    if len(summary) > SUMMARY_PREVIEW_CHARS:
        summary = summary[:SUMMARY_PREVIEW_CHARS] + "..."
    return {"name": session.name, "title": session.title, "summary_preview": summary}


def session_detail(session: SessionArchive) -> dict:
    return {
        "name": session.name,
        "title": session.title,
        "date": session.date,
        "metadata": session.metadata.to_dict(),
        "content": session.content,
    }


def digest_dto(digest: DailyDigest) -> dict:
    return {
        "date": digest.date,
        "overview": digest.overview,
        "session_details": digest.session_details,
        "insights": digest.insights,
        "skills": digest.skills,
        "commands": digest.commands,
        "reflections": digest.reflections,
        "tomorrow_focus": digest.tomorrow_focus,
        "sessions": digest.sessions,
        "session_count": len(digest.sessions),
        "digested_at": digest.digested_at.isoformat(timespec="seconds") if digest.digested_at else None,
        "raw_content": digest.to_markdown(),
    }


# =============================================================================
# App
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    registry: Optional[JobRegistry] = None,
    store: Optional[ArchiveStore] = None,
    scheduler: Optional[TriggerScheduler] = None,
) -> FastAPI:
    """
    Build the dashboard app. Components default to ones built from settings;
    tests pass their own.
    """
    settings = settings or get_settings()
    store = store or ArchiveStore(settings.storage_path)
    registry = registry or JobRegistry(settings.jobs_dir)
    scheduler = scheduler or TriggerScheduler(settings, registry, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        try:
            started = [r for r in scheduler.on_show() if r.created]
            if started:
                logger.info(f"Started {len(started)} auto-summarize job(s) on show")
        except Exception as e:
            # The viewer must open even if the scan fails
            logger.error(f"Auto-summarize on show failed: {e}", exc_info=True)
        yield

    app = FastAPI(title="daily", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(DailyError)
    async def daily_error_handler(request: Request, exc: DailyError):
        if isinstance(exc, JobNotFoundError):
            return error_response(404, str(exc))
        if isinstance(exc, JobNotRunningError):
            return error_response(409, str(exc))
        logger.error(f"{request.url.path}: {exc}")
        return error_response(500, str(exc))

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return error_response(400, str(exc))

    # --- Health ---

    @app.get("/api/health")
    def health():
        return ok({"status": "ok"})

    # --- Archive ---

    @app.get("/api/dates")
    def list_dates():
        return ok([entry.to_dict() for entry in store.list_dates()])

    @app.get("/api/dates/{date}")
    def get_date(date: str):
        if not is_valid_date(date):
            return error_response(400, f"Invalid date: {date}")
        digest = store.read_digest(date)
        sessions = store.read_sessions(date)
        if digest is None and not sessions:
            return error_response(404, f"No archive for {date}")
        return ok({
            "date": date,
            "digest": digest_dto(digest) if digest else None,
            "sessions": [session_brief(s) for s in sessions],
        })

    @app.get("/api/dates/{date}/sessions")
    def list_sessions(date: str):
        return ok([session_brief(s) for s in store.read_sessions(date)])

    @app.get("/api/dates/{date}/sessions/{name}")
    def get_session(date: str, name: str):
        try:
            session = store.read_session(date, name)
        except FileNotFoundError:
            return error_response(404, f"Session not found: {date}/{name}")
        return ok(session_detail(session))

    # --- Jobs ---

    @app.get("/api/jobs")
    def list_jobs(include_all: bool = Query(False, alias="all", description="Include finished jobs")):
        now = datetime.now()
        return ok([job_dto(job, now) for job in registry.list(include_all=include_all)])

    @app.get("/api/jobs/{job_id}")
    def get_job(job_id: str):
        return ok(job_dto(registry.get(job_id)))

    @app.get("/api/jobs/{job_id}/log")
    def get_job_log(job_id: str, tail: Optional[int] = Query(None, ge=1)):
        registry.get(job_id)  # 404 for unknown jobs
        try:
            content = registry.log_sink(job_id).read(tail=tail)
        except FileNotFoundError:
            content = ""
        return ok({"id": job_id, "content": content})

    @app.post("/api/jobs/{job_id}/kill")
    def kill_job(job_id: str):
        registry.kill(job_id)
        return ok(job_dto(registry.get(job_id)))

    # --- Digest ---

    @app.post("/api/digest/{date}")
    def trigger_digest(date: str, force: bool = False):
        if not is_valid_date(date):
            return error_response(400, f"Invalid date: {date}")

        session_count = len(store.session_names(date))
        if session_count == 0 and not (force and store.read_digest(date) is not None):
            return ok({"message": f"Nothing to digest for {date}", "session_count": 0, "created": False, "job": None})

        args = ["digest", "--date", date] + (["--force"] if force else [])
        result = registry.create(
            DIGEST_TASK_NAME, JobType.MANUAL, scheduler.worker_command + args, date=date
        )

        message = (
            f"Digest started for {date} ({session_count} sessions)"
            if result.created else f"Digest for {date} already in progress"
        )
        return ok({
            "message": message,
            "session_count": session_count,
            "created": result.created,
            "job": job_dto(result.job),
        })

    return app
