"""
Tests for trigger decisions and enqueueing.

Tests:
- pure planners: auto-digest dates, auto-summarize candidates, once-a-day timing
- transcript discovery
- TriggerScheduler enqueues through the registry (dedup applies)
"""

import json
import os
from datetime import datetime, time, timedelta
from pathlib import Path

import pytest

from archive.models import DateEntry, SessionMetadata
from errors import SpawnError
from jobs.models import JobType
from triggers.scheduler import (
    DIGEST_TASK_NAME,
    TranscriptInfo,
    TriggerScheduler,
    find_transcripts,
    peek_transcript_cwd,
    plan_auto_digest,
    plan_auto_summarize,
    should_run_timed_auto_summarize,
    task_name_for,
)

NOW = datetime(2024, 1, 15, 14, 30, 0)
WORKER = ["daily-worker"]


def make_transcript(projects_dir, project, session_id, minutes_ago, cwd="/work/webapp", now=NOW):
    path = Path(projects_dir) / project / f"{session_id}.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"type": "user", "cwd": cwd, "message": {"role": "user", "content": "hi"}}) + "\n")
    stamp = (now - timedelta(minutes=minutes_ago)).timestamp()
    os.utime(path, (stamp, stamp))
    return path


@pytest.fixture
def scheduler(settings, registry, store, clock):
    return TriggerScheduler(settings, registry, store, clock=clock, worker_command=WORKER)


class TestTaskName:

    def test_project_and_session_prefix(self):
        assert task_name_for("/work/webapp", "abc12345-6789") == "webapp-abc12345"

    def test_no_cwd(self):
        assert task_name_for(None, "abc12345-6789") == "session-abc12345"


class TestPlanAutoDigest:

    DATES = [
        DateEntry("2024-01-15", 2, False),
        DateEntry("2024-01-14", 1, True),
        DateEntry("2024-01-13", 0, True),
        DateEntry("2024-01-12", 3, False),
    ]

    def test_previous_dates_with_sessions(self):
        assert plan_auto_digest(NOW, self.DATES, True, time(6, 0)) == ["2024-01-12", "2024-01-14"]

    def test_before_digest_time(self):
        assert plan_auto_digest(NOW.replace(hour=5), self.DATES, True, time(6, 0)) == []

    def test_disabled(self):
        assert plan_auto_digest(NOW, self.DATES, False, time(6, 0)) == []


class TestPlanAutoSummarize:

    def info(self, name, minutes_ago):
        return TranscriptInfo(Path(f"/p/x/{name}.jsonl"), NOW - timedelta(minutes=minutes_ago))

    def test_idle_threshold(self):
        idle = self.info("idle", 45)
        active = self.info("active", 10)
        assert plan_auto_summarize(NOW, [idle, active], set(), 30) == [idle]

    def test_only_today_and_yesterday(self):
        yesterday = self.info("y", 60 * 20)
        old = self.info("old", 60 * 24 * 3)
        assert plan_auto_summarize(NOW, [yesterday, old], set(), 30) == [yesterday]

    def test_archived_are_skipped(self):
        done = self.info("done", 45)
        assert plan_auto_summarize(NOW, [done], {"/p/x/done.jsonl"}, 30) == []

    def test_limit_oldest_first(self):
        infos = [self.info(f"s{i}", 40 + i * 10) for i in range(5)]
        picked = plan_auto_summarize(NOW, infos, set(), 30)
        assert [p.session_id for p in picked] == ["s4", "s3", "s2"]


class TestTimedAutoSummarize:

    def test_first_check_after_trigger_time(self):
        assert should_run_timed_auto_summarize(NOW, True, time(6, 0), None)

    def test_before_trigger_time(self):
        assert not should_run_timed_auto_summarize(NOW.replace(hour=5), True, time(6, 0), None)

    def test_once_per_day(self):
        checked = NOW.replace(hour=7)
        assert not should_run_timed_auto_summarize(NOW, True, time(6, 0), checked)

    def test_check_before_trigger_does_not_count(self):
        checked = NOW.replace(hour=5)
        assert should_run_timed_auto_summarize(NOW, True, time(6, 0), checked)

    def test_new_day(self):
        checked = NOW - timedelta(days=1)
        assert should_run_timed_auto_summarize(NOW, True, time(6, 0), checked)

    def test_disabled(self):
        assert not should_run_timed_auto_summarize(NOW, False, time(6, 0), None)


class TestTranscriptScan:

    def test_find_transcripts(self, tmp_path):
        make_transcript(tmp_path, "-work-webapp", "abc", 45)
        make_transcript(tmp_path, "-work-webapp", "agent-123", 45)
        (tmp_path / "-work-webapp" / "empty.jsonl").touch()

        found = find_transcripts(tmp_path)

        assert [t.session_id for t in found] == ["abc"]
        assert found[0].modified_at == NOW - timedelta(minutes=45)

    def test_missing_projects_dir(self, tmp_path):
        assert find_transcripts(tmp_path / "nope") == []

    def test_peek_cwd(self, tmp_path):
        path = make_transcript(tmp_path, "p", "abc", 45, cwd="/work/api")
        assert peek_transcript_cwd(path) == "/work/api"
        assert peek_transcript_cwd(tmp_path / "missing.jsonl") is None


class TestSchedulerAutoSummarize:

    def test_enqueues_idle_transcripts(self, scheduler, settings, supervisor):
        idle = make_transcript(settings.projects_dir, "-work-webapp", "abc12345-0000", 45)
        make_transcript(settings.projects_dir, "-work-webapp", "def67890-0000", 10)

        results = scheduler.on_show()

        assert len(results) == 1
        job = results[0].job
        assert job.job_type == JobType.AUTO_SUMMARIZE
        assert job.task_name == "webapp-abc12345"
        assert job.transcript_path == str(idle)
        args = supervisor.spawned[0]["args"]
        assert args[:3] == ["summarize", "--transcript", str(idle)]
        assert "--foreground" in args
        assert args[-2:] == ["--cwd", "/work/webapp"]

    def test_running_session_end_job_blocks_duplicate(self, scheduler, settings, registry, supervisor):
        make_transcript(settings.projects_dir, "-work-webapp", "abc12345-0000", 45)
        registry.create("webapp-abc12345", JobType.SESSION_END, WORKER)

        [result] = scheduler.on_show()

        assert result.duplicate
        assert len(supervisor.spawned) == 1

    def test_archived_transcript_is_skipped(self, scheduler, settings, store):
        path = make_transcript(settings.projects_dir, "-work-webapp", "abc12345-0000", 45)
        store.write_session("2024-01-15", "14_00-x", "done", SessionMetadata(transcript_path=str(path)))
        assert scheduler.on_show() == []

    def test_on_show_disabled(self, scheduler, settings):
        make_transcript(settings.projects_dir, "-work-webapp", "abc12345-0000", 45)
        settings.auto_summarize_on_show = False
        assert scheduler.on_show() == []

    def test_spawn_failure_is_logged_not_raised(self, scheduler, settings, supervisor):
        make_transcript(settings.projects_dir, "-work-webapp", "abc12345-0000", 45)
        supervisor.fail_with = SpawnError("no python")
        assert scheduler.on_show() == []


class TestSchedulerSessionStart:

    def test_auto_digest_previous_dates(self, scheduler, store, supervisor):
        store.write_session("2024-01-14", "10_00-a", "x")
        store.write_session("2024-01-15", "10_00-b", "x")

        results = scheduler.on_session_start()

        digest_jobs = [r.job for r in results if r.job.task_name == DIGEST_TASK_NAME]
        assert [j.date for j in digest_jobs] == ["2024-01-14"]
        assert supervisor.spawned[0]["args"] == ["digest", "--date", "2024-01-14"]

    def test_auto_digest_dedup(self, scheduler, store, supervisor):
        store.write_session("2024-01-14", "10_00-a", "x")
        scheduler.on_session_start()
        results = scheduler.on_session_start()
        assert results[0].duplicate
        assert len(supervisor.spawned) == 1

    def test_timed_auto_summarize_once_per_day(self, scheduler, settings, clock):
        make_transcript(settings.projects_dir, "-work-webapp", "abc12345-0000", 45)

        first = scheduler.on_session_start()
        assert scheduler.last_auto_summarize_check() == clock.now
        assert [r.job.job_type for r in first] == [JobType.AUTO_SUMMARIZE]

        make_transcript(settings.projects_dir, "-work-api", "ffff0000-0000", 45, cwd="/work/api")
        assert scheduler.on_session_start() == []

    def test_corrupt_state_file(self, scheduler, settings):
        settings.state_file.parent.mkdir(parents=True, exist_ok=True)
        settings.state_file.write_text("{nope")
        assert scheduler.last_auto_summarize_check() is None
