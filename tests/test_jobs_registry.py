"""
Tests for the job registry.

Tests:
- create persists a Running record and hands the job id to the worker
- (date, task_name) dedup guard, including concurrent creates
- terminal states are immutable
- read-time reconciliation of vanished processes
- kill semantics
- cleanup age cutoff and dry run
"""

import json
import threading
from datetime import datetime, timedelta

import pytest

from errors import JobNotFoundError, JobNotRunningError, SpawnError
from jobs.models import Job, JobState, JobType, REASON_KILLED, REASON_VANISHED
from jobs.registry import JOB_ID_ENV, JOBS_DIR_ENV, JobRegistry, generate_job_id, sanitize_name
from jobs.supervisor import TerminateResult


COMMAND = ["daily", "summarize", "--foreground"]


class TestJobIds:

    def test_sanitize_name(self):
        assert sanitize_name("Fix Bug/Login!") == "fix-bug-login-"
        assert len(sanitize_name("x" * 50)) == 20

    def test_sanitize_name_is_ascii(self):
        assert sanitize_name("Café-1a2b") == "caf--1a2b"
        assert sanitize_name("日本") == "--"

    def test_id_sorts_by_time(self):
        early = generate_job_id("task", datetime(2024, 1, 15, 9, 0, 0))
        late = generate_job_id("task", datetime(2024, 1, 15, 10, 0, 0))
        assert early.startswith("20240115-090000-task-")
        assert early < late

    def test_ids_do_not_collide(self):
        now = datetime(2024, 1, 15, 9, 0, 0)
        ids = {generate_job_id("task", now) for _ in range(50)}
        assert len(ids) == 50


class TestCreate:

    def test_persists_running_record(self, registry, supervisor):
        result = registry.create("fix-bug", JobType.SESSION_END, COMMAND, date="2024-01-15")

        assert result.created
        job = result.job
        assert job.status == JobState.RUNNING
        assert job.pid == supervisor.spawned[0]["pid"]
        data = json.loads(registry.job_path(job.id).read_text())
        assert data["status"] == "running"
        assert data["task_name"] == "fix-bug"
        assert data["date"] == "2024-01-15"

    def test_worker_env_carries_job_id(self, registry, supervisor):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        env = supervisor.spawned[0]["env"]
        assert env[JOB_ID_ENV] == job.id
        assert env[JOBS_DIR_ENV] == str(registry.jobs_dir)

    def test_date_defaults_to_today(self, registry):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        assert job.date == "2024-01-15"

    def test_duplicate_key_is_not_spawned(self, registry, supervisor):
        first = registry.create("fix-bug", JobType.SESSION_END, COMMAND, date="2024-01-15")
        second = registry.create("fix-bug", JobType.AUTO_SUMMARIZE, COMMAND, date="2024-01-15")

        assert second.duplicate
        assert second.job.id == first.job.id
        assert len(supervisor.spawned) == 1
        assert len(registry.list(include_all=True)) == 1

    def test_same_task_other_date_is_allowed(self, registry):
        registry.create("digest", JobType.MANUAL, COMMAND, date="2024-01-14")
        result = registry.create("digest", JobType.MANUAL, COMMAND, date="2024-01-13")
        assert result.created

    def test_finished_job_does_not_block(self, registry, supervisor):
        first = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        registry.complete(first.id)
        supervisor.exit(first.pid)
        assert registry.create("fix-bug", JobType.MANUAL, COMMAND).created

    def test_vanished_job_does_not_block(self, registry, supervisor):
        first = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        supervisor.exit(first.pid)
        assert registry.create("fix-bug", JobType.MANUAL, COMMAND).created
        assert registry.get(first.id).error == REASON_VANISHED

    def test_spawn_failure_writes_no_record(self, registry, supervisor):
        supervisor.fail_with = SpawnError("No such file: daily")
        with pytest.raises(SpawnError):
            registry.create("fix-bug", JobType.MANUAL, COMMAND)
        assert registry.list(include_all=True) == []
        assert list(registry.jobs_dir.glob("*.json")) == []

    def test_non_ascii_task_name_is_recorded(self, registry, supervisor):
        result = registry.create("café-1a2b3c4d", JobType.SESSION_END, COMMAND)

        assert result.created
        assert result.job.id.isascii()
        assert len(supervisor.spawned) == 1
        [listed] = registry.list()
        assert listed.id == result.job.id
        assert listed.task_name == "café-1a2b3c4d"

    def test_failed_save_terminates_worker(self, registry, supervisor, monkeypatch):
        def broken_save(job):
            raise OSError("disk full")

        monkeypatch.setattr(registry, "_save", broken_save)

        with pytest.raises(OSError):
            registry.create("fix-bug", JobType.MANUAL, COMMAND)

        pid = supervisor.spawned[0]["pid"]
        assert supervisor.terminated == [pid]
        assert not supervisor.is_alive(pid)
        assert list(registry.jobs_dir.glob("*.json")) == []

    def test_concurrent_creates_yield_one_job(self, settings, supervisor, clock):
        results = []

        def create():
            registry = JobRegistry(settings.jobs_dir, supervisor=supervisor, clock=clock)
            results.append(registry.create("fix-bug", JobType.SESSION_END, COMMAND, date="2024-01-15"))

        threads = [threading.Thread(target=create) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(r.created for r in results) == 1
        assert len({r.job.id for r in results}) == 1
        assert len(supervisor.spawned) == 1


class TestTransitions:

    def test_complete(self, registry, clock):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        clock.now += timedelta(seconds=90)

        assert registry.complete(job.id) is True
        done = registry.get(job.id)
        assert done.status == JobState.COMPLETED
        assert done.finished_at == clock.now
        assert done.elapsed_human() == "1m 30s"

    def test_fail_records_reason(self, registry):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        registry.fail(job.id, "claude exited with code 1")
        failed = registry.get(job.id)
        assert failed.status_type == "failed"
        assert failed.status_label == "Failed: claude exited with code 1"

    def test_terminal_state_is_immutable(self, registry):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        registry.complete(job.id)

        assert registry.fail(job.id, "late failure") is False
        assert registry.complete(job.id) is False
        assert registry.get(job.id).status == JobState.COMPLETED

    def test_unknown_job(self, registry):
        with pytest.raises(JobNotFoundError):
            registry.complete("20240115-000000-nope-abcdef")

    def test_path_like_id_is_not_found(self, registry):
        with pytest.raises(JobNotFoundError):
            registry.get("../../etc/passwd")


class TestReconciliation:

    def test_list_reports_vanished_without_writing(self, registry, supervisor):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        supervisor.exit(job.pid)

        assert registry.list() == []
        [reported] = registry.list(include_all=True)
        assert reported.status_label == f"Failed: {REASON_VANISHED}"
        # Read-time only
        assert json.loads(registry.job_path(job.id).read_text())["status"] == "running"

    def test_reconcile_persists(self, registry, supervisor):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        supervisor.exit(job.pid)

        fixed = registry.reconcile()
        assert [j.id for j in fixed] == [job.id]
        data = json.loads(registry.job_path(job.id).read_text())
        assert data["status"] == "failed"
        assert data["error"] == REASON_VANISHED

    def test_list_newest_first(self, registry, clock):
        a = registry.create("a", JobType.MANUAL, COMMAND).job
        clock.now += timedelta(minutes=1)
        b = registry.create("b", JobType.MANUAL, COMMAND).job
        assert [j.id for j in registry.list()] == [b.id, a.id]

    def test_unreadable_records_are_skipped(self, registry):
        registry.create("a", JobType.MANUAL, COMMAND)
        (registry.jobs_dir / "garbage.json").write_text("{oops")
        assert len(registry.list(include_all=True)) == 1


class TestKill:

    def test_kill_running_job(self, registry, supervisor):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND, date="2024-01-15").job

        assert registry.kill(job.id) == TerminateResult.SIGNALED
        assert supervisor.terminated == [job.pid]
        killed = registry.get(job.id)
        assert killed.status_type == "failed"
        assert killed.error == REASON_KILLED
        assert "Killed by user" in registry.log_sink(job.id).read()

    def test_kill_twice_is_rejected_without_side_effects(self, registry):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        registry.kill(job.id)

        record_before = registry.job_path(job.id).read_text()
        log_before = registry.log_sink(job.id).read()

        with pytest.raises(JobNotRunningError) as exc:
            registry.kill(job.id)
        assert "already finished" in str(exc.value)
        assert registry.job_path(job.id).read_text() == record_before
        assert registry.log_sink(job.id).read() == log_before

    def test_kill_completed_job(self, registry):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        registry.complete(job.id)
        with pytest.raises(JobNotRunningError):
            registry.kill(job.id)
        assert registry.get(job.id).status == JobState.COMPLETED

    def test_kill_vanished_job(self, registry, supervisor):
        job = registry.create("fix-bug", JobType.MANUAL, COMMAND).job
        supervisor.exit(job.pid)
        with pytest.raises(JobNotRunningError):
            registry.kill(job.id)
        assert supervisor.terminated == []


class TestCleanup:

    def _finished_job(self, registry, clock, task, days_ago, status=JobState.COMPLETED):
        clock.now = datetime(2024, 1, 15, 12, 0, 0) - timedelta(days=days_ago)
        job = registry.create(task, JobType.MANUAL, COMMAND).job
        if status == JobState.COMPLETED:
            registry.complete(job.id)
        else:
            registry.fail(job.id, "boom")
        registry.supervisor.exit(job.pid)
        return job

    def test_removes_only_old_terminal_jobs(self, registry, clock):
        old = self._finished_job(registry, clock, "old", days_ago=10)
        recent = self._finished_job(registry, clock, "recent", days_ago=2)
        clock.now = datetime(2024, 1, 15, 12, 0, 0)

        removed = registry.cleanup(older_than_days=7)

        assert [j.id for j in removed] == [old.id]
        assert not registry.job_path(old.id).exists()
        assert not registry.log_path(old.id).exists()
        assert registry.job_path(recent.id).exists()

    def test_dry_run_matches_real_run(self, registry, clock):
        old = self._finished_job(registry, clock, "old", days_ago=10, status=JobState.FAILED)
        self._finished_job(registry, clock, "recent", days_ago=2)
        clock.now = datetime(2024, 1, 15, 12, 0, 0)

        preview = registry.cleanup(older_than_days=7, dry_run=True)
        assert [j.id for j in preview] == [old.id]
        assert registry.job_path(old.id).exists()

        removed = registry.cleanup(older_than_days=7)
        assert [j.id for j in removed] == [j.id for j in preview]

    def test_never_removes_running_jobs(self, registry, clock):
        clock.now = datetime(2024, 1, 1, 12, 0, 0)
        running = registry.create("long", JobType.MANUAL, COMMAND).job
        clock.now = datetime(2024, 1, 15, 12, 0, 0)

        assert registry.cleanup(older_than_days=7) == []
        assert registry.job_path(running.id).exists()

    def test_old_vanished_job_is_removed(self, registry, supervisor, clock):
        clock.now = datetime(2024, 1, 1, 12, 0, 0)
        job = registry.create("ghost", JobType.MANUAL, COMMAND).job
        supervisor.exit(job.pid)
        clock.now = datetime(2024, 1, 15, 12, 0, 0)

        assert [j.id for j in registry.cleanup(older_than_days=7, dry_run=True)] == [job.id]
        assert [j.id for j in registry.cleanup(older_than_days=7)] == [job.id]


class TestJobModel:

    def test_round_trip(self, tmp_path):
        job = Job(
            id="20240115-143000-fix-bug-abc123",
            task_name="fix-bug",
            job_type=JobType.SESSION_END,
            pid=123,
            date="2024-01-15",
            log_path=tmp_path / "x.log",
            started_at=datetime(2024, 1, 15, 14, 30),
            transcript_path="/tmp/t.jsonl",
            command=["daily", "summarize"],
        )
        assert Job.from_dict(job.to_dict()) == job

    def test_elapsed_human(self, tmp_path):
        job = Job(
            id="x", task_name="t", job_type=JobType.MANUAL, pid=1, date="2024-01-15",
            log_path=tmp_path / "x.log", started_at=datetime(2024, 1, 15, 10, 0, 0),
        )
        assert job.elapsed_human(datetime(2024, 1, 15, 10, 0, 42)) == "42s"
        assert job.elapsed_human(datetime(2024, 1, 15, 12, 5, 0)) == "2h 5m"
