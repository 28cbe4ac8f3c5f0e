"""
Tests for the archive models and store.

Tests:
- frontmatter parsing and session/digest markdown round trips
- session naming: slugify, suffixes, names consumed into the digest
- date listing ignores non-date folders and temp files
- pending skills
"""

from datetime import datetime
from unittest.mock import patch

import pytest

from archive.models import (
    DailyDigest,
    SessionArchive,
    SessionMetadata,
    render_frontmatter,
    split_frontmatter,
)
from archive.store import ArchiveStore, slugify
from errors import ArchiveWriteError


class TestFrontmatter:

    def test_split(self):
        front, body = split_frontmatter("---\ntitle: Hi\ntool_calls: 3\n---\n\nBody\n")
        assert front == {"title": "Hi", "tool_calls": 3}
        assert body == "Body\n"

    def test_no_frontmatter(self):
        assert split_frontmatter("# Just markdown\n") == ({}, "# Just markdown\n")

    def test_unterminated_frontmatter(self):
        text = "---\ntitle: Hi\nno end\n"
        assert split_frontmatter(text) == ({}, text)

    def test_invalid_yaml(self):
        text = "---\n: [unclosed\n---\nBody\n"
        assert split_frontmatter(text) == ({}, text)

    def test_render_quotes_unsafe_values(self):
        text = render_frontmatter({"title": "fix: colons # and hashes"}, "Body")
        front, body = split_frontmatter(text)
        assert front["title"] == "fix: colons # and hashes"
        assert body == "Body\n"


class TestSessionArchive:

    def test_markdown_round_trip(self):
        archive = SessionArchive(
            name="14_30-fix-login",
            title="Fix login bug",
            date="2024-01-15",
            metadata=SessionMetadata(
                session_id="abc12345",
                cwd="/work/webapp",
                git_branch="main",
                duration="12m",
                transcript_path="/t/abc12345.jsonl",
                tool_calls=7,
            ),
            content="## Summary\n\nFixed the redirect loop.\n\n## Decisions\n\n- Use cookies",
        )

        text = archive.to_markdown()
        assert text.startswith("---\ntitle: Fix login bug\n")
        assert "# Fix login bug" in text

        parsed = SessionArchive.from_markdown("14_30-fix-login", "2024-01-15", text)
        assert parsed == archive

    def test_section_and_summary(self):
        archive = SessionArchive(
            name="x", title="x", date="2024-01-15",
            content="## Summary\n\nShort summary.\n\n## Learnings\n\n- one",
        )
        assert archive.section("Summary") == "Short summary."
        assert archive.section("Learnings") == "- one"
        assert archive.section("Missing") is None
        assert archive.summary_text() == "Short summary."

    def test_summary_falls_back_to_body(self):
        archive = SessionArchive(name="x", title="x", date="2024-01-15", content="a" * 600)
        assert archive.summary_text(limit=10) == "a" * 10

    def test_file_without_frontmatter(self):
        parsed = SessionArchive.from_markdown("notes", "2024-01-15", "Hand-written notes")
        assert parsed.title == "notes"
        assert parsed.content == "Hand-written notes"
        assert parsed.metadata == SessionMetadata()


class TestDailyDigest:

    def test_markdown_round_trip(self):
        digest = DailyDigest(
            date="2024-01-15",
            overview="Worked on auth.",
            session_details="### Fix login\n\nDetails.",
            insights="- Cookies beat tokens here",
            tomorrow_focus="- Ship it",
            sessions=["09_00-a", "14_30-b"],
            digested_at=datetime(2024, 1, 15, 18, 0, 0),
        )
        text = digest.to_markdown()
        assert "# Daily Summary: 2024-01-15" in text
        assert "total_sessions: 2" in text
        assert "## Tomorrow's Focus" in text

        assert DailyDigest.from_markdown("2024-01-15", text) == digest

    def test_add_session_is_idempotent(self):
        digest = DailyDigest(date="2024-01-15")
        digest.add_session("a")
        digest.add_session("a")
        assert digest.sessions == ["a"]

    def test_garbage_sessions_field(self):
        text = "---\ndate: 2024-01-15\nsessions: nope\n---\n\n## Overview\n\nHi\n"
        digest = DailyDigest.from_markdown("2024-01-15", text)
        assert digest.sessions == []
        assert digest.overview == "Hi"


class TestSlugify:

    def test_basic(self):
        assert slugify("Fix Login Bug!") == "fix-login-bug"

    def test_length_limit(self):
        slug = slugify("word " * 30, max_len=12)
        assert len(slug) <= 12
        assert not slug.endswith("-")

    def test_empty(self):
        assert slugify("!!!") == "session"


class TestStoreSessions:

    def test_write_and_read(self, store):
        path = store.write_session(
            "2024-01-15", "14_30-fix", "## Summary\n\nDone.", SessionMetadata(cwd="/w"), title="Fix"
        )
        assert path == store.root / "2024-01-15" / "14_30-fix.md"

        session = store.read_session("2024-01-15", "14_30-fix")
        assert session.title == "Fix"
        assert session.metadata.cwd == "/w"
        assert store.session_names("2024-01-15") == ["14_30-fix"]

    def test_name_collision_keeps_both(self, store):
        store.write_session("2024-01-15", "14_30-fix", "first")
        second = store.write_session("2024-01-15", "14_30-fix", "second")
        third = store.write_session("2024-01-15", "14_30-fix", "third")

        assert second.stem == "14_30-fix-2"
        assert third.stem == "14_30-fix-3"
        assert store.read_session("2024-01-15", "14_30-fix").content == "first"

    def test_names_in_digest_are_taken(self, store):
        store.write_digest("2024-01-15", DailyDigest(date="2024-01-15", sessions=["14_30-fix"]))
        path = store.write_session("2024-01-15", "14_30-fix", "new work")
        assert path.stem == "14_30-fix-2"

    def test_save_session_updates_name(self, store):
        store.write_session("2024-01-15", "a", "x")
        archive = store.save_session(SessionArchive(name="a", title="A", date="2024-01-15", content="y"))
        assert archive.name == "a-2"

    def test_session_names_skip_digest_and_temp_files(self, store):
        store.write_session("2024-01-15", "a", "x")
        store.write_digest("2024-01-15", DailyDigest(date="2024-01-15"))
        (store.root / "2024-01-15" / ".a.md.x1y2.tmp").write_text("partial")
        (store.root / "2024-01-15" / ".hidden.md").write_text("hidden")
        assert store.session_names("2024-01-15") == ["a"]

    def test_read_missing_session(self, store):
        with pytest.raises(FileNotFoundError):
            store.read_session("2024-01-15", "nope")

    def test_invalid_names_and_dates(self, store):
        with pytest.raises(ValueError):
            store.session_path("2024-01-15", "../escape")
        with pytest.raises(ValueError):
            store.session_path("2024-01-15", "daily")
        with pytest.raises(ValueError):
            store.date_dir("yesterday")

    def test_remove_sessions_skips_missing(self, store):
        store.write_session("2024-01-15", "a", "x")
        assert store.remove_sessions("2024-01-15", ["a", "gone"]) == ["a"]
        assert store.session_names("2024-01-15") == []

    def test_write_failure_is_archive_error(self, store):
        with patch("storage.file_io.os.replace", side_effect=OSError("read-only")):
            with pytest.raises(ArchiveWriteError):
                store.write_session("2024-01-15", "a", "x")


class TestStoreDates:

    def test_list_dates(self, store):
        store.write_session("2024-01-14", "a", "x")
        store.write_session("2024-01-15", "b", "x")
        store.write_session("2024-01-15", "c", "x")
        store.write_digest("2024-01-13", DailyDigest(date="2024-01-13"))
        (store.root / "jobs").mkdir()
        (store.root / "2024-01-10").mkdir()

        entries = [e.to_dict() for e in store.list_dates()]
        assert entries == [
            {"date": "2024-01-15", "session_count": 2, "has_digest": False},
            {"date": "2024-01-14", "session_count": 1, "has_digest": False},
            {"date": "2024-01-13", "session_count": 0, "has_digest": True},
        ]

    def test_missing_root(self, tmp_path):
        assert ArchiveStore(tmp_path / "nothing").list_dates() == []

    def test_archived_transcript_paths(self, store):
        store.write_session("2024-01-15", "a", "x", SessionMetadata(transcript_path="/t/a.jsonl"))
        store.write_session("2024-01-15", "b", "x")
        assert store.archived_transcript_paths() == {"/t/a.jsonl"}


class TestPendingSkills:

    def test_write_and_list(self, store):
        path = store.write_pending_skill("2024-01-15", "Debug Flaky Tests", "---\nname: x\n---\nbody")
        assert path == store.root / "pending-skills" / "2024-01-15" / "skill-debug-flaky-tests.md"
        cmd = store.write_pending_skill("2024-01-15", "deploy", "# deploy", kind="command")
        assert store.list_pending_skills() == sorted([path, cmd])

    def test_pending_dir_is_not_a_date(self, store):
        store.write_pending_skill("2024-01-15", "x", "body")
        assert store.list_dates() == []
