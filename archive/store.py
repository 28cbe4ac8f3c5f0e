"""
Archive Store

Directory and file layout of the archive root:

    <root>/
      2024-01-15/
        daily.md            # DailyDigest
        14_30-fix-login.md  # SessionArchive, one per un-digested session
      jobs/                 # JobRegistry (not a date)
      pending-skills/       # Extracted skills/commands awaiting review

Dates are discovered by scanning the root; there is no index file to keep
in sync. Every write goes through storage.file_io, so readers see either
the old file or the new one, and temp files are never listed.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from archive.models import DailyDigest, DateEntry, SessionArchive, SessionMetadata
from errors import ArchiveWriteError
from storage.file_io import atomic_write_text, file_lock, is_temp_file

logger = logging.getLogger("daily.archive")

DIGEST_FILE = "daily.md"
DIGEST_NAME = "daily"
PENDING_SKILLS_DIR = "pending-skills"

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_NAME_RE = re.compile(r"^[\w.-]+$")


def slugify(text: str, max_len: int = 40) -> str:
    """Filesystem-safe kebab-case name ("Fix Login Bug!" -> "fix-login-bug")."""
    slug = re.sub(r"[^\w-]+", "-", text.strip().lower())
    slug = re.sub(r"-{2,}", "-", slug).strip("-_")
    return slug[:max_len].rstrip("-_") or "session"


def is_valid_date(date: str) -> bool:
    return bool(DATE_RE.match(date))


class ArchiveStore:
    """
    Reads and writes the per-date archive tree.

    Usage:
        store = ArchiveStore(settings.storage_path)
        path = store.write_session("2024-01-15", "14_30-fix-login", content, metadata)
        for entry in store.list_dates():
            print(entry.date, entry.session_count, entry.has_digest)
    """

    def __init__(self, root: Path):
        self.root = Path(root)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def date_dir(self, date: str) -> Path:
        if not is_valid_date(date):
            raise ValueError(f"Invalid date: {date!r} (expected YYYY-MM-DD)")
        return self.root / date

    def session_path(self, date: str, name: str) -> Path:
        if not _NAME_RE.match(name) or name == DIGEST_NAME:
            raise ValueError(f"Invalid session name: {name!r}")
        return self.date_dir(date) / f"{name}.md"

    def digest_path(self, date: str) -> Path:
        return self.date_dir(date) / DIGEST_FILE

    @property
    def pending_skills_dir(self) -> Path:
        return self.root / PENDING_SKILLS_DIR

    def digest_lock(self, date: str):
        """Exclusive per-date lock held while a digest reads, writes and deletes."""
        self.date_dir(date)
        return file_lock(self.root / f".digest-{date}.lock")

    def _write(self, path: Path, text: str) -> None:
        try:
            atomic_write_text(path, text)
        except OSError as e:
            raise ArchiveWriteError(f"Failed to write {path}: {e}") from e

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def session_names(self, date: str) -> list[str]:
        """Names of the un-digested session archives for a date, sorted."""
        directory = self.date_dir(date)
        if not directory.is_dir():
            return []
        names = []
        for path in directory.glob("*.md"):
            if is_temp_file(path) or path.name.startswith(".") or path.name == DIGEST_FILE:
                continue
            names.append(path.stem)
        return sorted(names)

    def _free_name(self, date: str, name: str) -> str:
        """
        name, or name-2, name-3, ... if that name is taken.

        Names already consumed into the date's digest count as taken, or the
        next digest would treat the new session as a leftover and drop it.
        """
        digest = self.read_digest(date)
        consumed = set(digest.sessions) if digest else set()

        def taken(candidate: str) -> bool:
            return candidate in consumed or self.session_path(date, candidate).exists()

        if not taken(name):
            return name
        n = 2
        while taken(f"{name}-{n}"):
            n += 1
        return f"{name}-{n}"

    def write_session(
        self,
        date: str,
        name: str,
        content: str,
        metadata: Optional[SessionMetadata] = None,
        title: Optional[str] = None,
    ) -> Path:
        """
        Write a session archive and return its path.

        An existing session of the same name is kept; the new one gets a
        numeric suffix instead of overwriting it.
        """
        name = self._free_name(date, name)
        archive = SessionArchive(
            name=name,
            title=title or name,
            date=date,
            metadata=metadata or SessionMetadata(),
            content=content,
        )
        path = self.session_path(date, name)
        self._write(path, archive.to_markdown())
        logger.info(f"Archived session {date}/{name}")
        return path

    def save_session(self, archive: SessionArchive) -> SessionArchive:
        """Write a SessionArchive; returns it with its final (possibly suffixed) name."""
        path = self.write_session(
            archive.date, archive.name, archive.content, archive.metadata, title=archive.title
        )
        archive.name = path.stem
        return archive

    def read_session(self, date: str, name: str) -> SessionArchive:
        """Raises FileNotFoundError if the session doesn't exist."""
        text = self.session_path(date, name).read_text(encoding="utf-8")
        return SessionArchive.from_markdown(name, date, text)

    def read_sessions(self, date: str) -> list[SessionArchive]:
        """All un-digested sessions of a date. Files removed mid-scan are skipped."""
        sessions = []
        for name in self.session_names(date):
            try:
                sessions.append(self.read_session(date, name))
            except FileNotFoundError:
                continue
        return sessions

    def remove_sessions(self, date: str, names: list[str]) -> list[str]:
        """
        Delete session archives by name. Returns the names actually removed;
        a name whose file is already gone is skipped, not an error.
        """
        removed = []
        for name in names:
            path = self.session_path(date, name)
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise ArchiveWriteError(f"Failed to remove {path}: {e}") from e
            removed.append(name)
        if removed:
            logger.info(f"Removed {len(removed)} digested session(s) from {date}")
        return removed

    # ------------------------------------------------------------------
    # Digest
    # ------------------------------------------------------------------

    def read_digest(self, date: str) -> Optional[DailyDigest]:
        path = self.digest_path(date)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return DailyDigest.from_markdown(date, text)

    def write_digest(self, date: str, digest: DailyDigest) -> Path:
        path = self.digest_path(date)
        self._write(path, digest.to_markdown())
        logger.info(f"Wrote daily digest for {date} ({len(digest.sessions)} sessions)")
        return path

    # ------------------------------------------------------------------
    # Dates
    # ------------------------------------------------------------------

    def list_dates(self) -> list[DateEntry]:
        """
        Dates that have sessions or a digest, newest first.

        Only YYYY-MM-DD directories count, so jobs/ and pending-skills/ are
        never listed, and neither are empty date folders.
        """
        if not self.root.is_dir():
            return []

        entries = []
        for path in self.root.iterdir():
            if not path.is_dir() or not is_valid_date(path.name):
                continue
            count = len(self.session_names(path.name))
            has_digest = (path / DIGEST_FILE).is_file()
            if count or has_digest:
                entries.append(DateEntry(date=path.name, session_count=count, has_digest=has_digest))

        entries.sort(key=lambda e: e.date, reverse=True)
        return entries

    def archived_transcript_paths(self) -> set[str]:
        """transcript_path of every session archive still on disk."""
        paths = set()
        for entry in self.list_dates():
            for session in self.read_sessions(entry.date):
                if session.metadata.transcript_path:
                    paths.add(session.metadata.transcript_path)
        return paths

    # ------------------------------------------------------------------
    # Pending skills / commands
    # ------------------------------------------------------------------

    def write_pending_skill(self, date: str, slug: str, content: str, kind: str = "skill") -> Path:
        """Store an extracted skill or command for review: pending-skills/<date>/<kind>-<slug>.md"""
        self.date_dir(date)  # validates
        path = self.pending_skills_dir / date / f"{kind}-{slugify(slug)}.md"
        self._write(path, content.rstrip() + "\n")
        logger.info(f"Saved pending {kind} {path.name}")
        return path

    def list_pending_skills(self) -> list[Path]:
        if not self.pending_skills_dir.is_dir():
            return []
        return sorted(
            path for path in self.pending_skills_dir.glob("*/*.md")
            if not is_temp_file(path)
        )
