"""
Digest Consolidator

Merges a date's session archives into its daily digest:

1. Read the date's sessions and existing digest.
2. Sessions already named in the digest's provenance were consumed by an
   earlier run that died before deleting them: delete them, don't
   re-summarize.
3. No new sessions (and no force): nothing to digest, nothing written.
4. Ask the summarizer for the merged digest (existing digest + new
   sessions + current time period).
5. Write daily.md atomically with provenance = old names + new names.
6. Only then delete the consumed session files.

The whole sequence runs under the store's per-date digest lock.

A summarizer failure aborts before step 5: no digest is written and the
sessions are left for a retry.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Protocol

from archive.models import DIGEST_SECTIONS, DailyDigest, SessionArchive
from archive.store import ArchiveStore

logger = logging.getLogger("daily.archive.digest")


def period_for(now: datetime) -> str:
    """Bucket a time of day: night 00-05, morning 06-11, afternoon 12-17, evening 18-23."""
    hour = now.hour
    if hour < 6:
        return "night"
    if hour < 12:
        return "morning"
    if hour < 18:
        return "afternoon"
    return "evening"


class DigestStatus(str, Enum):
    DIGESTED = "digested"
    NOTHING_TO_DIGEST = "nothing_to_digest"
    CLEANED_UP = "cleaned_up"  # Only leftovers of an interrupted run were removed


@dataclass
class DigestRequest:
    """Everything the summarizer needs to produce a digest."""
    date: str
    sessions: list[SessionArchive]
    existing: Optional[DailyDigest]
    now: datetime

    @property
    def period(self) -> str:
        return period_for(self.now)

    @property
    def regenerate(self) -> bool:
        """Rewriting an existing digest without new sessions (force)."""
        return not self.sessions and self.existing is not None


class DigestSummarizer(Protocol):
    def summarize_digest(self, request: DigestRequest) -> dict: ...


@dataclass
class DigestResult:
    status: DigestStatus
    date: str
    digest: Optional[DailyDigest] = None
    digested: list[str] = field(default_factory=list)  # Session names consumed by this run
    removed: list[str] = field(default_factory=list)   # Session files deleted by this run

    @property
    def message(self) -> str:
        if self.status == DigestStatus.DIGESTED:
            return f"Digested {len(self.digested)} session(s) for {self.date}"
        if self.status == DigestStatus.CLEANED_UP:
            return f"Removed {len(self.removed)} already-digested session(s) for {self.date}"
        return f"Nothing to digest for {self.date}"


class DigestConsolidator:
    """
    Usage:
        consolidator = DigestConsolidator(store, engine)
        result = consolidator.run("2024-01-15")
        print(result.message)
    """

    def __init__(
        self,
        store: ArchiveStore,
        summarizer: DigestSummarizer,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.store = store
        self.summarizer = summarizer
        self.clock = clock

    def run(self, date: str, force: bool = False) -> DigestResult:
        """
        Digest one date. Idempotent: rerunning with no new sessions writes
        nothing and returns NOTHING_TO_DIGEST.

        Runs for the same date are serialized, so a second run sees the
        first run's provenance instead of re-reading its sessions.

        Raises SummarizerError (nothing written) or ArchiveWriteError.
        """
        with self.store.digest_lock(date):
            return self._run(date, force)

    def _run(self, date: str, force: bool) -> DigestResult:
        sessions = self.store.read_sessions(date)
        existing = self.store.read_digest(date)
        consumed = set(existing.sessions) if existing else set()

        leftovers = [s.name for s in sessions if s.name in consumed]
        new_sessions = [s for s in sessions if s.name not in consumed]

        removed = []
        if leftovers:
            logger.info(f"{len(leftovers)} session(s) on {date} already in digest, removing")
            removed = self.store.remove_sessions(date, leftovers)

        if not new_sessions and not (force and existing is not None):
            status = DigestStatus.CLEANED_UP if removed else DigestStatus.NOTHING_TO_DIGEST
            return DigestResult(status=status, date=date, digest=existing, removed=removed)

        now = self.clock()
        request = DigestRequest(date=date, sessions=new_sessions, existing=existing, now=now)
        logger.info(
            f"Digesting {len(new_sessions)} session(s) for {date} "
            f"({'regenerate' if request.regenerate else request.period})"
        )

        # Raises SummarizerError: nothing has been written yet
        fields = self.summarizer.summarize_digest(request)

        digest = DailyDigest(date=date, digested_at=now)
        for name, _ in DIGEST_SECTIONS:
            value = fields.get(name)
            if value is None and existing is not None:
                value = getattr(existing, name)
            setattr(digest, name, str(value or ""))
        for name in (existing.sessions if existing else []):
            digest.add_session(name)
        for session in new_sessions:
            digest.add_session(session.name)

        self.store.write_digest(date, digest)
        removed += self.store.remove_sessions(date, [s.name for s in new_sessions])

        return DigestResult(
            status=DigestStatus.DIGESTED,
            date=date,
            digest=digest,
            digested=[s.name for s in new_sessions],
            removed=removed,
        )

