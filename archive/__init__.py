"""
Session archive and daily digest.

Components:
- SessionArchive / DailyDigest: markdown + YAML frontmatter models
- ArchiveStore: per-date directory tree with atomic writes
- DigestConsolidator: merges a date's sessions into daily.md

Usage:
    from archive import ArchiveStore, DigestConsolidator

    store = ArchiveStore(settings.storage_path)
    result = DigestConsolidator(store, engine).run("2024-01-15")
"""

from archive.models import DailyDigest, DateEntry, SessionArchive, SessionMetadata
from archive.store import ArchiveStore, is_valid_date, slugify
from archive.digest import (
    DigestConsolidator,
    DigestRequest,
    DigestResult,
    DigestStatus,
    period_for,
)

__all__ = [
    # Models
    "SessionArchive",
    "SessionMetadata",
    "DailyDigest",
    "DateEntry",
    # Store
    "ArchiveStore",
    "is_valid_date",
    "slugify",
    # Digest
    "DigestConsolidator",
    "DigestRequest",
    "DigestResult",
    "DigestStatus",
    "period_for",
]
