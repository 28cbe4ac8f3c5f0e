"""
Archive data models.

SessionArchive and DailyDigest are stored as markdown files with YAML
frontmatter. Both round-trip: what to_markdown() writes, from_markdown()
reads back, so an existing digest can be fed into the next consolidation.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import yaml

FRONTMATTER_DELIM = "---"


def split_frontmatter(text: str) -> tuple[dict, str]:
    """
    Split a markdown document into (frontmatter dict, body).

    Documents without frontmatter, or with frontmatter that isn't a YAML
    mapping, return an empty dict and the whole text as body.
    """
    lines = text.splitlines(keepends=True)
    if not lines or lines[0].strip() != FRONTMATTER_DELIM:
        return {}, text

    for i in range(1, len(lines)):
        if lines[i].strip() == FRONTMATTER_DELIM:
            raw = "".join(lines[1:i])
            body = "".join(lines[i + 1:])
            try:
                data = yaml.safe_load(raw) or {}
            except yaml.YAMLError:
                return {}, text
            if not isinstance(data, dict):
                return {}, text
            return data, body.lstrip("\n")

    return {}, text


def render_frontmatter(data: dict, body: str) -> str:
    front = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"{FRONTMATTER_DELIM}\n{front}{FRONTMATTER_DELIM}\n\n{body.rstrip()}\n"


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)


@dataclass
class SessionMetadata:
    """Where and how a session ran."""
    session_id: Optional[str] = None
    cwd: Optional[str] = None
    git_branch: Optional[str] = None
    duration: Optional[str] = None
    transcript_path: Optional[str] = None
    tool_calls: int = 0

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "cwd": self.cwd,
            "git_branch": self.git_branch,
            "duration": self.duration,
            "transcript_path": self.transcript_path,
            "tool_calls": self.tool_calls,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SessionMetadata":
        tool_calls = data.get("tool_calls") or 0
        return cls(
            session_id=_str_or_none(data.get("session_id")),
            cwd=_str_or_none(data.get("cwd")),
            git_branch=_str_or_none(data.get("git_branch")),
            duration=_str_or_none(data.get("duration")),
            transcript_path=_str_or_none(data.get("transcript_path")),
            tool_calls=int(tool_calls) if str(tool_calls).isdigit() else 0,
        )


@dataclass
class SessionArchive:
    """One archived session: <archive-root>/<date>/<name>.md"""

    name: str
    title: str
    date: str
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    content: str = ""  # Markdown body (without the title heading)

    def to_markdown(self) -> str:
        front = {"title": self.title, "date": self.date}
        front.update(self.metadata.to_dict())
        return render_frontmatter(front, f"# {self.title}\n\n{self.content.strip()}")

    @classmethod
    def from_markdown(cls, name: str, date: str, text: str) -> "SessionArchive":
        front, body = split_frontmatter(text)
        title = str(front.get("title") or name)

        # Drop the title heading written by to_markdown
        heading = f"# {title}"
        stripped = body.lstrip()
        if stripped.startswith(heading):
            body = stripped[len(heading):]

        return cls(
            name=name,
            title=title,
            date=str(front.get("date") or date),
            metadata=SessionMetadata.from_dict(front),
            content=body.strip(),
        )

    def section(self, heading: str) -> Optional[str]:
        """Text of a `## heading` section, or None if the body has none."""
        marker = f"## {heading}"
        start = self.content.find(marker)
        if start == -1:
            return None
        after = self.content[start + len(marker):]
        end = after.find("\n## ")
        return (after if end == -1 else after[:end]).strip()

    def summary_text(self, limit: int = 500) -> str:
        """The Summary section, or the first `limit` chars of the body."""
        summary = self.section("Summary")
        if summary is not None:
            return summary
        return self.content[:limit]


# Section headings of daily.md, in file order
DIGEST_SECTIONS = [
    ("overview", "Overview"),
    ("session_details", "Sessions"),
    ("insights", "Key Insights"),
    ("skills", "Skills"),
    ("commands", "Commands"),
    ("reflections", "Reflections"),
    ("tomorrow_focus", "Tomorrow's Focus"),
]

_HEADING_TO_FIELD = {f"## {heading}": name for name, heading in DIGEST_SECTIONS}


@dataclass
class DailyDigest:
    """
    The consolidated summary of one date: <archive-root>/<date>/daily.md

    `sessions` is provenance: the names of every session archive consumed
    into this digest, across all digest runs for the date.
    """

    date: str
    overview: str = "_No overview yet._"
    session_details: str = ""
    insights: str = ""
    skills: str = ""
    commands: str = ""
    reflections: str = ""
    tomorrow_focus: str = ""
    sessions: list[str] = field(default_factory=list)
    digested_at: Optional[datetime] = None

    def add_session(self, name: str) -> None:
        if name not in self.sessions:
            self.sessions.append(name)

    def to_markdown(self) -> str:
        front = {
            "date": self.date,
            "sessions": list(self.sessions),
            "total_sessions": len(self.sessions),
            "digested_at": self.digested_at.isoformat(timespec="seconds") if self.digested_at else None,
        }
        parts = [f"# Daily Summary: {self.date}"]
        for name, heading in DIGEST_SECTIONS:
            value = getattr(self, name).strip()
            parts.append(f"## {heading}\n\n{value}" if value else f"## {heading}")
        return render_frontmatter(front, "\n\n".join(parts))

    @classmethod
    def from_markdown(cls, date: str, text: str) -> "DailyDigest":
        front, body = split_frontmatter(text)

        sections: dict[str, list[str]] = {}
        current = None
        for line in body.splitlines():
            name = _HEADING_TO_FIELD.get(line.strip())
            if name is not None:
                current = name
                sections[current] = []
            elif current is not None:
                sections[current].append(line)

        values = {name: "\n".join(lines).strip() for name, lines in sections.items()}

        raw_sessions = front.get("sessions") or []
        if not isinstance(raw_sessions, list):
            raw_sessions = []

        digested_at = None
        if front.get("digested_at"):
            try:
                digested_at = datetime.fromisoformat(str(front["digested_at"]))
            except ValueError:
                digested_at = None

        digest = cls(
            date=str(front.get("date") or date),
            sessions=[str(s) for s in raw_sessions],
            digested_at=digested_at,
        )
        for name, value in values.items():
            setattr(digest, name, value)
        return digest


@dataclass
class DateEntry:
    """One row of ArchiveStore.list_dates()."""
    date: str
    session_count: int
    has_digest: bool

    def to_dict(self) -> dict:
        return {
            "date": self.date,
            "session_count": self.session_count,
            "has_digest": self.has_digest,
        }
