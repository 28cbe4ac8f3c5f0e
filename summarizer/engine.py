"""
Summarizer Engine

Wraps the external assistant CLI. Every call is one blocking subprocess:
the rendered prompt goes in on stdin, a JSON object (or markdown, for
extraction) comes back on stdout. There is no timeout and no retry; any
failure raises SummarizerError and the calling job is marked failed.

The nested assistant runs with hooks disabled so that its own session end
can't trigger another archive job.
"""

import json
import logging
import subprocess
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from archive.digest import DigestRequest
from archive.models import DIGEST_SECTIONS, SessionArchive, SessionMetadata, split_frontmatter
from archive.store import slugify
from errors import SummarizerError
from summarizer import prompts
from summarizer.transcript import TranscriptParser

logger = logging.getLogger("daily.summarizer")

# Passed to the nested assistant so it doesn't fire our hooks again
EMPTY_HOOKS_SETTINGS = '{"hooks":{}}'

SESSION_FIELDS = ("summary", "decisions", "learnings", "skill_hints")
DIGEST_FIELDS = tuple(name for name, _ in DIGEST_SECTIONS)

NOT_EXTRACTABLE = "NOT_EXTRACTABLE"


def extract_json_text(text: str) -> Optional[str]:
    """Find the JSON object in an LLM response, handling markdown code blocks."""
    text = text.strip()

    # Fenced ```json block
    if "```json" in text:
        start = text.find("```json") + 7
        end = text.find("```", start)
        if end > start:
            return text[start:end].strip()

    # Outermost {...}
    start = text.find("{")
    end = text.rfind("}")
    if start != -1 and end > start:
        return text[start:end + 1]

    return None


def extract_json(text: str) -> dict:
    """Parse the JSON object in a response. Raises SummarizerError."""
    json_str = extract_json_text(text)
    if json_str is None:
        raise SummarizerError("No JSON object in summarizer output")
    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise SummarizerError(f"Malformed JSON in summarizer output: {e}") from e
    if not isinstance(data, dict):
        raise SummarizerError("Summarizer output is not a JSON object")
    return data


def require_fields(data: dict, fields: tuple[str, ...]) -> dict:
    missing = [name for name in fields if name not in data]
    if missing:
        raise SummarizerError(f"Summarizer output missing fields: {', '.join(missing)}")
    return data


def extract_markdown(text: str) -> str:
    """Markdown from a ```markdown block, any ``` block, or the whole response."""
    if "```markdown" in text:
        start = text.find("```markdown") + 11
        end = text.find("```", start)
        if end > start:
            return text[start:end].strip()

    if "```" in text:
        start = text.find("```") + 3
        # Skip a language tag on the fence line
        start = text.find("\n", start) + 1 or start
        end = text.find("```", start)
        if end > start:
            return text[start:end].strip()

    return text.strip()


def skill_name(content: str, default: str = "extracted-skill") -> str:
    """`name:` from a skill's frontmatter."""
    front, _ = split_frontmatter(content)
    name = str(front.get("name") or "").strip()
    return slugify(name) if name else default


def command_name(content: str, default: str = "extracted-command") -> str:
    """First `# Heading` of a command file, kebab-cased."""
    _, body = split_frontmatter(content)
    for line in body.splitlines():
        if line.startswith("# "):
            heading = line[2:].strip()
            if heading:
                return slugify(heading)
    return default


def get_git_branch(cwd: Optional[str]) -> Optional[str]:
    """Current branch of the repo at cwd, or None outside a repo."""
    if not cwd:
        return None
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=5,
        )
    except (OSError, subprocess.TimeoutExpired):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def as_markdown(value) -> str:
    """Render a reply field as markdown; lists become bullet lines."""
    if isinstance(value, list):
        return "\n".join(f"- {str(item).strip()}" for item in value)
    return str(value).strip()


def render_session_body(fields: dict, files_modified: list[str]) -> str:
    code_changes = "\n".join(f"- `{p}`" for p in files_modified) or "_No files modified._"
    sections = [
        ("Summary", fields["summary"]),
        ("Decisions", fields["decisions"]),
        ("Code Changes", code_changes),
        ("Learnings", fields["learnings"]),
        ("Skill Hints", fields["skill_hints"]),
    ]
    return "\n\n".join(f"## {heading}\n\n{as_markdown(value)}" for heading, value in sections)


class SummarizerEngine:
    """
    Usage:
        engine = SummarizerEngine.from_settings(get_settings())
        archive = engine.summarize_session(Path(transcript), "my-project-1a2b3c4d", "/src/my-project")
    """

    def __init__(
        self,
        claude_bin: str = "claude",
        model: str = "sonnet",
        language: str = "en",
        templates_dir: Optional[Path] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.claude_bin = claude_bin
        self.model = model
        self.language = language
        self.templates_dir = templates_dir
        self.clock = clock

    @classmethod
    def from_settings(cls, settings) -> "SummarizerEngine":
        return cls(
            claude_bin=settings.claude_bin,
            model=settings.model,
            language=settings.summary_language,
            templates_dir=settings.prompt_templates_dir,
        )

    def command(self) -> list[str]:
        return [
            self.claude_bin,
            "--model", self.model,
            "--print",
            "--settings", EMPTY_HOOKS_SETTINGS,
            "--no-session-persistence",
            "--strict-mcp-config",
        ]

    def invoke(self, prompt: str) -> str:
        """Run the assistant with prompt on stdin; return its stdout."""
        cmd = self.command()
        logger.info(f"Invoking {self.claude_bin} ({self.model}), prompt {len(prompt)} chars")
        try:
            result = subprocess.run(cmd, input=prompt, capture_output=True, text=True)
        except OSError as e:
            raise SummarizerError(f"Failed to run {self.claude_bin}: {e}") from e

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()[:500]
            raise SummarizerError(f"{self.claude_bin} exited with code {result.returncode}: {detail}")

        return result.stdout

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def summarize_session(self, transcript_path: Path, task_name: str, cwd: Optional[str]) -> SessionArchive:
        """Summarize one transcript into a SessionArchive (not yet written)."""
        transcript_path = Path(transcript_path)
        try:
            data = TranscriptParser.parse(transcript_path)
        except OSError as e:
            raise SummarizerError(f"Failed to read transcript {transcript_path}: {e}") from e

        if data.is_empty:
            raise SummarizerError(f"Transcript has no messages: {transcript_path}")

        cwd = cwd or data.cwd
        git_branch = get_git_branch(cwd) or data.git_branch

        prompt = prompts.session_summary_prompt(
            TranscriptParser.to_condensed_text(data),
            cwd or "N/A",
            git_branch,
            language=self.language,
            templates_dir=self.templates_dir,
        )
        fields = require_fields(extract_json(self.invoke(prompt)), SESSION_FIELDS)

        now = self.clock()
        topic = str(fields.get("topic") or "").strip()
        return SessionArchive(
            name=f"{now.strftime('%H_%M')}-{slugify(topic or task_name)}",
            title=topic or task_name,
            date=now.strftime("%Y-%m-%d"),
            metadata=SessionMetadata(
                session_id=data.session_id or transcript_path.stem,
                cwd=cwd,
                git_branch=git_branch,
                duration=data.duration_human,
                transcript_path=str(transcript_path),
                tool_calls=len(data.tool_calls),
            ),
            content=render_session_body(fields, data.files_modified),
        )

    # ------------------------------------------------------------------
    # Digest
    # ------------------------------------------------------------------

    def summarize_digest(self, request: DigestRequest) -> dict:
        """Digest fields (overview, insights, ...) for a DigestConsolidator run."""
        sessions = [{"name": s.name, "content": s.summary_text()} for s in request.sessions]
        existing = request.existing.to_markdown() if request.existing is not None else None

        prompt = prompts.daily_summary_prompt(
            request.date,
            sessions,
            current_time=request.now.strftime("%H:%M"),
            current_period=request.period,
            existing=existing,
            language=self.language,
            templates_dir=self.templates_dir,
        )
        fields = require_fields(extract_json(self.invoke(prompt)), DIGEST_FIELDS)
        return {name: as_markdown(fields[name]) for name in DIGEST_FIELDS}

    # ------------------------------------------------------------------
    # Extraction
    # ------------------------------------------------------------------

    def _extract(self, prompt: str, kind: str) -> str:
        markdown = extract_markdown(self.invoke(prompt))
        if markdown.startswith(NOT_EXTRACTABLE):
            reason = markdown[len(NOT_EXTRACTABLE):].lstrip(": ").strip() or "no reason given"
            raise SummarizerError(f"No {kind} worth extracting: {reason}")
        if not markdown:
            raise SummarizerError(f"Empty {kind} from summarizer")
        return markdown

    def extract_skill(self, session_content: str, hint: Optional[str] = None) -> str:
        prompt = prompts.skill_extract_prompt(
            session_content,
            date=self.clock().strftime("%Y-%m-%d"),
            hint=hint,
            language=self.language,
            templates_dir=self.templates_dir,
        )
        return self._extract(prompt, "skill")

    def extract_command(self, session_content: str, hint: Optional[str] = None) -> str:
        prompt = prompts.command_extract_prompt(
            session_content,
            hint=hint,
            language=self.language,
            templates_dir=self.templates_dir,
        )
        return self._extract(prompt, "command")
