"""
Transcript Parser

Reads the editor's JSONL session transcript and reduces it to what the
summarizer needs: what the user asked, what the assistant said, which tools
ran, which files changed, and how long the session lasted.

Two line shapes are understood:

    {"type": "user", "message": {"role": "user", "content": "..."}, "timestamp": "..."}
    {"type": "assistant", "message": {"content": [{"type": "tool_use", "name": "Edit", "input": {...}}]}}

and the older flat form with role/content/tool_name/tool_input at the top
level. Lines that aren't valid JSON are logged and skipped.
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("daily.summarizer.transcript")

FILE_MODIFYING_TOOLS = {"Write", "Edit", "MultiEdit", "NotebookEdit"}

MESSAGE_PREVIEW_CHARS = 500


@dataclass
class ToolCall:
    name: str
    input: dict = field(default_factory=dict)


@dataclass
class TranscriptData:
    user_messages: list[str] = field(default_factory=list)
    assistant_messages: list[str] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    files_modified: list[str] = field(default_factory=list)
    summary: Optional[str] = None
    session_id: Optional[str] = None
    cwd: Optional[str] = None
    git_branch: Optional[str] = None
    first_timestamp: Optional[datetime] = None
    last_timestamp: Optional[datetime] = None
    skipped_lines: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.user_messages or self.assistant_messages or self.tool_calls)

    @property
    def duration(self) -> Optional[timedelta]:
        if self.first_timestamp is None or self.last_timestamp is None:
            return None
        return self.last_timestamp - self.first_timestamp

    @property
    def duration_human(self) -> Optional[str]:
        duration = self.duration
        if duration is None:
            return None
        minutes = int(duration.total_seconds()) // 60
        if minutes < 1:
            return "<1m"
        if minutes < 60:
            return f"{minutes}m"
        return f"{minutes // 60}h {minutes % 60}m"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _text_blocks(content: Any) -> list[str]:
    """Text parts of a message content (a string, or a list of typed blocks)."""
    if isinstance(content, str):
        return [content] if content.strip() else []
    if isinstance(content, list):
        return [
            block["text"] for block in content
            if isinstance(block, dict) and block.get("type") == "text"
            and isinstance(block.get("text"), str) and block["text"].strip()
        ]
    return []


def _tool_uses(content: Any) -> list[ToolCall]:
    if not isinstance(content, list):
        return []
    calls = []
    for block in content:
        if isinstance(block, dict) and block.get("type") == "tool_use" and block.get("name"):
            tool_input = block.get("input")
            calls.append(ToolCall(name=str(block["name"]), input=tool_input if isinstance(tool_input, dict) else {}))
    return calls


class TranscriptParser:
    """
    Usage:
        data = TranscriptParser.parse(Path(transcript_path))
        text = TranscriptParser.to_condensed_text(data)
    """

    @classmethod
    def parse(cls, path: Path) -> TranscriptData:
        """Raises OSError if the transcript can't be read."""
        data = TranscriptData()
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            for line_no, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning(f"Skipping malformed transcript line {line_no} in {Path(path).name}: {e}")
                    data.skipped_lines += 1
                    continue
                if isinstance(entry, dict):
                    cls._add_entry(data, entry)
        return data

    @staticmethod
    def _add_entry(data: TranscriptData, entry: dict) -> None:
        timestamp = _parse_timestamp(entry.get("timestamp"))
        if timestamp is not None:
            if data.first_timestamp is None or timestamp < data.first_timestamp:
                data.first_timestamp = timestamp
            if data.last_timestamp is None or timestamp > data.last_timestamp:
                data.last_timestamp = timestamp

        data.session_id = data.session_id or entry.get("sessionId")
        data.cwd = data.cwd or entry.get("cwd")
        data.git_branch = data.git_branch or entry.get("gitBranch")

        entry_type = entry.get("type")
        if entry_type in ("summary", "TranscriptSummary") and entry.get("summary"):
            data.summary = str(entry["summary"])
            return

        message = entry.get("message")
        if isinstance(message, dict):
            role = message.get("role") or entry_type
            content = message.get("content")
        else:
            role = entry.get("role")
            content = entry.get("content")

        if role == "user":
            data.user_messages.extend(_text_blocks(content))
        elif role == "assistant":
            data.assistant_messages.extend(_text_blocks(content))

        calls = _tool_uses(content)
        if entry.get("tool_name"):
            tool_input = entry.get("tool_input")
            calls.append(ToolCall(name=str(entry["tool_name"]), input=tool_input if isinstance(tool_input, dict) else {}))

        for call in calls:
            data.tool_calls.append(call)
            if call.name in FILE_MODIFYING_TOOLS:
                file_path = call.input.get("file_path") or call.input.get("notebook_path")
                if isinstance(file_path, str) and file_path not in data.files_modified:
                    data.files_modified.append(file_path)

    @staticmethod
    def to_condensed_text(data: TranscriptData) -> str:
        """Compact text rendering of a transcript for the summarization prompt."""
        parts = []

        if data.user_messages:
            lines = [
                f"{i}. {truncate_text(msg, MESSAGE_PREVIEW_CHARS)}"
                for i, msg in enumerate(data.user_messages, 1)
            ]
            parts.append("## User Requests\n\n" + "\n\n".join(lines))

        if data.assistant_messages:
            lines = [f"- {truncate_text(msg, MESSAGE_PREVIEW_CHARS)}" for msg in data.assistant_messages]
            parts.append("## Assistant Responses\n\n" + "\n".join(lines))

        if data.tool_calls:
            counts = Counter(call.name for call in data.tool_calls)
            lines = [f"- {name}: {count} calls" for name, count in counts.most_common()]
            parts.append("## Tools Used\n\n" + "\n".join(lines))

        if data.files_modified:
            parts.append("## Files Modified\n\n" + "\n".join(f"- {p}" for p in data.files_modified))

        if data.summary:
            parts.append("## Existing Summary\n\n" + data.summary)

        return "\n\n".join(parts) + "\n" if parts else ""


def truncate_text(text: str, max_len: int) -> str:
    text = text.strip()
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."
