"""
Summarization via the external assistant CLI.

Usage:
    from summarizer import SummarizerEngine

    engine = SummarizerEngine.from_settings(get_settings())
    archive = engine.summarize_session(transcript_path, task_name, cwd)
"""

from summarizer.template import render, extract_variables
from summarizer.transcript import TranscriptData, TranscriptParser, ToolCall
from summarizer.engine import (
    SummarizerEngine,
    command_name,
    extract_json,
    extract_markdown,
    get_git_branch,
    skill_name,
)

__all__ = [
    "render",
    "extract_variables",
    "TranscriptData",
    "TranscriptParser",
    "ToolCall",
    "SummarizerEngine",
    "command_name",
    "extract_json",
    "extract_markdown",
    "get_git_branch",
    "skill_name",
]
