"""
Auto-triggers evaluated on hook and command entry points.

Usage:
    from triggers import TriggerScheduler

    TriggerScheduler(settings, registry, store).on_session_start()
"""

from triggers.scheduler import (
    TriggerScheduler,
    TranscriptInfo,
    find_transcripts,
    plan_auto_digest,
    plan_auto_summarize,
    should_run_timed_auto_summarize,
    task_name_for,
    default_worker_command,
)

__all__ = [
    "TriggerScheduler",
    "TranscriptInfo",
    "find_transcripts",
    "plan_auto_digest",
    "plan_auto_summarize",
    "should_run_timed_auto_summarize",
    "task_name_for",
    "default_worker_command",
]
