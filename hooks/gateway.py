"""
Hook Gateway

Entry point for the editor's SessionStart / SessionEnd hooks. The editor
blocks on the hook command, so the gateway only decodes the payload,
makes its decisions and spawns jobs; all real work happens in detached
workers. Nothing here may break the editor: every error is logged and
swallowed, and the hook command exits 0.
"""

import logging
import os
from pathlib import Path
from typing import Callable, Optional, Sequence, TextIO

from errors import DailyError
from hooks.input import SESSION_END, SESSION_START, HookInput, read_hook_input
from jobs.models import CreateResult, JobType
from jobs.registry import JobRegistry
from triggers.scheduler import TriggerScheduler, default_worker_command, task_name_for

logger = logging.getLogger("daily.hooks")


class HookGateway:
    """
    Usage:
        gateway = HookGateway(settings, registry, scheduler)
        gateway.run("SessionEnd", sys.stdin)   # never raises
    """

    def __init__(
        self,
        settings,
        registry: JobRegistry,
        scheduler: TriggerScheduler,
        worker_command: Optional[Sequence[str]] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.scheduler = scheduler
        self.worker_command = list(worker_command or default_worker_command())
        self._handlers: dict[str, Callable[[HookInput], object]] = {
            SESSION_START: self.handle_session_start,
            SESSION_END: self.handle_session_end,
        }

    def run(self, event: str, stream: TextIO) -> int:
        """Handle one hook invocation. Always returns exit code 0."""
        try:
            hook = read_hook_input(stream)
            if hook.hook_event_name != event:
                logger.warning(f"Hook payload says {hook.hook_event_name}, handling as {event}")
            self._handlers[event](hook)
        except DailyError as e:
            logger.error(f"{event} hook: {e}")
        except Exception as e:
            # Never block or crash the editor on archive failures
            logger.error(f"{event} hook failed: {e}", exc_info=True)
        return 0

    def handle_session_end(self, hook: HookInput) -> Optional[CreateResult]:
        """Spawn a session_end job that summarizes the finished session."""
        if not self.settings.enable_session_end:
            logger.debug("SessionEnd hook disabled")
            return None

        reason = hook.reason or "other"
        if reason not in self.settings.archive_reasons:
            logger.info(f"Session ended with reason {reason!r}, not archiving")
            return None

        task_name = task_name_for(hook.cwd, hook.session_id)
        command = self.worker_command + [
            "summarize",
            "--transcript", hook.transcript_path,
            "--task-name", task_name,
            "--cwd", hook.cwd,
            "--foreground",
        ]
        result = self.registry.create(
            task_name,
            JobType.SESSION_END,
            command,
            cwd=Path(hook.cwd) if os.path.isdir(hook.cwd) else None,
            transcript_path=hook.transcript_path,
        )
        if result.duplicate:
            logger.info(f"Session {task_name} is already being archived ({result.job.id})")
        return result

    def handle_session_start(self, hook: HookInput) -> list[CreateResult]:
        """Run the session-start auto-triggers (auto-digest, timed auto-summarize)."""
        if not self.settings.enable_session_start:
            logger.debug("SessionStart hook disabled")
            return []
        return self.scheduler.on_session_start()
