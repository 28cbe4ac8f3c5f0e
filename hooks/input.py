"""Hook payload sent by the editor on stdin."""

from typing import TextIO

from pydantic import BaseModel, ValidationError

from errors import HookInputError

SESSION_START = "SessionStart"
SESSION_END = "SessionEnd"


class HookInput(BaseModel):
    session_id: str
    transcript_path: str
    cwd: str
    hook_event_name: str
    reason: str | None = None  # SessionEnd only: user_exit, clear, logout, ...
    permission_mode: str | None = None

    model_config = {"extra": "ignore"}


def parse_hook_input(raw: str) -> HookInput:
    if not raw.strip():
        raise HookInputError("No hook input received on stdin")
    try:
        return HookInput.model_validate_json(raw)
    except ValidationError as e:
        raise HookInputError(f"Invalid hook input: {e.errors()[0].get('msg', e)}") from e


def read_hook_input(stream: TextIO) -> HookInput:
    """Read and decode the hook JSON. Raises HookInputError."""
    try:
        raw = stream.read()
    except OSError as e:
        raise HookInputError(f"Failed to read hook input: {e}") from e
    return parse_hook_input(raw)
