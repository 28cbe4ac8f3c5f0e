"""
Daily archive configuration settings.

Loads configuration from environment variables via pydantic-settings.
Every key can be set as DAILY_<NAME> in the environment or in a .env file.
"""

from datetime import time
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_hhmm(value: str) -> time:
    """Parse an "HH:MM" string into a time."""
    hours, _, minutes = value.strip().partition(":")
    return time(int(hours), int(minutes))


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DAILY_",
        env_file=str(Path(__file__).parent / ".env"),
        extra="ignore",  # Allow extra env vars without errors
    )

    # Storage
    storage_path: Path = Path.home() / ".claude" / "daily"   # Archive root (date folders, jobs/)
    projects_dir: Path = Path.home() / ".claude" / "projects"  # Where the editor keeps transcripts

    # Summarizer collaborator
    claude_bin: str = "claude"                 # Assistant CLI executable
    model: str = "sonnet"                      # Passed as --model
    summary_language: str = "en"               # "en" or "zh"
    prompt_templates_dir: Optional[Path] = None  # <template>.md files here override built-ins

    # Hooks
    enable_session_start: bool = True
    enable_session_end: bool = True
    session_end_reasons: str = "user_exit,prompt_input_exit,clear,logout,other"  # Comma-separated

    # Auto-digest of previous days on session start
    auto_digest_enabled: bool = True
    digest_time: str = "06:00"

    # Auto-summarize of sessions that ended without a SessionEnd hook
    auto_summarize_enabled: bool = True
    auto_summarize_on_show: bool = False       # Opt-in: scan on every dashboard open
    auto_summarize_time: str = "06:00"
    auto_summarize_inactive_minutes: int = 30

    # Jobs
    job_retention_days: int = 7

    log_level: str = "INFO"

    @field_validator("digest_time", "auto_summarize_time")
    @classmethod
    def _validate_hhmm(cls, value: str) -> str:
        try:
            parse_hhmm(value)
        except ValueError as e:
            raise ValueError(f"expected HH:MM, got {value!r}") from e
        return value

    @field_validator("storage_path", "projects_dir", "prompt_templates_dir")
    @classmethod
    def _expand_user(cls, value: Optional[Path]) -> Optional[Path]:
        return value.expanduser() if value is not None else None

    @property
    def jobs_dir(self) -> Path:
        return self.storage_path / "jobs"

    @property
    def pending_skills_dir(self) -> Path:
        return self.storage_path / "pending-skills"

    @property
    def state_file(self) -> Path:
        """Small JSON file for trigger bookkeeping (last auto-summarize check)."""
        return self.storage_path / "state.json"

    @property
    def archive_reasons(self) -> set[str]:
        return {r.strip() for r in self.session_end_reasons.split(",") if r.strip()}

    @property
    def digest_time_of_day(self) -> time:
        return parse_hhmm(self.digest_time)

    @property
    def auto_summarize_time_of_day(self) -> time:
        return parse_hhmm(self.auto_summarize_time)


# Singleton instance
_settings: Optional[Settings] = None


def get_settings(reload: bool = False) -> Settings:
    """Get the global settings (re-reads the environment when reload=True)."""
    global _settings
    if _settings is None or reload:
        _settings = Settings()
    return _settings
