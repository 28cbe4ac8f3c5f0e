"""
Per-job log files.

The worker's stdout/stderr are appended to <jobs-dir>/<id>.log by the
supervisor. LogSink reads them back, follows them while the job runs, and
bounds their size when the job finishes.
"""

import logging
import time
from datetime import datetime
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional

logger = logging.getLogger("daily.jobs.log")

# Maximum log file size in bytes before truncation (1 MB)
MAX_LOG_SIZE = 1024 * 1024

FOLLOW_POLL_SECONDS = 0.5


class LogSink:
    """Append-only log file for one job."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def open_for_append(self) -> BinaryIO:
        """Binary append handle, suitable for a child's stdout/stderr."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return open(self.path, "ab")

    def write(self, message: str) -> None:
        """Append a timestamped line."""
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        with self.open_for_append() as f:
            f.write(f"[{stamp}] {message}\n".encode("utf-8"))

    def exists(self) -> bool:
        return self.path.exists()

    def size(self) -> int:
        try:
            return self.path.stat().st_size
        except FileNotFoundError:
            return 0

    def read(self, tail: Optional[int] = None) -> str:
        """
        Read the log, or its last `tail` lines.

        Raises FileNotFoundError if the log doesn't exist.
        """
        content = self.path.read_text(encoding="utf-8", errors="replace")
        if tail is None:
            return content
        lines = content.splitlines()
        return "\n".join(lines[max(0, len(lines) - tail):])

    def read_from(self, offset: int) -> tuple[str, int]:
        """Read bytes appended since offset. Returns (text, new_offset)."""
        try:
            with open(self.path, "rb") as f:
                f.seek(offset)
                data = f.read()
        except FileNotFoundError:
            return "", offset
        return data.decode("utf-8", errors="replace"), offset + len(data)

    def follow(
        self,
        is_finished: Callable[[], bool],
        poll_interval: float = FOLLOW_POLL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Iterator[str]:
        """
        Yield new log text as it is appended.

        Stops once is_finished() is true and a final read returns nothing.
        The finished check happens before the read, so bytes written just
        before the job finished are always drained.
        """
        offset = 0
        while True:
            finished = is_finished()
            chunk, offset = self.read_from(offset)
            if chunk:
                yield chunk
                continue
            if finished:
                return
            sleep(poll_interval)

    def truncate_if_needed(self, max_bytes: int = MAX_LOG_SIZE) -> bool:
        """
        Keep only the last half of the lines once the log exceeds max_bytes.

        Returns True if the log was truncated.
        """
        if self.size() <= max_bytes:
            return False

        lines = self.read().splitlines()
        keep_from = len(lines) // 2
        kept = lines[keep_from:]
        truncated = f"[... log truncated, showing last {len(kept)} lines ...]\n" + "\n".join(kept) + "\n"
        self.path.write_text(truncated, encoding="utf-8")
        logger.info(f"Truncated {self.path.name} to {len(kept)} lines")
        return True
