"""
Storage helpers shared by the job registry and the archive store.
"""

from storage.file_io import (
    atomic_write_text,
    atomic_json_write,
    read_json,
    is_temp_file,
    file_lock,
)

__all__ = [
    "atomic_write_text",
    "atomic_json_write",
    "read_json",
    "is_temp_file",
    "file_lock",
]
