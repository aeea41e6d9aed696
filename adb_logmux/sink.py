"""
Serialized console output.
"""

from __future__ import annotations

import sys
import threading
from typing import IO, Optional


class OutputError(Exception):
    """The console stream can no longer be written. Fatal."""


class OutputSink:
    """
    Single writer for the shared output stream.

    Each record is written and flushed under one lock, so lines from
    different devices never interleave.
    """

    def __init__(self, stream: Optional[IO[str]] = None):
        self.stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()
        self.records_written = 0

    def write(self, record: str) -> None:
        line = record if record.endswith("\n") else record + "\n"
        with self._lock:
            try:
                self.stream.write(line)
                self.stream.flush()
            except (OSError, ValueError) as e:
                raise OutputError(f"Console write failed: {e}") from e
            self.records_written += 1
