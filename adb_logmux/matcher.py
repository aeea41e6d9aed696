"""
Line matching for `adb devices` listings and `logcat -v time` output.

Both parsers return None for lines that do not fit their layout; malformed
input is never an exception.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from adb_logmux.settings import log_event

# `<serial>\tdevice` lines from `adb devices`. Anything after the status
# token (e.g. `-l` details) is ignored.
DEVICE_LINE_PATTERN = re.compile(r"^([0-9A-Fa-f]*)[ \t]+device.*$")

# `08-14 10:22:01.123 I/ActivityManager( 1234): Starting activity`
LOG_LINE_PATTERN = re.compile(
    r"^(?P<timestamp>\d{2}-\d{2} \d{2}:\d{2}:\d{2}\.\d{3}) "
    r"(?P<level>[A-Z])/"
    r"(?P<tag>[^(]+)"
    r"\((?P<owner>[^)]+)\): "
    r"(?P<message>.*)$"
)


@dataclass(frozen=True)
class LogRecord:
    """One parsed logcat line."""
    timestamp: str
    level: str
    tag: str
    owner: str
    message: str

    def to_line(self) -> str:
        """Reassemble the record in `logcat -v time` layout."""
        return f"{self.timestamp} {self.level}/{self.tag}({self.owner}): {self.message}"


def strip_eol(line: str) -> str:
    return line.rstrip("\r\n")


def parse_device_line(line: str) -> Optional[str]:
    """Return the serial from one `adb devices` line, or None."""
    match = DEVICE_LINE_PATTERN.match(strip_eol(line))
    if not match:
        return None

    serial = match.group(1)
    if not serial:
        log_event("Discovery", f"Could not find device serial in listing line: {line!r}", "warning")
        return None
    return serial


def parse_log_line(line: str) -> Optional[LogRecord]:
    """Split one logcat line into its fields, or None if it does not fit."""
    match = LOG_LINE_PATTERN.match(strip_eol(line))
    if not match:
        return None
    return LogRecord(
        timestamp=match.group("timestamp"),
        level=match.group("level"),
        tag=match.group("tag"),
        owner=match.group("owner"),
        message=match.group("message"),
    )
