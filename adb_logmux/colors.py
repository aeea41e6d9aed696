"""
Terminal colors, round-robin color allocation and record formatting.
"""

from __future__ import annotations

import re
import threading
from typing import Dict, Mapping, Optional, Tuple

from adb_logmux.matcher import LogRecord
from adb_logmux.registry import Registry
from adb_logmux.settings import log_event

# ══════════════════════════════════════════════════════════════════════════════
# PALETTE
# ══════════════════════════════════════════════════════════════════════════════

ESC = "\033"
RESET = f"{ESC}[0m"

# (name, SGR code). Device and tag sequences both start at red.
PALETTE: Tuple[Tuple[str, int], ...] = (
    ("red",            31),
    ("green",          32),
    ("yellow",         33),
    ("blue",           34),
    ("magenta",        35),
    ("cyan",           36),
    ("bright_red",     91),
    ("bright_green",   92),
    ("bright_yellow",  93),
    ("bright_blue",    94),
    ("bright_magenta", 95),
    ("bright_cyan",    96),
)

COLOR_BY_NAME: Dict[str, int] = {name: index for index, (name, _) in enumerate(PALETTE)}

# Field styles that are not allocated
TIME_STYLE    = "34"
OWNER_STYLE   = "30;100"
MESSAGE_STYLE = "1;30"

DEVICE_WIDTH = 16
TAG_WIDTH    = 20

# Level letter -> (SGR style, badge text)
LEVEL_BADGES: Dict[str, Tuple[str, str]] = {
    "D": ("30;44",   " D "),
    "E": ("30;41",   " E "),
    "F": ("5;30;41", " F "),
    "I": ("30;42",   " I "),
    "V": ("37",      " V "),
    "W": ("30;43",   " W "),
}
BLANK_BADGE = "   "

_ESCAPE_RE = re.compile(r"\033\[[0-9;]*m")


def sgr(code) -> str:
    return f"{ESC}[{code}m"


def paint(text: str, code) -> str:
    return f"{sgr(code)}{text}{RESET}"


def strip_colors(text: str) -> str:
    return _ESCAPE_RE.sub("", text)


def color_code(index: int) -> int:
    """SGR code for a palette index."""
    return PALETTE[index % len(PALETTE)][1]

# ══════════════════════════════════════════════════════════════════════════════
# ALLOCATION
# ══════════════════════════════════════════════════════════════════════════════

class ColorAllocator:
    """
    Cyclic palette counter.

    The k-th call to allocate_next() returns palette index (k - 1) mod N.
    """

    def __init__(self, size: int = len(PALETTE), lock=None):
        if size <= 0:
            raise ValueError("palette size must be positive")
        self.size = size
        self._next = 0
        self._lock = lock if lock is not None else threading.Lock()

    def allocate_next(self) -> int:
        with self._lock:
            index = self._next
            self._next = (self._next + 1) % self.size
            return index


class TagColorizer:
    """
    Tag name -> palette index, shared by every device worker.

    Tags are never evicted. Seeded tags keep their configured color and do
    not consume a slot of the round-robin sequence. The default allocator
    shares the registry lock, so a slot is only taken for a tag that is
    actually inserted.
    """

    def __init__(self, allocator: Optional[ColorAllocator] = None,
                 registry: Optional[Registry] = None,
                 seeds: Optional[Mapping[str, str]] = None):
        self.registry: Registry = registry if registry is not None else Registry("tags")
        self.allocator = (allocator if allocator is not None
                          else ColorAllocator(lock=self.registry.lock))
        for tag, color_name in (seeds or {}).items():
            index = COLOR_BY_NAME.get(color_name.strip().lower())
            if index is None:
                log_event("Colors", f"Unknown color {color_name!r} for tag {tag!r}", "warning")
                continue
            self.registry.insert_if_absent(tag, index)

    def color_for(self, tag: str) -> int:
        index = self.registry.lookup(tag)
        if index is not None:
            return index
        return self.registry.get_or_insert(tag, self.allocator.allocate_next)[0]

# ══════════════════════════════════════════════════════════════════════════════
# FORMATTING
# ══════════════════════════════════════════════════════════════════════════════

def level_badge(level: str, colored: bool = True) -> str:
    badge = LEVEL_BADGES.get(level)
    if badge is None:
        return BLANK_BADGE
    style, text = badge
    return paint(text, style) if colored else text


def format_record(device_name: str, device_color: int, record: LogRecord,
                  tag_color: int, colored: bool = True) -> str:
    """
    Build one output line (without the trailing newline).

    Layout: device, timestamp, owner, tag, level badge, message.
    """
    device_field = f"{device_name:<{DEVICE_WIDTH}.{DEVICE_WIDTH}}"
    tag_field = f"{record.tag:<{TAG_WIDTH}.{TAG_WIDTH}}"

    if not colored:
        return " ".join((
            device_field,
            record.timestamp,
            record.owner,
            tag_field,
            level_badge(record.level, colored=False),
            record.message,
        ))

    return " ".join((
        paint(device_field, color_code(device_color)),
        paint(record.timestamp, TIME_STYLE),
        paint(record.owner, OWNER_STYLE),
        paint(tag_field, color_code(tag_color)),
        level_badge(record.level),
        paint(record.message, MESSAGE_STYLE),
    ))
