"""
Thread-safe key -> value registry.

Used twice: serial -> DeviceState for live devices, and tag -> palette index
for tag colors. Each instance owns one lock. Only get_or_insert() calls out
while holding it, and only into its factory.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple


class Registry:
    """
    Thread-safe registry with atomic check-then-insert.
    Uses snapshot pattern for iteration without holding the lock.
    """

    def __init__(self, name: str = "registry"):
        self.name = name
        self._items: Dict[str, Any] = {}
        self._lock = threading.RLock()
        self._snapshot: Tuple[Tuple[str, Any], ...] = ()

    def lookup(self, key: str) -> Optional[Any]:
        with self._lock:
            return self._items.get(key)

    def insert_if_absent(self, key: str, value: Any) -> bool:
        """Insert value unless key is present. Returns True if inserted."""
        with self._lock:
            if key in self._items:
                return False
            self._items[key] = value
            self._rebuild_snapshot()
            return True

    def get_or_insert(self, key: str, factory: Callable[[], Any]) -> Tuple[Any, bool]:
        """
        Return the value for key, creating it with factory() if absent.

        factory runs under the registry lock, so it is called at most once
        per key. Returns (value, created).
        """
        with self._lock:
            if key in self._items:
                return self._items[key], False
            value = factory()
            self._items[key] = value
            self._rebuild_snapshot()
            return value, True

    def remove(self, key: str, expected: Any = None) -> bool:
        """
        Remove key. Absent keys are not an error.

        If expected is given, the entry is only removed while it still maps
        to that exact value, so a stale owner cannot drop a newer entry.
        """
        with self._lock:
            if key not in self._items:
                return False
            if expected is not None and self._items[key] is not expected:
                return False
            del self._items[key]
            self._rebuild_snapshot()
            return True

    @property
    def lock(self) -> threading.RLock:
        """The registry lock, for state that must change together with it."""
        return self._lock

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._items

    def __len__(self) -> int:
        return len(self._snapshot)

    def count(self) -> int:
        return len(self._snapshot)

    def items(self) -> List[Tuple[str, Any]]:
        """Returns snapshot - safe to iterate without lock."""
        return list(self._snapshot)

    def keys(self) -> List[str]:
        return [key for key, _ in self._snapshot]

    def values(self) -> List[Any]:
        return [value for _, value in self._snapshot]

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def _rebuild_snapshot(self) -> None:
        self._snapshot = tuple(sorted(self._items.items(), key=lambda kv: kv[0]))

    def __repr__(self) -> str:
        return f"Registry({self.name!r}, {len(self)} entries)"
