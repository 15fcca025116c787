"""Per-identifier mutual exclusion.

Each user identifier maps to its own reentrant lock for the duration of one
logical operation. Entries are reference counted and dropped once no thread
holds or waits on them, so the registry does not grow with the number of
identifiers ever seen.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLocks:
    """Registry of reentrant locks keyed by identifier."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, holders_and_waiters]
        self._entries: Dict[str, List] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._entries[key] = entry
            entry[1] += 1
        lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0 and self._entries.get(key) is entry:
                    del self._entries[key]
