"""
Keyed Locks — one in-process lock per key (e.g. per user id).
Entries are reference counted and dropped when the last holder releases.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List


class KeyedLock:
    """Serializes critical sections that share a key; different keys never block each other."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, List] = {}  # key -> [lock, holders]

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
