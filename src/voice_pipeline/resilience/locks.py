"""
Keyed Locks.

Rate windows and cache entries are each guarded by their own lock so
traffic for one user never waits on another user's critical section.
KeyedLocks hands out one lock per key. Locks are reference counted and
dropped when the last holder or waiter leaves, so the table only ever
contains keys that are in use right now.

Usage:
    locks = KeyedLocks()
    with locks.hold("tts:user-1"):
        ...  # exclusive for this key only
"""
from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class _Entry:
    __slots__ = ("lock", "refs")

    def __init__(self):
        self.lock = threading.Lock()
        self.refs = 0


class KeyedLocks:
    """One lock per key, created on demand and freed when unused."""

    def __init__(self):
        self._registry_lock = threading.Lock()
        self._entries: Dict[Hashable, _Entry] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._registry_lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = _Entry()
                self._entries[key] = entry
            entry.refs += 1

        entry.lock.acquire()
        try:
            yield
        finally:
            entry.lock.release()
            with self._registry_lock:
                entry.refs -= 1
                if entry.refs == 0:
                    del self._entries[key]

    def active_keys(self) -> List[Hashable]:
        with self._registry_lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._entries)
