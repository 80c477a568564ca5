# Overview: Per-key serialization for session state transitions.

from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


class _KeyLock:
    # threading.Lock is not weak-referenceable; this wrapper is.
    __slots__ = ("lock", "__weakref__")

    def __init__(self):
        self.lock = threading.Lock()


class KeyedLocks:
    """
    In-process mutex per key (session id).

    Entries disappear once no thread holds a reference, so the table does
    not grow with the number of sessions ever seen. Cross-process
    serialization comes from lock_for_update on the session row.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def _get(self, key) -> _KeyLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            return entry

    @contextmanager
    def hold(self, key):
        entry = self._get(key)
        with entry.lock:
            yield
