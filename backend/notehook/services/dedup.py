"""
Bounded note deduplication cache.

Remembers the most recent (webhook, server, note) combinations that were
forwarded so a note delivered twice by Misskey (e.g. the same note matching
both a "note" and a "mention" webhook pointed at one Discord channel) is only
posted once.

The cache lives in memory for the lifetime of the process and is bounded by
capacity only. A key being present means "already delivered or delivery in
flight"; once evicted, the same note is treated as new again.
"""

import threading
from collections import OrderedDict
from enum import Enum
from typing import NamedTuple

DEFAULT_CAPACITY = 1024


class DedupKey(NamedTuple):
    webhook_id: int
    server: str
    note_id: str


class DedupResult(str, Enum):
    FRESH = "fresh"
    DUPLICATE = "duplicate"


class DedupCache:
    """
    Least-recently-used set of DedupKeys with a fixed capacity.

    check_and_insert() is the only mutating operation and runs entirely under
    one lock, so two concurrent requests for the same key can never both see
    FRESH. The lock is never held across I/O.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._entries: "OrderedDict[DedupKey, None]" = OrderedDict()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def check_and_insert(self, key: DedupKey) -> DedupResult:
        """
        Record ``key`` as seen and report whether it already was.

        - present:            touch to most-recently-used, DUPLICATE
        - absent, spare room: insert, FRESH
        - absent, full:       evict least-recently-used, insert, FRESH

        A duplicate never evicts anything.
        """
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                return DedupResult.DUPLICATE

            if len(self._entries) >= self._capacity:
                self._entries.popitem(last=False)
            self._entries[key] = None
            return DedupResult.FRESH

    def __contains__(self, key: object) -> bool:
        # Read-only: does not change recency
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
