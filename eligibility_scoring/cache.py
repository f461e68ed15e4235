"""In-memory memo of evaluation results."""

import threading
import time
from collections import OrderedDict
from typing import Callable

from .criteria import Criteria
from .models import EvaluationResult
from .snapshot import Snapshot


class EvaluationCache:
    """TTL and size bounded cache keyed by criteria and snapshot fingerprints.

    Entries are evicted least recently used first once ``max_entries`` is reached.
    """

    def __init__(
        self,
        ttl_seconds: float = 3600.0,
        max_entries: int = 1000,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[tuple[str, str], tuple[float, EvaluationResult]] = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key(criteria: Criteria, snapshot: Snapshot) -> tuple[str, str]:
        return (criteria.fingerprint(), snapshot.fingerprint())

    def get(self, criteria: Criteria, snapshot: Snapshot) -> EvaluationResult | None:
        key = self.key(criteria, snapshot)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[0] <= self._clock():
                if entry is not None:
                    del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry[1]

    def put(self, criteria: Criteria, snapshot: Snapshot, result: EvaluationResult) -> None:
        key = self.key(criteria, snapshot)
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, result)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def remember(
        self,
        criteria: Criteria,
        snapshot: Snapshot,
        compute: Callable[[], EvaluationResult],
    ) -> EvaluationResult:
        """Return the cached result, or compute, store and return it."""
        cached = self.get(criteria, snapshot)
        if cached is not None:
            return cached
        result = compute()
        self.put(criteria, snapshot, result)
        return result

    def invalidate(self, criteria: Criteria) -> int:
        """Drop every entry for ``criteria``; returns how many were removed."""
        fingerprint = criteria.fingerprint()
        with self._lock:
            stale = [k for k in self._entries if k[0] == fingerprint]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def flush(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, float]:
        lookups = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": len(self._entries),
            "hit_rate": round(self.hits / lookups * 100, 2) if lookups else 0.0,
        }
