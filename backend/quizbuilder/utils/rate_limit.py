"""Sliding-window limiter for attempt submissions.

Keys name a caller and a route group (for example `203.0.113.9:attempts`),
never a raw path, so the number of tracked keys follows the number of
active callers. A key is dropped as soon as its window holds no hits.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Tuple


class InMemoryRateLimiter:
    """Per-process limiter: at most `max_requests` per key in any `window_seconds`."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._hits)

    def _sweep(self, cutoff: float) -> None:
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] < cutoff]
        for key in stale:
            del self._hits[key]

    def allow(self, key: str, max_requests: int, window_seconds: int) -> Tuple[bool, int]:
        """Record a hit for `key` if allowed; return `(allowed, retry_after_seconds)`."""
        now = self._clock()
        cutoff = now - window_seconds
        with self._lock:
            self._sweep(cutoff)
            hits = self._hits.get(key)
            if hits is None:
                self._hits[key] = deque([now])
                return True, 0
            while hits and hits[0] < cutoff:
                hits.popleft()
            if len(hits) >= max_requests:
                return False, max(1, int(window_seconds - (now - hits[0])))
            hits.append(now)
        return True, 0

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
