"""In-memory throttle for repeated failed sign-ins."""

from __future__ import annotations

import threading
import time
from collections import defaultdict, deque


class SignInThrottle:
    """Counts failed sign-ins per key inside a sliding window.

    Only failures are recorded; a successful sign-in clears the key.
    """

    def __init__(self, max_failures: int, window_seconds: int):
        self._failures = defaultdict(deque)
        self._lock = threading.Lock()
        self.max_failures = max_failures
        self.window_seconds = window_seconds

    def _trim(self, key: str, now: float) -> deque:
        q = self._failures[key]
        cutoff = now - self.window_seconds
        while q and q[0] < cutoff:
            q.popleft()
        return q

    def retry_after(self, key: str) -> int:
        """Seconds the caller must wait, or 0 when a new attempt is allowed."""
        now = time.monotonic()
        with self._lock:
            q = self._trim(key, now)
            if len(q) < self.max_failures:
                return 0
            return max(1, int(self.window_seconds - (now - q[0])))

    def record_failure(self, key: str) -> None:
        now = time.monotonic()
        with self._lock:
            self._trim(key, now).append(now)

    def reset(self, key: str) -> None:
        with self._lock:
            self._failures.pop(key, None)
