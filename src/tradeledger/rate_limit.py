from __future__ import annotations

from collections import defaultdict, deque
from dataclasses import dataclass
from threading import Lock
from time import monotonic


@dataclass(slots=True, frozen=True)
class RateDecision:
    allowed: bool
    retry_after: float = 0.0


class SlidingWindowRateLimiter:
    """Per-principal request cap over a trailing window, shared across API routes."""

    def __init__(self, limit: int, window_seconds: float = 60.0) -> None:
        if limit <= 0:
            raise ValueError("limit must be greater than zero")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be greater than zero")
        self.limit = limit
        self.window_seconds = window_seconds
        self._hits: defaultdict[str, deque[float]] = defaultdict(deque)
        self._lock = Lock()
        self._last_sweep = float("-inf")

    def check(self, principal: str, now: float | None = None) -> RateDecision:
        current = monotonic() if now is None else now
        cutoff = current - self.window_seconds
        with self._lock:
            if current - self._last_sweep >= self.window_seconds:
                self._sweep(cutoff)
                self._last_sweep = current

            hits = self._hits[principal]
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.limit:
                return RateDecision(False, max(0.0, hits[0] - cutoff))

            hits.append(current)
            return RateDecision(True)

    def _sweep(self, cutoff: float) -> None:
        # principals idle for a full window hold no live hits
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]
