"""Fixed-window rate counters keyed by client IP or session id."""

from __future__ import annotations

import threading
from dataclasses import dataclass

DEFAULT_EVICTION_THRESHOLD = 2_000


@dataclass(slots=True)
class CounterState:
    window_start_ms: int
    count: int


@dataclass(slots=True, frozen=True)
class RateDecision:
    allowed: bool
    retry_after_ms: int = 0


class FixedWindowCounter:
    """Count hits per key in fixed windows that open on the first hit after expiry.

    Entries older than two windows are evicted once the table reaches the threshold.
    State lives in process memory only.
    """

    def __init__(
        self,
        *,
        window_ms: int,
        limit: int,
        eviction_threshold: int = DEFAULT_EVICTION_THRESHOLD,
    ) -> None:
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        if limit <= 0:
            raise ValueError("limit must be > 0")
        self.window_ms = window_ms
        self.limit = limit
        self.eviction_threshold = eviction_threshold
        self._entries: dict[str, CounterState] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def try_consume(self, key: str, now_ms: int) -> RateDecision:
        if not key:
            return RateDecision(allowed=True)

        with self._lock:
            current = self._entries.get(key)
            if current is None or now_ms - current.window_start_ms >= self.window_ms:
                self._entries[key] = CounterState(window_start_ms=now_ms, count=1)
                self._evict_stale(now_ms)
                return RateDecision(allowed=True)

            if current.count >= self.limit:
                return RateDecision(
                    allowed=False,
                    retry_after_ms=max(0, current.window_start_ms + self.window_ms - now_ms),
                )

            current.count += 1
            return RateDecision(allowed=True)

    def _evict_stale(self, now_ms: int) -> None:
        if len(self._entries) < self.eviction_threshold:
            return
        stale_keys = [
            key
            for key, state in self._entries.items()
            if now_ms - state.window_start_ms >= self.window_ms * 2
        ]
        for key in stale_keys:
            del self._entries[key]
