"""In-memory fixed-window rate limiting for the token endpoints."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Tuple

from app.core.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowRateLimiter:
    """Per-key request counters reset at fixed window boundaries. Single node only."""

    def __init__(self, clock: Callable[[], float] = time.time, prune_interval_seconds: int = 60) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[Tuple[str, int], _Window] = {}
        self._prune_interval = prune_interval_seconds
        self._last_prune = clock()

    def _prune(self, now: float) -> None:
        # Caller holds the lock.
        if now - self._last_prune < self._prune_interval:
            return
        self._last_prune = now
        ended = [
            slot for slot, window in self._windows.items()
            if window.started_at + slot[1] <= now
        ]
        for slot in ended:
            del self._windows[slot]

    def _current(self, key: str, window_seconds: int, now: float) -> _Window:
        self._prune(now)
        start = now - (now % window_seconds)
        window = self._windows.get((key, window_seconds))
        if window is None or window.started_at != start:
            window = _Window(started_at=start)
            self._windows[(key, window_seconds)] = window
        return window

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        """Count one request against the key; False once the window is full."""
        with self._lock:
            window = self._current(key, window_seconds, self._clock())
            if window.count >= limit:
                return False
            window.count += 1
            return True

    def enforce(self, key: str, limits: Iterable[Tuple[int, int]]) -> None:
        """
        Apply several (limit, window_seconds) rules to one key

        Raises:
            RateLimitExceededError: If any rule is exhausted
        """
        for limit, window_seconds in limits:
            if not self.allow(f"{key}:{window_seconds}", limit, window_seconds):
                logger.warning("Rate limit exceeded for %s (%d per %ds)", key, limit, window_seconds)
                raise RateLimitExceededError()
