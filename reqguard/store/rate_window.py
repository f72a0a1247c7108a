"""In-process sliding-window request counters."""

from __future__ import annotations

import math
import random
import threading
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

logger = structlog.get_logger()

# Fraction of check() calls that also sweep expired identifiers.
DEFAULT_SWEEP_PROBABILITY = 0.01


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


@dataclass
class RateWindow:
    """Timestamps (ms) of allowed requests within the trailing window."""

    window_ms: float
    timestamps: deque[float] = field(default_factory=deque)

    def prune(self, now: float) -> None:
        window_start = now - self.window_ms
        while self.timestamps and self.timestamps[0] <= window_start:
            self.timestamps.popleft()


@dataclass(frozen=True)
class RateDecision:
    allowed: bool
    count: int
    limit: int
    retry_after: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateWindowStore:
    """Sliding-window counter keyed by client identifier.

    The whole prune/count/append sequence runs under one lock, so
    concurrent requests from the same client cannot both take the last slot.
    Memory is bounded by an inline probabilistic sweep rather than a
    background task.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = _monotonic_ms,
        sweep_probability: float = DEFAULT_SWEEP_PROBABILITY,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._clock = clock
        self._sweep_probability = sweep_probability
        self._rng = rng
        self._windows: dict[str, RateWindow] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._windows)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._windows

    def check(
        self,
        identifier: str,
        window_ms: float,
        max_requests: int,
        *,
        now: float | None = None,
    ) -> RateDecision:
        """Record a request for ``identifier`` if it fits in the window.

        Denied requests do not consume a slot.
        """
        if now is None:
            now = self._clock()

        with self._lock:
            window = self._windows.get(identifier)
            if window is None:
                window = RateWindow(window_ms=window_ms)
                self._windows[identifier] = window
            window.window_ms = window_ms
            window.prune(now)

            count = len(window.timestamps)
            if count >= max_requests:
                if window.timestamps:
                    retry_after = math.ceil((window.timestamps[0] + window_ms - now) / 1000)
                else:
                    retry_after = math.ceil(window_ms / 1000)
                decision = RateDecision(
                    allowed=False,
                    count=count,
                    limit=max_requests,
                    retry_after=max(1, retry_after),
                )
            else:
                window.timestamps.append(now)
                decision = RateDecision(allowed=True, count=count + 1, limit=max_requests)

            if self._rng() < self._sweep_probability:
                self._sweep_locked(now)

        return decision

    def sweep(self, now: float | None = None) -> int:
        """Drop identifiers whose whole window has expired. Returns how many were removed."""
        if now is None:
            now = self._clock()
        with self._lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        expired = []
        for identifier, window in self._windows.items():
            window.prune(now)
            if not window.timestamps:
                expired.append(identifier)
        for identifier in expired:
            del self._windows[identifier]
        if expired:
            logger.debug("rate_window_sweep", removed=len(expired), remaining=len(self._windows))
        return len(expired)

    def reset(self, identifier: str | None = None) -> None:
        """Forget one identifier, or everything when ``identifier`` is None."""
        with self._lock:
            if identifier is None:
                self._windows.clear()
            else:
                self._windows.pop(identifier, None)
