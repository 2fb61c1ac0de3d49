"""
Call-rate limiting for generative calls.

In-memory gatekeeper enforcing, in order:
1. Minimum interval between any two calls
2. Rolling one-hour cap across all calls
3. Rolling one-hour cap per key (usually a ticker)

State lives only in this process and resets on restart.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from quote_guard.config.loader import RateLimitConfig

HOUR_MS = 60 * 60 * 1000


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of a rate-limit check."""
    allowed: bool
    wait_ms: Optional[int] = None
    reason: Optional[str] = None


class RateLimiter:
    """Thread-safe rate limiter with an injectable monotonic clock."""

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._last_call_ms: Optional[float] = None
        self._hourly: List[float] = []
        self._per_key: Dict[str, List[float]] = {}

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _prune(self, now_ms: float) -> None:
        cutoff = now_ms - HOUR_MS
        self._hourly = [t for t in self._hourly if t > cutoff]
        for key in list(self._per_key):
            recent = [t for t in self._per_key[key] if t > cutoff]
            if recent:
                self._per_key[key] = recent
            else:
                del self._per_key[key]

    def _check(self, key: Optional[str], now_ms: float) -> RateLimitResult:
        self._prune(now_ms)
        min_interval = self.config.min_call_interval_ms

        if self._last_call_ms is not None:
            elapsed = now_ms - self._last_call_ms
            if elapsed < min_interval:
                return RateLimitResult(
                    allowed=False,
                    wait_ms=int(min_interval - elapsed),
                    reason=f"Rate limit: minimum {min_interval}ms between calls",
                )

        if len(self._hourly) >= self.config.max_calls_per_hour:
            oldest = min(self._hourly)
            return RateLimitResult(
                allowed=False,
                wait_ms=max(0, int(oldest + HOUR_MS - now_ms)),
                reason=(
                    f"Hourly limit reached: {self.config.max_calls_per_hour} "
                    "calls per hour"
                ),
            )

        if key is not None:
            attempts = self._per_key.get(key, [])
            if len(attempts) >= self.config.max_retries_per_ticker:
                return RateLimitResult(
                    allowed=False,
                    wait_ms=max(0, int(min(attempts) + HOUR_MS - now_ms)),
                    reason=(
                        f"Too many attempts for ticker {key}: "
                        f"{len(attempts)} in last hour"
                    ),
                )

        return RateLimitResult(allowed=True)

    def _record(self, key: Optional[str], now_ms: float) -> None:
        self._last_call_ms = now_ms
        self._hourly.append(now_ms)
        if key is not None:
            self._per_key.setdefault(key, []).append(now_ms)
        self._prune(now_ms)

    def can_make_call(self, key: Optional[str] = None) -> RateLimitResult:
        """Check whether a call may proceed now without recording it."""
        with self._lock:
            return self._check(key, self._now_ms())

    def record_call(self, key: Optional[str] = None) -> None:
        with self._lock:
            self._record(key, self._now_ms())

    def acquire(self, key: Optional[str] = None) -> RateLimitResult:
        """Check and, if allowed, record the call in one step.

        Two concurrent callers can never both pass the same slot.
        """
        with self._lock:
            now_ms = self._now_ms()
            result = self._check(key, now_ms)
            if result.allowed:
                self._record(key, now_ms)
            return result

    def reset(self) -> None:
        with self._lock:
            self._last_call_ms = None
            self._hourly = []
            self._per_key = {}

    def get_stats(self) -> Dict[str, object]:
        """Snapshot of current limiter state."""
        with self._lock:
            now_ms = self._now_ms()
            self._prune(now_ms)
            since_last = (
                int(now_ms - self._last_call_ms)
                if self._last_call_ms is not None else None
            )
            return {
                "calls_last_hour": len(self._hourly),
                "max_calls_per_hour": self.config.max_calls_per_hour,
                "ms_since_last_call": since_last,
                "tracked_keys": len(self._per_key),
                "attempts_by_key": {k: len(v) for k, v in self._per_key.items()},
            }
