"""
Bounded retry policy and caller cancellation.

Every network adapter is parameterized with a RetryPolicy so its retry
behaviour can be exercised with a fake clock. A CancellationToken carries
the caller's deadline through adapter boundaries and every wait.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

from tenacity import (
    Retrying,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from quote_guard.errors import FetchCancelled, PermanentSourceError

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation with an optional deadline.

    Args:
        timeout: Seconds from now after which the token counts as cancelled
        clock: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._event = threading.Event()
        self._clock = clock
        self._deadline = clock() + timeout if timeout is not None else None

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._deadline is not None and self._clock() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def timeout_for(self, default: float) -> float:
        """Per-attempt timeout bounded by the remaining deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return min(default, remaining)

    def raise_if_cancelled(self, where: str = "") -> None:
        if self.cancelled:
            suffix = f" before {where}" if where else ""
            raise FetchCancelled(f"Fetch cancelled{suffix}")

    def sleep(self, seconds: float) -> None:
        """Wait, aborting early on cancellation.

        A wait that would outlive the deadline is abandoned immediately
        rather than slept through.
        """
        self.raise_if_cancelled("wait")
        remaining = self.remaining()
        if remaining is not None and seconds > remaining:
            raise FetchCancelled(
                f"Fetch cancelled: waiting {seconds:.1f}s would exceed the deadline"
            )
        if self._event.wait(seconds):
            raise FetchCancelled("Fetch cancelled during wait")


@dataclass(frozen=True)
class RetryPolicy:
    """Explicit bounded retry with exponential backoff.

    Delay before retry n (1-based) is ``base_delay * multiplier ** (n - 1)``
    capped at ``max_delay``.
    """
    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays cannot be negative")

    def backoff(self, attempt: int) -> float:
        """Delay in seconds after the given failed attempt (1-based)."""
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))

    def run(
        self,
        fn: Callable[[], T],
        cancel: Optional[CancellationToken] = None,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ) -> T:
        """Call fn until it succeeds or the policy gives up.

        PermanentSourceError and FetchCancelled are never retried. The last
        error is re-raised unchanged once attempts are exhausted.
        """
        sleep = self.sleep
        if cancel is not None:
            def sleep(seconds: float) -> None:
                # Fake clocks still see the delay; the token enforces the deadline.
                cancel.raise_if_cancelled("retry")
                remaining = cancel.remaining()
                if remaining is not None and seconds > remaining:
                    raise FetchCancelled(
                        f"Fetch cancelled: backoff of {seconds:.1f}s would exceed the deadline"
                    )
                self.sleep(seconds)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(
                multiplier=self.base_delay,
                exp_base=self.multiplier,
                max=self.max_delay,
            ),
            retry=(
                retry_if_exception_type(retry_on)
                & retry_if_not_exception_type((PermanentSourceError, FetchCancelled))
            ),
            sleep=sleep,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                if cancel is not None:
                    cancel.raise_if_cancelled("attempt")
                return fn()
        raise AssertionError("unreachable")  # pragma: no cover


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0)
