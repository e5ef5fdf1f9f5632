"""Per-source request accounting and retry backoff timing.

Each source has its own (request_limit, window_seconds) budget. The window is
a resetting counter: the first check made after `window_seconds` have passed
since the last reset zeroes the count before the request is evaluated.

State is in-memory only. One governor instance is built per process and
handed to every collector, so concurrent collectors for the same source share
a single counter.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from threading import Lock

from trendscout.collectors.errors import RetryExhausted

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimit:
    request_limit: int
    window_seconds: float


# Published limits of each remote API
DEFAULT_LIMITS: dict[str, RateLimit] = {
    "google-trends": RateLimit(100, 60),
    "reddit": RateLimit(60, 60),
    "twitter": RateLimit(300, 15 * 60),
    "product-hunt": RateLimit(1000, 60 * 60),
    "github": RateLimit(5000, 60 * 60),
}


@dataclass
class _WindowState:
    window_start: float
    count: int = 0


class RateGovernor:
    """
    In-memory rate governance for remote sources.

    Usage:
        governor = RateGovernor()
        await governor.acquire("reddit")      # waits if the window is spent
        ...
        await governor.backoff(attempt, 3)    # between retries
    """

    def __init__(
        self,
        limits: dict[str, RateLimit] | None = None,
        *,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter_max: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.limits = dict(DEFAULT_LIMITS if limits is None else limits)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_max = jitter_max
        self._clock = clock
        self._sleep = sleep
        self._rng = rng
        self._states: dict[str, _WindowState] = {}
        self._lock = Lock()

    # -- window accounting (never suspends) ---------------------------------

    def _state(self, source: str, now: float) -> _WindowState:
        """Return the source's window, resetting it if the window has elapsed."""
        state = self._states.get(source)
        if state is None:
            state = _WindowState(window_start=now)
            self._states[source] = state
            return state
        limit = self.limits[source]
        if now - state.window_start >= limit.window_seconds:
            state.window_start = now
            state.count = 0
        return state

    def _governed(self, source: str) -> bool:
        if source in self.limits:
            return True
        logger.warning("No rate limit configured for %s; requests are ungoverned", source)
        return False

    def check(self, source: str) -> bool:
        """True when a request may be made now. Does not consume budget."""
        if not self._governed(source):
            return True
        with self._lock:
            state = self._state(source, self._clock())
            return state.count < self.limits[source].request_limit

    def try_acquire(self, source: str) -> bool:
        """Check and consume one request atomically."""
        if not self._governed(source):
            return True
        with self._lock:
            state = self._state(source, self._clock())
            if state.count >= self.limits[source].request_limit:
                return False
            state.count += 1
            return True

    def record(self, source: str) -> None:
        """Count one request against the source's window."""
        if source not in self.limits:
            return
        with self._lock:
            self._state(source, self._clock()).count += 1

    def remaining(self, source: str) -> int:
        limit = self.limits.get(source)
        if limit is None:
            return 0
        with self._lock:
            state = self._states.get(source)
            if state is None or self._clock() - state.window_start >= limit.window_seconds:
                return limit.request_limit
            return max(0, limit.request_limit - state.count)

    def time_until_reset(self, source: str) -> float:
        limit = self.limits.get(source)
        if limit is None:
            return 0.0
        with self._lock:
            state = self._states.get(source)
            if state is None:
                return 0.0
            return max(0.0, state.window_start + limit.window_seconds - self._clock())

    def status(self) -> dict[str, dict[str, float]]:
        return {
            source: {
                "remaining": self.remaining(source),
                "request_limit": limit.request_limit,
                "reset_in_seconds": round(self.time_until_reset(source), 1),
            }
            for source, limit in self.limits.items()
        }

    # -- suspending helpers ---------------------------------------------------

    async def wait_until_available(self, source: str) -> None:
        """Suspend until the source's window has budget again."""
        while not self.check(source):
            wait = self.time_until_reset(source)
            logger.info("Rate limit reached for %s, waiting %.1fs", source, wait)
            await self._sleep(max(wait, 0.01))

    async def acquire(self, source: str) -> None:
        """Wait for budget, then consume one request."""
        while not self.try_acquire(source):
            await self.wait_until_available(source)

    def backoff_delay(self, attempt: int) -> float:
        return min(self.base_delay * 2**attempt, self.max_delay) + self._rng() * self.jitter_max

    async def backoff(
        self, attempt: int, max_attempts: int, *, floor: float | None = None
    ) -> float:
        """Sleep before retry `attempt`; raise RetryExhausted past `max_attempts`.

        `floor` lets a server-sent Retry-After hint lengthen the delay.
        """
        if attempt >= max_attempts:
            raise RetryExhausted(attempt, max_attempts)
        delay = self.backoff_delay(attempt)
        if floor is not None and floor > delay:
            delay = min(floor, self.max_delay)
        logger.debug("Backing off %.2fs before attempt %d", delay, attempt + 1)
        await self._sleep(delay)
        return delay

    def reset(self, source: str | None = None) -> None:
        with self._lock:
            if source is None:
                self._states.clear()
            else:
                self._states.pop(source, None)
