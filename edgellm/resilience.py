"""Retry with exponential backoff, and outcome-based engine health.

``retry_async`` is the one backoff loop used by both
``InferenceEngine.generate_with_retry`` and ``stream_with_retry``.
``HealthMonitor`` keeps a short rolling window of call outcomes from which
the engine's health is recomputed on every read.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff policy: ``delay(attempt) = base_delay * multiplier ** attempt``."""

    max_retries: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.multiplier < 1:
            raise ValueError("base_delay must be >= 0 and multiplier >= 1")

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (self.multiplier**attempt)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    is_retryable: Callable[[BaseException], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
) -> T:
    """Run ``operation`` until it succeeds or retries are used up.

    At most ``policy.max_retries + 1`` attempts are made. Errors for which
    ``is_retryable`` is false are raised immediately; after the last attempt
    the last error is raised unchanged.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc) or attempt >= policy.max_retries:
                raise
            wait = policy.delay_for(attempt)
            logger.warning(
                "Retryable error: %s (attempt %d/%d, waiting %.2fs)",
                exc,
                attempt + 1,
                policy.max_retries + 1,
                wait,
            )
            if on_retry is not None:
                on_retry(attempt, exc, wait)
            await sleep(wait)
            attempt += 1


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class EngineHealth(str, enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class Outcome(str, enum.Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"
    RETRIES_EXHAUSTED = "retries_exhausted"


_FAILURES = {Outcome.TRANSIENT_FAILURE, Outcome.FATAL_FAILURE}


class HealthMonitor:
    """Rolling window of recent generation outcomes.

    Only the last ``window_size`` outcomes younger than ``window_seconds``
    count. Classification:

    - UNHEALTHY: two or more retry exhaustions, or five or more failures
      in a row at the end of the window.
    - DEGRADED: one retry exhaustion, any fatal runtime failure, or two or
      more trailing failures.
    - HEALTHY otherwise.
    """

    UNHEALTHY_EXHAUSTIONS = 2
    UNHEALTHY_STREAK = 5
    DEGRADED_STREAK = 2

    def __init__(
        self,
        window_size: int = 20,
        window_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self._clock = clock
        self._events: deque[tuple[float, Outcome]] = deque(maxlen=window_size)

    def record(self, outcome: Outcome) -> None:
        self._events.append((self._clock(), outcome))

    def reset(self) -> None:
        self._events.clear()

    def outcomes(self) -> list[Outcome]:
        cutoff = self._clock() - self.window_seconds
        return [outcome for ts, outcome in self._events if ts >= cutoff]

    def trailing_failures(self) -> int:
        streak = 0
        for outcome in reversed(self.outcomes()):
            if outcome is Outcome.RETRIES_EXHAUSTED:
                # Marker recorded after the attempts it summarises.
                continue
            if outcome not in _FAILURES:
                break
            streak += 1
        return streak

    def classify(self) -> EngineHealth:
        outcomes = self.outcomes()
        exhausted = outcomes.count(Outcome.RETRIES_EXHAUSTED)
        streak = self.trailing_failures()

        if exhausted >= self.UNHEALTHY_EXHAUSTIONS or streak >= self.UNHEALTHY_STREAK:
            return EngineHealth.UNHEALTHY
        if exhausted or Outcome.FATAL_FAILURE in outcomes or streak >= self.DEGRADED_STREAK:
            return EngineHealth.DEGRADED
        return EngineHealth.HEALTHY
