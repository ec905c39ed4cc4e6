"""Retry loop shared by generation submission and status polling."""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TypeVar

from lessondeck.core.constants import (
    BACKOFF_BASE_SECONDS_DEFAULT,
    BACKOFF_CAP_SECONDS_DEFAULT,
    BACKOFF_JITTER_SECONDS_DEFAULT,
    POLL_INTERVAL_SECONDS_DEFAULT,
)

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]
JitterFn = Callable[[float, float], float]

logger = logging.getLogger(__name__)


class Verdict(enum.Enum):
    DONE = "done"
    RETRY = "retry"
    THROTTLED = "throttled"


@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int
    base_seconds: float = BACKOFF_BASE_SECONDS_DEFAULT
    cap_seconds: float = BACKOFF_CAP_SECONDS_DEFAULT
    jitter_seconds: float = BACKOFF_JITTER_SECONDS_DEFAULT
    retry_interval_seconds: float = POLL_INTERVAL_SECONDS_DEFAULT


@dataclass(frozen=True)
class Classified:
    """A verdict plus an optional server-mandated wait (Retry-After)."""

    verdict: Verdict
    retry_after: float | None = None


def compute_backoff_delay(policy: BackoffPolicy, streak: int, jitter: JitterFn = random.uniform) -> float:
    """
    Delay before the next attempt after `streak` consecutive throttled responses.

    Jitter is added before clamping so delays never decrease while below the cap
    (as long as jitter_seconds <= base_seconds) and stay exactly at the cap after.
    """
    exponent = max(streak - 1, 0)
    raw = policy.base_seconds * (2**exponent)
    if policy.jitter_seconds > 0:
        raw += jitter(0.0, policy.jitter_seconds)
    return min(policy.cap_seconds, raw)


def parse_retry_after(value: str | None, *, now: datetime | None = None) -> float | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date."""
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None

    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    current = now or datetime.now(UTC)
    return max(0.0, (retry_at - current).total_seconds())


async def with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    classify: Callable[[T], Classified],
    policy: BackoffPolicy,
    on_exhausted: Callable[[T, bool, int], Exception],
    sleep: SleepFn = asyncio.sleep,
    jitter: JitterFn = random.uniform,
    label: str = "operation",
) -> T:
    """
    Run `operation` until `classify` says DONE or `policy.max_attempts` is spent.

    `classify` raises for fatal outcomes. RETRY waits the fixed retry interval;
    THROTTLED waits Retry-After when given, otherwise exponential backoff on the
    current throttle streak. No sleep follows the final attempt. On exhaustion
    the exception built by `on_exhausted(last_result, throttled, attempts)` is
    raised.
    """
    streak = 0
    attempt = 0
    while True:
        attempt += 1
        result = await operation()
        classified = classify(result)

        if classified.verdict is Verdict.DONE:
            return result

        throttled = classified.verdict is Verdict.THROTTLED
        if attempt >= policy.max_attempts:
            raise on_exhausted(result, throttled, attempt)

        if throttled:
            streak += 1
            if classified.retry_after is not None:
                delay = classified.retry_after
            else:
                delay = compute_backoff_delay(policy, streak, jitter)
            logger.warning(
                "%s throttled attempt=%s/%s retry_in=%.2fs",
                label,
                attempt,
                policy.max_attempts,
                delay,
            )
        else:
            streak = 0
            delay = policy.retry_interval_seconds
            logger.debug("%s pending attempt=%s/%s", label, attempt, policy.max_attempts)

        await sleep(delay)
