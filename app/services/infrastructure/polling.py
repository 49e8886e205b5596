"""
Generic poll-until helper with an explicit retry policy.
Knows nothing about assistants; sleep is injected so tests run instantly.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt ceiling plus capped exponential backoff.

    delay(attempt) = min(base_delay * growth_factor ** attempt, cap_delay)
    """

    max_attempts: int = 7
    base_delay: float = 0.5
    growth_factor: float = 1.5
    cap_delay: float = 5.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.cap_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.growth_factor < 1:
            raise ValueError("growth_factor must be >= 1 so delays never shrink")

    @classmethod
    def fixed(cls, delay: float, max_attempts: int = 7) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, base_delay=delay, growth_factor=1.0, cap_delay=delay)

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * self.growth_factor**attempt, self.cap_delay)

    def delays(self) -> list[float]:
        return [self.delay_for(attempt) for attempt in range(self.max_attempts)]


@dataclass(frozen=True)
class PollResult(Generic[T]):
    value: T
    attempts: int


class PollExhaustedError(Exception):
    """Raised when the policy ran out of attempts before the predicate held."""

    def __init__(self, attempts: int, last_value: Any = None, last_error: Exception | None = None):
        super().__init__(f"Polling gave up after {attempts} attempts")
        self.attempts = attempts
        self.last_value = last_value
        self.last_error = last_error


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    is_done: Callable[[T], bool],
    policy: RetryPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    retry_on: tuple[type[Exception], ...] = (),
    label: str = "poll",
) -> PollResult[T]:
    """
    Call `fetch` until `is_done(value)` holds or the policy is exhausted.

    The policy delay is slept before every fetch, mirroring a job that was
    just submitted. Exceptions listed in `retry_on` consume an attempt;
    anything else propagates immediately.

    Raises:
        PollExhaustedError: After `policy.max_attempts` fetches without success
    """
    last_value: Any = None
    last_error: Exception | None = None

    for attempt in range(policy.max_attempts):
        await sleep(policy.delay_for(attempt))

        try:
            value = await fetch()
        except retry_on as e:
            last_error = e
            logger.warning(f"{label} attempt failed", attempt=attempt + 1, error=str(e))
            continue

        last_value = value
        if is_done(value):
            return PollResult(value=value, attempts=attempt + 1)

        logger.debug(f"{label} not done yet", attempt=attempt + 1)

    raise PollExhaustedError(policy.max_attempts, last_value=last_value, last_error=last_error)
