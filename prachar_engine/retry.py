"""
Bounded exponential-backoff retry for calls to external services.

The schedule is fixed and deterministic: before retry n the caller is
suspended for backoff_base_ms * 2**(n - 1) milliseconds (100, 200, 400 ...).
There is no jitter and the policy never logs; callers decide what a final
failure means.

Usage:
    policy = RetryPolicy()
    result = await policy.execute(lambda: endpoint.invoke(payload), classify_service_error)
    if result.ok:
        payload = result.value
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from .errors import ServiceError


class Classification(str, Enum):
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class RetryAttempt:
    """One failed attempt. Ephemeral, never persisted."""
    attempt_number: int
    delay_ms: int
    cause: BaseException


@dataclass
class RetryResult:
    """Outcome of `RetryPolicy.execute`."""
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    exhausted: bool = False
    history: List[RetryAttempt] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


def classify_service_error(exc: BaseException) -> Classification:
    """Default classifier for generation endpoints and storage."""
    if isinstance(exc, ServiceError):
        return Classification.RETRYABLE if exc.retryable else Classification.TERMINAL
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return Classification.RETRYABLE
    return Classification.TERMINAL


class RetryPolicy:
    """Executes an async operation with up to `max_attempts` attempts."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_base_ms: int = 100,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_base_ms = backoff_base_ms
        self._sleep = sleep

    def delay_ms(self, retry_number: int) -> int:
        """Backoff before the given retry, counted from 1."""
        return self.backoff_base_ms * 2 ** (retry_number - 1)

    async def execute(
        self,
        operation: Callable[[], Awaitable[Any]],
        classify: Callable[[BaseException], Classification] = classify_service_error,
    ) -> RetryResult:
        """
        Run `operation` until it succeeds, fails terminally, or runs out of attempts.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt
            classify: Maps an exception to RETRYABLE or TERMINAL

        Returns:
            RetryResult holding either the value or the last error
        """
        history: List[RetryAttempt] = []

        for attempt in range(1, self.max_attempts + 1):
            try:
                value = await operation()
            except Exception as e:
                if classify(e) is Classification.TERMINAL:
                    return RetryResult(error=e, attempts=attempt, history=history)

                if attempt == self.max_attempts:
                    history.append(RetryAttempt(attempt, 0, e))
                    return RetryResult(
                        error=e, attempts=attempt, exhausted=True, history=history
                    )

                delay = self.delay_ms(attempt)
                history.append(RetryAttempt(attempt, delay, e))
                await self._sleep(delay / 1000)
                continue

            return RetryResult(value=value, attempts=attempt, history=history)

        # max_attempts >= 1 guarantees the loop returns
        raise AssertionError("unreachable")
