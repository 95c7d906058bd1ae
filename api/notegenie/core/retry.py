from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, TypeVar

from notegenie.core.config import settings
from notegenie.core.errors import CompletionError, FailureKind

logger = logging.getLogger("retry")

T = TypeVar("T")


def failure_kind(exc: BaseException) -> FailureKind:
    if isinstance(exc, CompletionError):
        return exc.kind
    return FailureKind.FATAL


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff around a completion call.

    Only RATE_LIMITED, UNAVAILABLE and OVERLOADED failures are retried; the
    delay before retry n is base * 2^n ms, with a larger base for rate limits.
    Delays never shrink between attempts of the same call.
    """

    max_attempts: int = 3
    rate_limit_base_ms: int = 2000
    overload_base_ms: int = 1000
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            rate_limit_base_ms=settings.retry_rate_limit_base_ms,
            overload_base_ms=settings.retry_overload_base_ms,
        )

    def delay_ms(self, kind: FailureKind, attempt: int, previous_ms: int = 0) -> int:
        base = self.rate_limit_base_ms if kind is FailureKind.RATE_LIMITED else self.overload_base_ms
        delay = base * (2 ** attempt)
        if delay <= previous_ms:
            delay = previous_ms * 2
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        before_attempt: Optional[Callable[[], None]] = None,
    ) -> T:
        """
        before_attempt runs ahead of every attempt (cancellation checks);
        anything it raises propagates without a retry.
        """
        attempts = max(1, int(self.max_attempts))
        previous_ms = 0

        for attempt in range(attempts):
            if before_attempt is not None:
                before_attempt()
            try:
                return await operation()
            except Exception as e:
                kind = failure_kind(e)
                if not kind.retryable or attempt == attempts - 1:
                    raise

                previous_ms = self.delay_ms(kind, attempt, previous_ms)
                logger.info(
                    "retry attempt=%s/%s kind=%s delay_ms=%s",
                    attempt + 1,
                    attempts,
                    kind.value,
                    previous_ms,
                )
                await self.sleep(previous_ms / 1000.0)

        raise AssertionError("unreachable")


async def with_retry(operation: Callable[[], Awaitable[T]], max_attempts: int = 3) -> T:
    policy = RetryPolicy.from_settings()
    policy.max_attempts = max_attempts
    return await policy.run(operation)
