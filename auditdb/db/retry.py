"""
Retry on Transient Failure

Bounded exponential backoff for database operations that fail because the
server or network is momentarily unavailable.

Retry Flow:
===========
┌─────────────────────────────────────────────────────────────────────────────┐
│                                                                             │
│   attempt 1 ──► success ─────────────────────────────────► return result    │
│       │                                                                     │
│       └──► transient error ──► sleep(delay_for(1)) ──► attempt 2 ...        │
│                                                                             │
│   attempt max_retry_count + 1 ──► transient error ──► re-raise              │
│                                                                             │
│   any attempt ──► non-transient error ──► re-raise immediately              │
│                                                                             │
└─────────────────────────────────────────────────────────────────────────────┘

Which errors count as transient is provider knowledge, so ``execute_with_retry``
takes an ``is_transient`` predicate supplied by the session factory.
"""

import asyncio
from typing import Awaitable, Callable, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy import exc as sa_exc

from auditdb.core.logging import logger

T = TypeVar("T")

TransientPredicate = Callable[[BaseException], bool]
RetryHook = Callable[[int, BaseException], Awaitable[None]]


class RetryPolicy(BaseModel):
    """Retry/backoff configuration for transient database failures."""

    model_config = ConfigDict(frozen=True)

    # Number of retries after the first attempt; 0 disables retrying
    max_retry_count: int = Field(default=6, ge=0)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=30.0, ge=0)

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryPolicy":
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must be >= base_delay_seconds")
        return self

    @property
    def max_attempts(self) -> int:
        """Total attempts including the first one."""
        return self.max_retry_count + 1

    def delay_for(self, retry_number: int) -> float:
        """Compute the sleep before retry ``retry_number`` (1-based)."""
        if retry_number <= 0:
            raise ValueError("retry_number must be >= 1.")
        return min(
            self.base_delay_seconds * (2 ** (retry_number - 1)),
            self.max_delay_seconds,
        )


def is_transient_error(exc: BaseException) -> bool:
    """Provider-independent transient failure detection.

    Covers dropped connections SQLAlchemy has already invalidated, pool
    checkout timeouts, and DBAPI errors caused by socket-level failures.
    """
    if isinstance(exc, sa_exc.TimeoutError):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, sa_exc.DBAPIError):
        if exc.connection_invalidated:
            return True
        return isinstance(exc.orig, (ConnectionError, TimeoutError))
    return False


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    is_transient: TransientPredicate = is_transient_error,
    on_retry: RetryHook | None = None,
    operation_name: str = "database operation",
) -> T:
    """Run an async operation, retrying transient failures with backoff.

    Args:
        operation: Zero-argument coroutine function to run
        policy: Retry ceiling and backoff settings
        is_transient: Predicate deciding whether an error is retryable
        on_retry: Awaited before each retry with (retry_number, error); used
            by sessions to roll back and restore pending state
        operation_name: Label for log lines

    Returns:
        Whatever ``operation`` returns

    Raises:
        The last error from ``operation`` once it is non-transient or the
        retry ceiling has been reached.
    """
    retry_number = 0

    while True:
        try:
            return await operation()
        except Exception as e:
            if not is_transient(e) or retry_number >= policy.max_retry_count:
                raise

            retry_number += 1
            delay = policy.delay_for(retry_number)
            logger.warning(
                "Transient database failure, retrying",
                operation=operation_name,
                attempt=retry_number,
                max_retries=policy.max_retry_count,
                delay_seconds=delay,
                error=str(e),
                error_type=type(e).__name__,
            )
            if on_retry is not None:
                await on_retry(retry_number, e)
            if delay:
                await asyncio.sleep(delay)
