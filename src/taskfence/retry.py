"""Bounded retry with failure classification.

Authorization and not-found style failures (401, 403, 404, 422) are permanent
and surface after the first attempt. Everything else an HTTP call can raise
(5xx, 429, connection errors, unmapped GraphQL errors, a 2xx body that is not
JSON) is retried with a jittered exponential backoff until the attempt budget
runs out, at which point the last error is re-raised unchanged. Programming
errors such as a failed model validation are not retried.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

import httpx

from taskfence.config import FetchSettings
from taskfence.errors import GraphQLQueryError, MalformedResponseError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PERMANENT_STATUSES = frozenset({401, 403, 404, 422})

RETRYABLE_ERRORS = (httpx.HTTPError, GraphQLQueryError, MalformedResponseError)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    floor: float = 1.0  # seconds
    ceiling: float = 5.0  # seconds
    factor: float = 2.0

    @classmethod
    def from_settings(cls, fetch: FetchSettings) -> RetryPolicy:
        return cls(
            max_attempts=fetch.max_attempts,
            floor=fetch.retry_floor,
            ceiling=fetch.retry_ceiling,
            factor=fetch.retry_factor,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        base = min(self.ceiling, self.floor * self.factor ** (attempt - 1))
        return min(self.ceiling, base * random.uniform(1, 2))


def error_status(exc: BaseException) -> int | None:
    """HTTP-equivalent status carried by an upstream error, if any."""
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    if isinstance(exc, GraphQLQueryError):
        return exc.status
    return None


def is_permanent(exc: BaseException) -> bool:
    return error_status(exc) in PERMANENT_STATUSES


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
    description: str = "request",
) -> T:
    """Run ``operation`` until it succeeds, fails permanently, or the budget is spent."""
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except RETRYABLE_ERRORS as e:
            if is_permanent(e):
                logger.error(
                    "%s failed permanently (status %s), not retrying: %s",
                    description,
                    error_status(e),
                    e,
                )
                raise
            if attempt >= policy.max_attempts:
                logger.error("%s failed after %d attempts: %s", description, attempt, e)
                raise
            wait = policy.delay(attempt)
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1fs",
                description,
                attempt,
                policy.max_attempts,
                e,
                wait,
            )
            await asyncio.sleep(wait)
