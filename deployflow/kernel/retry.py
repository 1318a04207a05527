"""Retry with exponential backoff for stage actions.

The primary interface is ``execute_with_retry`` which wraps an async
callable with the backoff described by a :class:`RetryPolicy`.

Examples
--------
Basic usage::

    policy = RetryPolicy(max_retries=3, delay=0.5)
    result = await execute_with_retry(my_async_fn, policy)
"""

from __future__ import annotations

import asyncio
import inspect
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from deployflow.kernel.exceptions import ActionError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


class RetryPolicy(BaseModel):
    """Bounded retry with exponential backoff.

    Parameters
    ----------
    max_retries : int
        Retries after the first attempt. 0 means a single attempt.
    delay : float
        Delay in seconds before the first retry.
    backoff : float
        Multiplier applied to the delay after each retry.
    max_delay : float
        Maximum delay cap in seconds.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_retries: int = Field(0, ge=0)
    delay: float = Field(1.0, ge=0)
    backoff: float = Field(2.0, ge=1.0)
    max_delay: float = Field(60.0, ge=0)

    @property
    def max_attempts(self) -> int:
        """Total number of attempts, first one included."""
        return self.max_retries + 1

    def compute_delay(self, retry: int) -> float:
        """Compute the delay before the given retry (1-indexed).

        Examples
        --------
        >>> policy = RetryPolicy(delay=1.0, backoff=2.0, max_delay=10.0)
        >>> policy.compute_delay(1)
        1.0
        >>> policy.compute_delay(3)
        4.0
        >>> policy.compute_delay(10)
        10.0
        """
        return min(self.delay * (self.backoff ** (retry - 1)), self.max_delay)


async def execute_with_retry(
    fn: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    *,
    retry_on: tuple[type[BaseException], ...] = (ActionError,),
    on_retry: Callable[[int, int, Exception, float], Any] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Execute an async callable with retry and exponential backoff.

    Parameters
    ----------
    fn : Callable[[], Awaitable[Any]]
        Zero-argument async callable to execute.
    policy : RetryPolicy
        Retry configuration.
    retry_on : tuple of exception types
        Only these exceptions trigger a retry; anything else propagates
        immediately.
    on_retry : callable, optional
        Invoked before each backoff sleep with
        ``(attempt, max_attempts, error, delay)``. May be a coroutine
        function.
    sleep : callable
        Awaitable used for the backoff wait. The engine passes one that
        wakes early when the run is cancelled.

    Returns
    -------
    Any
        The return value of *fn*.

    Examples
    --------
    >>> async def ok(): return 42
    >>> asyncio.run(execute_with_retry(ok, RetryPolicy()))
    42
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            return await fn()
        except retry_on as exc:
            if attempt >= policy.max_attempts:
                raise
            delay = policy.compute_delay(attempt)
            if on_retry is not None:
                outcome = on_retry(attempt, policy.max_attempts, exc, delay)  # type: ignore[arg-type]
                if inspect.isawaitable(outcome):
                    await outcome
            await sleep(delay)
    raise AssertionError("unreachable")  # pragma: no cover
