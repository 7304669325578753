"""Bounded retry with exponential backoff for gateway calls.

Transient gateway failures (timeouts, 5xx, malformed payloads) are retried a
bounded number of times. Exhaustion is not an error for the caller: the policy
returns None, meaning "status unknown this cycle". A call rejected by an open
circuit raises CircuitOpenError instead.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from reconciliation_agent.core.circuit_breaker import CircuitBreaker
from reconciliation_agent.core.errors import CircuitOpenError, GatewayError, GatewayTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]
AttemptHook = Callable[[bool], None]  # called with success flag after every attempt


class RetryPolicy:
    """
    Execute an async operation with bounded exponential backoff.

    Args:
        max_retries: Maximum number of attempts (not re-tries on top of the first)
        base_delay: Delay after the first failed attempt (seconds)
        backoff_factor: Multiplier applied per further attempt
        attempt_timeout: Upper bound for each individual attempt (seconds)
        throttle: Fixed pause before the second and later attempts (seconds)
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        backoff_factor: float = 2.0,
        attempt_timeout: float = 30.0,
        throttle: float = 0.1,
        sleep: Sleep = asyncio.sleep,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.attempt_timeout = attempt_timeout
        self.throttle = throttle
        self._sleep = sleep

    def backoff_delay(self, attempt: int) -> float:
        """Delay slept after failed attempt number `attempt` (1-based): 1s, 2s, 4s..."""
        return self.base_delay * (self.backoff_factor ** (attempt - 1))

    async def execute(
        self,
        fn: Callable[[], Awaitable[T]],
        breaker: Optional[CircuitBreaker] = None,
        on_attempt: Optional[AttemptHook] = None,
        description: str = "operation",
    ) -> Optional[T]:
        """
        Run `fn` until it succeeds, a non-retryable error occurs or attempts run out.

        A call rejected by the breaker is not an attempt: it performs no I/O and
        touches neither the breaker counters nor `on_attempt`.

        Returns:
            The result of `fn`, or None when no attempt succeeded

        Raises:
            CircuitOpenError: The breaker rejected the next attempt
        """
        for attempt in range(1, self.max_retries + 1):
            if attempt > 1 and self.throttle > 0:
                await self._sleep(self.throttle)

            if breaker is not None and not breaker.allow_request():
                raise CircuitOpenError(breaker.name, retry_after=breaker.retry_after())

            try:
                result = await asyncio.wait_for(fn(), timeout=self.attempt_timeout)
            except asyncio.TimeoutError:
                error: GatewayError = GatewayTimeoutError(
                    f"{description} timed out after {self.attempt_timeout}s"
                )
            except GatewayError as e:
                error = e
            else:
                if breaker is not None:
                    breaker.record_success()
                if on_attempt is not None:
                    on_attempt(True)
                return result

            if breaker is not None:
                breaker.record_failure()
            if on_attempt is not None:
                on_attempt(False)

            logger.warning(f"Attempt {attempt}/{self.max_retries} failed for {description}: {error}")

            if not error.retryable:
                logger.error(f"Non-retryable failure for {description}: {error}")
                return None
            if attempt >= self.max_retries:
                logger.error(f"Giving up on {description} after {attempt} attempts: {error}")
                return None

            await self._sleep(self.backoff_delay(attempt))

        return None
