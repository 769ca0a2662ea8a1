"""
Retry Executor

Bounded exponential-backoff retry around a single asynchronous operation.
Built on tenacity; no jitter is applied so delays follow the policy exactly.
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import structlog
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import describe_error, is_retryable_error

T = TypeVar("T")

logger = structlog.get_logger()


class RetryPolicy(BaseModel):
    """Retry policy configuration. Delays are in seconds."""

    max_retries: int = Field(
        default=3, ge=0, le=10, description="Retries after the first attempt"
    )
    base_delay: float = Field(
        default=1.0, ge=0.0, le=60.0, description="Delay before the first retry"
    )
    max_delay: float = Field(
        default=5.0, ge=0.0, le=300.0, description="Maximum delay between attempts"
    )
    backoff_factor: float = Field(
        default=2.0, ge=1.0, le=10.0, description="Delay multiplier per retry"
    )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def compute_delay(self, retry_number: int) -> float:
        """
        Delay before retry ``retry_number`` (1-indexed after the first failure).

        Args:
            retry_number: Number of the retry about to be scheduled

        Returns:
            ``min(base_delay * backoff_factor ** (retry_number - 1), max_delay)``
        """
        if retry_number < 1:
            raise ValueError("retry_number is 1-indexed")
        return min(
            self.base_delay * self.backoff_factor ** (retry_number - 1), self.max_delay
        )


class RetryExecutor:
    """
    Runs an operation with bounded exponential-backoff retry.

    Only failures accepted by ``is_retryable`` consume retry budget; any other
    failure is raised after the attempt that produced it. The last error is
    always re-raised as-is, never wrapped.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.policy = policy or RetryPolicy()
        self.is_retryable = is_retryable
        self._sleep = sleep or asyncio.sleep

    def _retrying(self, label: str) -> AsyncRetrying:
        def log_attempt(retry_state: RetryCallState) -> None:
            logger.debug(
                "Retry: attempt started",
                operation=label,
                attempt=retry_state.attempt_number,
                max_attempts=self.policy.max_attempts,
            )

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "Retry: attempt failed, retrying",
                operation=label,
                attempt=retry_state.attempt_number,
                next_attempt=retry_state.attempt_number + 1,
                max_attempts=self.policy.max_attempts,
                delay_seconds=retry_state.next_action.sleep,
                error=str(error) if error else None,
            )

        return AsyncRetrying(
            stop=stop_after_attempt(self.policy.max_attempts),
            wait=wait_exponential(
                multiplier=self.policy.base_delay,
                exp_base=self.policy.backoff_factor,
                max=self.policy.max_delay,
            ),
            retry=retry_if_exception(self.is_retryable),
            before=log_attempt,
            before_sleep=log_retry,
            sleep=self._sleep,
            reraise=True,
        )

    async def with_retry(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        """
        Run ``operation`` until it succeeds or the policy is exhausted.

        Args:
            operation: Zero-argument coroutine function performing one attempt
            label: Human-readable operation name used in logs

        Returns:
            The operation's result

        Raises:
            The exception from the last attempt
        """
        attempts = 0

        async def attempt() -> T:
            nonlocal attempts
            attempts += 1
            return await operation()

        try:
            result = await self._retrying(label)(attempt)
        except Exception as e:
            logger.error(
                "Retry: operation failed",
                operation=label,
                attempts=attempts,
                max_attempts=self.policy.max_attempts,
                **describe_error(e),
            )
            raise

        if attempts > 1:
            logger.info("Retry: operation recovered", operation=label, attempts=attempts)
        return result
