"""Bounded retry with backoff for fallible async operations."""
import asyncio
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

from clipfetch.core.config import settings
from clipfetch.core.logging import get_logger
from clipfetch.services.errors import NON_RETRYABLE_CATEGORIES, ClipfetchError, ErrorCategory

logger = get_logger(__name__)

T = TypeVar("T")


def _log_retry(label: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            f"{label}: attempt {retry_state.attempt_number} failed "
            f"({exc!r}); retrying in {delay:.1f}s"
        )

    return _before_sleep


def is_retryable(exc: BaseException) -> bool:
    """Default predicate: deterministic domain failures are not retried."""
    if isinstance(exc, ClipfetchError):
        return exc.category not in NON_RETRYABLE_CATEGORIES
    return isinstance(exc, Exception)


def is_retryable_primary(exc: BaseException) -> bool:
    """Primary-strategy predicate: a bot block is never retried."""
    if isinstance(exc, ClipfetchError) and exc.category is ErrorCategory.BOT_DETECTION:
        return False
    return is_retryable(exc)


class RetryExecutor:
    """Run an async operation up to ``max_attempts`` times.

    Attempts are strictly sequential. Between attempts the executor waits
    ``base_delay`` seconds, or a doubling delay starting at ``base_delay``
    when ``exponential`` is set.
    """

    def __init__(
        self,
        exponential: bool | None = None,
        max_delay: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.exponential = (
            settings.RETRY_EXPONENTIAL_BACKOFF if exponential is None else exponential
        )
        self.max_delay = settings.RETRY_MAX_DELAY_SECONDS if max_delay is None else max_delay
        self._sleep = sleep

    def _wait_strategy(self, base_delay: float):
        if self.exponential:
            return wait_exponential(
                multiplier=base_delay, min=base_delay, max=max(base_delay, self.max_delay)
            )
        return wait_fixed(base_delay)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        max_attempts: int,
        base_delay: float,
        retry_if: Callable[[BaseException], bool] | None = None,
        label: str = "operation",
    ) -> T:
        """Run *operation* with retries.

        Args:
            operation: Zero-argument coroutine factory, called once per attempt
            max_attempts: Total number of attempts (>= 1)
            base_delay: Seconds between attempts (> 0)
            retry_if: Predicate deciding whether a failure is worth retrying
            label: Name used in retry log lines

        Returns:
            The first successful result

        Raises:
            ValueError: If the bounds are invalid
            Exception: The last failure once attempts are exhausted
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay <= 0:
            raise ValueError("base_delay must be greater than zero")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=self._wait_strategy(base_delay),
            retry=retry_if_exception(retry_if or (lambda exc: isinstance(exc, Exception))),
            before_sleep=_log_retry(label),
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                result = await operation()
        return result
