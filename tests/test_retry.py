"""Tests for the retry executor."""
import asyncio

import pytest

from clipfetch.services.errors import BotDetectionError, NetworkError, VideoUnavailableError
from clipfetch.services.retry import RetryExecutor, is_retryable, is_retryable_primary


class Flaky:
    """Callable failing a fixed number of times before succeeding."""

    def __init__(self, failures: int, error: Exception | None = None) -> None:
        self.failures = failures
        self.error = error or NetworkError("reset")
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


class TestRetryExecutor:
    """Tests for attempt counting and delays."""

    def test_succeeds_after_failures(self, no_wait_executor: RetryExecutor, sleeps: list[float]) -> None:
        """k failures then success: the result is returned after k+1 calls."""
        operation = Flaky(failures=2)

        result = asyncio.run(no_wait_executor.execute(operation, max_attempts=3, base_delay=2))

        assert result == "ok"
        assert operation.calls == 3
        assert sleeps == [2, 2]

    def test_raises_last_error_when_exhausted(self, no_wait_executor: RetryExecutor) -> None:
        """Exactly max_attempts calls, then the last failure surfaces unchanged."""
        operation = Flaky(failures=10)

        with pytest.raises(NetworkError, match="reset"):
            asyncio.run(no_wait_executor.execute(operation, max_attempts=3, base_delay=1))
        assert operation.calls == 3

    def test_single_attempt_never_sleeps(self, no_wait_executor: RetryExecutor, sleeps: list[float]) -> None:
        operation = Flaky(failures=1)

        with pytest.raises(NetworkError):
            asyncio.run(no_wait_executor.execute(operation, max_attempts=1, base_delay=1))
        assert operation.calls == 1
        assert sleeps == []

    def test_retry_predicate_stops_early(self, no_wait_executor: RetryExecutor) -> None:
        """Deterministic failures are not retried."""
        operation = Flaky(failures=10, error=VideoUnavailableError())

        with pytest.raises(VideoUnavailableError):
            asyncio.run(
                no_wait_executor.execute(
                    operation, max_attempts=3, base_delay=1, retry_if=is_retryable
                )
            )
        assert operation.calls == 1

    def test_exponential_backoff(self, sleeps: list[float]) -> None:
        async def _sleep(delay: float) -> None:
            sleeps.append(delay)

        executor = RetryExecutor(exponential=True, max_delay=5, sleep=_sleep)
        operation = Flaky(failures=3)

        asyncio.run(executor.execute(operation, max_attempts=4, base_delay=1.5))

        assert sleeps == [1.5, 3.0, 5.0]

    @pytest.mark.parametrize("attempts, delay", [(0, 1), (3, 0), (3, -1)])
    def test_invalid_bounds(self, no_wait_executor: RetryExecutor, attempts: int, delay: float) -> None:
        operation = Flaky(failures=0)

        with pytest.raises(ValueError):
            asyncio.run(no_wait_executor.execute(operation, max_attempts=attempts, base_delay=delay))
        assert operation.calls == 0


class TestIsRetryable:
    """Tests for the default retry predicate."""

    def test_transient_errors(self) -> None:
        assert is_retryable(NetworkError())
        assert is_retryable(RuntimeError("boom"))

    def test_deterministic_errors(self) -> None:
        assert not is_retryable(VideoUnavailableError())

    def test_base_exceptions_not_retried(self) -> None:
        assert not is_retryable(KeyboardInterrupt())

    def test_primary_never_retries_bot_blocks(self, no_wait_executor: RetryExecutor) -> None:
        operation = Flaky(failures=10, error=BotDetectionError())

        with pytest.raises(BotDetectionError):
            asyncio.run(
                no_wait_executor.execute(
                    operation, max_attempts=3, base_delay=1, retry_if=is_retryable_primary
                )
            )
        assert operation.calls == 1
        assert is_retryable(BotDetectionError())
        assert is_retryable_primary(NetworkError())
