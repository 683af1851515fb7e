"""Tests for asynchronous retry execution."""

import asyncio
import inspect
from unittest.mock import AsyncMock, Mock, call

import pytest

from smart_retry.resilience import (
    AttemptTimeoutError,
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    ExponentialBackoffPolicy,
    FixedDelayPolicy,
    RetryConfiguration,
    RetryExecutor,
    execute,
    retryable,
)


@pytest.fixture
def executor():
    """Executor that records delays instead of suspending."""
    sleeps = []

    async def fake_sleep(delay):
        sleeps.append(delay)

    executor = RetryExecutor(async_sleep=fake_sleep)
    executor.sleeps = sleeps
    return executor


class TestExecuteAsync:
    """Test the non-blocking retry loop."""

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, executor):
        """Test exponential policy recovers after two failures."""
        operation = AsyncMock(side_effect=[ConnectionError(), ConnectionError(), "payload"])
        on_retry = Mock()
        on_exhausted = Mock()
        on_success = Mock()
        configuration = RetryConfiguration(
            policy=ExponentialBackoffPolicy(max_attempts=3, base_delay=1.0, use_jitter=False),
            on_retry=on_retry,
            on_exhausted=on_exhausted,
            on_success=on_success,
        )

        result = await executor.execute(operation, configuration)

        assert result == "payload"
        assert on_retry.call_args_list == [call(1, 2.0), call(2, 4.0)]
        on_exhausted.assert_not_called()
        on_success.assert_called_once_with()
        assert executor.sleeps == [2.0, 4.0]

    @pytest.mark.asyncio
    async def test_exhausted_raises_original_error(self, executor):
        error = ValueError("still broken")
        operation = AsyncMock(side_effect=error)
        on_exhausted = Mock()
        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(max_attempts=2, base_delay=0.25),
            on_exhausted=on_exhausted,
        )

        with pytest.raises(ValueError) as exc_info:
            await executor.execute(operation, configuration)

        assert exc_info.value is error
        assert operation.await_count == 2
        on_exhausted.assert_called_once_with(error)
        assert executor.sleeps == [0.25]

    @pytest.mark.asyncio
    async def test_plain_callables_are_supported(self, executor):
        """Test operations returning plain values need no awaiting."""
        operation = Mock(side_effect=[RuntimeError(), "sync value"])
        configuration = RetryConfiguration(policy=FixedDelayPolicy(base_delay=0.0))

        assert await executor.execute(operation, configuration) == "sync value"

    @pytest.mark.asyncio
    async def test_module_level_execute(self):
        operation = AsyncMock(side_effect=[RuntimeError(), "done"])
        configuration = RetryConfiguration(policy=FixedDelayPolicy(base_delay=0.01))

        assert await execute(operation, configuration) == "done"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_circuit_breaker_sequence(self, executor):
        """Test the breaker opens on the third failed call and rejects the fourth."""
        breaker = CircuitBreaker(failure_threshold=3, reset_timeout=60.0)
        operation = AsyncMock(side_effect=RuntimeError("down"))
        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(max_attempts=1), circuit_breaker=breaker
        )

        for _ in range(3):
            with pytest.raises(RuntimeError):
                await executor.execute(operation, configuration)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await executor.execute(operation, configuration)

        assert operation.await_count == 3


class TestAsyncTimeout:
    """Test per-attempt timeouts in async mode."""

    @pytest.mark.asyncio
    async def test_timeout_surfaces_as_attempt_timeout(self, executor):
        """Test a slow operation fails with AttemptTimeoutError after all attempts."""
        calls = []

        async def slow_operation():
            calls.append(1)
            await asyncio.sleep(1.0)
            return "too late"

        on_exhausted = Mock()
        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(max_attempts=2, base_delay=0.0),
            timeout=0.05,
            on_exhausted=on_exhausted,
        )

        with pytest.raises(AttemptTimeoutError):
            await executor.execute(slow_operation, configuration)

        assert len(calls) == 2
        assert isinstance(on_exhausted.call_args[0][0], AttemptTimeoutError)

    @pytest.mark.asyncio
    async def test_timed_out_attempt_is_cancelled(self, executor):
        cancelled = asyncio.Event()

        async def slow_operation():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        configuration = RetryConfiguration(policy=FixedDelayPolicy(max_attempts=1), timeout=0.05)

        with pytest.raises(AttemptTimeoutError):
            await executor.execute(slow_operation, configuration)

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_timeout_then_success(self, executor):
        attempts = []

        async def operation():
            attempts.append(1)
            if len(attempts) == 1:
                await asyncio.sleep(1.0)
            return "fast enough"

        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(max_attempts=3, base_delay=0.0), timeout=0.05
        )

        assert await executor.execute(operation, configuration) == "fast enough"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_timeout_counts_toward_breaker(self, executor):
        breaker = CircuitBreaker(failure_threshold=1)

        async def slow_operation():
            await asyncio.sleep(1.0)

        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(max_attempts=1), timeout=0.05, circuit_breaker=breaker
        )

        with pytest.raises(AttemptTimeoutError):
            await executor.execute(slow_operation, configuration)

        assert breaker.state == CircuitState.OPEN


class TestAsyncCancellation:
    """Test cancellation of an in-flight execution."""

    @pytest.mark.asyncio
    async def test_cancellation_leaves_breaker_untouched(self):
        breaker = CircuitBreaker(failure_threshold=1)
        started = asyncio.Event()

        async def hanging_operation():
            started.set()
            await asyncio.sleep(10)

        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(max_attempts=3), timeout=5.0, circuit_breaker=breaker
        )
        task = asyncio.ensure_future(RetryExecutor().execute(hanging_operation, configuration))
        await started.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_cancelled_half_open_attempt_frees_its_slot(self):
        """Test a cancelled half-open attempt doesn't leave the breaker stuck."""
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=0.0, half_open_max_requests=1)
        breaker.on_failure()
        started = asyncio.Event()

        async def hanging_operation():
            started.set()
            await asyncio.sleep(10)

        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(max_attempts=3), timeout=5.0, circuit_breaker=breaker
        )
        task = asyncio.ensure_future(RetryExecutor().execute(hanging_operation, configuration))
        await started.wait()
        assert breaker.half_open_requests == 1

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.half_open_requests == 0
        assert breaker.failure_count == 1
        assert breaker.can_execute() is True

    @pytest.mark.asyncio
    async def test_cancelled_backoff_after_half_open_failure_frees_slot(self):
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout=0.0, half_open_max_requests=1)
        breaker.on_failure()
        sleeping = asyncio.Event()

        async def hanging_sleep(delay):
            sleeping.set()
            await asyncio.sleep(10)

        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(max_attempts=3), circuit_breaker=breaker
        )
        executor = RetryExecutor(async_sleep=hanging_sleep)
        task = asyncio.ensure_future(
            executor.execute(AsyncMock(side_effect=ConnectionError()), configuration)
        )
        await sleeping.wait()

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert breaker.state == CircuitState.HALF_OPEN
        assert breaker.can_execute() is True


class TestAsyncRetryable:
    """Test wrapping coroutine functions."""

    @pytest.mark.asyncio
    async def test_retryable_coroutine_function(self):
        attempts = []

        async def fetch(item_id, verbose=False):
            attempts.append((item_id, verbose))
            if len(attempts) < 2:
                raise ConnectionError()
            return {"id": item_id}

        configuration = RetryConfiguration(policy=FixedDelayPolicy(base_delay=0.0))
        wrapped = retryable(fetch, configuration)

        assert inspect.iscoroutinefunction(wrapped)
        assert await wrapped(7, verbose=True) == {"id": 7}
        assert attempts == [(7, True), (7, True)]
        assert wrapped.__name__ == "fetch"

    @pytest.mark.asyncio
    async def test_retryable_async_callable_instance(self):
        """Test objects with an async __call__ get the retrying async wrapper."""

        class FlakyApi:
            def __init__(self):
                self.calls = 0

            async def __call__(self):
                self.calls += 1
                if self.calls < 3:
                    raise ConnectionError("down")
                return "200 OK"

        api = FlakyApi()
        breaker = CircuitBreaker(failure_threshold=1)
        on_success = Mock()
        configuration = RetryConfiguration(
            policy=FixedDelayPolicy(base_delay=0.0),
            circuit_breaker=breaker,
            on_success=on_success,
        )
        wrapped = retryable(api, configuration)

        assert inspect.iscoroutinefunction(wrapped)
        assert await wrapped() == "200 OK"
        assert api.calls == 3
        on_success.assert_called_once_with()
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_execute_retries_lambda_returning_coroutine(self, executor):
        attempts = []

        async def fetch():
            attempts.append(1)
            if len(attempts) < 2:
                raise ConnectionError()
            return "payload"

        configuration = RetryConfiguration(policy=FixedDelayPolicy(base_delay=0.5))

        assert await executor.execute(lambda: fetch(), configuration) == "payload"
        assert len(attempts) == 2
        assert executor.sleeps == [0.5]
