"""Retry execution with backoff policies, timeouts and circuit breaking."""

import asyncio
import functools
import inspect
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from .circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from .policy import BackoffPolicy

logger = logging.getLogger(__name__)


class AttemptTimeoutError(TimeoutError):
    """Raised when a single attempt exceeds the configured timeout."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Attempt timed out after {timeout}s")


@dataclass(frozen=True)
class RetryConfiguration:
    """Configuration for one or many retried executions.

    The circuit breaker is shared, not owned: the same instance may back any
    number of configurations and calls.
    """
    policy: BackoffPolicy
    circuit_breaker: Optional[CircuitBreaker] = None
    timeout: Optional[float] = None  # seconds, per attempt
    on_retry: Optional[Callable[[int, float], None]] = None
    on_exhausted: Optional[Callable[[BaseException], None]] = None
    on_success: Optional[Callable[[], None]] = None

    def __post_init__(self):
        if not isinstance(self.policy, BackoffPolicy):
            raise TypeError(f"policy must be a BackoffPolicy, got {type(self.policy).__name__}")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"timeout must be > 0, got {self.timeout}")


class RetryExecutor:
    """Runs operations under a RetryConfiguration.

    Holds no state between calls; every ``execute`` is an independent loop
    over the shared policy and breaker.
    """

    def __init__(
        self,
        sleep: Optional[Callable[[float], None]] = None,
        async_sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self._sleep = sleep or time.sleep
        self._async_sleep = async_sleep or asyncio.sleep

    async def execute(self, operation: Callable[[], Any], configuration: RetryConfiguration) -> Any:
        """Execute an operation with retry logic, suspending between attempts.

        Example:
            result = await RetryExecutor().execute(
                lambda: client.fetch(),
                RetryConfiguration(policy=ExponentialBackoffPolicy(max_attempts=3)),
            )
        """
        attempt = 0

        while True:
            half_open = self._admit(configuration)

            try:
                try:
                    result = operation()
                    if inspect.isawaitable(result):
                        if configuration.timeout is not None:
                            result = await _await_with_timeout(result, configuration.timeout)
                        else:
                            result = await result
                except Exception as error:
                    attempt += 1
                    delay = self._handle_failure(error, attempt, configuration)
                    await self._async_sleep(delay)
                    continue

                self._handle_success(configuration)
                return result
            except BaseException:
                if half_open:
                    configuration.circuit_breaker.release()
                raise

    def execute_sync(self, operation: Callable[[], Any], configuration: RetryConfiguration) -> Any:
        """Execute a synchronous operation with retry logic, blocking between attempts.

        Without a timeout the operation runs on the calling thread. With one,
        each attempt runs on a worker thread and is abandoned once the timeout
        elapses; the worker itself cannot be interrupted.

        Raises:
            TypeError: If the operation returns an awaitable. Use
                :meth:`execute` for asynchronous operations.
        """
        attempt = 0

        while True:
            half_open = self._admit(configuration)

            try:
                try:
                    if configuration.timeout is not None:
                        result = _call_with_timeout(operation, configuration.timeout)
                    else:
                        result = operation()
                except Exception as error:
                    attempt += 1
                    delay = self._handle_failure(error, attempt, configuration)
                    self._sleep(delay)
                    continue

                if inspect.isawaitable(result):
                    _discard(result)
                    raise TypeError(
                        "Operation returned an awaitable; "
                        "use execute() for asynchronous operations"
                    )

                self._handle_success(configuration)
                return result
            except BaseException:
                if half_open:
                    configuration.circuit_breaker.release()
                raise

    def _admit(self, configuration: RetryConfiguration) -> bool:
        """Ask the breaker for admission; True if a half-open slot was taken."""
        breaker = configuration.circuit_breaker
        if breaker is None:
            return False

        admitted_as = breaker.acquire()
        if admitted_as is None:
            logger.warning(f"Circuit breaker '{breaker.name}' rejected execution")
            raise CircuitOpenError(breaker.name)
        return admitted_as == CircuitState.HALF_OPEN

    def _handle_success(self, configuration: RetryConfiguration) -> None:
        if configuration.circuit_breaker is not None:
            configuration.circuit_breaker.on_success()
        if configuration.on_success is not None:
            configuration.on_success()

    def _handle_failure(
        self,
        error: Exception,
        attempt: int,
        configuration: RetryConfiguration,
    ) -> float:
        """Decide what happens after a failed attempt.

        Returns the delay before the next attempt, or re-raises ``error``
        once the policy gives up.
        """
        policy = configuration.policy
        logger.warning(f"Attempt {attempt} failed: {error!r}")

        if not policy.should_retry(error, attempt):
            logger.error(f"Retry exhausted after {attempt} attempts. Last error: {error!r}")
            if configuration.circuit_breaker is not None:
                configuration.circuit_breaker.on_failure()
            if configuration.on_exhausted is not None:
                configuration.on_exhausted(error)
            raise error

        delay = policy.compute_delay(attempt)
        logger.info(f"Retrying in {delay:.3f}s (attempt {attempt}/{policy.max_attempts})")

        if configuration.on_retry is not None:
            configuration.on_retry(attempt, delay)

        return delay


def _discard(awaitable: Awaitable[Any]) -> None:
    # Close un-awaited coroutines so they don't warn on collection
    close = getattr(awaitable, "close", None)
    if close is not None:
        close()


def _is_async_callable(operation: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(operation) or inspect.iscoroutinefunction(
        getattr(operation, "__call__", None)
    )


async def _await_with_timeout(awaitable: Awaitable[Any], timeout: float) -> Any:
    task = asyncio.ensure_future(awaitable)
    try:
        done, _ = await asyncio.wait({task}, timeout=timeout)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task not in done:
        task.cancel()
        await asyncio.wait({task})
        raise AttemptTimeoutError(timeout)
    return task.result()


def _call_with_timeout(operation: Callable[[], Any], timeout: float) -> Any:
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="smart-retry-attempt")
    try:
        future = pool.submit(operation)
        try:
            return future.result(timeout=timeout)
        except FutureTimeoutError:
            if not future.done():
                future.cancel()
                raise AttemptTimeoutError(timeout) from None
            # Completed; either its own TimeoutError or a value
            return future.result()
    finally:
        pool.shutdown(wait=False)


async def execute(operation: Callable[[], Any], configuration: RetryConfiguration) -> Any:
    """Asynchronously execute ``operation`` under ``configuration``."""
    return await RetryExecutor().execute(operation, configuration)


def execute_sync(operation: Callable[[], Any], configuration: RetryConfiguration) -> Any:
    """Execute ``operation`` under ``configuration``, blocking the caller."""
    return RetryExecutor().execute_sync(operation, configuration)


def retryable(operation: Callable[..., Any], configuration: RetryConfiguration) -> Callable[..., Any]:
    """Wrap an operation so every call goes through the retry loop.

    Coroutine functions and objects with an ``async def __call__`` get an
    async wrapper, everything else a blocking one. A plain callable that
    merely returns a coroutine (``lambda: client.fetch()``) cannot be told
    apart up front; its blocking wrapper raises ``TypeError`` on the first
    call, so wrap it with ``async def`` or use :func:`execute` instead.
    Call arguments are forwarded to each attempt.

    Example:
        fetch_user = retryable(client.fetch_user, configuration)
        user = await fetch_user(42)
    """
    if _is_async_callable(operation):
        @functools.wraps(operation)
        async def async_wrapper(*args, **kwargs):
            return await RetryExecutor().execute(
                lambda: operation(*args, **kwargs), configuration
            )

        async_wrapper._retry_configuration = configuration
        return async_wrapper

    @functools.wraps(operation)
    def wrapper(*args, **kwargs):
        return RetryExecutor().execute_sync(
            lambda: operation(*args, **kwargs), configuration
        )

    # Expose configuration for testing/monitoring
    wrapper._retry_configuration = configuration
    return wrapper


def with_retry(configuration: RetryConfiguration) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator form of :func:`retryable`."""
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        return retryable(func, configuration)
    return decorator
