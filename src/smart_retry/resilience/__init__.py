"""Resilience patterns: backoff policies, circuit breaking and retry execution."""

from .circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from .policy import (
    BackoffPolicy,
    CustomRetryPolicy,
    ExponentialBackoffPolicy,
    FixedDelayPolicy,
    LinearBackoffPolicy,
    add_jitter,
)
from .retry import (
    AttemptTimeoutError,
    RetryConfiguration,
    RetryExecutor,
    execute,
    execute_sync,
    retryable,
    with_retry,
)

__all__ = [
    "AttemptTimeoutError",
    "BackoffPolicy",
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "CustomRetryPolicy",
    "ExponentialBackoffPolicy",
    "FixedDelayPolicy",
    "LinearBackoffPolicy",
    "RetryConfiguration",
    "RetryExecutor",
    "add_jitter",
    "execute",
    "execute_sync",
    "retryable",
    "with_retry",
]
