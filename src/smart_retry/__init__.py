"""Smart Retry - retry with backoff, jitter, per-attempt timeouts and circuit breaking."""

from smart_retry.resilience import (
    AttemptTimeoutError,
    BackoffPolicy,
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    CustomRetryPolicy,
    ExponentialBackoffPolicy,
    FixedDelayPolicy,
    LinearBackoffPolicy,
    RetryConfiguration,
    RetryExecutor,
    execute,
    execute_sync,
    retryable,
    with_retry,
)

__version__ = "0.1.0"

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
    "execute",
    "execute_sync",
    "retryable",
    "with_retry",
]
