"""Walk through the main retry features against a simulated flaky API."""

import asyncio
import logging

from smart_retry import (
    CircuitBreaker,
    CustomRetryPolicy,
    ExponentialBackoffPolicy,
    FixedDelayPolicy,
    LinearBackoffPolicy,
    RetryConfiguration,
    execute,
)
from smart_retry.config import load_settings

logging.basicConfig(level=logging.INFO)


class FlakyApi:
    """Fails the first ``failures`` calls, then answers."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        await asyncio.sleep(0.01)
        if self.calls <= self.failures:
            raise ConnectionError(f"connection reset (call {self.calls})")
        return "200 OK"


async def exponential_backoff():
    print("Exponential backoff")
    result = await execute(
        FlakyApi(failures=2),
        RetryConfiguration(
            policy=ExponentialBackoffPolicy(max_attempts=3, base_delay=0.1, max_delay=1.0),
            on_retry=lambda attempt, delay: print(f"  retry {attempt} after {delay:.2f}s"),
            on_success=lambda: print("  success"),
        ),
    )
    print(f"  result: {result}\n")


async def circuit_breaker():
    print("Circuit breaker")
    breaker = CircuitBreaker(failure_threshold=3, reset_timeout=0.5, name="always-down")
    configuration = RetryConfiguration(
        policy=FixedDelayPolicy(max_attempts=1), circuit_breaker=breaker
    )
    api = FlakyApi(failures=999)

    for request in range(4):
        try:
            await execute(api, configuration)
        except Exception as e:
            print(f"  request {request}: {type(e).__name__} ({breaker.state.value})")

    await asyncio.sleep(0.6)
    print(f"  admitted after cooldown: {breaker.can_execute()} ({breaker.state.value})\n")


async def custom_policy():
    print("Custom policy")
    try:
        await execute(
            FlakyApi(failures=5),
            RetryConfiguration(
                policy=CustomRetryPolicy(
                    max_attempts=5,
                    delay_calculator=lambda attempt: 0.05 * attempt * attempt,
                    retry_checker=lambda error, attempt: isinstance(error, ConnectionError) and attempt < 3,
                ),
                on_exhausted=lambda error: print(f"  gave up: {error}"),
            ),
        )
    except ConnectionError:
        pass
    print()


async def linear_with_timeout():
    print("Linear backoff with per-attempt timeout")
    result = await execute(
        FlakyApi(failures=1),
        RetryConfiguration(
            policy=LinearBackoffPolicy(max_attempts=4, base_delay=0.1, max_delay=0.5),
            timeout=1.0,
        ),
    )
    print(f"  result: {result}\n")


async def from_yaml(path: str):
    print(f"Settings from {path}")
    settings = load_settings(path)
    result = await execute(FlakyApi(failures=1), settings.to_configuration())
    print(f"  result: {result}\n")


async def main():
    await exponential_backoff()
    await circuit_breaker()
    await custom_policy()
    await linear_with_timeout()
    await from_yaml("examples/retry.yaml")


if __name__ == "__main__":
    asyncio.run(main())
