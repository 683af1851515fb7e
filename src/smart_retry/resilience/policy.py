"""Backoff policies: delay computation and retry eligibility."""

import math
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

JITTER_FACTOR = 0.1  # Up to 10% of the computed delay


def add_jitter(delay: float, rng: Any = random) -> float:
    """Add a random offset of up to 10% to a delay.

    Args:
        delay: Delay in seconds
        rng: Random source exposing ``random()``; defaults to the random module

    Returns:
        Delay with jitter applied
    """
    return delay + delay * JITTER_FACTOR * rng.random()


@dataclass(frozen=True)
class BackoffPolicy(ABC):
    """Base class for retry policies."""
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    use_jitter: bool = True

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )

    @abstractmethod
    def raw_delay(self, attempt: int) -> float:
        """Delay for the given attempt before jitter."""

    def compute_delay(self, attempt: int) -> float:
        """Calculate delay for the given 1-based failed attempt count."""
        _check_attempt(attempt)
        delay = self.raw_delay(attempt)
        if self.use_jitter:
            delay = add_jitter(delay)
        return delay

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        """Check if another attempt is allowed after this failure."""
        return attempt < self.max_attempts

    def delay_schedule(self) -> List[float]:
        """Pre-jitter delays a sequence that keeps failing would wait through."""
        return [self.raw_delay(attempt) for attempt in range(1, self.max_attempts)]

    def _clamp(self, delay: float) -> float:
        return min(max(delay, self.base_delay), self.max_delay)


@dataclass(frozen=True)
class ExponentialBackoffPolicy(BackoffPolicy):
    """Exponential backoff.

    Delay is ``base_delay * floor(multiplier * attempt)`` clamped to
    ``[base_delay, max_delay]``. With the default multiplier the first retry
    already waits twice the base delay.
    """
    multiplier: float = 2.0

    def __post_init__(self):
        super().__post_init__()
        if self.multiplier <= 0:
            raise ValueError(f"multiplier must be > 0, got {self.multiplier}")

    def raw_delay(self, attempt: int) -> float:
        _check_attempt(attempt)
        return self._clamp(self.base_delay * math.floor(self.multiplier * attempt))


@dataclass(frozen=True)
class LinearBackoffPolicy(BackoffPolicy):
    """Linear backoff: ``base_delay * attempt``, clamped."""

    def raw_delay(self, attempt: int) -> float:
        _check_attempt(attempt)
        return self._clamp(self.base_delay * attempt)


@dataclass(frozen=True)
class FixedDelayPolicy(BackoffPolicy):
    """Always waits ``base_delay`` between attempts."""
    max_delay: Optional[float] = None  # defaults to base_delay
    use_jitter: bool = False

    def __post_init__(self):
        if self.max_delay is None:
            object.__setattr__(self, "max_delay", self.base_delay)
        super().__post_init__()

    def raw_delay(self, attempt: int) -> float:
        _check_attempt(attempt)
        return self.base_delay


@dataclass(frozen=True)
class CustomRetryPolicy(BackoffPolicy):
    """Policy driven by caller-supplied functions.

    ``delay_calculator(attempt)`` is trusted verbatim: no clamping and no
    jitter. ``retry_checker(error, attempt)`` replaces the default
    ``attempt < max_attempts`` rule when given.
    """
    use_jitter: bool = False
    delay_calculator: Optional[Callable[[int], float]] = None
    retry_checker: Optional[Callable[[BaseException, int], bool]] = None

    def __post_init__(self):
        super().__post_init__()
        if self.delay_calculator is None:
            raise ValueError("CustomRetryPolicy requires a delay_calculator")

    def raw_delay(self, attempt: int) -> float:
        _check_attempt(attempt)
        return self.delay_calculator(attempt)

    def compute_delay(self, attempt: int) -> float:
        _check_attempt(attempt)
        return self.delay_calculator(attempt)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if self.retry_checker is not None:
            return self.retry_checker(error, attempt)
        return attempt < self.max_attempts


def _check_attempt(attempt: int) -> None:
    if attempt < 1:
        raise ValueError(f"attempt must be a positive integer, got {attempt}")
