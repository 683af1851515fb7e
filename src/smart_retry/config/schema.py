"""Configuration schema for declarative retry settings."""

from enum import Enum
from typing import Callable, Dict, Optional

from pydantic import BaseModel, Field, model_validator

from smart_retry.resilience import (
    BackoffPolicy,
    CircuitBreaker,
    CustomRetryPolicy,
    ExponentialBackoffPolicy,
    FixedDelayPolicy,
    LinearBackoffPolicy,
    RetryConfiguration,
)


class PolicyType(str, Enum):
    """Supported backoff policy types."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"
    CUSTOM = "custom"


class CustomPolicyRegistry:
    """Registry of named functions for custom policies."""

    _delay_calculators: Dict[str, Callable[[int], float]] = {}
    _retry_checkers: Dict[str, Callable[[BaseException, int], bool]] = {}

    @classmethod
    def register_delay_calculator(cls, name: str):
        """Decorator to register a delay calculator."""
        def decorator(func: Callable[[int], float]) -> Callable[[int], float]:
            cls._delay_calculators[name] = func
            return func
        return decorator

    @classmethod
    def register_retry_checker(cls, name: str):
        """Decorator to register a retry checker."""
        def decorator(func: Callable[[BaseException, int], bool]) -> Callable[[BaseException, int], bool]:
            cls._retry_checkers[name] = func
            return func
        return decorator

    @classmethod
    def get_delay_calculator(cls, name: str) -> Callable[[int], float]:
        if name not in cls._delay_calculators:
            raise ValueError(f"Delay calculator '{name}' not registered")
        return cls._delay_calculators[name]

    @classmethod
    def get_retry_checker(cls, name: str) -> Callable[[BaseException, int], bool]:
        if name not in cls._retry_checkers:
            raise ValueError(f"Retry checker '{name}' not registered")
        return cls._retry_checkers[name]


class PolicyConfig(BaseModel):
    """Configuration for a backoff policy."""

    type: PolicyType = PolicyType.EXPONENTIAL
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=1.0, ge=0.0)
    max_delay: Optional[float] = Field(default=None, ge=0.0)
    use_jitter: Optional[bool] = None
    multiplier: float = Field(default=2.0, gt=0.0)
    delay_calculator: Optional[str] = None
    retry_checker: Optional[str] = None

    @model_validator(mode="after")
    def validate_policy(self) -> "PolicyConfig":
        """Check delay bounds and custom policy requirements."""
        if self.max_delay is not None and self.max_delay < self.base_delay:
            raise ValueError("max_delay must be greater than or equal to base_delay")
        if self.type == PolicyType.CUSTOM and not self.delay_calculator:
            raise ValueError("Custom policy requires 'delay_calculator' field")
        return self

    def build(self) -> BackoffPolicy:
        """Create the policy described by this configuration."""
        kwargs = {"max_attempts": self.max_attempts, "base_delay": self.base_delay}
        if self.max_delay is not None:
            kwargs["max_delay"] = self.max_delay
        if self.use_jitter is not None:
            kwargs["use_jitter"] = self.use_jitter

        if self.type == PolicyType.EXPONENTIAL:
            return ExponentialBackoffPolicy(multiplier=self.multiplier, **kwargs)
        if self.type == PolicyType.LINEAR:
            return LinearBackoffPolicy(**kwargs)
        if self.type == PolicyType.FIXED:
            return FixedDelayPolicy(**kwargs)

        retry_checker = None
        if self.retry_checker:
            retry_checker = CustomPolicyRegistry.get_retry_checker(self.retry_checker)
        return CustomRetryPolicy(
            delay_calculator=CustomPolicyRegistry.get_delay_calculator(self.delay_calculator),
            retry_checker=retry_checker,
            **kwargs,
        )


class CircuitBreakerSettings(BaseModel):
    """Configuration for a circuit breaker."""

    failure_threshold: int = Field(default=5, ge=1)
    reset_timeout: float = Field(default=60.0, ge=0.0)
    half_open_max_requests: int = Field(default=3, ge=1)

    def build(self, name: str = "default") -> CircuitBreaker:
        return CircuitBreaker(
            failure_threshold=self.failure_threshold,
            reset_timeout=self.reset_timeout,
            half_open_max_requests=self.half_open_max_requests,
            name=name,
        )


class RetrySettings(BaseModel):
    """Complete retry configuration for one dependency."""

    name: str = "default"
    description: Optional[str] = None
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    circuit_breaker: Optional[CircuitBreakerSettings] = None
    timeout: Optional[float] = Field(default=None, gt=0.0)

    def build_policy(self) -> BackoffPolicy:
        return self.policy.build()

    def build_circuit_breaker(self) -> Optional[CircuitBreaker]:
        if self.circuit_breaker is None:
            return None
        return self.circuit_breaker.build(name=self.name)

    def to_configuration(
        self,
        circuit_breaker: Optional[CircuitBreaker] = None,
        on_retry: Optional[Callable[[int, float], None]] = None,
        on_exhausted: Optional[Callable[[BaseException], None]] = None,
        on_success: Optional[Callable[[], None]] = None,
    ) -> RetryConfiguration:
        """Build a RetryConfiguration.

        Args:
            circuit_breaker: Existing breaker to share; a new one is built from
                the settings when omitted
            on_retry: Called with (attempt, delay) before each retry
            on_exhausted: Called with the final error
            on_success: Called after a successful attempt
        """
        return RetryConfiguration(
            policy=self.build_policy(),
            circuit_breaker=circuit_breaker or self.build_circuit_breaker(),
            timeout=self.timeout,
            on_retry=on_retry,
            on_exhausted=on_exhausted,
            on_success=on_success,
        )
