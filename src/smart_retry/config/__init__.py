"""Configuration module for Smart Retry."""

from smart_retry.config.parser import YAMLParser, dump_settings, load_settings
from smart_retry.config.schema import (
    CircuitBreakerSettings,
    CustomPolicyRegistry,
    PolicyConfig,
    PolicyType,
    RetrySettings,
)

__all__ = [
    "CircuitBreakerSettings",
    "CustomPolicyRegistry",
    "PolicyConfig",
    "PolicyType",
    "RetrySettings",
    "YAMLParser",
    "dump_settings",
    "load_settings",
]
