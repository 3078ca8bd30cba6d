"""
Resilience primitives for remote calls and service start-up.

- Circuit breaker with single-flight half-open trials
- Bounded exponential backoff retry
- Single-flight service readiness gate
"""

from .circuit_breaker import (
    CircuitState,
    CircuitBreakerConfig,
    CircuitBreakerResult,
    CircuitBreaker
)
from .retry import RetryPolicy, retry_with_backoff
from .readiness_gate import ServiceReadinessGate

__all__ = [
    'CircuitState',
    'CircuitBreakerConfig',
    'CircuitBreakerResult',
    'CircuitBreaker',
    'RetryPolicy',
    'retry_with_backoff',
    'ServiceReadinessGate'
]
