from __future__ import annotations

from .circuit_breaker import CircuitBreaker
from .retry import ErrorKind, RetryPolicy, classify_error

__all__ = ["CircuitBreaker", "ErrorKind", "RetryPolicy", "classify_error"]
