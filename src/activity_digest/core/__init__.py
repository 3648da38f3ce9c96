"""
Core infrastructure shared by adapters and services.

Error taxonomy, retry and circuit-breaker execution, calendar helpers and
structured logging. :mod:`activity_digest.core.context` depends on the
configuration layer and is imported directly by its callers.
"""

from .dates import DateRange, day_bounds, resolve_period
from .errors import AppError, ErrorKind, classify, log_error
from .logging import configure_logging, get_logger, log_progress
from .resilience import CircuitBreakerConfig, CircuitState, OperationExecutor, RetryPolicy

__all__ = [
    "AppError",
    "CircuitBreakerConfig",
    "CircuitState",
    "DateRange",
    "ErrorKind",
    "OperationExecutor",
    "RetryPolicy",
    "classify",
    "configure_logging",
    "day_bounds",
    "get_logger",
    "log_error",
    "log_progress",
    "resolve_period",
]
