"""
Retry and circuit-breaker execution engine.

:class:`OperationExecutor` runs a single fallible coroutine under a
:class:`RetryPolicy`, consulting :func:`~activity_digest.core.errors.classify`
to decide what is retryable and, optionally, a per-operation
:class:`CircuitBreaker`. Breakers are keyed by operation name so independent
downstreams (one per remote host and HTTP method) fail independently, and they
live in a registry owned by the executor instance rather than the module.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from logging import LoggerAdapter
from typing import Awaitable, Callable, Dict, Optional, TypeVar

import anyio
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt
from tenacity.wait import wait_base

from .errors import AppError, CircuitOpenError, ConfigurationError, OperationTimeoutError, classify, error_context, severity
from .logging import get_logger

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
Clock = Callable[[], float]
Sleeper = Callable[[float], Awaitable[None]]

JITTER_RATIO = 0.1


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """
    Retry budget for a single operation.

    Attributes
    ----------
    max_attempts:
        Total number of invocations, including the first one.
    base_delay:
        Delay in seconds before the second attempt.
    max_delay:
        Upper bound in seconds for the exponential part of the delay.
    backoff_multiplier:
        Growth factor applied per attempt.
    timeout:
        Optional wall-clock limit in seconds for each invocation.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    timeout: Optional[float] = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1.", section="retry", field="max_attempts")
        if self.backoff_multiplier < 1:
            raise ConfigurationError("backoff_multiplier must be >= 1.", section="retry", field="backoff_multiplier")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ConfigurationError("Retry delays must not be negative.", section="retry", field="base_delay")
        if self.timeout is not None and self.timeout <= 0:
            raise ConfigurationError("timeout must be positive when set.", section="retry", field="timeout")

    def backoff(self, attempt: int) -> float:
        """Capped exponential delay after ``attempt`` failed, before jitter."""

        return min(self.base_delay * self.backoff_multiplier ** (attempt - 1), self.max_delay)


FAST = RetryPolicy(max_attempts=2, base_delay=0.5, max_delay=2.0)
STANDARD = RetryPolicy()
CONSERVATIVE = RetryPolicy(max_attempts=5, base_delay=2.0, max_delay=30.0)
AGGRESSIVE = RetryPolicy(max_attempts=10, base_delay=0.1, max_delay=5.0)

RETRY_PRESETS: Dict[str, RetryPolicy] = {
    "fast": FAST,
    "standard": STANDARD,
    "conservative": CONSERVATIVE,
    "aggressive": AGGRESSIVE,
}


def resolve_retry_preset(name: str) -> RetryPolicy:
    try:
        return RETRY_PRESETS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"Unknown retry preset '{name}'. Expected one of: {', '.join(sorted(RETRY_PRESETS))}.",
            section="retry",
            field="preset",
        ) from None


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Thresholds for a circuit breaker. Durations are in seconds."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_max_attempts: int = 3

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ConfigurationError("failure_threshold must be at least 1.", section="circuit_breaker", field="failure_threshold")
        if self.recovery_timeout < 0:
            raise ConfigurationError("recovery_timeout must not be negative.", section="circuit_breaker", field="recovery_timeout")


API_CIRCUIT_BREAKER = CircuitBreakerConfig(failure_threshold=3, recovery_timeout=120.0)
LOCAL_CIRCUIT_BREAKER = CircuitBreakerConfig(failure_threshold=10, recovery_timeout=30.0)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(slots=True)
class CircuitBreaker:
    """
    Failure counter guarding one logical operation.

    While HALF_OPEN exactly one trial call is admitted; concurrent callers are
    rejected with :class:`CircuitOpenError` until the trial settles the state.
    """

    name: str
    config: CircuitBreakerConfig
    clock: Clock = time.monotonic
    state: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    last_failure_time: float = 0.0
    trial_in_flight: bool = False

    def before_call(self) -> None:
        """Admit a call or raise :class:`CircuitOpenError` while the breaker is open."""

        if self.state is CircuitState.CLOSED:
            return
        if self.state is CircuitState.OPEN:
            if self.clock() - self.last_failure_time <= self.config.recovery_timeout:
                raise CircuitOpenError(self.name)
            self.state = CircuitState.HALF_OPEN
        if self.trial_in_flight:
            raise CircuitOpenError(self.name)
        self.trial_in_flight = True

    def record_success(self) -> None:
        self.failure_count = 0
        self.trial_in_flight = False
        self.state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self.clock()
        self.trial_in_flight = False
        if self.state is CircuitState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
            self.state = CircuitState.OPEN

    def release_trial(self) -> None:
        """Give up a pending trial call without a verdict, e.g. when the caller was cancelled."""

        self.trial_in_flight = False


class CircuitBreakerRegistry:
    """Lazily created breakers keyed by operation name."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str, config: CircuitBreakerConfig) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name=name, config=config, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def get(self, name: str) -> Optional[CircuitBreaker]:
        return self._breakers.get(name)

    def reset(self, name: str) -> None:
        with self._lock:
            self._breakers.pop(name, None)

    def __len__(self) -> int:
        return len(self._breakers)


class capped_exponential_jitter(wait_base):
    """Tenacity wait strategy: ``min(base * mult**(n-1), max)`` plus up to 10% jitter."""

    def __init__(self, policy: RetryPolicy, rng: Optional[random.Random] = None) -> None:
        self.policy = policy
        self.rng = rng or random.Random()

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self.policy.backoff(retry_state.attempt_number)
        return delay + self.rng.uniform(0, JITTER_RATIO * delay)


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AppError) and exc.retryable


class OperationExecutor:
    """
    Execute operations with bounded retry and optional circuit breaking.

    Parameters
    ----------
    logger:
        Optional logger; defaults to the module logger.
    clock:
        Monotonic clock used by circuit breakers.
    sleep:
        Awaitable sleep used between attempts.
    rng:
        Random source for backoff jitter.
    """

    def __init__(
        self,
        *,
        logger: Optional[LoggerAdapter] = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper = anyio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.logger = logger or get_logger(__name__)
        self.breakers = CircuitBreakerRegistry(clock=clock)
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def execute_with_retry(
        self,
        operation: Operation[T],
        operation_name: str,
        retry_policy: RetryPolicy = STANDARD,
        circuit_breaker: Optional[CircuitBreakerConfig] = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds, fails non-retryably, or the budget is spent.

        Raises the last classified :class:`AppError`; the original exception is
        kept as ``__cause__``.
        """

        breaker = self.breakers.get_or_create(operation_name, circuit_breaker) if circuit_breaker else None
        retrying = AsyncRetrying(
            stop=stop_after_attempt(retry_policy.max_attempts),
            wait=capped_exponential_jitter(retry_policy, self._rng),
            retry=retry_if_exception(_is_retryable),
            before=self._log_attempt(operation_name, retry_policy),
            before_sleep=self._log_backoff(operation_name, retry_policy),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            return await retrying(self._attempt, operation, operation_name, retry_policy, breaker)
        except AppError as exc:
            if exc.retryable:
                self.logger.error(
                    f"All {retry_policy.max_attempts} attempts failed for {operation_name}",
                    extra=error_context(exc),
                )
            else:
                self.logger.warning(f"Non-retryable error for {operation_name}: {exc}", extra=error_context(exc))
            raise

    async def _attempt(
        self,
        operation: Operation[T],
        operation_name: str,
        policy: RetryPolicy,
        breaker: Optional[CircuitBreaker],
    ) -> T:
        if breaker is not None:
            breaker.before_call()
        try:
            if policy.timeout is not None:
                try:
                    with anyio.fail_after(policy.timeout):
                        result = await operation()
                except TimeoutError as exc:
                    raise OperationTimeoutError(
                        f"{operation_name} timed out after {policy.timeout}s",
                        service=operation_name,
                        timeout=policy.timeout,
                    ) from exc
            else:
                result = await operation()
        except Exception as exc:
            if breaker is not None:
                breaker.record_failure()
            classified = classify(exc)
            if classified is exc:
                raise
            raise classified from exc
        except BaseException:
            if breaker is not None:
                breaker.release_trial()
            raise
        if breaker is not None:
            breaker.record_success()
        return result

    def _log_attempt(self, operation_name: str, policy: RetryPolicy) -> Callable[[RetryCallState], None]:
        def _before(retry_state: RetryCallState) -> None:
            self.logger.debug(
                f"Attempt {retry_state.attempt_number}/{policy.max_attempts} for {operation_name}",
                extra={"operation": operation_name, "attempt": retry_state.attempt_number},
            )

        return _before

    def _log_backoff(self, operation_name: str, policy: RetryPolicy) -> Callable[[RetryCallState], None]:
        def _before_sleep(retry_state: RetryCallState) -> None:
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            payload = error_context(exc) if exc is not None else {}
            payload.update({"operation": operation_name, "attempt": retry_state.attempt_number, "delay": delay})
            level = severity(exc).log_level if exc is not None else logging.WARNING
            self.logger.log(
                level,
                f"Retrying {operation_name} in {delay:.2f}s (attempt {retry_state.attempt_number}/{policy.max_attempts})",
                extra=payload,
            )

        return _before_sleep

    def circuit_state(self, operation_name: str) -> Optional[CircuitState]:
        """Return the breaker state for ``operation_name`` if one exists."""

        breaker = self.breakers.get(operation_name)
        return breaker.state if breaker else None

    def reset_circuit(self, operation_name: str) -> None:
        """Drop the breaker for ``operation_name``; used by tests and operators."""

        self.breakers.reset(operation_name)
