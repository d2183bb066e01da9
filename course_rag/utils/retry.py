"""Retry and circuit-breaker primitives for external service calls.

Every call to an external collaborator (embedding service, vector store,
keyword index, reranker) goes through the same two wrappers:

1. **RetryPolicy** -- a small composable combinator around tenacity's
   ``AsyncRetrying``: bounded attempts, exponential backoff with jitter, a
   per-attempt timeout, and a predicate deciding which errors are worth
   another attempt.  Timeouts are converted into the caller's typed
   :class:`~course_rag.utils.errors.ExternalServiceError` subclass so an
   exhausted budget surfaces as a typed failure rather than a hang.

2. **CircuitBreaker** -- counts consecutive failures against one service.
   After ``failure_threshold`` failures it opens for ``reset_timeout``
   seconds, during which calls fail fast with
   :class:`~course_rag.utils.errors.ServiceUnavailableError`.  The first
   call after the cool-down runs in half-open state; success closes the
   circuit, failure re-opens it.

The breaker wraps each individual attempt, so an open circuit stops a retry
loop on its next attempt (``ServiceUnavailableError`` is never retryable).
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from course_rag.utils.errors import (
    ExternalServiceError,
    ServiceUnavailableError,
    ValidationError,
)

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")


def is_retryable(exc: BaseException) -> bool:
    """Default retry predicate: transient external failures only."""
    if isinstance(exc, (ServiceUnavailableError, ValidationError)):
        return False
    if isinstance(exc, ExternalServiceError):
        return exc.retryable
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, ConnectionError))


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential-backoff-with-jitter retry around an async callable.

    Parameters
    ----------
    max_attempts:
        Total attempts including the first one.
    base_delay:
        Initial backoff in seconds; doubles each attempt.
    max_delay:
        Upper bound for a single backoff.
    jitter:
        Maximum random jitter added to each backoff, as a fraction of
        ``base_delay``.
    timeout:
        Per-attempt timeout in seconds; ``None`` disables it.
    retryable:
        Predicate deciding whether an exception deserves another attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.25
    timeout: float | None = 30.0
    retryable: Callable[[BaseException], bool] = field(default=is_retryable)

    async def call(
        self,
        fn: Callable[[], Awaitable[_T]],
        *,
        operation: str,
        provider_name: str | None = None,
        error_cls: type[ExternalServiceError] = ExternalServiceError,
        apply_timeout: bool = True,
    ) -> _T:
        """Run *fn* under this policy and return its result.

        Raises the last error once attempts are exhausted, or immediately
        when the predicate says the error is not retryable.
        """

        async def _attempt() -> _T:
            if not apply_timeout:
                return await fn()
            return await self.with_timeout(
                fn, operation=operation, provider_name=provider_name, error_cls=error_cls
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=self.wait_strategy(),
            retry=retry_if_exception(self.retryable),
            before_sleep=_log_before_sleep(operation, provider_name),
            reraise=True,
        )
        return await retrying(_attempt)

    def wait_strategy(self) -> wait_base:
        """Backoff of ``base_delay * 2**(n-1)`` capped at ``max_delay``, plus jitter."""
        backoff = wait_exponential(multiplier=self.base_delay, min=0, max=self.max_delay)
        return backoff + wait_random(0, self.base_delay * self.jitter)

    async def with_timeout(
        self,
        fn: Callable[[], Awaitable[_T]],
        *,
        operation: str,
        provider_name: str | None = None,
        error_cls: type[ExternalServiceError] = ExternalServiceError,
    ) -> _T:
        """Await *fn* once, converting a timeout into *error_cls*."""
        if self.timeout is None:
            return await fn()
        try:
            return await asyncio.wait_for(fn(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise error_cls(
                message=f"{operation} timed out after {self.timeout:.1f}s",
                provider_name=provider_name,
            ) from exc


def _log_before_sleep(
    operation: str, provider_name: str | None
) -> Callable[[RetryCallState], None]:
    def _log(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "retrying_external_call",
            operation=operation,
            provider=provider_name,
            attempt=state.attempt_number,
            sleep_s=round(state.next_action.sleep, 3) if state.next_action else 0.0,
            error=str(exc),
        )

    return _log


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Consecutive-failure circuit breaker for one external service.

    Parameters
    ----------
    name:
        Service name used in errors and logs.
    failure_threshold:
        Consecutive failures that open the circuit.
    reset_timeout:
        Seconds the circuit stays open before a half-open trial call.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        reset_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._name = name
        self._failure_threshold = max(1, failure_threshold)
        self._reset_timeout = reset_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at: float | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        # An expired open circuit reports half-open so health checks see
        # that the next call will be let through.
        if self._state is CircuitState.OPEN and self._cooldown_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def is_open(self) -> bool:
        return self.state is CircuitState.OPEN

    async def call(self, fn: Callable[[], Awaitable[_T]]) -> _T:
        """Run *fn* unless the circuit is open."""
        if self._state is CircuitState.OPEN:
            if not self._cooldown_elapsed():
                raise ServiceUnavailableError(
                    message="circuit breaker is open; call short-circuited",
                    provider_name=self._name,
                )
            self._state = CircuitState.HALF_OPEN
            logger.info("circuit_half_open", service=self._name)

        try:
            result = await fn()
        except ValidationError:
            # Caller mistakes say nothing about the service's health.
            raise
        except Exception:
            self._record_failure()
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None

    def _cooldown_elapsed(self) -> bool:
        return self._opened_at is not None and (
            self._clock() - self._opened_at >= self._reset_timeout
        )

    def _record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            logger.info("circuit_closed", service=self._name)
        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._opened_at = None

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        if (
            self._state is CircuitState.HALF_OPEN
            or self._consecutive_failures >= self._failure_threshold
        ):
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(
                "circuit_opened",
                service=self._name,
                consecutive_failures=self._consecutive_failures,
                reset_timeout_s=self._reset_timeout,
            )


async def guarded_call(
    fn: Callable[[], Awaitable[_T]],
    *,
    policy: RetryPolicy,
    breaker: CircuitBreaker | None,
    operation: str,
    provider_name: str | None,
    error_cls: type[ExternalServiceError] = ExternalServiceError,
) -> _T:
    """Compose *policy* and *breaker* around one external call.

    The timeout sits inside the breaker so that a hung service counts as a
    failure towards opening the circuit.
    """

    async def _timed() -> _T:
        return await policy.with_timeout(
            fn, operation=operation, provider_name=provider_name, error_cls=error_cls
        )

    async def _guarded() -> _T:
        if breaker is None:
            return await _timed()
        return await breaker.call(_timed)

    return await policy.call(
        _guarded,
        operation=operation,
        provider_name=provider_name,
        error_cls=error_cls,
        apply_timeout=False,
    )
