"""Retries and circuit breakers for the SMS and voice transports.

Escalation steps must never stall on a flaky provider. Sends are retried
a bounded number of times with exponential backoff; a breaker per
transport stops hammering a provider that keeps failing, and its state
is reported on /health.

Usage:
    config = RetryConfig.for_transport(max_attempts=3, base_delay=5.0)
    breaker = get_circuit_breaker("sms", failure_threshold=10)

    async def send():
        async with breaker:
            return await gateway.send(message)

    await retry_async(send, config=config)
"""
from __future__ import annotations

import asyncio
import functools
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from shift_escalation.core.exceptions import TransportError
from shift_escalation.core.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

TRANSPORT_EXCEPTIONS: tuple[type[Exception], ...] = (
    TransportError,
    ConnectionError,
    TimeoutError,
    OSError,
)


class RetryExhausted(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, message: str, last_error: Exception | None = None, attempts: int = 0):
        super().__init__(message)
        self.last_error = last_error
        self.attempts = attempts


class CircuitOpen(Exception):
    """The breaker for a transport is rejecting calls."""

    def __init__(self, name: str, reset_at: datetime):
        super().__init__(f"Circuit '{name}' open until {reset_at.isoformat()}")
        self.name = name
        self.reset_at = reset_at


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    """Backoff policy: ``base_delay * exponential_base ** (attempt - 1)``, capped."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: float = 0.1
    min_delay: float = 0.1
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,)
    non_retryable_exceptions: tuple[type[Exception], ...] = ()

    @classmethod
    def for_transport(cls, max_attempts: int, base_delay: float) -> "RetryConfig":
        """Policy for provider calls; an open breaker is never retried."""
        return cls(
            max_attempts=max(1, max_attempts),
            base_delay=base_delay,
            max_delay=max(base_delay * 4, base_delay),
            min_delay=min(0.1, base_delay),
            retryable_exceptions=TRANSPORT_EXCEPTIONS,
            non_retryable_exceptions=(CircuitOpen,),
        )

    def calculate_delay(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay = self.base_delay * self.exponential_base ** (attempt - 1)
        delay = min(delay, self.max_delay)
        if self.jitter:
            spread = delay * self.jitter
            delay += random.uniform(-spread, spread)
        return max(self.min_delay, delay)

    def is_retryable(self, exception: Exception) -> bool:
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        return isinstance(exception, self.retryable_exceptions)

    def should_retry(self, exception: Exception, attempt: int) -> bool:
        return attempt < self.max_attempts and self.is_retryable(exception)


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func`` until it succeeds or the attempts run out.

    Non-retryable exceptions propagate unchanged.

    Raises:
        RetryExhausted: Every attempt failed with a retryable error
    """
    config = config or RetryConfig()
    name = getattr(func, "__qualname__", repr(func))
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not config.is_retryable(e):
                raise
            if attempt >= config.max_attempts:
                raise RetryExhausted(
                    f"{name} failed after {attempt} attempts",
                    last_error=e,
                    attempts=attempt,
                ) from e

            delay = config.calculate_delay(attempt)
            log.warning(
                "Transient failure, retrying",
                function=name,
                attempt=attempt,
                max_attempts=config.max_attempts,
                error=f"{type(e).__name__}: {e}",
                delay=round(delay, 2),
            )
            await asyncio.sleep(delay)


def retry(
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    non_retryable_exceptions: tuple[type[Exception], ...] = (),
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of :func:`retry_async`."""
    config = RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        max_delay=max_delay,
        min_delay=min(0.1, base_delay),
        retryable_exceptions=retryable_exceptions,
        non_retryable_exceptions=non_retryable_exceptions,
    )

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(func, *args, config=config, **kwargs)

        return wrapper

    return decorator


@dataclass
class CircuitBreaker:
    """Consecutive-failure breaker for one transport.

    Opens after ``failure_threshold`` failures, lets a probe through once
    ``reset_timeout`` seconds have passed, and closes again after
    ``success_threshold`` successful probes. A failed probe re-opens it.
    """

    name: str
    failure_threshold: int = 5
    success_threshold: int = 2
    reset_timeout: float = 60.0
    half_open_max_calls: int = 3

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failures: int = field(default=0, init=False)
    _probe_successes: int = field(default=0, init=False)
    _probes: int = field(default=0, init=False)
    _opened_at: datetime | None = field(default=None, init=False)

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._cooled_down():
            log.info("Circuit half-open", breaker=self.name)
            self._state = CircuitState.HALF_OPEN
            self._probes = 0
            self._probe_successes = 0
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failures

    @property
    def reset_at(self) -> datetime | None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return None
        return self._opened_at + timedelta(seconds=self.reset_timeout)

    def _cooled_down(self) -> bool:
        reset_at = self.reset_at
        return reset_at is not None and datetime.now() >= reset_at

    def _open(self) -> None:
        log.warning("Circuit open", breaker=self.name, failures=self._failures)
        self._state = CircuitState.OPEN
        self._opened_at = datetime.now()

    def reset(self) -> None:
        if self._state != CircuitState.CLOSED:
            log.info("Circuit closed", breaker=self.name)
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._probes = 0
        self._probe_successes = 0
        self._opened_at = None

    def allow_request(self) -> bool:
        state = self.state
        if state == CircuitState.CLOSED:
            return True
        if state == CircuitState.HALF_OPEN and self._probes < self.half_open_max_calls:
            self._probes += 1
            return True
        return False

    def record_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._probe_successes += 1
            if self._probe_successes >= self.success_threshold:
                self.reset()
        else:
            self._failures = 0

    def record_failure(self) -> None:
        self._failures += 1
        if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
            self._open()

    async def __aenter__(self) -> "CircuitBreaker":
        if not self.allow_request():
            raise CircuitOpen(self.name, self.reset_at or datetime.now())
        return self

    async def __aexit__(self, exc_type: Any, exc_val: BaseException | None, exc_tb: Any) -> bool:
        if exc_val is None:
            self.record_success()
        else:
            self.record_failure()
        return False


# Breakers are shared per transport name across the process
_circuit_breakers: dict[str, CircuitBreaker] = {}


def get_circuit_breaker(
    name: str,
    failure_threshold: int = 5,
    reset_timeout: float = 60.0,
) -> CircuitBreaker:
    """Return the breaker registered under ``name``, creating it on first use."""
    breaker = _circuit_breakers.get(name)
    if breaker is None:
        breaker = CircuitBreaker(
            name=name,
            failure_threshold=failure_threshold,
            reset_timeout=reset_timeout,
        )
        _circuit_breakers[name] = breaker
    return breaker


def get_circuit_breaker_status() -> dict[str, dict[str, Any]]:
    status = {}
    for name, breaker in _circuit_breakers.items():
        reset_at = breaker.reset_at
        status[name] = {
            "state": breaker.state.value,
            "failure_count": breaker.failure_count,
            "reset_at": reset_at.isoformat() if reset_at else None,
        }
    return status


def reset_circuit_breakers() -> None:
    _circuit_breakers.clear()
