"""
certnet Retry Policy

Bounded retries with backoff. The signer runtime uses it for one call only:
signature registration under `RegistrationFailurePolicy.RETRY`. Every other
failure is left to whoever schedules the ticks.

    policy = RetryPolicy(
        max_attempts=3,
        backoff_strategy=BackoffStrategy.EXPONENTIAL,
        retryable_exceptions=(RemoteServerTechnicalError,),
    )
    policy.execute(lambda: handler.register_signatures(signatures))

Delays for attempt n (1-based), before the cap `max_delay_seconds`:

    FIXED               base
    LINEAR              base * n
    EXPONENTIAL         base * 2**(n-1)
    EXPONENTIAL_JITTER  base * 2**(n-1) * (1 + U(0, jitter_factor))

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import functools
import random
import threading
import time
from dataclasses import dataclass, replace
from enum import Enum, auto
from typing import Callable, Optional, Tuple, Type, TypeVar

T = TypeVar("T")

ExceptionTypes = Tuple[Type[BaseException], ...]


class BackoffStrategy(Enum):
    FIXED = auto()
    LINEAR = auto()
    EXPONENTIAL = auto()
    EXPONENTIAL_JITTER = auto()


@dataclass
class RetryMetrics:
    """Counters accumulated over every `execute` call of a policy."""
    total_attempts: int = 0
    successful_attempts: int = 0
    failed_attempts: int = 0
    retries_exhausted: int = 0
    total_retry_delay_seconds: float = 0.0


class RetryExhaustedError(Exception):
    """Every attempt failed with a retryable error."""

    def __init__(self, attempts: int, last_exception: BaseException):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"gave up after {attempts} attempts: {last_exception}")


class RetryPolicy:
    """Retry a callable on retryable errors, sleeping between attempts."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 60.0,
        backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL_JITTER,
        jitter_factor: float = 0.5,
        retryable_exceptions: ExceptionTypes = (Exception,),
        non_retryable_exceptions: ExceptionTypes = (),
        on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.backoff_strategy = backoff_strategy
        self.jitter_factor = jitter_factor
        self.retryable_exceptions = retryable_exceptions
        self.non_retryable_exceptions = non_retryable_exceptions
        self._on_retry = on_retry
        self._sleep = sleep
        self._metrics = RetryMetrics()
        self._lock = threading.Lock()

    @property
    def metrics(self) -> RetryMetrics:
        with self._lock:
            return replace(self._metrics)

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after failed attempt number `attempt`."""
        base = self.base_delay_seconds
        strategy = self.backoff_strategy
        if strategy == BackoffStrategy.FIXED:
            delay = base
        elif strategy == BackoffStrategy.LINEAR:
            delay = base * attempt
        else:
            delay = base * 2 ** (attempt - 1)
            if strategy == BackoffStrategy.EXPONENTIAL_JITTER:
                delay += delay * random.uniform(0, self.jitter_factor)
        return min(delay, self.max_delay_seconds)

    def _should_retry(self, exc: BaseException) -> bool:
        return (
            isinstance(exc, self.retryable_exceptions)
            and not isinstance(exc, self.non_retryable_exceptions)
        )

    def _count(self, **increments: float) -> None:
        with self._lock:
            for name, value in increments.items():
                setattr(self._metrics, name, getattr(self._metrics, name) + value)

    def execute(self, func: Callable[[], T]) -> T:
        """Call `func` until it succeeds, a non-retryable error escapes, or attempts run out."""
        attempt = 0
        while True:
            attempt += 1
            self._count(total_attempts=1)
            try:
                result = func()
            except Exception as e:
                self._count(failed_attempts=1)
                if not self._should_retry(e):
                    raise
                if attempt >= self.max_attempts:
                    self._count(retries_exhausted=1)
                    raise RetryExhaustedError(attempt, e) from e

                delay = self.delay_for(attempt)
                self._count(total_retry_delay_seconds=delay)
                if self._on_retry is not None:
                    self._on_retry(attempt, e, delay)
                self._sleep(delay)
            else:
                self._count(successful_attempts=1)
                return result

    def __call__(self, func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            return self.execute(lambda: func(*args, **kwargs))
        return wrapper
