from __future__ import annotations

import threading
import time
from typing import Callable, Generic, Optional, Tuple, Type, TypeVar

from .errors import ConversionCancelled

T = TypeVar("T")

Backoff = Callable[[int], float]


class RetryExhausted(Exception, Generic[T]):
    """Raised when every attempt produced an unacceptable outcome."""

    def __init__(self, attempts: int, last_result: Optional[T] = None, last_error: Optional[BaseException] = None):
        super().__init__(f"gave up after {attempts} attempts")
        self.attempts = attempts
        self.last_result = last_result
        self.last_error = last_error


def fixed_backoff(delay_s: float) -> Backoff:
    return lambda attempt: delay_s


def exponential_backoff(initial_s: float, base: float = 2.0, cap_s: float | None = None) -> Backoff:
    def _delay(attempt: int) -> float:
        delay = initial_s * base ** (attempt - 1)
        return min(delay, cap_s) if cap_s is not None else delay

    return _delay


def retry(
    operation: Callable[[int], T],
    *,
    max_attempts: int,
    backoff: Backoff,
    is_success: Callable[[T], bool] = lambda _: True,
    retry_on: Tuple[Type[BaseException], ...] = (),
    on_rejected: Callable[[int, Optional[T], Optional[BaseException]], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    cancel: Optional[threading.Event] = None,
) -> T:
    """Call ``operation`` until ``is_success`` accepts its result.

    ``operation`` receives the 1-based attempt number. Exceptions listed in
    ``retry_on`` count as rejected attempts; anything else propagates. The
    delay after attempt ``n`` is ``backoff(n)``; no delay follows the last
    attempt.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    last_result: Optional[T] = None
    last_error: Optional[BaseException] = None
    for attempt in range(1, max_attempts + 1):
        if cancel is not None and cancel.is_set():
            raise ConversionCancelled("retry cancelled")
        try:
            result = operation(attempt)
        except retry_on as exc:
            last_result, last_error = None, exc
        else:
            if is_success(result):
                return result
            last_result, last_error = result, None

        if on_rejected is not None:
            on_rejected(attempt, last_result, last_error)
        if attempt == max_attempts:
            break
        delay = backoff(attempt)
        if cancel is not None:
            if cancel.wait(delay):
                raise ConversionCancelled("retry cancelled")
        else:
            sleep(delay)

    raise RetryExhausted(max_attempts, last_result, last_error)


__all__ = ["RetryExhausted", "retry", "fixed_backoff", "exponential_backoff"]
