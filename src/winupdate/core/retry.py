"""Bounded retry loop shared by staging, execution and restart waits"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar, Union

from winupdate.core.errors import (
    AttemptsExhaustedError,
    ConfigurationError,
    PermanentError,
    RetryTimeoutError,
    WorkflowCancelledError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fixed delay in seconds, or a function of the attempt number that just failed
Delay = Union[float, Callable[[int], float]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for one retryable operation

    Attributes:
        overall_timeout: Wall-clock budget in seconds for all attempts combined
        max_attempts: Maximum number of attempts (>= 1)
        delay_between_attempts: Seconds to wait between attempts, or a callable
            returning the delay for a given attempt number
    """

    overall_timeout: float
    max_attempts: int
    delay_between_attempts: Delay = 0.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError(f"max_attempts must be at least 1, got {self.max_attempts}")
        if self.overall_timeout <= 0:
            raise ConfigurationError(f"overall_timeout must be positive, got {self.overall_timeout}")

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after ``attempt`` failed"""
        if callable(self.delay_between_attempts):
            return max(0.0, float(self.delay_between_attempts(attempt)))
        return max(0.0, float(self.delay_between_attempts))


def exponential_backoff(initial: float, multiplier: float = 2.0, maximum: Optional[float] = None) -> Callable[[int], float]:
    """Build a delay function: initial, initial*multiplier, ... capped at maximum"""

    def delay(attempt: int) -> float:
        value = initial * (multiplier ** (attempt - 1))
        if maximum is not None:
            value = min(value, maximum)
        return value

    return delay


def _raise_if_cancelled(cancel_event: Optional[threading.Event], description: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise WorkflowCancelledError(f"{description} cancelled")


def wait_or_cancel(delay: float, cancel_event: Optional[threading.Event], description: str) -> None:
    if cancel_event is None:
        time.sleep(delay)
        return
    if cancel_event.wait(delay):
        raise WorkflowCancelledError(f"{description} cancelled")


def run_with_retry(policy: RetryPolicy, attempt_fn: Callable[[int], T],
                   cancel_event: Optional[threading.Event] = None,
                   description: str = "operation",
                   clock: Callable[[], float] = time.monotonic) -> T:
    """Run ``attempt_fn`` until it returns, under the given retry budget

    ``attempt_fn`` receives the 1-based attempt number. Returning normally ends
    the loop. Raising a PermanentError or WorkflowCancelledError ends it
    immediately; any other exception is retried.

    Args:
        policy: Retry budget
        attempt_fn: Function performing one attempt
        cancel_event: Optional event; when set, the loop stops at the next check
        description: Human readable name used in log and error messages
        clock: Monotonic clock in seconds

    Returns:
        Value returned by the first successful attempt

    Raises:
        AttemptsExhaustedError: All attempts failed
        RetryTimeoutError: Waiting for another attempt would exceed the overall timeout
        WorkflowCancelledError: The cancel event was set
    """
    start = clock()
    last_error: Optional[Exception] = None

    for attempt in range(1, policy.max_attempts + 1):
        _raise_if_cancelled(cancel_event, description)

        try:
            logger.debug(f"{description}: attempt {attempt}/{policy.max_attempts}")
            return attempt_fn(attempt)
        except (PermanentError, WorkflowCancelledError):
            raise
        except Exception as e:
            last_error = e
            logger.warning(f"{description}: attempt {attempt}/{policy.max_attempts} failed: {e}")

        if attempt == policy.max_attempts:
            break

        delay = policy.delay_for(attempt)
        elapsed = clock() - start
        if elapsed + delay >= policy.overall_timeout:
            raise RetryTimeoutError(
                f"{description} timed out after {elapsed:.1f}s ({attempt} attempts): {last_error}",
                attempts=attempt,
                last_error=last_error,
            ) from last_error

        logger.info(f"{description}: retrying in {delay:g}s")
        wait_or_cancel(delay, cancel_event, description)

    logger.error(f"{description}: all {policy.max_attempts} attempts failed")
    raise AttemptsExhaustedError(
        f"{description} failed after {policy.max_attempts} attempts: {last_error}",
        attempts=policy.max_attempts,
        last_error=last_error,
    ) from last_error
