"""
Retry logic with a fixed backoff schedule for asset downloads.

Transient remote failures are retried with the standard schedule
(1s, 2s, 4s by default). Rate-limit signals add an extra delay that
grows with the attempt number on top of the standard schedule.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Sequence

from ..core.exceptions import RateLimitedError, RemoteSourceError


logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including first try)
        backoff_seconds: Delay before retry n is backoff_seconds[n-1];
            the last value is reused when attempts outnumber the schedule
        rate_limit_backoff_seconds: Extra delay per attempt number after a
            rate-limit / temporarily-unavailable response
    """
    max_attempts: int = 3
    backoff_seconds: Sequence[float] = (1.0, 2.0, 4.0)
    rate_limit_backoff_seconds: float = 5.0

    @property
    def ceiling_seconds(self) -> float:
        """Worst-case total sleep across all retries of one operation."""
        total = 0.0
        for attempt in range(1, self.max_attempts):
            total += calculate_delay(attempt, self)
            total += self.rate_limit_backoff_seconds * attempt
        return total


@dataclass
class RetryResult:
    """
    Result of a retry operation.

    Attributes:
        success: Whether the operation succeeded
        result: The result value if successful
        attempts: Number of attempts made
        error: The final error if failed
        error_history: List of errors from each attempt
        rate_limited: Number of attempts answered with a rate-limit signal
    """
    success: bool
    result: Any = None
    attempts: int = 0
    error: Optional[Exception] = None
    error_history: List[str] = field(default_factory=list)
    rate_limited: int = 0


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Standard delay before a given attempt.

    Args:
        attempt: Attempt number (0-based); attempt 0 has no delay
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    if attempt <= 0 or not config.backoff_seconds:
        return 0.0
    schedule = list(config.backoff_seconds)
    index = min(attempt - 1, len(schedule) - 1)
    return float(schedule[index])


def retry_with_backoff(
    operation: Callable[[], Any],
    config: RetryConfig,
    sleep: Callable[[float], None] = time.sleep,
    operation_name: str = "operation",
) -> RetryResult:
    """
    Execute an operation with retry and backoff.

    Only RemoteSourceError (and subclasses) are retried. Any other
    exception ends the operation immediately as a failure.

    Args:
        operation: Callable to execute (should take no arguments)
        config: Retry configuration
        sleep: Sleep function (injectable for tests and cancellation)
        operation_name: Name for logging

    Returns:
        RetryResult with success/failure info
    """
    error_history: List[str] = []
    rate_limited = 0
    last_error: Optional[Exception] = None

    for attempt in range(config.max_attempts):
        delay = calculate_delay(attempt, config)
        if delay > 0:
            logger.debug(f"Backing off {delay:.1f}s before retrying {operation_name}")
            sleep(delay)

        try:
            logger.debug(f"{operation_name}: attempt {attempt + 1}/{config.max_attempts}")
            result = operation()

            if attempt > 0:
                logger.info(f"{operation_name} succeeded after {attempt + 1} attempts")

            return RetryResult(
                success=True,
                result=result,
                attempts=attempt + 1,
                error_history=error_history,
                rate_limited=rate_limited,
            )

        except RateLimitedError as e:
            last_error = e
            rate_limited += 1
            error_history.append(str(e))
            logger.warning(
                f"{operation_name} rate limited (status {e.status_code}) "
                f"on attempt {attempt + 1}/{config.max_attempts}",
                extra={"attempt": attempt + 1, "status": e.status_code},
            )
            if attempt < config.max_attempts - 1:
                sleep(config.rate_limit_backoff_seconds * (attempt + 1))

        except RemoteSourceError as e:
            last_error = e
            error_history.append(str(e))
            logger.debug(
                f"{operation_name} failed on attempt {attempt + 1}/{config.max_attempts}: {e}"
            )

        except Exception as e:
            logger.error(f"{operation_name} failed with non-retryable error: {e}")
            error_history.append(str(e))
            return RetryResult(
                success=False,
                attempts=attempt + 1,
                error=e,
                error_history=error_history,
                rate_limited=rate_limited,
            )

    logger.error(
        f"{operation_name} exhausted all {config.max_attempts} attempts: {last_error}"
    )
    return RetryResult(
        success=False,
        attempts=config.max_attempts,
        error=last_error,
        error_history=error_history,
        rate_limited=rate_limited,
    )
