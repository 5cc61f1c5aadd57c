"""Retry classification and exponential backoff with jitter."""

import random
from typing import Callable, Optional


def calculate_backoff_delay(
    retry_count: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter_ratio: float = 0.25,
    rand: Callable[[], float] = random.random,
) -> float:
    """
    Calculate exponential backoff delay with proportional jitter.

    Formula: min(max_delay, d + d * jitter_ratio * U[0, 1)), d = base_delay * 2 ** (retry_count - 1)

    Args:
        retry_count: Retry attempt number (1 for the first retry)
        base_delay: Base delay in seconds
        max_delay: Maximum delay cap in seconds
        jitter_ratio: Largest jitter as a fraction of the exponential delay
        rand: Uniform random source in [0, 1)

    Returns:
        Delay in seconds
    """
    exponential_delay = base_delay * (2 ** max(0, retry_count - 1))
    jitter = exponential_delay * rand() * jitter_ratio
    return min(max_delay, exponential_delay + jitter)


class RetryHandler:
    """
    Decides whether a failed request is retried and how long to back off.

    Retries on: network errors (no status), 5xx, 408 and 429
    Backoff: exponential from ``base_delay`` with up to 25% jitter, capped at ``max_delay``
    """

    RETRYABLE_CLIENT_STATUS_CODES = frozenset({408, 429})

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        jitter_ratio: float = 0.25,
        rand: Callable[[], float] = random.random,
    ):
        """
        Initialize retry handler.

        Args:
            max_retries: Default retry budget per request
            base_delay: Base delay for exponential backoff
            max_delay: Maximum delay cap
            jitter_ratio: Maximum jitter as a fraction of the delay
            rand: Uniform random source, injectable for tests
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_ratio = jitter_ratio
        self._rand = rand

    def is_retryable(self, status_code: Optional[int] = None) -> bool:
        """
        Check if an error is retryable.

        Args:
            status_code: HTTP status code, None for network errors and timeouts

        Returns:
            True if error should be retried
        """
        if not status_code:
            return True
        if 500 <= status_code < 600:
            return True
        return status_code in self.RETRYABLE_CLIENT_STATUS_CODES

    def backoff_delay(self, retry_count: int) -> float:
        """Delay in seconds before retry number ``retry_count``."""
        return calculate_backoff_delay(
            retry_count,
            self.base_delay,
            self.max_delay,
            self.jitter_ratio,
            self._rand,
        )
