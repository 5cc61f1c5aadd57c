"""Rate limiter implementation using token bucket algorithm."""

import math
import time
from typing import Callable


class RateLimiter:
    """Token bucket rate limiter for a single upstream host.

    Holds at most ``max_tokens`` tokens, replenished continuously at
    ``max_tokens`` per ``window_seconds``. One token is consumed per admitted
    request. The limiter never blocks: callers poll ``try_acquire`` and wait
    ``get_wait_time`` seconds when it refuses.
    """

    def __init__(
        self,
        max_tokens: int = 60,
        window_seconds: float = 60.0,
        now: Callable[[], float] = time.monotonic,
    ):
        """Initialize rate limiter with a full bucket.

        Args:
            max_tokens: Maximum tokens in bucket (requests per window)
            window_seconds: Time for an empty bucket to refill completely
            now: Clock function for time operations (default: time.monotonic)
        """
        if max_tokens <= 0:
            raise ValueError(f"max_tokens must be positive, got: {max_tokens}")
        if window_seconds <= 0:
            raise ValueError(f"window_seconds must be positive, got: {window_seconds}")
        self.max_tokens = max_tokens
        self.window_seconds = window_seconds
        self._now = now
        self._tokens = float(max_tokens)
        self._last_refill = now()

    def try_acquire(self) -> bool:
        """Consume one token if a full token is available.

        Returns:
            True if the request is admitted
        """
        self._refill()
        if self._tokens >= 1.0:
            self._tokens -= 1.0
            return True
        return False

    def get_wait_time(self) -> float:
        """Seconds until one full token will be available."""
        self._refill()
        if self._tokens >= 1.0:
            return 0.0

        tokens_needed = 1.0 - self._tokens
        seconds_per_token = self.window_seconds / self.max_tokens
        # Round up to the millisecond so a caller that sleeps exactly this
        # long always finds a token
        return math.ceil(tokens_needed * seconds_per_token * 1000) / 1000

    @property
    def available_tokens(self) -> float:
        """Current (fractional) token count after refill."""
        self._refill()
        return self._tokens

    def update_from_headers(self, remaining: int, reset_seconds: float) -> None:
        """Reconcile the local bucket with the server's reported quota.

        The local estimate is only ever clamped down to ``remaining``. A
        positive ``reset_seconds`` retimes the refill window from now.

        Args:
            remaining: Requests the server says are left in its window
            reset_seconds: Seconds until the server's window resets
        """
        self._refill()
        if remaining < self._tokens:
            self._tokens = float(max(0, remaining))

        if reset_seconds > 0:
            self._last_refill = self._now()
            self.window_seconds = float(reset_seconds)

    def _refill(self) -> None:
        """Add tokens for the time elapsed since the last refill."""
        current_time = self._now()
        elapsed = current_time - self._last_refill

        if elapsed > 0:
            tokens_to_add = (elapsed / self.window_seconds) * self.max_tokens
            self._tokens = min(float(self.max_tokens), self._tokens + tokens_to_add)
            self._last_refill = current_time
