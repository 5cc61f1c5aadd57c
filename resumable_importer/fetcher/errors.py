"""Error types raised through the request queue's per-request futures."""

from typing import Dict, Optional


class RequestQueueError(Exception):
    """Base class for every error a queued request can be rejected with."""

    status_code: Optional[int] = None


class HTTPRequestError(RequestQueueError):
    """Remote service answered with a non-success status."""

    def __init__(
        self,
        status_code: int,
        message: str = "",
        headers: Optional[Dict[str, str]] = None,
    ):
        super().__init__(message or f"HTTP {status_code}")
        self.status_code = status_code
        self.headers = headers or {}

    @property
    def is_throttled(self) -> bool:
        return self.status_code == 429

    def retry_after(self, default: float = 60.0) -> float:
        """Server-specified delay in seconds before the request may be retried."""
        for key, value in self.headers.items():
            if key.lower() == "retry-after":
                try:
                    return float(value)
                except (TypeError, ValueError):
                    return default
        return default


class NetworkError(RequestQueueError):
    """Connection-level failure; carries no status code."""


class RequestTimeoutError(RequestQueueError):
    """The call did not complete within its timeout."""


class OfflineError(RequestQueueError):
    """Request was moved to the offline buffer instead of being issued."""


class OfflineBufferFullError(OfflineError):
    """Request could not be buffered because the offline queue is full."""


class QueueWaitTimeoutError(RequestQueueError):
    """Request waited in the queue longer than its timeout."""


class QueueClearedError(RequestQueueError):
    """Queue was cleared before the request was dispatched."""
