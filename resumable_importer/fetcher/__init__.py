"""Resilient request execution: rate limiting, circuit breaking, offline buffering and retry."""

from .circuit_breaker import CircuitBreaker
from .offline_queue import OfflineQueue
from .rate_limiter import RateLimiter
from .request_queue import RequestQueue
from .retry_handler import RetryHandler

__all__ = ["CircuitBreaker", "OfflineQueue", "RateLimiter", "RequestQueue", "RetryHandler"]
