"""Structured logging for import monitoring."""

import json
import logging
from typing import Optional


class StructuredLogger:
    """Structured logger with uniform schema."""

    def __init__(self, name: str = "resumable_importer", level: str = "INFO"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        if not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(handler)

    def log(self, event: str, level: int = logging.INFO, **kwargs) -> None:
        """
        Log structured event.

        Standard keys: event, request_id, url, status, attempt, delay_s,
                      cb_state, queue_size, session_id, phase
        """
        log_data = {"event": event, **kwargs}
        self.logger.log(level, json.dumps(log_data, default=str))

    def request_start(self, request_id: str, url: str, attempt: int) -> None:
        self.log("request_start", logging.DEBUG, request_id=request_id, url=url, attempt=attempt)

    def request_success(self, request_id: str, url: str, status: int, elapsed_ms: float) -> None:
        self.log("request_success", request_id=request_id, url=url, status=status, elapsed_ms=elapsed_ms)

    def request_error(self, request_id: str, url: str, status: Optional[int], error: str, attempt: int) -> None:
        self.log("request_error", logging.WARNING, request_id=request_id, url=url,
                 status=status, error=error, attempt=attempt)

    def request_retry(self, request_id: str, attempt: int, delay_s: float, reason: str) -> None:
        self.log("request_retry", request_id=request_id, attempt=attempt, delay_s=delay_s, reason=reason)

    def rate_limit_wait(self, delay_s: float) -> None:
        self.log("rate_limit_wait", logging.DEBUG, delay_s=delay_s)

    def circuit_breaker_state(self, state: str, failures: int) -> None:
        self.log("circuit_breaker", logging.WARNING, cb_state=state, failures=failures)

    def circuit_breaker_wait(self, delay_s: float) -> None:
        self.log("circuit_breaker_wait", logging.WARNING, delay_s=delay_s)

    def offline_buffered(self, request_id: str, buffered: bool) -> None:
        self.log("offline_buffered", request_id=request_id, buffered=buffered)

    def queue_depth(self, size: int, active: int) -> None:
        self.log("queue_depth", logging.DEBUG, queue_size=size, active=active)

    def checkpoint_event(self, action: str, session_id: str, **kwargs) -> None:
        self.log("checkpoint", action=action, session_id=session_id, **kwargs)

    def checkpoint_error(self, action: str, error: str) -> None:
        self.log("checkpoint_error", logging.ERROR, action=action, error=error)

    def phase_change(self, session_id: str, phase: str) -> None:
        self.log("phase_change", session_id=session_id, phase=phase)
