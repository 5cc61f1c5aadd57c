"""Request and import metrics collected during a session."""

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

METRICS_WINDOW_SIZE = 100


@dataclass
class RequestMetrics:
    """Counters for outbound requests."""
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rate_limited_requests: int = 0
    total_bytes_downloaded: int = 0
    avg_response_time: float = 0.0
    min_response_time: Optional[float] = None
    max_response_time: float = 0.0
    rate_limit_wait_time: float = 0.0


@dataclass
class ImportMetrics:
    """Counters for fetched and processed items."""
    start_time: float = 0.0
    end_time: Optional[float] = None
    items_fetched: int = 0
    items_processed: int = 0
    items_imported: int = 0
    items_skipped: int = 0
    items_failed: int = 0


@dataclass
class PerformanceSummary:
    """Aggregate view of a session."""
    duration_seconds: float
    items_per_second: float
    avg_request_latency: float
    request_success_rate: float
    rate_limit_percentage: float
    effective_throughput: float

    def estimated_time_for_items(self, count: int) -> float:
        if self.items_per_second <= 0:
            return float("inf")
        return count / self.items_per_second


@dataclass
class Bottleneck:
    """A detected slowdown with a suggested remedy."""
    type: str  # network | rate_limit | processing
    severity: str  # low | medium | high
    description: str
    recommendation: str


def _severity(value: float, medium: float, high: float, inverted: bool = False) -> str:
    if inverted:
        return "high" if value < high else "medium" if value < medium else "low"
    return "high" if value > high else "medium" if value > medium else "low"


class PerformanceMonitor:
    """
    Tracks request latency, throttling and item throughput.

    Recording is a no-op outside an active session.
    """

    def __init__(self, now: Callable[[], float] = time.monotonic):
        self._now = now
        self.request_metrics = RequestMetrics()
        self.import_metrics = ImportMetrics()
        self._total_response_time = 0.0
        self._request_timestamps: Deque[float] = deque(maxlen=METRICS_WINDOW_SIZE)
        self.is_monitoring = False

    def start_session(self) -> None:
        """Reset all metrics and start recording."""
        self.request_metrics = RequestMetrics()
        self.import_metrics = ImportMetrics(start_time=self._now())
        self._total_response_time = 0.0
        self._request_timestamps.clear()
        self.is_monitoring = True

    def end_session(self) -> None:
        self.import_metrics.end_time = self._now()
        self.is_monitoring = False

    def record_request(
        self,
        success: bool,
        response_time: float,
        bytes_downloaded: int = 0,
        was_rate_limited: bool = False,
    ) -> None:
        """
        Record one request attempt.

        Args:
            success: Whether the call succeeded
            response_time: Seconds the call took
            bytes_downloaded: Response size reported by the server
            was_rate_limited: Whether the server answered 429
        """
        if not self.is_monitoring:
            return

        metrics = self.request_metrics
        metrics.total_requests += 1
        if success:
            metrics.successful_requests += 1
        else:
            metrics.failed_requests += 1
        if was_rate_limited:
            metrics.rate_limited_requests += 1
        metrics.total_bytes_downloaded += bytes_downloaded

        self._total_response_time += response_time
        if metrics.min_response_time is None:
            metrics.min_response_time = response_time
        else:
            metrics.min_response_time = min(metrics.min_response_time, response_time)
        metrics.max_response_time = max(metrics.max_response_time, response_time)
        metrics.avg_response_time = self._total_response_time / metrics.total_requests

        self._request_timestamps.append(self._now())

    def record_rate_limit_wait(self, wait_time: float) -> None:
        if self.is_monitoring:
            self.request_metrics.rate_limit_wait_time += wait_time

    def record_items_fetched(self, count: int) -> None:
        if self.is_monitoring:
            self.import_metrics.items_fetched += count

    def record_item_processed(self, result: str) -> None:
        """Record one processed item; ``result`` is imported, skipped or failed."""
        if not self.is_monitoring:
            return
        metrics = self.import_metrics
        metrics.items_processed += 1
        if result == "imported":
            metrics.items_imported += 1
        elif result == "skipped":
            metrics.items_skipped += 1
        elif result == "failed":
            metrics.items_failed += 1

    def get_summary(self) -> PerformanceSummary:
        end_time = self.import_metrics.end_time if self.import_metrics.end_time is not None else self._now()
        duration = max(0.0, end_time - self.import_metrics.start_time)
        requests = self.request_metrics
        processed = self.import_metrics.items_processed

        items_per_second = processed / duration if duration > 0 else 0.0
        success_rate = (
            requests.successful_requests / requests.total_requests
            if requests.total_requests > 0 else 1.0
        )
        rate_limit_percentage = (
            requests.rate_limited_requests / requests.total_requests
            if requests.total_requests > 0 else 0.0
        )
        active_time = duration - requests.rate_limit_wait_time
        effective_throughput = processed / active_time if active_time > 0 else 0.0

        return PerformanceSummary(
            duration_seconds=duration,
            items_per_second=items_per_second,
            avg_request_latency=requests.avg_response_time,
            request_success_rate=success_rate,
            rate_limit_percentage=rate_limit_percentage,
            effective_throughput=effective_throughput,
        )

    def get_current_request_rate(self) -> float:
        """Requests per second over the recent timestamp window."""
        timestamps = self._request_timestamps
        if len(timestamps) < 2:
            return 0.0
        window = timestamps[-1] - timestamps[0]
        if window <= 0:
            return 0.0
        return (len(timestamps) - 1) / window

    def identify_bottlenecks(self) -> List[Bottleneck]:
        bottlenecks = []
        summary = self.get_summary()

        if summary.rate_limit_percentage > 0.1:
            bottlenecks.append(Bottleneck(
                type="rate_limit",
                severity=_severity(summary.rate_limit_percentage, 0.2, 0.3),
                description=f"{summary.rate_limit_percentage * 100:.1f}% of requests were rate limited",
                recommendation="Reduce the fetch limit or wait between import sessions",
            ))

        if summary.request_success_rate < 0.95:
            bottlenecks.append(Bottleneck(
                type="network",
                severity=_severity(summary.request_success_rate, 0.9, 0.8, inverted=True),
                description=f"{(1 - summary.request_success_rate) * 100:.1f}% of requests failed",
                recommendation="Check the network connection or increase retry attempts",
            ))

        if self.request_metrics.avg_response_time > 2.0:
            bottlenecks.append(Bottleneck(
                type="network",
                severity=_severity(self.request_metrics.avg_response_time, 3.0, 5.0),
                description=f"Average response time is {self.request_metrics.avg_response_time:.2f}s",
                recommendation="Network latency is high; import during off-peak hours",
            ))

        if summary.items_per_second < 0.5 and self.import_metrics.items_processed > 10:
            bottlenecks.append(Bottleneck(
                type="processing",
                severity="medium",
                description=f"Processing speed is {summary.items_per_second:.2f} items/second",
                recommendation="Local storage writes may be slowing the import",
            ))

        return bottlenecks

    def format_for_display(self) -> str:
        summary = self.get_summary()
        requests = self.request_metrics
        items = self.import_metrics
        lines = [
            f"Duration: {summary.duration_seconds:.1f}s",
            f"Items: {items.items_fetched} fetched, {items.items_imported} imported, "
            f"{items.items_skipped} skipped, {items.items_failed} failed",
            f"Throughput: {summary.items_per_second:.2f} items/s",
            f"Requests: {requests.total_requests} total, {requests.successful_requests} ok, "
            f"{requests.failed_requests} failed, {requests.rate_limited_requests} rate limited",
            f"Average latency: {summary.avg_request_latency * 1000:.0f}ms",
            f"Rate limit wait: {requests.rate_limit_wait_time:.1f}s",
        ]
        for bottleneck in self.identify_bottlenecks():
            lines.append(f"[{bottleneck.severity}] {bottleneck.description}: {bottleneck.recommendation}")
        return "\n".join(lines)
