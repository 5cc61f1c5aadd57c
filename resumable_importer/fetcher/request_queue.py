"""Priority request queue with rate limiting, circuit breaking and retry."""

import asyncio
import itertools
import time
from typing import Any, Awaitable, Callable, List, Optional, Set, Union

from resumable_importer.fetcher.circuit_breaker import CircuitBreaker
from resumable_importer.fetcher.errors import (
    HTTPRequestError,
    OfflineBufferFullError,
    OfflineError,
    QueueClearedError,
    QueueWaitTimeoutError,
    RequestTimeoutError,
)
from resumable_importer.fetcher.http_client import Transport
from resumable_importer.fetcher.offline_queue import OfflineQueue
from resumable_importer.fetcher.rate_limiter import RateLimiter
from resumable_importer.fetcher.retry_handler import RetryHandler
from resumable_importer.models.data_models import (
    ApiRequest,
    ApiResponse,
    QueuedRequest,
    QueueStatus,
    RequestPriority,
)


class RequestQueue:
    """
    Single entry point for every outbound call to the upstream host.

    Responsibilities:
    - Order pending requests by priority (FIFO within a tier)
    - Bound the number of in-flight requests
    - Admit requests through the circuit breaker and rate limiter, waiting
      rather than failing when either refuses
    - Retry throttled requests after the server's Retry-After without
      tripping the breaker, and other transient failures with backoff
    - Buffer requests in the offline queue while disconnected

    All state is touched from one event loop only. A single drain pass runs
    at a time; ``enqueue`` and request completions only trigger one.
    """

    def __init__(
        self,
        transport: Transport,
        max_concurrent: int = 2,
        default_timeout: float = 30.0,
        default_retry_after: float = 60.0,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_handler: Optional[RetryHandler] = None,
        offline_queue: Optional[OfflineQueue] = None,
        performance_monitor: Optional["PerformanceMonitor"] = None,
        logger: Optional["StructuredLogger"] = None,
        now: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize queue with resilience components.

        Args:
            transport: Issues one request (``execute(request, timeout)``)
            max_concurrent: Maximum in-flight requests
            default_timeout: Per-request timeout in seconds, also bounds queue wait
            default_retry_after: Delay used when a 429 carries no Retry-After
            rate_limiter: Token bucket (default 60 requests / 60s)
            circuit_breaker: Failure breaker (default 5 failures / 60s window)
            retry_handler: Retry classification and backoff (default 3 retries)
            offline_queue: Buffer used while offline (default 100 entries)
            performance_monitor: Optional metrics sink
            logger: Optional structured logger for telemetry
            now: Clock function (default: time.monotonic)
            sleeper: Async sleep function (default: asyncio.sleep)
        """
        if max_concurrent <= 0:
            raise ValueError(f"max_concurrent must be positive, got: {max_concurrent}")
        self.transport = transport
        self.max_concurrent = max_concurrent
        self.default_timeout = default_timeout
        self.default_retry_after = default_retry_after
        self.rate_limiter = rate_limiter or RateLimiter(now=now)
        self.circuit_breaker = circuit_breaker or CircuitBreaker()
        self.retry_handler = retry_handler or RetryHandler()
        self.offline_queue = offline_queue or OfflineQueue()
        self.performance_monitor = performance_monitor
        self.logger = logger
        self._now = now
        self._sleep = sleeper

        self._queue: List[QueuedRequest] = []
        self._backing_off: Set[QueuedRequest] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._drain_task: Optional[asyncio.Task] = None
        self._active_requests = 0
        self._processing = False
        self._paused = False
        self._online = True
        self._ids = itertools.count(1)

    @classmethod
    def from_config(
        cls,
        config: "ImporterConfig",
        transport: Transport,
        performance_monitor: Optional["PerformanceMonitor"] = None,
        logger: Optional["StructuredLogger"] = None,
    ) -> "RequestQueue":
        """Build a queue and its primitives from importer configuration."""
        return cls(
            transport,
            max_concurrent=config.max_concurrent,
            default_timeout=config.request_timeout,
            default_retry_after=config.default_retry_after,
            rate_limiter=RateLimiter(
                max_tokens=config.rate_limit_requests,
                window_seconds=config.rate_limit_window,
            ),
            circuit_breaker=CircuitBreaker(
                failure_threshold=config.circuit_breaker_failure_threshold,
                reset_timeout_seconds=config.circuit_breaker_reset_timeout,
                success_threshold=config.circuit_breaker_success_threshold,
                failure_window_seconds=config.circuit_breaker_failure_window,
                logger=logger,
            ),
            retry_handler=RetryHandler(
                max_retries=config.max_retries,
                base_delay=config.base_backoff,
                max_delay=config.max_backoff,
            ),
            offline_queue=OfflineQueue(max_size=config.offline_queue_size),
            performance_monitor=performance_monitor,
            logger=logger,
        )

    async def enqueue(
        self,
        request: ApiRequest,
        priority: Union[RequestPriority, str] = RequestPriority.NORMAL,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        """
        Queue a request and wait for its outcome.

        Args:
            request: Request description, passed to the transport untouched
            priority: high, normal or low
            max_retries: Retry budget (defaults to the retry handler's)
            timeout: Call timeout and queue-wait limit in seconds

        Returns:
            The successful response

        Raises:
            RequestQueueError: Terminal failure, offline, queue-wait timeout
                or cleared queue
        """
        return await self.submit(request, priority, max_retries, timeout)

    def submit(
        self,
        request: ApiRequest,
        priority: Union[RequestPriority, str] = RequestPriority.NORMAL,
        max_retries: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> "asyncio.Future[ApiResponse]":
        """Insert a request immediately and return the future it will settle."""
        queued = QueuedRequest(
            id=f"req-{next(self._ids)}",
            request=request,
            priority=RequestPriority(priority),
            future=asyncio.get_running_loop().create_future(),
            max_retries=self.retry_handler.max_retries if max_retries is None else max_retries,
            timeout=self.default_timeout if timeout is None else timeout,
            enqueued_at=self._now(),
        )
        self._insert(queued)
        if self.logger:
            self.logger.queue_depth(len(self._queue), self._active_requests)
        self._trigger()
        return queued.future

    def _insert(self, queued: QueuedRequest) -> None:
        """Place before the first entry of a lower tier, or at the tail."""
        for idx, existing in enumerate(self._queue):
            if existing.priority.rank > queued.priority.rank:
                self._queue.insert(idx, queued)
                return
        self._queue.append(queued)

    def _requeue_front(self, queued: QueuedRequest) -> None:
        self._backing_off.discard(queued)
        if queued.settled:
            return
        queued.enqueued_at = self._now()
        self._queue.insert(0, queued)

    def _trigger(self) -> None:
        if self._processing or self._paused:
            return
        self._processing = True
        self._drain_task = asyncio.get_running_loop().create_task(self._process_queue())

    async def _process_queue(self) -> None:
        """Dispatch queued requests until the queue, budget or pause stops us."""
        try:
            while (
                self._queue
                and self._active_requests < self.max_concurrent
                and not self._paused
            ):
                if not self._online:
                    self._move_to_offline_queue()
                    break

                if not self.circuit_breaker.allow_request():
                    wait_time = self.circuit_breaker.get_time_until_retry()
                    if self.logger:
                        self.logger.circuit_breaker_wait(wait_time)
                    await self._sleep(wait_time)
                    continue

                if not self.rate_limiter.try_acquire():
                    wait_time = self.rate_limiter.get_wait_time()
                    if self.performance_monitor:
                        self.performance_monitor.record_rate_limit_wait(wait_time)
                    if self.logger:
                        self.logger.rate_limit_wait(wait_time)
                    await self._sleep(wait_time)
                    continue

                queued = self._queue.pop(0)
                if queued.settled:
                    # Caller stopped waiting
                    continue

                if self._now() - queued.enqueued_at > queued.timeout:
                    self._reject(queued, QueueWaitTimeoutError(
                        f"Request timed out after waiting {queued.timeout}s in queue"
                    ))
                    continue

                self._active_requests += 1
                task = asyncio.get_running_loop().create_task(self._execute(queued))
                self._tasks.add(task)
                task.add_done_callback(self._on_request_done)
        finally:
            self._processing = False

    def _on_request_done(self, task: asyncio.Task) -> None:
        self._active_requests -= 1
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None and self.logger:
            self.logger.log("request_task_error", error=repr(task.exception()))
        if self._queue and not self._paused:
            self._trigger()

    async def _execute(self, queued: QueuedRequest) -> None:
        """Issue one request and settle, retry or requeue it."""
        start = self._now()
        url = queued.request.url
        if self.logger:
            self.logger.request_start(queued.id, url, queued.retry_count)

        try:
            response = await asyncio.wait_for(
                self.transport.execute(queued.request, queued.timeout),
                timeout=queued.timeout,
            )
        except asyncio.CancelledError:
            self._reject(queued, QueueClearedError("Request cancelled"))
            raise
        except asyncio.TimeoutError:
            await self._handle_failure(
                queued, RequestTimeoutError(f"Request timed out after {queued.timeout}s"), start
            )
            return
        except Exception as e:
            await self._handle_failure(queued, e, start)
            return

        elapsed = self._now() - start
        self.rate_limiter.update_from_headers(response.rate_limit_remaining, response.rate_limit_reset)
        self.circuit_breaker.record_success()
        if self.performance_monitor:
            self.performance_monitor.record_request(True, elapsed, response.content_length, False)
        if self.logger:
            self.logger.request_success(queued.id, url, response.status_code, elapsed * 1000)
        self._resolve(queued, response)

    async def _handle_failure(self, queued: QueuedRequest, error: Exception, start: float) -> None:
        elapsed = self._now() - start
        status = getattr(error, "status_code", None)
        if self.logger:
            self.logger.request_error(queued.id, queued.request.url, status, str(error), queued.retry_count)

        if status == 429:
            if self.performance_monitor:
                self.performance_monitor.record_request(False, elapsed, 0, True)
            if queued.retry_count < queued.max_retries:
                # Throttling is expected and never counts against the breaker
                queued.retry_count += 1
                if isinstance(error, HTTPRequestError):
                    delay = error.retry_after(self.default_retry_after)
                else:
                    delay = self.default_retry_after
                if self.performance_monitor:
                    self.performance_monitor.record_rate_limit_wait(delay)
                await self._retry_after(queued, delay, "throttled")
                return
        elif self.performance_monitor:
            self.performance_monitor.record_request(False, elapsed, 0, False)

        self.circuit_breaker.record_failure()

        if queued.retry_count < queued.max_retries and self.retry_handler.is_retryable(status):
            queued.retry_count += 1
            delay = self.retry_handler.backoff_delay(queued.retry_count)
            await self._retry_after(queued, delay, "backoff")
            return

        self._reject(queued, error)

    async def _retry_after(self, queued: QueuedRequest, delay: float, reason: str) -> None:
        if self.logger:
            self.logger.request_retry(queued.id, queued.retry_count, delay, reason)
        self._backing_off.add(queued)
        try:
            await self._sleep(delay)
        finally:
            self._requeue_front(queued)

    def _move_to_offline_queue(self) -> None:
        for queued in self._queue:
            if queued.settled:
                continue
            buffered = self.offline_queue.add(queued.request, queued.priority)
            if self.logger:
                self.logger.offline_buffered(queued.id, buffered)
            if buffered:
                self._reject(queued, OfflineError("Offline: request queued for later"))
            else:
                self._reject(queued, OfflineBufferFullError("Offline: request buffer is full"))
        self._queue = []

    def _resolve(self, queued: QueuedRequest, response: ApiResponse) -> None:
        if not queued.future.done():
            queued.future.set_result(response)

    def _reject(self, queued: QueuedRequest, error: BaseException) -> None:
        if not queued.future.done():
            queued.future.set_exception(error)

    def pause(self) -> None:
        """Stop dispatching; queued work is kept."""
        self._paused = True

    def resume(self) -> None:
        """Restart dispatching after ``pause``."""
        self._paused = False
        self._trigger()

    def set_online(self, online: bool) -> None:
        """Update connectivity; going back online re-enqueues buffered requests once."""
        was_offline = not self._online
        self._online = online

        if online and was_offline:
            for request, priority in self.offline_queue.drain():
                future = self.submit(request, priority)
                future.add_done_callback(self._log_reissued_outcome)
            self._trigger()

    def _log_reissued_outcome(self, future: "asyncio.Future[ApiResponse]") -> None:
        # Nobody awaits re-issued requests, so their failures are only logged
        if future.cancelled():
            return
        error = future.exception()
        if error is not None and self.logger:
            self.logger.log("offline_request_failed", error=str(error))

    def clear(self) -> None:
        """Reject every queued, backing-off and buffered request."""
        for queued in self._queue + list(self._backing_off):
            self._reject(queued, QueueClearedError("Queue cleared"))
        self._queue = []
        self._backing_off.clear()
        self.offline_queue.clear()

    def reset_circuit_breaker(self) -> None:
        self.circuit_breaker.reset()

    def get_status(self) -> QueueStatus:
        return QueueStatus(
            queue_length=len(self._queue),
            active_requests=self._active_requests,
            circuit_state=self.circuit_breaker.state,
            available_tokens=self.rate_limiter.available_tokens,
            is_paused=self._paused,
            is_online=self._online,
            offline_queue_size=self.offline_queue.size(),
        )

    def get_pending_count(self) -> int:
        return len(self._queue) + self._active_requests

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_online(self) -> bool:
        return self._online

    async def close(self) -> None:
        """Clear the queue and cancel every running request, including backoff sleeps."""
        self.clear()
        pending = set(self._tasks)
        if self._drain_task is not None and not self._drain_task.done():
            pending.add(self._drain_task)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no drain pass or dispatched request is running."""
        while True:
            pending = set(self._tasks)
            if self._drain_task is not None and not self._drain_task.done():
                pending.add(self._drain_task)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)
