"""Unit tests for the priority request queue."""

import asyncio
from typing import List

import pytest

from resumable_importer.fetcher.circuit_breaker import CircuitBreaker
from resumable_importer.fetcher.errors import (
    HTTPRequestError,
    NetworkError,
    OfflineBufferFullError,
    OfflineError,
    QueueClearedError,
    QueueWaitTimeoutError,
    RequestTimeoutError,
)
from resumable_importer.fetcher.offline_queue import OfflineQueue
from resumable_importer.fetcher.rate_limiter import RateLimiter
from resumable_importer.fetcher.request_queue import RequestQueue
from resumable_importer.fetcher.retry_handler import RetryHandler
from resumable_importer.models.config import ImporterConfig
from resumable_importer.models.data_models import (
    ApiRequest,
    ApiResponse,
    CircuitState,
    RequestPriority,
)

QUOTA_HEADERS = {"x-ratelimit-remaining": "100", "x-ratelimit-reset": "10"}


class FakeClock:
    """Fake clock usable as a ``now`` callable and as a breaker clock."""

    def __init__(self, initial_time: float = 0.0):
        self._current_time = initial_time

    def __call__(self) -> float:
        return self._current_time

    def now(self) -> float:
        return self._current_time

    def advance(self, seconds: float) -> None:
        self._current_time += seconds


class FakeTransport:
    """Returns scripted outcomes, then 200s."""

    def __init__(self, outcomes=None):
        self.outcomes = list(outcomes or [])
        self.calls: List[ApiRequest] = []

    async def execute(self, request, timeout):
        self.calls.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else ApiResponse(200, dict(QUOTA_HEADERS), {"ok": True})
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    @property
    def urls(self) -> List[str]:
        return [r.url for r in self.calls]


class RecordingSleeper:
    """Records requested delays; optionally advances a fake clock instead of sleeping."""

    def __init__(self, clock: FakeClock = None):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)
        await asyncio.sleep(0)


def req(url: str = "/items") -> ApiRequest:
    return ApiRequest(url=url)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sleeper():
    return RecordingSleeper()


class TestOrdering:

    @pytest.mark.asyncio
    async def test_drains_by_priority_then_fifo(self, transport):
        queue = RequestQueue(transport, max_concurrent=1)
        queue.pause()

        futures = [
            queue.submit(req("/low"), RequestPriority.LOW),
            queue.submit(req("/high-1"), RequestPriority.HIGH),
            queue.submit(req("/normal"), RequestPriority.NORMAL),
            queue.submit(req("/high-2"), RequestPriority.HIGH),
        ]
        queue.resume()
        await asyncio.gather(*futures)

        assert transport.urls == ["/high-1", "/high-2", "/normal", "/low"]

    @pytest.mark.asyncio
    async def test_accepts_priority_names(self, transport):
        queue = RequestQueue(transport, max_concurrent=1)
        queue.pause()

        futures = [queue.submit(req("/low"), "low"), queue.submit(req("/high"), "high")]
        queue.resume()
        await asyncio.gather(*futures)

        assert transport.urls == ["/high", "/low"]

    @pytest.mark.asyncio
    async def test_enqueue_returns_response(self, transport):
        queue = RequestQueue(transport)

        response = await queue.enqueue(req())

        assert response.status_code == 200
        assert response.json() == {"ok": True}


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_never_exceeds_max_concurrent(self):
        class SlowTransport:
            def __init__(self):
                self.active = 0
                self.peak = 0

            async def execute(self, request, timeout):
                self.active += 1
                self.peak = max(self.peak, self.active)
                await asyncio.sleep(0.01)
                self.active -= 1
                return ApiResponse(200, dict(QUOTA_HEADERS))

        slow = SlowTransport()
        queue = RequestQueue(slow, max_concurrent=2)

        futures = [queue.submit(req(f"/{i}")) for i in range(5)]
        await asyncio.sleep(0)

        status = queue.get_status()
        assert status.active_requests == 2
        assert status.queue_length == 3
        assert queue.get_pending_count() == 5

        await asyncio.gather(*futures)
        assert slow.peak == 2

    def test_rejects_non_positive_concurrency(self, transport):
        with pytest.raises(ValueError, match="max_concurrent must be positive"):
            RequestQueue(transport, max_concurrent=0)


class TestRetries:

    @pytest.mark.asyncio
    async def test_throttled_request_waits_retry_after_without_breaker_failure(self, sleeper):
        transport = FakeTransport([HTTPRequestError(429, headers={"Retry-After": "7"})])
        breaker = CircuitBreaker(failure_threshold=1)
        queue = RequestQueue(transport, circuit_breaker=breaker, sleeper=sleeper)

        response = await queue.enqueue(req())

        assert response.status_code == 200
        assert sleeper.delays == [7.0]
        assert len(transport.calls) == 2
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_throttled_request_without_retry_after_uses_default(self, sleeper):
        transport = FakeTransport([HTTPRequestError(429)])
        queue = RequestQueue(transport, default_retry_after=5.0, sleeper=sleeper)

        await queue.enqueue(req())

        assert sleeper.delays == [5.0]

    @pytest.mark.asyncio
    async def test_server_errors_retry_with_exponential_backoff(self, sleeper):
        transport = FakeTransport([HTTPRequestError(503), HTTPRequestError(503)])
        retry = RetryHandler(max_retries=3, base_delay=1.0, rand=lambda: 0.0)
        queue = RequestQueue(transport, retry_handler=retry, sleeper=sleeper)

        response = await queue.enqueue(req())

        assert response.status_code == 200
        assert sleeper.delays == [1.0, 2.0]
        assert len(transport.calls) == 3
        assert queue.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_network_error_is_retried(self, sleeper):
        transport = FakeTransport([NetworkError("connection reset")])
        queue = RequestQueue(transport, sleeper=sleeper)

        response = await queue.enqueue(req())

        assert response.status_code == 200
        assert len(transport.calls) == 2

    @pytest.mark.asyncio
    async def test_non_retryable_error_rejects_immediately(self, sleeper):
        transport = FakeTransport([HTTPRequestError(404)])
        queue = RequestQueue(transport, sleeper=sleeper)

        with pytest.raises(HTTPRequestError) as exc_info:
            await queue.enqueue(req())

        assert exc_info.value.status_code == 404
        assert len(transport.calls) == 1
        assert sleeper.delays == []
        assert queue.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_reject_with_last_error(self, sleeper):
        transport = FakeTransport([HTTPRequestError(500)] * 3)
        queue = RequestQueue(transport, sleeper=sleeper)

        with pytest.raises(HTTPRequestError) as exc_info:
            await queue.enqueue(req(), max_retries=2)

        assert exc_info.value.status_code == 500
        assert len(transport.calls) == 3

    @pytest.mark.asyncio
    async def test_call_timeout_rejects_with_timeout_error(self):
        class HangingTransport:
            async def execute(self, request, timeout):
                await asyncio.sleep(1.0)
                return ApiResponse(200)

        queue = RequestQueue(HangingTransport())

        with pytest.raises(RequestTimeoutError):
            await queue.enqueue(req(), max_retries=0, timeout=0.01)

        assert queue.circuit_breaker.failure_count == 1


class TestAdmission:

    @pytest.mark.asyncio
    async def test_waits_for_open_breaker_then_probes(self):
        clock = FakeClock()
        sleeper = RecordingSleeper(clock)
        breaker = CircuitBreaker(failure_threshold=1, reset_timeout_seconds=30.0, clock=clock)
        breaker.record_failure()
        transport = FakeTransport()
        queue = RequestQueue(transport, circuit_breaker=breaker, now=clock, sleeper=sleeper)

        response = await queue.enqueue(req())

        assert response.status_code == 200
        assert sleeper.delays == [30.0]
        assert breaker.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_waits_for_rate_limit_token(self):
        clock = FakeClock()
        sleeper = RecordingSleeper(clock)
        limiter = RateLimiter(max_tokens=1, window_seconds=10.0, now=clock)
        transport = FakeTransport()
        queue = RequestQueue(transport, rate_limiter=limiter, now=clock, sleeper=sleeper)

        await queue.enqueue(req("/first"))
        await queue.enqueue(req("/second"))

        assert transport.urls == ["/first", "/second"]
        assert sleeper.delays == [10.0]

    @pytest.mark.asyncio
    async def test_server_quota_clamps_limiter(self):
        transport = FakeTransport([ApiResponse(200, {"X-Ratelimit-Remaining": "3.0", "X-Ratelimit-Reset": "60"})])
        queue = RequestQueue(transport)

        await queue.enqueue(req())

        assert queue.rate_limiter.available_tokens == pytest.approx(3.0, abs=0.1)

    @pytest.mark.asyncio
    async def test_queue_wait_timeout(self):
        clock = FakeClock()
        transport = FakeTransport()
        queue = RequestQueue(transport, now=clock)
        queue.pause()

        future = queue.submit(req(), timeout=5.0)
        clock.advance(6.0)
        queue.resume()

        with pytest.raises(QueueWaitTimeoutError):
            await future
        assert transport.calls == []


class TestControls:

    @pytest.mark.asyncio
    async def test_pause_keeps_queued_requests(self, transport):
        queue = RequestQueue(transport)
        queue.pause()

        future = queue.submit(req())
        await asyncio.sleep(0)

        assert queue.is_paused is True
        assert queue.get_pending_count() == 1
        assert transport.calls == []

        queue.resume()
        await future
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_clear_rejects_queued_requests(self, transport):
        queue = RequestQueue(transport)
        queue.pause()
        first = queue.submit(req("/a"))
        second = queue.submit(req("/b"))

        queue.clear()

        for future in (first, second):
            with pytest.raises(QueueClearedError):
                await future
        assert queue.get_status().queue_length == 0
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_close_rejects_request_sleeping_in_backoff(self):
        transport = FakeTransport([HTTPRequestError(503)])
        retry = RetryHandler(base_delay=10.0, rand=lambda: 0.0)
        queue = RequestQueue(transport, retry_handler=retry)

        future = queue.submit(req())
        await asyncio.sleep(0.01)
        await queue.close()

        with pytest.raises(QueueClearedError):
            await future
        assert len(transport.calls) == 1

    @pytest.mark.asyncio
    async def test_reset_circuit_breaker(self, transport):
        queue = RequestQueue(transport, circuit_breaker=CircuitBreaker(failure_threshold=1))
        queue.circuit_breaker.record_failure()
        assert queue.get_status().circuit_state == CircuitState.OPEN

        queue.reset_circuit_breaker()

        assert queue.get_status().circuit_state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_initial_status(self, transport):
        status = RequestQueue(transport).get_status()

        assert status.queue_length == 0
        assert status.active_requests == 0
        assert status.circuit_state == CircuitState.CLOSED
        assert status.available_tokens == pytest.approx(60.0)
        assert status.is_paused is False
        assert status.is_online is True
        assert status.offline_queue_size == 0


class TestOffline:

    @pytest.mark.asyncio
    async def test_offline_requests_are_buffered_and_rejected(self, transport):
        queue = RequestQueue(transport)
        queue.set_online(False)

        with pytest.raises(OfflineError):
            await queue.enqueue(req())

        assert queue.is_online is False
        assert queue.get_status().offline_queue_size == 1
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_full_offline_buffer_rejects_with_buffer_full(self, transport):
        queue = RequestQueue(transport, offline_queue=OfflineQueue(max_size=1))
        queue.set_online(False)

        first = queue.submit(req("/a"))
        second = queue.submit(req("/b"))

        with pytest.raises(OfflineError) as first_exc:
            await first
        with pytest.raises(OfflineBufferFullError):
            await second
        assert not isinstance(first_exc.value, OfflineBufferFullError)

    @pytest.mark.asyncio
    async def test_reconnect_reissues_buffered_requests_by_priority(self, transport):
        queue = RequestQueue(transport, max_concurrent=1)
        queue.set_online(False)
        for future in (queue.submit(req("/low"), RequestPriority.LOW),
                       queue.submit(req("/high"), RequestPriority.HIGH)):
            with pytest.raises(OfflineError):
                await future

        queue.pause()
        queue.set_online(True)
        assert queue.get_status().offline_queue_size == 0
        queue.resume()
        await queue.wait_idle()

        assert transport.urls == ["/high", "/low"]

    @pytest.mark.asyncio
    async def test_reconnect_only_reissues_once(self, transport):
        queue = RequestQueue(transport)
        queue.set_online(False)
        with pytest.raises(OfflineError):
            await queue.enqueue(req())

        queue.set_online(True)
        queue.set_online(True)
        await queue.wait_idle()

        assert len(transport.calls) == 1


def test_from_config_wires_primitives():
    config = ImporterConfig(
        max_concurrent=3,
        rate_limit_requests=10,
        circuit_breaker_failure_threshold=7,
        max_retries=4,
        offline_queue_size=5,
    )

    queue = RequestQueue.from_config(config, FakeTransport())

    assert queue.max_concurrent == 3
    assert queue.rate_limiter.max_tokens == 10
    assert queue.circuit_breaker.failure_threshold == 7
    assert queue.retry_handler.max_retries == 4
    assert queue.offline_queue.max_size == 5
