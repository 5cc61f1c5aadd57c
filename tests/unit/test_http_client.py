"""Unit tests for HTTP client wrapper."""

import json

import httpx
import pytest

from resumable_importer.fetcher.errors import HTTPRequestError, NetworkError, RequestTimeoutError
from resumable_importer.fetcher.http_client import AsyncHTTPClient
from resumable_importer.models.data_models import ApiRequest


def client_for(handler, **kwargs) -> AsyncHTTPClient:
    return AsyncHTTPClient(base_url="https://api.test", transport=httpx.MockTransport(handler), **kwargs)


class TestAsyncHTTPClient:

    @pytest.mark.asyncio
    async def test_context_manager_lifecycle(self):
        client = AsyncHTTPClient()

        async with client:
            assert client._client is not None

        assert client._client is None

    @pytest.mark.asyncio
    async def test_execute_requires_context(self):
        client = AsyncHTTPClient()

        with pytest.raises(RuntimeError, match="not initialized"):
            await client.execute(ApiRequest(url="/x"), timeout=1.0)

    @pytest.mark.asyncio
    async def test_connect_timeout_applied(self):
        async with AsyncHTTPClient(connect_timeout=5.0) as client:
            assert client._client.timeout.connect == 5.0

    @pytest.mark.asyncio
    async def test_success_returns_decoded_json(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"data": {"children": []}},
                headers={"X-Ratelimit-Remaining": "598.0", "X-Ratelimit-Reset": "412"},
            )

        async with client_for(handler) as client:
            response = await client.execute(ApiRequest(url="/user/alice/saved"), timeout=1.0)

        assert response.status_code == 200
        assert response.json() == {"data": {"children": []}}
        assert response.rate_limit_remaining == 598
        assert response.rate_limit_reset == 412

    @pytest.mark.asyncio
    async def test_request_url_params_and_headers(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["user_agent"] = request.headers["user-agent"]
            seen["auth"] = request.headers["authorization"]
            return httpx.Response(200, json={})

        async with client_for(handler, default_headers={"User-Agent": "importer-test"}) as client:
            await client.execute(
                ApiRequest(
                    url="/user/alice/saved",
                    headers={"Authorization": "Bearer abc"},
                    params={"limit": 10, "after": "t3_x"},
                ),
                timeout=1.0,
            )

        assert seen["url"] == "https://api.test/user/alice/saved?limit=10&after=t3_x"
        assert seen["user_agent"] == "importer-test"
        assert seen["auth"] == "Bearer abc"

    @pytest.mark.asyncio
    async def test_json_body_is_sent(self):
        def handler(request):
            assert request.method == "POST"
            assert json.loads(request.read()) == {"id": "t3_x"}
            return httpx.Response(204)

        async with client_for(handler) as client:
            response = await client.execute(ApiRequest(url="/api/unsave", method="POST", body={"id": "t3_x"}), 1.0)

        assert response.status_code == 204
        assert response.body is None

    @pytest.mark.asyncio
    async def test_text_body_is_returned_as_text(self):
        def handler(request):
            return httpx.Response(200, text="plain")

        async with client_for(handler) as client:
            response = await client.execute(ApiRequest(url="/ping"), timeout=1.0)

        assert response.body == "plain"

    @pytest.mark.asyncio
    async def test_error_status_raises_with_headers(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "12"})

        async with client_for(handler) as client:
            with pytest.raises(HTTPRequestError) as exc_info:
                await client.execute(ApiRequest(url="/x"), timeout=1.0)

        error = exc_info.value
        assert error.status_code == 429
        assert error.is_throttled is True
        assert error.retry_after() == 12.0

    @pytest.mark.asyncio
    async def test_connection_failure_raises_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with client_for(handler) as client:
            with pytest.raises(NetworkError, match="connection refused"):
                await client.execute(ApiRequest(url="/x"), timeout=1.0)

    @pytest.mark.asyncio
    async def test_timeout_raises_timeout_error(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with client_for(handler) as client:
            with pytest.raises(RequestTimeoutError):
                await client.execute(ApiRequest(url="/x"), timeout=1.0)


class TestHTTPRequestError:

    def test_retry_after_defaults_when_missing_or_invalid(self):
        assert HTTPRequestError(429).retry_after(30.0) == 30.0
        assert HTTPRequestError(429, headers={"retry-after": "soon"}).retry_after(5.0) == 5.0

    def test_message_defaults_to_status(self):
        error = HTTPRequestError(503)
        assert str(error) == "HTTP 503"
        assert error.is_throttled is False
