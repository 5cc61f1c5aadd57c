"""Async HTTP transport built on httpx."""

from typing import Optional, Protocol

import httpx

from resumable_importer.fetcher.errors import HTTPRequestError, NetworkError, RequestTimeoutError
from resumable_importer.models.data_models import ApiRequest, ApiResponse


class Transport(Protocol):
    """Capability the request queue needs: issue one request."""

    async def execute(self, request: ApiRequest, timeout: float) -> ApiResponse:
        """Issue ``request``, raising a classified error on failure."""
        ...


class AsyncHTTPClient:
    """
    Async HTTP client wrapper around httpx.AsyncClient.

    Provides:
    - Configurable connect timeout, per-request read timeout
    - Connection pooling via httpx
    - Context manager for proper lifecycle management
    - Non-2xx responses raised as HTTPRequestError with status and headers
    """

    def __init__(
        self,
        base_url: str = "",
        connect_timeout: float = 10.0,
        default_headers: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize HTTP client.

        Args:
            base_url: Prefix for relative request URLs
            connect_timeout: Connection timeout in seconds
            default_headers: Headers sent with every request (e.g. User-Agent)
            transport: Optional httpx transport (mock or ASGI in tests)
        """
        self.base_url = base_url
        self.connect_timeout = connect_timeout
        self.default_headers = default_headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.default_headers,
            timeout=httpx.Timeout(30.0, connect=self.connect_timeout),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def execute(self, request: ApiRequest, timeout: float) -> ApiResponse:
        """
        Perform one request.

        Args:
            request: Request description
            timeout: Read/write timeout in seconds

        Returns:
            Decoded response for 2xx statuses

        Raises:
            HTTPRequestError: On non-2xx status
            RequestTimeoutError: On httpx timeout
            NetworkError: On connection-level failure
        """
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context manager.")

        kwargs = {}
        if request.body is not None:
            if isinstance(request.body, (str, bytes)):
                kwargs["content"] = request.body
            else:
                kwargs["json"] = request.body

        try:
            response = await self._client.request(
                request.method,
                request.url,
                params=request.params or None,
                headers=request.headers or None,
                timeout=httpx.Timeout(timeout, connect=self.connect_timeout),
                **kwargs,
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request timed out after {timeout}s") from e
        except httpx.TransportError as e:
            raise NetworkError(str(e) or type(e).__name__) from e

        headers = dict(response.headers)
        if response.is_error:
            raise HTTPRequestError(
                response.status_code,
                f"HTTP {response.status_code} for {request.method} {request.url}",
                headers=headers,
            )

        return ApiResponse(
            status_code=response.status_code,
            headers=headers,
            body=_decode_body(response),
        )


def _decode_body(response: httpx.Response):
    if not response.content:
        return None
    if "json" in response.headers.get("content-type", ""):
        return response.json()
    return response.text
