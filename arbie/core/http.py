"""
Async HTTP client wrapper with timeout and error handling.

Provides a unified HTTP interface for HTTP-backed price sources.
Requests are never retried here: a failed quote is retried on the
next polling cycle, not within the current one.
"""

from typing import Any, Optional

import httpx

from arbie.core.errors import ConnectionFailure, QuoteUnavailable
from arbie.core.logging import get_logger

logger = get_logger("http")


class HttpClient:
    """
    HTTP client with built-in timeout and error mapping.

    Features:
    - Configurable timeout
    - Transport errors mapped to ConnectionFailure
    - HTTP/payload errors mapped to QuoteUnavailable
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: float = 5.0,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self.default_headers = headers or {"accept": "application/json"}
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy-initialized async HTTP client."""
        if self._client is None:
            client_kwargs: dict[str, Any] = {
                "timeout": self.timeout,
                "headers": self.default_headers,
            }
            if self.base_url:
                client_kwargs["base_url"] = self.base_url
            if self._transport is not None:
                client_kwargs["transport"] = self._transport
            self._client = httpx.AsyncClient(**client_kwargs)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get_json(
        self,
        url: str,
        *,
        params: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
        venue: str = "unknown",
    ) -> dict[str, Any]:
        """
        Make a GET request and decode the JSON body.

        Raises:
            ConnectionFailure: On timeout or network error
            QuoteUnavailable: On HTTP error status or non-JSON body
        """
        try:
            logger.debug(f"GET {url} params={params}")
            response = await self.client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise ConnectionFailure(f"Request timeout: {url}", venue=venue) from e
        except httpx.TransportError as e:
            raise ConnectionFailure(f"Network error: {e}", venue=venue) from e

        return self._handle_response(response, venue)

    def _handle_response(self, response: httpx.Response, venue: str) -> dict[str, Any]:
        """Handle HTTP response and convert to dict."""
        if response.status_code == 429 or response.status_code >= 500:
            raise ConnectionFailure(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                venue=venue,
            )

        if response.status_code >= 400:
            logger.warning(f"HTTP {response.status_code}: {response.text[:200]}")
            raise QuoteUnavailable(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                venue=venue,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise QuoteUnavailable(f"Malformed response body from {venue}", venue=venue) from e

        if not isinstance(payload, dict):
            raise QuoteUnavailable(f"Unexpected payload type from {venue}", venue=venue)
        return payload
