"""Target executors for static (non-JavaScript) documents.

This module provides the TargetExecutor protocol consumed by the batch
driver and StaticExecutor, which fetches a document over HTTP and extracts
a fragment from it.

StaticExecutor is responsible for:
- Maintaining httpx.AsyncClient instances (one per proxy)
- Issuing the GET request with a desktop User-Agent
- Mapping transport errors and non-success statuses to ExecutorFailure
- Extracting the requested fragment from the response body

The batch driver never interprets what an executor does; it only calls
execute() and observes either a Payload or an ExecutorFailure.
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import Any, Protocol

import httpx

from batchscrape.common.exceptions import (
    BatchValidationError,
    HTTPStatusFailure,
    NetworkFailure,
    RequestTimeoutException,
)
from batchscrape.common.extraction import extract_content
from batchscrape.data_types import OutputFormat, Payload, Target

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
)


class TargetExecutor(Protocol):
    """Perform one fetch-or-script-and-extract operation.

    Implementations must be safe to call concurrently; the batch driver
    bounds concurrency but adds no locking of its own.
    """

    async def execute(self, target: Target, timeout: float) -> Payload:
        """Execute one attempt against a target.

        Args:
            target: The target to fetch.
            timeout: Attempt timeout in seconds.

        Returns:
            The extracted Payload.

        Raises:
            ExecutorFailure: If the attempt failed.
        """
        ...


class StaticExecutor:
    """Fetch targets with httpx and extract content with lxml.

    Example::

        async with StaticExecutor() as executor:
            payload = await executor.execute(Target(url=url), timeout=30)
    """

    def __init__(
        self,
        ssl_context: ssl.SSLContext | None = None,
        user_agent: str = USER_AGENT,
    ) -> None:
        """Initialize the executor.

        Args:
            ssl_context: Optional SSL context for HTTPS connections. Use this
                for servers requiring specific cipher suites.
            user_agent: User-Agent header sent with every request.
        """
        self.ssl_context = ssl_context
        self.user_agent = user_agent
        # Keyed by proxy URL; None is the direct connection
        self._clients: dict[str | None, httpx.AsyncClient] = {}
        self._clients_lock = asyncio.Lock()

    async def close(self) -> None:
        """Close every HTTP client and release resources."""
        async with self._clients_lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.aclose()

    async def __aenter__(self) -> StaticExecutor:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit - closes the clients."""
        await self.close()

    async def _get_client(self, proxy_url: str | None) -> httpx.AsyncClient:
        async with self._clients_lock:
            client = self._clients.get(proxy_url)
            if client is None:
                client_kwargs: dict[str, Any] = {
                    "headers": {"User-Agent": self.user_agent},
                    "follow_redirects": True,
                }
                if self.ssl_context:
                    client_kwargs["verify"] = self.ssl_context
                if proxy_url:
                    client_kwargs["proxy"] = proxy_url
                client = httpx.AsyncClient(**client_kwargs)
                self._clients[proxy_url] = client
            return client

    def validate_target(self, target: Target) -> None:
        """Reject targets a static fetch cannot serve.

        Called by the batch driver before dispatch.

        Raises:
            BatchValidationError: If the target asks for a screenshot or
                carries browser-only options.
        """
        if target.format is OutputFormat.SCREENSHOT:
            raise BatchValidationError(
                f"{target.url}: screenshots require the browser executor",
                field="format",
            )
        if target.actions or target.wait_for_selector or target.wait_for_ms:
            raise BatchValidationError(
                f"{target.url}: script actions and waits require the "
                "browser executor",
                field="actions",
            )

    async def execute(self, target: Target, timeout: float) -> Payload:
        """Fetch a target and return the extracted Payload.

        Args:
            target: The target to fetch. URL should be absolute.
            timeout: Request timeout in seconds.

        Returns:
            Payload with the extracted content, status code and final URL.

        Raises:
            RequestTimeoutException: If the request times out.
            NetworkFailure: If the request cannot be completed.
            HTTPStatusFailure: If the server returns a non-2xx status code.
            SelectorNotFoundFailure: If the selector matches nothing.
        """
        proxy_url = target.proxy.to_url() if target.proxy else None
        client = await self._get_client(proxy_url)

        logger.debug(f"Fetching {target.url}", extra={"url": target.url})
        try:
            http_response = await client.get(target.url, timeout=timeout)
        except httpx.TimeoutException as e:
            raise RequestTimeoutException(
                url=target.url, timeout_seconds=timeout
            ) from e
        except httpx.RequestError as e:
            raise NetworkFailure(
                f"Request to {target.url} failed: {e!r}"
            ) from e

        if not http_response.is_success:
            raise HTTPStatusFailure(
                status_code=http_response.status_code,
                url=target.url,
                reason=http_response.reason_phrase,
            )

        content = extract_content(
            http_response.content,
            encoding=http_response.encoding,
            url=target.url,
            selector=target.selector,
            output_format=target.format,
        )
        logger.debug(
            f"Fetched {target.url}: {len(content)} characters",
            extra={
                "url": target.url,
                "status_code": http_response.status_code,
            },
        )

        return Payload(
            content=content,
            status_code=http_response.status_code,
            final_url=str(http_response.url),
        )
