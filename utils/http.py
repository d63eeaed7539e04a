"""
HTTP Client Utilities - outbound calls to the model server.

Async client with connection pooling, per-phase timeouts and retry of
transient network failures. HTTP error statuses are raised immediately and
never retried.

@.architecture
Incoming: core/agent.py --- {str url, Dict[str, Any] json body, Dict[str, str] headers}
Processing: request(), post(), close(), _get_or_create_client(), _retrying() --- {4 jobs: cleanup, connection_pooling, http_client_management, request_retry}
Outgoing: OpenAI-compatible model server, core/agent.py --- {httpx.Response}
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

RETRYABLE_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass
class HTTPClientConfig:
    """Timeouts, retry policy and pool limits."""

    connect_timeout: float = 5.0
    read_timeout: float = 60.0
    write_timeout: float = 30.0
    pool_timeout: float = 5.0

    # Total attempts, including the first
    max_retries: int = 3
    retry_min_wait: float = 1.0
    retry_max_wait: float = 10.0

    max_connections: int = 50
    max_keepalive_connections: int = 10
    keepalive_expiry: float = 5.0

    def timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self.connect_timeout,
            read=self.read_timeout,
            write=self.write_timeout,
            pool=self.pool_timeout,
        )

    def limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=self.max_connections,
            max_keepalive_connections=self.max_keepalive_connections,
            keepalive_expiry=self.keepalive_expiry,
        )


class HTTPClient:
    """
    Lazily pooled ``httpx.AsyncClient`` with retries.

    The pool is created on first request and again after close(), so the
    chat agent can be stopped and restarted with the same instance.

    Args:
        config: Client configuration (defaults if None)
        transport: Optional httpx transport, e.g. ``httpx.MockTransport`` in tests
    """

    def __init__(
        self,
        config: Optional[HTTPClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config or HTTPClientConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._client_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._client is not None and not self._client.is_closed

    async def _get_or_create_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if not self.is_open:
                self._client = httpx.AsyncClient(
                    timeout=self.config.timeout(),
                    limits=self.config.limits(),
                    transport=self._transport,
                )
                logger.debug("Opened HTTP connection pool")
            return self._client

    async def close(self) -> None:
        """Close the connection pool. Safe to call repeatedly."""
        async with self._client_lock:
            if self.is_open:
                await self._client.aclose()
                logger.debug("Closed HTTP connection pool")
            self._client = None

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(min=self.config.retry_min_wait, max=self.config.retry_max_wait),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def request(self, method: str, url: str, *, retry: bool = True, **kwargs: Any) -> httpx.Response:
        """
        Send a request and raise for error statuses.

        Args:
            method: HTTP method
            url: Absolute URL
            retry: Retry transient network failures
            **kwargs: Passed to ``httpx.AsyncClient.request`` (json, headers, ...)

        Raises:
            httpx.HTTPStatusError: Error status (not retried)
            httpx.TransportError: Network failure after the last attempt
        """
        client = await self._get_or_create_client()

        if not retry:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response

        async for attempt in self._retrying():
            with attempt:
                response = await client.request(method, url, **kwargs)
                response.raise_for_status()
        return response

    async def post(
        self,
        url: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any
    ) -> httpx.Response:
        return await self.request("POST", url, json=json, headers=headers, **kwargs)
