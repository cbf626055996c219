"""Request execution capability.

The engine only depends on the RequestExecutor protocol. HttpxRequestExecutor is
the default implementation: one shared async client per executor, high
connection limits, errors reported in the response instead of raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from .logging_config import get_logger

logger = get_logger("executor")

# Tuned for throughput: shared client, pooled keep-alive connections.
DEFAULT_MAX_CONNECTIONS = 1000
DEFAULT_MAX_KEEPALIVE = 200
DEFAULT_KEEPALIVE_EXPIRY = 30.0
# Default timeout for HTTP requests (seconds)
DEFAULT_TIMEOUT_SEC = 30.0

XML_CONTENT_TYPE = "text/xml; charset=utf-8"
JSON_CONTENT_TYPE = "application/json"


@dataclass(slots=True)
class ExecutorResponse:
    """What the engine needs from one executed request."""

    success: bool
    raw_response: str = ""
    status_code: int | None = None
    error: str | None = None


class RequestExecutor(Protocol):
    """Sends one request. Ordinary HTTP failure is reported via ``success=False``, not raised.

    ``method`` overrides the executor's default HTTP method for this request.
    """

    async def execute(
        self,
        endpoint: str,
        name: str,
        body: str,
        headers: dict[str, str] | None = None,
        method: str | None = None,
    ) -> ExecutorResponse: ...


def prepare_headers(body: str, headers: dict[str, str] | None) -> dict[str, str]:
    """Copy headers and add a Content-Type guessed from the body when missing."""
    h = dict(headers or {})
    if body and "content-type" not in {k.lower() for k in h}:
        h["Content-Type"] = XML_CONTENT_TYPE if body.lstrip().startswith("<") else JSON_CONTENT_TYPE
    return h


def create_client(
    http2: bool = True,
    timeout: float = DEFAULT_TIMEOUT_SEC,
    limits: httpx.Limits | None = None,
) -> httpx.AsyncClient:
    """Create the shared async HTTP client used by HttpxRequestExecutor."""
    limits = limits or httpx.Limits(
        max_connections=DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections=DEFAULT_MAX_KEEPALIVE,
        keepalive_expiry=DEFAULT_KEEPALIVE_EXPIRY,
    )
    return httpx.AsyncClient(http2=http2, timeout=timeout, limits=limits)


class HttpxRequestExecutor:
    """RequestExecutor over httpx.

    Use as an async context manager so the pooled client is closed::

        async with HttpxRequestExecutor() as executor:
            engine = ExecutionEngine(store, history, executor)
            await engine.run_suite(suite_id)
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        method: str = "POST",
        http2: bool = True,
        timeout: float = DEFAULT_TIMEOUT_SEC,
    ) -> None:
        self._client = client if client is not None else create_client(http2=http2, timeout=timeout)
        self._method = method

    async def __aenter__(self) -> "HttpxRequestExecutor":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def execute(
        self,
        endpoint: str,
        name: str,
        body: str,
        headers: dict[str, str] | None = None,
        method: str | None = None,
    ) -> ExecutorResponse:
        try:
            r = await self._client.request(
                method or self._method,
                endpoint,
                headers=prepare_headers(body, headers),
                content=body.encode("utf-8") if body else None,
            )
        except httpx.HTTPError as e:
            logger.debug("Request %s to %s failed: %s", name, endpoint, e)
            return ExecutorResponse(success=False, error=str(e) or type(e).__name__)
        success = 200 <= r.status_code < 300
        return ExecutorResponse(
            success=success,
            raw_response=r.text,
            status_code=r.status_code,
            error=None if success else f"HTTP {r.status_code}",
        )
