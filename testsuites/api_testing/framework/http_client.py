"""
================================================================================
Request Executor
================================================================================

Async HTTP request executor for API integration tests featuring:
    - Default headers merged with per-call headers (per-call wins)
    - API key / Bearer / Basic / OAuth2 authentication
    - Retry on transient statuses and transport errors with constant or
      exponential backoff
    - Per-attempt timeout and cooperative cancellation
    - Structured request/response logging with cURL reproduction

`execute` never raises for ordinary HTTP or network failures: every outcome
is a ResponseResult. Cancellation is the exception; it raises
RequestCancelled.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
from loguru import logger as _default_logger

from harness_tools.common import safe_json_serialize

from .models import (
    GENERIC_SERVER_ERROR_REASON,
    GENERIC_SERVER_ERROR_STATUS,
    ApiKeyAuth,
    AuthDescriptor,
    EndpointConfig,
    RequestEnvelope,
    ResponseResult,
    decode_body,
)
from .request_logger import PerformanceRecorder, RequestLogger
from .token_manager import AuthApplier, TokenResult, remove_header, set_header


JSON_CONTENT_TYPE = "application/json"

# Exceptions treated as transient transport failures
TRANSPORT_ERRORS = (httpx.HTTPError, asyncio.TimeoutError, OSError)


class HttpClientError(Exception):
    """Base exception for executor misuse."""
    pass


class RequestCancelled(HttpClientError):
    """Raised when a call's cancellation handle fires."""

    def __init__(self, method: str, url: str, attempt: int) -> None:
        super().__init__(f"{method} {url} cancelled during attempt {attempt}")
        self.method = method
        self.url = url
        self.attempt = attempt


def merge_headers(
    defaults: Dict[str, str],
    extra: Optional[Dict[str, str]] = None,
) -> Dict[str, str]:
    """
    Merge per-call headers over the defaults.

    Keys compare case-insensitively; on collision the per-call value wins.
    """
    merged = dict(defaults)
    for name, value in (extra or {}).items():
        set_header(merged, name, value)
    return merged


def serialize_body(body: Any) -> bytes:
    """Compact UTF-8 JSON payload."""
    return json.dumps(
        body, ensure_ascii=False, separators=(",", ":"), default=safe_json_serialize
    ).encode("utf-8")


class RequestExecutor:
    """
    Executes logical HTTP calls against one configured endpoint.

    The executor holds the endpoint's default headers (including whatever
    the active authentication put there). That map is shared by concurrent
    calls and is not synchronized; pass per-call headers to `execute`
    instead of mutating the defaults while calls are in flight.

    Usage:
        >>> config = EndpointConfig(base_url="https://api.example.com")
        >>> async with RequestExecutor(config) as executor:
        ...     result = await executor.get("/api/v1/users")
        ...     assert result.successful
    """

    def __init__(
        self,
        config: EndpointConfig,
        *,
        logger=None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        performance: Optional[PerformanceRecorder] = None,
    ) -> None:
        """
        Initialize the executor.

        Args:
            config: Endpoint configuration
            logger: loguru logger handle; the module logger when omitted
            sleep: Coroutine used for inter-retry delays (asyncio.sleep)
            performance: Recorder receiving one metric per logical call
        """
        if config is None:
            raise HttpClientError("RequestExecutor requires an EndpointConfig")

        self.config = config
        self._logger = logger or _default_logger
        self._sleep = sleep or asyncio.sleep
        self.performance = performance
        self.request_logger = RequestLogger(config.logging, logger=self._logger)

        self._default_headers: Dict[str, str] = dict(config.default_headers)
        self._auth = AuthApplier(self._default_headers, token_timeout=config.timeout_seconds)
        self.last_token_result: Optional[TokenResult] = None
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "RequestExecutor":
        """Open the HTTP session and apply the configured authentication."""
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close the HTTP session."""
        await self.close()

    async def open(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
        )
        self.request_logger.open()
        if self.config.authentication is not None:
            await self.set_authentication(self.config.authentication)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        self.request_logger.close()

    # -------------------------------------------------------------------------
    # Header / authentication state
    # -------------------------------------------------------------------------

    @property
    def default_headers(self) -> Dict[str, str]:
        """Copy of the current default headers."""
        return dict(self._default_headers)

    def add_default_header(self, name: str, value: str) -> None:
        set_header(self._default_headers, name, value)

    def remove_default_header(self, name: str) -> None:
        remove_header(self._default_headers, name)

    async def set_authentication(self, descriptor: Optional[AuthDescriptor]) -> Optional[TokenResult]:
        """
        Replace the active authentication.

        A failed OAuth2 exchange is logged and leaves the executor
        unauthenticated; inspect the returned TokenResult to detect it.
        """
        if isinstance(descriptor, ApiKeyAuth):
            self.request_logger.mark_sensitive(descriptor.header_name)
        result = await self._auth.apply(descriptor)
        self.last_token_result = result
        return result

    # -------------------------------------------------------------------------
    # Verb helpers
    # -------------------------------------------------------------------------

    async def get(self, path: str, **kwargs: Any) -> ResponseResult:
        """Execute GET request."""
        return await self.execute("GET", path, **kwargs)

    async def post(self, path: str, body: Any = None, **kwargs: Any) -> ResponseResult:
        """Execute POST request."""
        return await self.execute("POST", path, body, **kwargs)

    async def put(self, path: str, body: Any = None, **kwargs: Any) -> ResponseResult:
        """Execute PUT request."""
        return await self.execute("PUT", path, body, **kwargs)

    async def patch(self, path: str, body: Any = None, **kwargs: Any) -> ResponseResult:
        """Execute PATCH request."""
        return await self.execute("PATCH", path, body, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> ResponseResult:
        """Execute DELETE request."""
        return await self.execute("DELETE", path, **kwargs)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def execute(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: Optional[Dict[str, str]] = None,
        response_type: Optional[Callable[..., Any]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ResponseResult:
        """
        Execute one logical call with retry, auth and logging.

        Args:
            method: HTTP method
            path: Path relative to the configured base URL
            body: JSON-serializable payload (sent for POST/PUT/PATCH only)
            headers: Per-call headers merged over the defaults
            response_type: Converter applied to the decoded JSON body
            cancel_event: Setting this event aborts the call

        Returns:
            ResponseResult of the last attempt

        Raises:
            RequestCancelled: `cancel_event` was set before completion
            HttpClientError: Executor used outside `async with`
        """
        envelope = RequestEnvelope(
            method=method,
            path=path,
            body=body,
            headers=headers,
            response_type=response_type,
            cancel_event=cancel_event,
        )
        return await self.send(envelope)

    async def send(self, envelope: RequestEnvelope) -> ResponseResult:
        """Execute a prepared RequestEnvelope."""
        client = self._require_client()
        retry = self.config.retry
        method = envelope.method
        url = str(client.build_request(method, envelope.path).url)
        content = serialize_body(envelope.body) if envelope.carries_body else None

        operation = f"{method} {envelope.path}"
        attempt = 0
        while True:
            self._check_cancelled(envelope, url, attempt)

            request_headers = merge_headers(self._default_headers, envelope.headers)
            if content is not None:
                set_header(request_headers, "Content-Type", JSON_CONTENT_TYPE)
            request = client.build_request(
                method, envelope.path, headers=request_headers, content=content,
            )
            self.request_logger.log_request(
                method, url, request_headers,
                envelope.body if envelope.carries_body else None,
                attempt=attempt + 1,
            )

            started = time.perf_counter()
            try:
                response = await self._race_cancel(
                    asyncio.wait_for(client.send(request), self.config.timeout_seconds),
                    envelope, url, attempt,
                )
            except TRANSPORT_ERRORS as e:
                elapsed_ms = (time.perf_counter() - started) * 1000
                if attempt < retry.max_retries:
                    delay = retry.delay_for(attempt + 1)
                    self.request_logger.log_retry(
                        method, url, attempt + 1, retry.max_retries, delay, exception=e,
                    )
                    await self._pause(delay, envelope, url, attempt)
                    attempt += 1
                    continue

                result: ResponseResult = ResponseResult(
                    status_code=GENERIC_SERVER_ERROR_STATUS,
                    reason_phrase=GENERIC_SERVER_ERROR_REASON,
                    elapsed_ms=elapsed_ms,
                    exception=e,
                    attempts=attempt + 1,
                    url=url,
                )
                self.request_logger.log_failure(method, url, result, retry.max_retries)
                self._record(operation, result)
                return result

            elapsed_ms = (time.perf_counter() - started) * 1000
            result = self._materialize(response, elapsed_ms, attempt + 1, url, envelope.response_type)
            self.request_logger.log_response(
                method, url, result,
                request_headers=request_headers,
                request_body=envelope.body if envelope.carries_body else None,
            )

            if retry.should_retry(result.status_code, attempt):
                delay = retry.delay_for(attempt + 1)
                self.request_logger.log_retry(
                    method, url, attempt + 1, retry.max_retries, delay,
                    status_code=result.status_code,
                )
                await self._pause(delay, envelope, url, attempt)
                attempt += 1
                continue

            self._record(operation, result)
            return result

    async def execute_many(self, envelopes: Sequence[RequestEnvelope]) -> List[ResponseResult]:
        """
        Dispatch several calls concurrently.

        Results come back in input order. No queueing or backpressure is
        applied beyond the transport's own connection limits.
        """
        return list(await asyncio.gather(*(self.send(envelope) for envelope in envelopes)))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _require_client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise HttpClientError(
                "RequestExecutor must be used within an async context manager. "
                "Use 'async with RequestExecutor(config) as executor:'"
            )
        return self._client

    def _materialize(
        self,
        response: httpx.Response,
        elapsed_ms: float,
        attempts: int,
        url: str,
        response_type: Optional[Callable[..., Any]],
    ) -> ResponseResult:
        headers: Dict[str, List[str]] = {}
        for name, value in response.headers.multi_items():
            headers.setdefault(name, []).append(value)

        raw_body = response.text
        data = None
        try:
            data = decode_body(raw_body, response_type)
        except Exception as e:
            self.request_logger.log_decode_failure(url, response_type, e)

        return ResponseResult(
            status_code=response.status_code,
            reason_phrase=response.reason_phrase,
            headers=headers,
            raw_body=raw_body,
            data=data,
            elapsed_ms=elapsed_ms,
            attempts=attempts,
            url=url,
        )

    def _record(self, operation: str, result: ResponseResult) -> None:
        if self.performance is not None:
            self.performance.record(
                operation, result.elapsed_ms, result.successful,
                {"status": result.status_code, "attempts": result.attempts},
            )

    def _check_cancelled(self, envelope: RequestEnvelope, url: str, attempt: int) -> None:
        if envelope.cancel_event is not None and envelope.cancel_event.is_set():
            self.request_logger.log_cancelled(envelope.method, url, attempt + 1)
            raise RequestCancelled(envelope.method, url, attempt + 1)

    async def _race_cancel(
        self,
        awaitable: Awaitable[Any],
        envelope: RequestEnvelope,
        url: str,
        attempt: int,
    ) -> Any:
        """Await `awaitable` unless the envelope's cancel event fires first."""
        if envelope.cancel_event is None:
            return await awaitable

        work = asyncio.ensure_future(awaitable)
        watcher = asyncio.ensure_future(envelope.cancel_event.wait())
        try:
            done, _ = await asyncio.wait({work, watcher}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            watcher.cancel()

        if work in done:
            return work.result()

        work.cancel()
        await asyncio.gather(work, return_exceptions=True)
        self.request_logger.log_cancelled(envelope.method, url, attempt + 1)
        raise RequestCancelled(envelope.method, url, attempt + 1)

    async def _pause(self, delay: float, envelope: RequestEnvelope, url: str, attempt: int) -> None:
        """Inter-retry delay; honours the cancel event."""
        await self._race_cancel(self._sleep(delay), envelope, url, attempt)


__all__ = [
    "HttpClientError",
    "JSON_CONTENT_TYPE",
    "RequestCancelled",
    "RequestExecutor",
    "merge_headers",
    "serialize_body",
]
