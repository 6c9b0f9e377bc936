"""
================================================================================
Request Logging and Timing
================================================================================

Structured logging for the request executor:
    - "request" entry before every dispatch
    - "response" entry after every materialized response
    - retry / failure entries with the exception attached
    - sensitive header and body masking
    - optional DEBUG cURL command per exchange

Every entry is a loguru record bound with `event`, `method`, `url` and, for
responses, `status` and `elapsed_ms`, so sinks can filter on them.

PerformanceRecorder keeps per-operation timing metrics for a test session.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from loguru import logger as _default_logger

from harness_tools.common import add_file_sink
from harness_tools.report_tools.curl_utils import build_curl_command, to_pretty_json

from .models import LoggingPolicy, ResponseResult


MASK = "***MASKED***"

SENSITIVE_HEADERS = {"authorization", "x-api-key", "x-app-auth", "cookie", "set-cookie"}
SENSITIVE_BODY_KEYS = ("password", "secret", "token", "api_key", "authorization", "session")


def redact_headers(headers: Dict[str, Any], extra_sensitive: Optional[List[str]] = None) -> Dict[str, Any]:
    """
    Mask sensitive header values before logging.
    """
    sensitive = set(SENSITIVE_HEADERS)
    sensitive.update(name.lower() for name in extra_sensitive or [])
    masked = {}
    for key, value in headers.items():
        if key.lower() in sensitive:
            masked[key] = MASK
        else:
            masked[key] = value
    return masked


def redact_body(payload: Any) -> Any:
    """
    Recursively mask sensitive fields in request bodies.
    """
    if isinstance(payload, dict):
        redacted = {}
        for key, value in payload.items():
            if any(token in str(key).lower() for token in SENSITIVE_BODY_KEYS):
                redacted[key] = MASK
            else:
                redacted[key] = redact_body(value)
        return redacted
    if isinstance(payload, list):
        return [redact_body(item) for item in payload]
    return payload


def truncate(text: str, limit: int) -> str:
    """Cut `text` to `limit` characters, noting the original length."""
    if limit <= 0 or len(text) <= limit:
        return text
    return (
        f"{text[:limit]}\n\n"
        f"... [Truncated, full length: {len(text)} chars] ..."
    )


class RequestLogger:
    """
    Emits the request/response log entries for one executor.

    The loguru handle is injected; nothing here reads global logger state
    besides the default handle when none is given.

    Usage:
        >>> request_logger = RequestLogger(LoggingPolicy(log_headers=True))
        >>> request_logger.log_request("GET", "https://api/x", {}, None)
    """

    def __init__(self, policy: Optional[LoggingPolicy] = None, logger=None) -> None:
        self.policy = policy or LoggingPolicy()
        self._logger = (logger or _default_logger).bind(component="request_executor")
        self._level = self.policy.level.upper()
        self._extra_sensitive: List[str] = []
        self._sink_id: Optional[int] = None

    def open(self) -> None:
        """Add a file sink for `policy.log_file`, if configured."""
        if self.policy.log_file and self._sink_id is None:
            self._sink_id = add_file_sink(
                self.policy.log_file, self._level, component="request_executor",
            )

    def close(self) -> None:
        """Remove the file sink added for `policy.log_file`."""
        if self._sink_id is not None:
            _default_logger.remove(self._sink_id)
            self._sink_id = None

    def mark_sensitive(self, header_name: str) -> None:
        """Mask an additional header (e.g. a custom API key header)."""
        if header_name and header_name.lower() not in self._extra_sensitive:
            self._extra_sensitive.append(header_name.lower())

    def safe_headers(self, headers: Dict[str, Any]) -> Dict[str, Any]:
        return redact_headers(headers, self._extra_sensitive)

    def log_request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Any,
        attempt: int = 1,
    ) -> None:
        """Log the outgoing request."""
        if not self.policy.log_requests:
            return

        lines = ["=== REQUEST ===", f"{method} {url}"]
        if attempt > 1:
            lines.append(f"Attempt: {attempt}")
        if self.policy.log_headers and headers:
            lines.append("Headers:")
            for key, value in self.safe_headers(headers).items():
                lines.append(f"  {key}: {value}")
        if self.policy.log_body and body is not None:
            lines.append(f"Body: {self._render_body(redact_body(body))}")

        self._logger.bind(
            event="request", method=method, url=url, attempt=attempt,
        ).log(self._level, "\n".join(lines))

    def log_response(
        self,
        method: str,
        url: str,
        result: ResponseResult,
        request_headers: Optional[Dict[str, str]] = None,
        request_body: Any = None,
    ) -> None:
        """Log a materialized response and, if enabled, a cURL reproduction."""
        if self.policy.log_responses:
            lines = [
                "=== RESPONSE ===",
                f"{method} {url}",
                f"Status: {result.status_code} {result.reason_phrase}".rstrip(),
                f"Response Time: {result.elapsed_ms:.1f}ms",
            ]
            if self.policy.log_headers and result.headers:
                lines.append("Headers:")
                for key, values in self.safe_headers(result.headers).items():
                    rendered = values if isinstance(values, str) else ", ".join(values)
                    lines.append(f"  {key}: {rendered}")
            if self.policy.log_body and result.raw_body:
                lines.append(
                    f"Body: {truncate(result.raw_body, self.policy.max_body_length)}"
                )

            self._logger.bind(
                event="response",
                method=method,
                url=url,
                status=result.status_code,
                elapsed_ms=round(result.elapsed_ms, 3),
                attempt=result.attempts,
            ).log(self._level, "\n".join(lines))

        if self.policy.log_curl:
            curl = build_curl_command(
                method,
                url,
                self.safe_headers(request_headers or {}),
                redact_body(request_body),
            )
            self._logger.bind(
                event="curl",
                method=method,
                url=url,
                status=result.status_code,
            ).debug(f"cURL:\n{curl}")

    def log_retry(
        self,
        method: str,
        url: str,
        retry_number: int,
        max_retries: int,
        delay: float,
        status_code: Optional[int] = None,
        exception: Optional[BaseException] = None,
    ) -> None:
        """Log that another attempt will follow after `delay` seconds."""
        bound = self._logger.bind(
            event="retry",
            method=method,
            url=url,
            status=status_code,
            retry=retry_number,
            delay_ms=round(delay * 1000, 3),
        )
        if exception is not None:
            bound.opt(exception=exception).warning(
                f"Request failed with exception: {exception!r}. "
                f"Retrying in {delay * 1000:.0f}ms (attempt {retry_number}/{max_retries})"
            )
        else:
            bound.warning(
                f"Request failed with status {status_code}. "
                f"Retrying in {delay * 1000:.0f}ms (attempt {retry_number}/{max_retries})"
            )

    def log_failure(
        self,
        method: str,
        url: str,
        result: ResponseResult,
        max_retries: int,
    ) -> None:
        """Log a call that exhausted its retries on transport errors."""
        self._logger.bind(
            event="response",
            method=method,
            url=url,
            status=result.status_code,
            elapsed_ms=round(result.elapsed_ms, 3),
            attempt=result.attempts,
        ).opt(exception=result.exception).error(
            f"{method} {url} failed after {max_retries} retries: {result.exception!r}"
        )

    def log_decode_failure(self, url: str, response_type: Any, error: Exception) -> None:
        name = getattr(response_type, "__name__", None) or "JSON"
        self._logger.bind(event="decode", url=url).warning(
            f"Failed to deserialize response content to type {name}: {error}"
        )

    def log_cancelled(self, method: str, url: str, attempt: int) -> None:
        self._logger.bind(
            event="cancelled", method=method, url=url, attempt=attempt,
        ).warning(f"{method} {url} cancelled during attempt {attempt}")

    @staticmethod
    def _render_body(body: Any) -> str:
        if isinstance(body, str):
            return body
        return to_pretty_json(body)


# =============================================================================
# Performance Metrics
# =============================================================================

@dataclass
class PerformanceMetric:
    """Aggregated timings for one operation name."""
    operation_name: str
    total_executions: int = 0
    successful_executions: int = 0
    total_ms: float = 0.0
    min_ms: float = 0.0
    max_ms: float = 0.0

    @property
    def average_ms(self) -> float:
        if self.total_executions == 0:
            return 0.0
        return self.total_ms / self.total_executions

    @property
    def success_rate(self) -> float:
        if self.total_executions == 0:
            return 0.0
        return self.successful_executions / self.total_executions


class PerformanceRecorder:
    """
    Tracks response times per operation across a test session.

    Usage:
        >>> recorder = PerformanceRecorder()
        >>> with recorder.track("GET /users") as tracker:
        ...     ...
        ...     tracker.mark_failed()
        >>> print(recorder.report())
    """

    def __init__(self, logger=None) -> None:
        self._logger = (logger or _default_logger).bind(component="performance")
        self._metrics: Dict[str, PerformanceMetric] = {}

    def record(
        self,
        operation_name: str,
        elapsed_ms: float,
        success: bool = True,
        additional_data: Optional[Dict[str, Any]] = None,
    ) -> PerformanceMetric:
        """Add one execution to the operation's metric."""
        metric = self._metrics.get(operation_name)
        if metric is None:
            metric = PerformanceMetric(operation_name=operation_name)
            self._metrics[operation_name] = metric

        metric.total_executions += 1
        metric.total_ms += elapsed_ms
        if success:
            metric.successful_executions += 1
        if elapsed_ms > metric.max_ms:
            metric.max_ms = elapsed_ms
        if metric.total_executions == 1 or elapsed_ms < metric.min_ms:
            metric.min_ms = elapsed_ms

        self._logger.debug(
            f"Performance: {operation_name} completed in {elapsed_ms:.1f}ms (Success: {success})"
        )
        for key, value in (additional_data or {}).items():
            self._logger.debug(f"Performance Data: {key} = {value}")
        return metric

    @contextmanager
    def track(self, operation_name: str) -> Iterator["PerformanceTracker"]:
        """Time the enclosed block; an exception marks it failed."""
        tracker = PerformanceTracker()
        started = time.perf_counter()
        try:
            yield tracker
        except Exception:
            tracker.mark_failed()
            raise
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.record(operation_name, elapsed_ms, tracker.success, tracker.data)

    def metric(self, operation_name: str) -> Optional[PerformanceMetric]:
        return self._metrics.get(operation_name)

    def metrics(self) -> Dict[str, PerformanceMetric]:
        return dict(self._metrics)

    def report(self) -> str:
        """Plain-text summary of every operation."""
        generated = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        lines = ["=== Performance Report ===", f"Generated: {generated} UTC", ""]
        for metric in self._metrics.values():
            lines.extend([
                f"Operation: {metric.operation_name}",
                f"  Total Executions: {metric.total_executions}",
                f"  Successful: {metric.successful_executions} ({metric.success_rate:.1%})",
                f"  Average Duration: {metric.average_ms:.1f}ms",
                f"  Min Duration: {metric.min_ms:.1f}ms",
                f"  Max Duration: {metric.max_ms:.1f}ms",
                "",
            ])
        return "\n".join(lines)


class PerformanceTracker:
    """Handle yielded by PerformanceRecorder.track."""

    def __init__(self) -> None:
        self.success = True
        self.data: Dict[str, Any] = {}

    def mark_failed(self) -> None:
        self.success = False

    def add_data(self, key: str, value: Any) -> None:
        self.data[key] = value


__all__ = [
    "MASK",
    "PerformanceMetric",
    "PerformanceRecorder",
    "PerformanceTracker",
    "RequestLogger",
    "redact_body",
    "redact_headers",
    "truncate",
]
