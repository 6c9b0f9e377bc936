"""
================================================================================
Request / Response Models
================================================================================

Value objects consumed and produced by the request executor:
    - EndpointConfig: base URL, timeout, default headers, auth, retry, logging
    - Authentication descriptors (NoAuth, ApiKeyAuth, BearerAuth, BasicAuth,
      OAuth2Auth)
    - RetryPolicy: retry count, backoff and retryable status codes
    - LoggingPolicy: what the request logger emits
    - RequestEnvelope: one logical request
    - ResponseResult: the normalized outcome of every execution

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Callable,
    Dict,
    FrozenSet,
    Generic,
    List,
    Optional,
    TypeVar,
    Union,
)

from loguru import logger


T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_API_KEY_HEADER = "X-API-Key"
DEFAULT_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})

# Status reported when a call fails at the transport layer
GENERIC_SERVER_ERROR_STATUS = 500
GENERIC_SERVER_ERROR_REASON = "Internal Server Error"


class ConfigurationError(Exception):
    """Raised when configuration loading or access fails."""
    pass


# =============================================================================
# Authentication Descriptors
# =============================================================================

class AuthenticationType(str, Enum):
    """Supported authentication schemes."""
    NONE = "none"
    API_KEY = "api_key"
    BEARER = "bearer"
    BASIC = "basic"
    OAUTH2 = "oauth2"

    @classmethod
    def parse(cls, value: str) -> "AuthenticationType":
        """Parse a config value such as 'ApiKey', 'api-key' or 'OAUTH2'."""
        normalized = value.strip().lower().replace("-", "_")
        aliases = {"apikey": "api_key", "oauth": "oauth2", "": "none"}
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown authentication type: {value!r}"
            ) from e


@dataclass(frozen=True)
class NoAuth:
    """No authentication."""
    auth_type = AuthenticationType.NONE


@dataclass(frozen=True)
class ApiKeyAuth:
    """API key sent in a request header."""
    api_key: str
    header_name: str = DEFAULT_API_KEY_HEADER
    auth_type = AuthenticationType.API_KEY


@dataclass(frozen=True)
class BearerAuth:
    """Static bearer token."""
    token: str
    auth_type = AuthenticationType.BEARER


@dataclass(frozen=True)
class BasicAuth:
    """HTTP Basic credentials."""
    username: str
    password: str
    auth_type = AuthenticationType.BASIC


@dataclass(frozen=True)
class OAuth2Auth:
    """OAuth2 client-credentials grant, resolved to a bearer token."""
    client_id: str
    client_secret: str
    token_url: str
    scope: Optional[str] = None
    auth_type = AuthenticationType.OAUTH2


AuthDescriptor = Union[NoAuth, ApiKeyAuth, BearerAuth, BasicAuth, OAuth2Auth]


# =============================================================================
# Policies
# =============================================================================

@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry settings for one endpoint.

    Attributes:
        max_retries: Retries after the first attempt (0 disables retrying)
        delay_ms: Base delay between attempts in milliseconds
        exponential_backoff: Double the delay on every retry
        retry_on_status_codes: HTTP statuses that trigger a retry
    """
    max_retries: int = 3
    delay_ms: int = 1000
    exponential_backoff: bool = True
    retry_on_status_codes: FrozenSet[int] = DEFAULT_RETRYABLE_STATUS_CODES

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ConfigurationError(
                f"max_retries must be >= 0, got {self.max_retries}"
            )
        if self.delay_ms < 0:
            raise ConfigurationError(f"delay_ms must be >= 0, got {self.delay_ms}")
        object.__setattr__(
            self, "retry_on_status_codes",
            frozenset(int(code) for code in self.retry_on_status_codes),
        )

    def delay_for(self, retry_number: int) -> float:
        """
        Seconds to wait before the given retry (1-based).

        Formula: base * (2 ^ (n - 1)) with exponential backoff, base otherwise.
        The delay is neither capped nor jittered.
        """
        if retry_number < 1:
            raise ValueError(f"retry_number must be >= 1, got {retry_number}")
        delay_ms = self.delay_ms
        if self.exponential_backoff:
            delay_ms = self.delay_ms * (2 ** (retry_number - 1))
        return delay_ms / 1000.0

    def should_retry(self, status_code: int, attempt: int) -> bool:
        """True when `attempt` (0-based) may be followed by another one."""
        return attempt < self.max_retries and status_code in self.retry_on_status_codes


@dataclass(frozen=True)
class LoggingPolicy:
    """What the request logger writes for every attempt."""
    log_requests: bool = True
    log_responses: bool = True
    log_headers: bool = False
    log_body: bool = True
    level: str = "INFO"
    log_file: Optional[str] = None
    log_curl: bool = True
    max_body_length: int = 3000


# =============================================================================
# Endpoint Configuration
# =============================================================================

@dataclass(frozen=True)
class EndpointConfig:
    """
    Immutable settings for one logical client.

    Use `with_overrides` to derive a variant for a single call instead of
    mutating a shared instance.
    """
    base_url: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    default_headers: Dict[str, str] = field(default_factory=dict)
    authentication: Optional[AuthDescriptor] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    logging: LoggingPolicy = field(default_factory=LoggingPolicy)
    environment: str = "Development"

    def __post_init__(self) -> None:
        if not self.base_url:
            raise ConfigurationError("base_url must not be empty")
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"base_url must be an http(s) URL, got {self.base_url!r}"
            )
        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                f"timeout_seconds must be > 0, got {self.timeout_seconds}"
            )
        # Own a private copy so callers can't mutate the defaults afterwards
        object.__setattr__(self, "default_headers", dict(self.default_headers))

    def with_overrides(self, **changes: Any) -> "EndpointConfig":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)


# =============================================================================
# Request Envelope
# =============================================================================

@dataclass(frozen=True)
class RequestEnvelope:
    """
    One logical request.

    `response_type` converts the decoded JSON body (a dataclass receives the
    object's keys as keyword arguments, any other callable the decoded value).
    `cancel_event` aborts the call when set.
    """
    method: str
    path: str
    body: Any = None
    headers: Optional[Dict[str, str]] = None
    response_type: Optional[Callable[..., Any]] = None
    cancel_event: Optional[asyncio.Event] = None

    def __post_init__(self) -> None:
        if not self.method:
            raise ValueError("method must not be empty")
        object.__setattr__(self, "method", self.method.upper())

    @property
    def carries_body(self) -> bool:
        """Only POST, PUT and PATCH send a body."""
        return self.body is not None and self.method in BODY_METHODS


# =============================================================================
# Response Result
# =============================================================================

def decode_body(raw_body: Optional[str], response_type: Optional[Callable[..., Any]] = None) -> Any:
    """
    Decode a JSON text body, optionally converting it with `response_type`.

    Raises:
        ValueError: Body is not valid JSON
        TypeError: Decoded value does not fit `response_type`
    """
    if not raw_body:
        return None
    decoded = json.loads(raw_body)
    if response_type is None:
        return decoded
    if dataclasses.is_dataclass(response_type):
        if not isinstance(decoded, dict):
            raise TypeError(
                f"Expected a JSON object for {response_type.__name__}, "
                f"got {type(decoded).__name__}"
            )
        return response_type(**decoded)
    return response_type(decoded)


@dataclass
class ResponseResult(Generic[T]):
    """
    Normalized outcome of one execution.

    Ordinary HTTP and network failures are reported here rather than raised:
    a transport failure yields status 500 with `exception` set.
    """
    status_code: int
    reason_phrase: str = ""
    headers: Dict[str, List[str]] = field(default_factory=dict)
    raw_body: Optional[str] = None
    data: Optional[T] = None
    elapsed_ms: float = 0.0
    exception: Optional[BaseException] = None
    attempts: int = 1
    url: str = ""

    @property
    def successful(self) -> bool:
        """True for any 2xx status."""
        return 200 <= self.status_code <= 299

    def get_header_values(self, name: str) -> List[str]:
        """All values of a header, in received order (case-insensitive)."""
        lowered = name.lower()
        for key, values in self.headers.items():
            if key.lower() == lowered:
                return list(values)
        return []

    def get_header(self, name: str) -> Optional[str]:
        """First value of a header, or None."""
        values = self.get_header_values(name)
        return values[0] if values else None

    def json(self) -> Any:
        """Parsed JSON body, or None when the body is empty or not JSON."""
        return self.json_as(None)

    def json_as(self, response_type: Optional[Callable[..., Any]]) -> Any:
        """Re-decode the raw body with another converter; None on failure."""
        try:
            return decode_body(self.raw_body, response_type)
        except Exception as e:
            logger.debug(f"Could not decode response body: {e}")
            return None


__all__ = [
    "ApiKeyAuth",
    "AuthDescriptor",
    "AuthenticationType",
    "BasicAuth",
    "BearerAuth",
    "BODY_METHODS",
    "ConfigurationError",
    "DEFAULT_API_KEY_HEADER",
    "DEFAULT_RETRYABLE_STATUS_CODES",
    "EndpointConfig",
    "GENERIC_SERVER_ERROR_REASON",
    "GENERIC_SERVER_ERROR_STATUS",
    "LoggingPolicy",
    "NoAuth",
    "OAuth2Auth",
    "RequestEnvelope",
    "ResponseResult",
    "RetryPolicy",
    "decode_body",
]
