"""
================================================================================
API Testing Framework
================================================================================

Request execution pipeline for API integration tests.

Modules:
    - models: Endpoint configuration, auth descriptors, request/response types
    - http_client: Async request executor with retry, backoff and cancellation
    - token_manager: Authentication header application and OAuth2 token fetch
    - request_logger: Structured request/response logging and timing metrics
    - config_loader: YAML + environment configuration
    - response_assertions: Fluent assertions over response results

Author: Automation Team
License: MIT
================================================================================
"""

from .config_loader import (
    ConfigLoader,
    ConfigurationError,
    EndpointConfigBuilder,
    endpoint_config_from_env,
)
from .http_client import HttpClientError, RequestCancelled, RequestExecutor
from .models import (
    ApiKeyAuth,
    BasicAuth,
    BearerAuth,
    EndpointConfig,
    LoggingPolicy,
    NoAuth,
    OAuth2Auth,
    RequestEnvelope,
    ResponseResult,
    RetryPolicy,
)
from .request_logger import PerformanceRecorder, RequestLogger
from .response_assertions import ResponseAssertions, assert_that
from .token_manager import (
    AuthApplier,
    TokenAcquired,
    TokenError,
    TokenFetchFailed,
)

__all__ = [
    "ApiKeyAuth",
    "AuthApplier",
    "BasicAuth",
    "BearerAuth",
    "ConfigLoader",
    "ConfigurationError",
    "EndpointConfig",
    "EndpointConfigBuilder",
    "HttpClientError",
    "LoggingPolicy",
    "NoAuth",
    "OAuth2Auth",
    "PerformanceRecorder",
    "RequestCancelled",
    "RequestEnvelope",
    "RequestExecutor",
    "RequestLogger",
    "ResponseAssertions",
    "ResponseResult",
    "RetryPolicy",
    "TokenAcquired",
    "TokenError",
    "TokenFetchFailed",
    "assert_that",
    "endpoint_config_from_env",
]
