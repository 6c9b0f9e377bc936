"""
================================================================================
Configuration Loader
================================================================================

YAML-based configuration management with environment variable override support.

Features:
    - Hierarchical YAML configuration loading
    - Environment variable override (API_BASE_URL overrides api.base_url)
    - Dot notation path access
    - Default value support
    - Per-environment sections (environments.<name>) merged over the defaults
    - EndpointConfig construction for the request executor
    - Fluent EndpointConfigBuilder for tests that configure in code

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml
from loguru import logger

from .models import (
    DEFAULT_API_KEY_HEADER,
    DEFAULT_RETRYABLE_STATUS_CODES,
    ApiKeyAuth,
    AuthDescriptor,
    AuthenticationType,
    BasicAuth,
    BearerAuth,
    ConfigurationError,
    EndpointConfig,
    LoggingPolicy,
    NoAuth,
    OAuth2Auth,
    RetryPolicy,
)


# Default configuration file paths
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent.parent / "config" / "config.yaml"

# Prefix for the flat environment-variable configuration
DEFAULT_ENV_PREFIX = "API_TEST_"

_TRUE_VALUES = ("true", "1", "yes", "on")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)


def _as_status_codes(value: Any) -> frozenset:
    """Accept a list or a comma separated string of status codes."""
    if value is None:
        return DEFAULT_RETRYABLE_STATUS_CODES
    if isinstance(value, str):
        value = [part for part in value.split(",") if part.strip()]
    try:
        return frozenset(int(code) for code in value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid retry status codes: {value!r}") from e


def _deep_merge(base: Dict, override: Dict) -> Dict:
    """
    Deep merges two dictionaries, with override taking precedence.
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def build_auth(section: Mapping[str, Any]) -> Optional[AuthDescriptor]:
    """
    Build an authentication descriptor from an `auth` config section.

    Example section:
        type: oauth2
        client_id: my-client
        client_secret: s3cret
        token_url: https://auth.example.com/token
        scope: api.read
    """
    if not section or not section.get("type"):
        return None

    auth_type = AuthenticationType.parse(str(section["type"]))

    def required(key: str) -> str:
        value = section.get(key)
        if value in (None, ""):
            raise ConfigurationError(
                f"auth.{key} is required for {auth_type.value} authentication"
            )
        return str(value)

    if auth_type is AuthenticationType.NONE:
        return NoAuth()
    if auth_type is AuthenticationType.API_KEY:
        return ApiKeyAuth(
            api_key=required("api_key"),
            header_name=str(section.get("api_key_header") or DEFAULT_API_KEY_HEADER),
        )
    if auth_type is AuthenticationType.BEARER:
        return BearerAuth(token=required("bearer_token"))
    if auth_type is AuthenticationType.BASIC:
        # Empty credentials are allowed
        return BasicAuth(
            username=str(section.get("username") or ""),
            password=str(section.get("password") or ""),
        )
    return OAuth2Auth(
        client_id=required("client_id"),
        client_secret=required("client_secret"),
        token_url=required("token_url"),
        scope=section.get("scope") or None,
    )


def build_endpoint_config(data: Mapping[str, Any], environment: str = "Development") -> EndpointConfig:
    """
    Build an EndpointConfig from a plain configuration mapping.

    Recognized sections: api, auth, retry, logging.

    Raises:
        ConfigurationError: Missing or invalid values
    """
    api = data.get("api") or {}
    retry = data.get("retry") or {}
    log = data.get("logging") or {}

    base_url = api.get("base_url")
    if not base_url:
        raise ConfigurationError("api.base_url is not configured")

    try:
        retry_policy = RetryPolicy(
            max_retries=int(retry.get("max_retries", 3)),
            delay_ms=int(retry.get("delay_ms", 1000)),
            exponential_backoff=_as_bool(retry.get("exponential_backoff", True)),
            retry_on_status_codes=_as_status_codes(retry.get("retry_on_status_codes")),
        )
        logging_policy = LoggingPolicy(
            log_requests=_as_bool(log.get("log_requests", True)),
            log_responses=_as_bool(log.get("log_responses", True)),
            log_headers=_as_bool(log.get("log_headers", False)),
            log_body=_as_bool(log.get("log_body", True)),
            level=str(log.get("level", "INFO")),
            log_file=log.get("file"),
            log_curl=_as_bool(log.get("log_curl", True)),
            max_body_length=int(log.get("max_body_length", 3000)),
        )
        timeout = float(api.get("timeout", 30))
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e

    return EndpointConfig(
        base_url=str(base_url),
        timeout_seconds=timeout,
        default_headers={str(k): str(v) for k, v in (api.get("default_headers") or {}).items()},
        authentication=build_auth(data.get("auth") or {}),
        retry=retry_policy,
        logging=logging_policy,
        environment=environment,
    )


def endpoint_config_from_env(
    prefix: str = DEFAULT_ENV_PREFIX,
    environ: Optional[Mapping[str, str]] = None,
) -> EndpointConfig:
    """
    Build an EndpointConfig from flat environment variables.

    Variables (with the default prefix):
        API_TEST_BASE_URL, API_TEST_TIMEOUT_SECONDS, API_TEST_ENVIRONMENT,
        API_TEST_AUTH_TYPE plus API_KEY, API_KEY_HEADER, BEARER_TOKEN,
        BASIC_USERNAME, BASIC_PASSWORD, OAUTH2_CLIENT_ID,
        OAUTH2_CLIENT_SECRET, OAUTH2_TOKEN_URL, OAUTH2_SCOPE,
        API_TEST_HEADER_<NAME> for default headers (X_Trace -> X-Trace)
    """
    env = os.environ if environ is None else environ

    def var(name: str, default: Optional[str] = None) -> Optional[str]:
        return env.get(f"{prefix}{name}", default)

    data: Dict[str, Any] = {
        "api": {
            "base_url": var("BASE_URL"),
            "timeout": var("TIMEOUT_SECONDS", "30"),
            "default_headers": {},
        },
    }

    header_prefix = f"{prefix}HEADER_"
    for key, value in env.items():
        if key.startswith(header_prefix):
            header_name = key[len(header_prefix):].replace("_", "-")
            data["api"]["default_headers"][header_name] = value

    auth_type = var("AUTH_TYPE")
    if auth_type:
        data["auth"] = {
            "type": auth_type,
            "api_key": var("API_KEY"),
            "api_key_header": var("API_KEY_HEADER", DEFAULT_API_KEY_HEADER),
            "bearer_token": var("BEARER_TOKEN"),
            "username": var("BASIC_USERNAME", ""),
            "password": var("BASIC_PASSWORD", ""),
            "client_id": var("OAUTH2_CLIENT_ID", ""),
            "client_secret": var("OAUTH2_CLIENT_SECRET", ""),
            "token_url": var("OAUTH2_TOKEN_URL", ""),
            "scope": var("OAUTH2_SCOPE"),
        }

    return build_endpoint_config(data, environment=var("ENVIRONMENT", "Development"))


class ConfigLoader:
    """
    Configuration loader with YAML and environment variable support.

    Configuration hierarchy (highest to lowest priority):
        1. Environment variables (API_BASE_URL)
        2. environments.<name> section of the YAML file
        3. Top-level YAML sections
        4. Default values

    Usage:
        >>> config = ConfigLoader()
        >>> config.get("api.base_url", "http://localhost:8000")
        'https://api.example.com'  # From YAML or env var

        >>> endpoint = config.endpoint_config("staging")
        >>> endpoint.retry.max_retries
        3

    Environment Variable Mapping:
        - api.base_url -> API_BASE_URL
        - api.timeout -> API_TIMEOUT
        - retry.max_retries -> RETRY_MAX_RETRIES
    """

    _instance: Optional["ConfigLoader"] = None
    _config: Dict[str, Any] = {}

    # Keys that endpoint_config() reads and that env vars may override
    ENDPOINT_KEYS = (
        "api.base_url",
        "api.timeout",
        "auth.type",
        "auth.api_key",
        "auth.api_key_header",
        "auth.bearer_token",
        "auth.username",
        "auth.password",
        "auth.client_id",
        "auth.client_secret",
        "auth.token_url",
        "auth.scope",
        "retry.max_retries",
        "retry.delay_ms",
        "retry.exponential_backoff",
        "retry.retry_on_status_codes",
        "logging.log_requests",
        "logging.log_responses",
        "logging.log_headers",
        "logging.log_body",
        "logging.level",
        "logging.file",
        "logging.log_curl",
    )

    def __new__(cls, config_path: Optional[Path] = None) -> "ConfigLoader":
        """
        Singleton pattern - return existing instance if available.

        This ensures configuration is loaded only once per process,
        improving performance and ensuring consistency.
        """
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self, config_path: Optional[Path] = None) -> None:
        """
        Initialize configuration loader.

        Args:
            config_path: Path to YAML configuration file.
                        Uses CONFIG_PATH env var, then DEFAULT_CONFIG_PATH.
        """
        if getattr(self, "_initialized", False):
            return

        env_path = os.environ.get("CONFIG_PATH")
        self._config_path = Path(config_path or env_path or DEFAULT_CONFIG_PATH)
        self._load_config()
        self._initialized = True

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if not self._config_path.exists():
            logger.warning(
                f"Configuration file not found: {self._config_path}. "
                f"Using defaults and environment variables only."
            )
            self._config = {}
            return

        try:
            with open(self._config_path, "r", encoding="utf-8") as f:
                self._config = yaml.safe_load(f) or {}
            logger.debug(f"Loaded configuration from: {self._config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {e}"
            ) from e

        if not isinstance(self._config, dict):
            raise ConfigurationError(
                f"Configuration root must be a mapping: {self._config_path}"
            )

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path.

        First checks environment variables, then YAML config, then default.

        Args:
            key: Dot-notation path (e.g., "api.base_url")
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        # Check environment variable first
        env_key = key.upper().replace(".", "_")
        env_value = os.environ.get(env_key)
        if env_value is not None:
            return self._convert_type(env_value, default)

        return self._lookup(self._config, key, default)

    def get_section(self, section: str) -> Dict[str, Any]:
        """
        Get entire configuration section.

        Args:
            section: Section name (e.g., "api", "retry")

        Returns:
            Section dictionary or empty dict if not found
        """
        return self._config.get(section, {}) or {}

    def available_environments(self) -> List[str]:
        """Names of the environments declared under `environments`."""
        return sorted((self._config.get("environments") or {}).keys())

    def endpoint_config(self, environment: Optional[str] = None) -> EndpointConfig:
        """
        Build the EndpointConfig for an environment.

        Args:
            environment: Name under `environments`; ENVIRONMENT env var or the
                        top-level sections when omitted.

        Raises:
            ConfigurationError: Unknown environment or invalid values
        """
        environment = environment or os.environ.get("ENVIRONMENT")
        data = {k: v for k, v in self._config.items() if k != "environments"}

        if environment:
            environments = self._config.get("environments") or {}
            if environment in environments:
                data = _deep_merge(data, environments[environment] or {})
            elif environments:
                raise ConfigurationError(
                    f"Unknown environment {environment!r}. "
                    f"Available: {', '.join(sorted(environments))}"
                )

        for key in self.ENDPOINT_KEYS:
            env_value = os.environ.get(key.upper().replace(".", "_"))
            if env_value is not None:
                section, name = key.split(".", 1)
                data = _deep_merge(data, {section: {name: env_value}})

        return build_endpoint_config(data, environment=environment or "Development")

    def reload(self) -> None:
        """
        Reload configuration from file.

        Useful when configuration file has been updated during runtime.
        """
        self._load_config()
        logger.info(f"Configuration reloaded from: {self._config_path}")

    @staticmethod
    def _lookup(data: Dict[str, Any], key: str, default: Any) -> Any:
        value: Any = data
        for part in key.split("."):
            if isinstance(value, dict):
                value = value.get(part)
            else:
                value = None

            if value is None:
                return default
        return value

    def _convert_type(self, value: str, reference: Any) -> Any:
        """
        Convert string value to match reference type.

        Used for environment variables which are always strings.
        """
        if reference is None:
            return value

        if isinstance(reference, bool):
            return value.lower() in _TRUE_VALUES
        if isinstance(reference, int):
            try:
                return int(value)
            except ValueError:
                return value
        if isinstance(reference, float):
            try:
                return float(value)
            except ValueError:
                return value

        return value

    @classmethod
    def reset(cls) -> None:
        """
        Reset singleton instance.

        Useful for testing when configuration needs to be reloaded
        with different settings.
        """
        cls._instance = None
        cls._config = {}


class EndpointConfigBuilder:
    """
    Fluent builder for EndpointConfig.

    Usage:
        >>> config = (
        ...     EndpointConfigBuilder()
        ...     .with_base_url("https://api.example.com")
        ...     .with_bearer_auth("t-123")
        ...     .with_retry(2, delay_ms=100)
        ...     .build()
        ... )
    """

    def __init__(self) -> None:
        self._base_url = ""
        self._timeout = 30.0
        self._environment = "Development"
        self._headers: Dict[str, str] = {}
        self._auth: Optional[AuthDescriptor] = None
        self._retry = RetryPolicy()
        self._logging = LoggingPolicy()

    def with_base_url(self, base_url: str) -> "EndpointConfigBuilder":
        self._base_url = base_url
        return self

    def with_timeout(self, timeout_seconds: float) -> "EndpointConfigBuilder":
        self._timeout = timeout_seconds
        return self

    def for_environment(self, environment: str) -> "EndpointConfigBuilder":
        self._environment = environment
        return self

    def with_header(self, name: str, value: str) -> "EndpointConfigBuilder":
        self._headers[name] = value
        return self

    def with_api_key_auth(self, api_key: str, header_name: str = DEFAULT_API_KEY_HEADER) -> "EndpointConfigBuilder":
        self._auth = ApiKeyAuth(api_key=api_key, header_name=header_name)
        return self

    def with_bearer_auth(self, token: str) -> "EndpointConfigBuilder":
        self._auth = BearerAuth(token=token)
        return self

    def with_basic_auth(self, username: str, password: str) -> "EndpointConfigBuilder":
        self._auth = BasicAuth(username=username, password=password)
        return self

    def with_oauth2_auth(
        self,
        client_id: str,
        client_secret: str,
        token_url: str,
        scope: Optional[str] = None,
    ) -> "EndpointConfigBuilder":
        self._auth = OAuth2Auth(
            client_id=client_id,
            client_secret=client_secret,
            token_url=token_url,
            scope=scope,
        )
        return self

    def with_retry(
        self,
        max_retries: int,
        delay_ms: int = 1000,
        exponential_backoff: bool = True,
        retry_on_status_codes: Optional[frozenset] = None,
    ) -> "EndpointConfigBuilder":
        self._retry = RetryPolicy(
            max_retries=max_retries,
            delay_ms=delay_ms,
            exponential_backoff=exponential_backoff,
            retry_on_status_codes=(
                retry_on_status_codes
                if retry_on_status_codes is not None
                else DEFAULT_RETRYABLE_STATUS_CODES
            ),
        )
        return self

    def with_logging(
        self,
        log_requests: bool = True,
        log_responses: bool = True,
        log_headers: bool = False,
        log_body: bool = True,
        log_curl: bool = True,
    ) -> "EndpointConfigBuilder":
        self._logging = LoggingPolicy(
            log_requests=log_requests,
            log_responses=log_responses,
            log_headers=log_headers,
            log_body=log_body,
            log_curl=log_curl,
        )
        return self

    def build(self) -> EndpointConfig:
        """Validate and return the configuration."""
        return EndpointConfig(
            base_url=self._base_url,
            timeout_seconds=self._timeout,
            default_headers=dict(self._headers),
            authentication=self._auth,
            retry=self._retry,
            logging=self._logging,
            environment=self._environment,
        )


__all__ = [
    "ConfigLoader",
    "ConfigurationError",
    "EndpointConfigBuilder",
    "build_auth",
    "build_endpoint_config",
    "endpoint_config_from_env",
]
