"""
================================================================================
Authentication Header Management
================================================================================

Applies an authentication descriptor to the executor's default headers:
    - API key in a configurable header (default X-API-Key)
    - Bearer token in the Authorization header
    - HTTP Basic credentials
    - OAuth2 client-credentials grant resolved to a bearer token

Only one scheme is active at a time: applying a descriptor first removes
whatever the previous one set.

The OAuth2 token fetch is best-effort. Its outcome is returned as
TokenAcquired / TokenFetchFailed; a failure is logged and leaves the client
unauthenticated rather than aborting.

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx
from loguru import logger

from .models import (
    DEFAULT_API_KEY_HEADER,
    ApiKeyAuth,
    AuthDescriptor,
    BasicAuth,
    BearerAuth,
    NoAuth,
    OAuth2Auth,
)


AUTHORIZATION_HEADER = "Authorization"

# Timeout for the one-shot token request (seconds)
DEFAULT_TOKEN_TIMEOUT = 30.0


class TokenError(Exception):
    """Raised when token operations fail."""
    pass


@dataclass(frozen=True)
class TokenAcquired:
    """OAuth2 exchange succeeded."""
    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None

    @property
    def acquired(self) -> bool:
        return True

    def raise_for_failure(self) -> None:
        return None


@dataclass(frozen=True)
class TokenFetchFailed:
    """OAuth2 exchange failed; the client stays unauthenticated."""
    reason: str
    status_code: Optional[int] = None
    exception: Optional[BaseException] = None

    @property
    def acquired(self) -> bool:
        return False

    def raise_for_failure(self) -> None:
        """Turn the failure into a TokenError for callers that need auth."""
        raise TokenError(f"Failed to fetch token: {self.reason}") from self.exception


TokenResult = Union[TokenAcquired, TokenFetchFailed]


def _mask_value(value: Optional[str]) -> str:
    """Mask sensitive value for logging, showing first 4 chars."""
    if not value:
        return "<empty>"
    if len(value) <= 4:
        return "*" * len(value)
    return value[:4] + "*" * (len(value) - 4)


def remove_header(headers: Dict[str, str], name: str) -> None:
    """Remove every key equal to `name` ignoring case."""
    lowered = name.lower()
    for key in [k for k in headers if k.lower() == lowered]:
        del headers[key]


def set_header(headers: Dict[str, str], name: str, value: str) -> None:
    """Set a header, replacing any existing key that differs only in case."""
    remove_header(headers, name)
    headers[name] = value


def basic_credentials(username: str, password: str) -> str:
    """Base64 of UTF-8 'username:password'."""
    raw = f"{username}:{password}".encode("utf-8")
    return base64.b64encode(raw).decode("ascii")


async def fetch_oauth2_token(
    auth: OAuth2Auth,
    timeout: float = DEFAULT_TOKEN_TIMEOUT,
) -> TokenResult:
    """
    Perform an OAuth2 client-credentials exchange.

    Uses a bare client: no default headers, no authentication, no retry.

    Args:
        auth: OAuth2 descriptor
        timeout: Request timeout in seconds

    Returns:
        TokenAcquired on a 2xx response carrying `access_token`,
        TokenFetchFailed otherwise. Never raises for HTTP/network errors.
    """
    form = {
        "grant_type": "client_credentials",
        "client_id": auth.client_id,
        "client_secret": auth.client_secret,
    }
    if auth.scope:
        form["scope"] = auth.scope

    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(auth.token_url, data=form)
    except httpx.HTTPError as e:
        logger.error(f"Failed to obtain OAuth2 token from {auth.token_url}: {e}")
        return TokenFetchFailed(reason=str(e) or type(e).__name__, exception=e)

    if not response.is_success:
        reason = f"token endpoint returned {response.status_code}"
        logger.error(f"Failed to obtain OAuth2 token: {reason}")
        return TokenFetchFailed(reason=reason, status_code=response.status_code)

    try:
        payload: Any = response.json()
    except ValueError as e:
        logger.error(f"Failed to obtain OAuth2 token: response is not JSON ({e})")
        return TokenFetchFailed(
            reason="token response is not JSON",
            status_code=response.status_code,
            exception=e,
        )

    token = payload.get("access_token") if isinstance(payload, dict) else None
    if not token:
        logger.error("Failed to obtain OAuth2 token: access_token missing from response")
        return TokenFetchFailed(
            reason="access_token missing from response",
            status_code=response.status_code,
        )

    logger.info(f"OAuth2 token acquired for client {auth.client_id}")
    return TokenAcquired(
        access_token=str(token),
        token_type=str(payload.get("token_type", "Bearer")),
        expires_in=payload.get("expires_in"),
    )


class AuthApplier:
    """
    Applies authentication descriptors to a mutable header map.

    Authentication Headers Applied:
        - {header_name}: {api_key}            (ApiKeyAuth)
        - Authorization: Bearer {token}       (BearerAuth, OAuth2Auth)
        - Authorization: Basic {b64}          (BasicAuth)

    Usage:
        >>> headers = {}
        >>> applier = AuthApplier(headers)
        >>> await applier.apply(BearerAuth("t-123"))
        >>> headers
        {'Authorization': 'Bearer t-123'}
    """

    def __init__(self, headers: Dict[str, str], token_timeout: float = DEFAULT_TOKEN_TIMEOUT) -> None:
        self._headers = headers
        self._token_timeout = token_timeout
        self._api_key_header: Optional[str] = None

    @property
    def api_key_header(self) -> Optional[str]:
        """Header currently carrying an API key, if any."""
        return self._api_key_header

    def clear(self) -> None:
        """Remove every header a previous descriptor may have set."""
        remove_header(self._headers, AUTHORIZATION_HEADER)
        remove_header(self._headers, DEFAULT_API_KEY_HEADER)
        if self._api_key_header:
            remove_header(self._headers, self._api_key_header)
        self._api_key_header = None

    async def apply(self, descriptor: Optional[AuthDescriptor]) -> Optional[TokenResult]:
        """
        Replace the active authentication with `descriptor`.

        Returns:
            The token outcome for OAuth2, None for every other scheme
        """
        self.clear()

        if descriptor is None or isinstance(descriptor, NoAuth):
            logger.debug("Authentication cleared")
            return None

        if isinstance(descriptor, ApiKeyAuth):
            if descriptor.api_key:
                header_name = descriptor.header_name or DEFAULT_API_KEY_HEADER
                set_header(self._headers, header_name, descriptor.api_key)
                self._api_key_header = header_name
                logger.debug(
                    f"API key auth applied: {header_name}={_mask_value(descriptor.api_key)}"
                )
            return None

        if isinstance(descriptor, BearerAuth):
            if descriptor.token:
                self._set_bearer(descriptor.token)
            return None

        if isinstance(descriptor, BasicAuth):
            credentials = basic_credentials(descriptor.username, descriptor.password)
            set_header(self._headers, AUTHORIZATION_HEADER, f"Basic {credentials}")
            logger.debug(f"Basic auth applied for user {descriptor.username}")
            return None

        if isinstance(descriptor, OAuth2Auth):
            result = await fetch_oauth2_token(descriptor, timeout=self._token_timeout)
            if isinstance(result, TokenAcquired):
                self._set_bearer(result.access_token)
            else:
                logger.warning(
                    "Continuing without authentication: OAuth2 token unavailable"
                )
            return result

        raise TypeError(f"Unsupported authentication descriptor: {descriptor!r}")

    def _set_bearer(self, token: str) -> None:
        set_header(self._headers, AUTHORIZATION_HEADER, f"Bearer {token}")
        logger.debug(f"Bearer auth applied: token={_mask_value(token)}")


__all__ = [
    "AUTHORIZATION_HEADER",
    "AuthApplier",
    "TokenAcquired",
    "TokenError",
    "TokenFetchFailed",
    "TokenResult",
    "basic_credentials",
    "fetch_oauth2_token",
    "remove_header",
    "set_header",
]
