"""
Shared fixtures for the offline unit suite.

Every HTTP exchange here goes through respx; nothing touches the network.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterator, List

import pytest
from loguru import logger

from testsuites.api_testing.framework.models import (
    EndpointConfig,
    LoggingPolicy,
    RetryPolicy,
)


BASE_URL = "https://api.test"


class RecordingSleep:
    """Stand-in for asyncio.sleep that records the requested delays."""

    def __init__(self) -> None:
        self.delays: List[float] = []
        self.on_sleep: Callable[[], Any] = lambda: None

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        self.on_sleep()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_config() -> Callable[..., EndpointConfig]:
    """Factory for endpoint configs pointed at BASE_URL with fast retries."""

    def factory(
        max_retries: int = 3,
        delay_ms: int = 100,
        exponential_backoff: bool = True,
        **overrides: Any,
    ) -> EndpointConfig:
        values: Dict[str, Any] = {
            "base_url": BASE_URL,
            "timeout_seconds": 5.0,
            "retry": RetryPolicy(
                max_retries=max_retries,
                delay_ms=delay_ms,
                exponential_backoff=exponential_backoff,
            ),
            "logging": LoggingPolicy(log_headers=True),
        }
        values.update(overrides)
        return EndpointConfig(**values)

    return factory


@pytest.fixture
def log_records() -> Iterator[List[Dict[str, Any]]]:
    """Capture loguru records (including DEBUG) for the test's duration."""
    records: List[Dict[str, Any]] = []
    sink_id = logger.add(lambda message: records.append(message.record), level="DEBUG")
    yield records
    logger.remove(sink_id)


def events(records: List[Dict[str, Any]], name: str) -> List[Dict[str, Any]]:
    """Records bound with event=name."""
    return [r for r in records if r["extra"].get("event") == name]
