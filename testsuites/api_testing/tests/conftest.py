"""
================================================================================
API Testing Pytest Configuration
================================================================================

Shared fixtures for API tests that run against a live endpoint.

These tests need a reachable service; they are skipped unless API_TEST_LIVE
is set. The endpoint comes from config/config.yaml (ENVIRONMENT selects the
section) with environment variable overrides.

Fixtures:
    - config: Configuration loader instance
    - endpoint_config: EndpointConfig for the selected environment
    - executor: Open RequestExecutor for one test
    - performance: Session-wide timing metrics
    - data_registry: Seeded payload generators

Author: Automation Team
License: MIT
================================================================================
"""

from __future__ import annotations

import os
import uuid
from typing import AsyncIterator, Iterator, List

import pytest
import pytest_asyncio
from loguru import logger

from harness_tools.common import init_logger
from harness_tools.data_generator import GeneratorRegistry
from testsuites.api_testing.framework import (
    ConfigLoader,
    EndpointConfig,
    PerformanceRecorder,
    RequestExecutor,
)


def pytest_collection_modifyitems(config, items):
    """Skip live endpoint tests unless API_TEST_LIVE is set."""
    if os.environ.get("API_TEST_LIVE", "").lower() in ("1", "true", "yes"):
        return
    skip_live = pytest.mark.skip(reason="set API_TEST_LIVE=1 to run against a live endpoint")
    for item in items:
        if "requires_external" in item.keywords:
            item.add_marker(skip_live)


# =============================================================================
# Session-Scoped Fixtures (Shared across all tests)
# =============================================================================

@pytest.fixture(scope="session")
def config() -> ConfigLoader:
    """
    Provide configuration loader instance.

    Session-scoped to ensure configuration is loaded only once.
    """
    init_logger()
    return ConfigLoader()


@pytest.fixture(scope="session")
def endpoint_config(config: ConfigLoader) -> EndpointConfig:
    """EndpointConfig for ENVIRONMENT (top-level sections when unset)."""
    return config.endpoint_config()


@pytest.fixture(scope="session")
def performance() -> Iterator[PerformanceRecorder]:
    """Collect call timings for the session and log the report at the end."""
    recorder = PerformanceRecorder()
    yield recorder
    if recorder.metrics():
        logger.info("\n" + recorder.report())


# =============================================================================
# Function-Scoped Fixtures (Fresh for each test)
# =============================================================================

@pytest_asyncio.fixture
async def executor(
    endpoint_config: EndpointConfig,
    performance: PerformanceRecorder,
) -> AsyncIterator[RequestExecutor]:
    """
    Provide an open request executor.

    Usage:
        async def test_example(executor):
            result = await executor.get("/api/v1/users")
            assert result.successful
    """
    async with RequestExecutor(endpoint_config, performance=performance) as client:
        yield client


@pytest.fixture
def unique_id() -> str:
    """Unique identifier for test data isolation."""
    return f"harness_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def data_registry() -> GeneratorRegistry:
    """Registry with the user payload blueprint."""
    registry = GeneratorRegistry(seed=int(os.environ.get("TEST_DATA_SEED", "0")) or None)
    registry.define("user", {
        "username": ("random_string", {"length": 12, "include_numbers": True}),
        "email": ("random_email", {"domain": "test.example.com"}),
        "phone": "random_phone",
        "age": ("random_int", {"min_value": 18, "max_value": 90}),
    })
    return registry


# =============================================================================
# Cleanup Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def cleanup_resources(executor: RequestExecutor) -> AsyncIterator[List[str]]:
    """
    Delete the collected resource paths after the test, newest first.

    Usage:
        async def test_create(executor, cleanup_resources):
            result = await executor.post("/api/v1/items", item)
            cleanup_resources.append(f"/api/v1/items/{result.data['id']}")
    """
    paths: List[str] = []
    yield paths

    for path in reversed(paths):
        result = await executor.delete(path)
        if result.successful or result.status_code == 404:
            logger.debug(f"Cleaned up {path}")
        else:
            logger.warning(f"Failed to clean up {path}: {result.status_code}")
