"""
Repository-level pytest configuration (showcase-safe).

Why this exists:
  - Provide safe defaults for demo environments (no secrets embedded)
  - Make the repo more \"plug-and-play\" for reviewers cloning from GitHub
  - Keep behavior explicit and discoverable

Important:
  Values below are placeholders. Real projects should load secrets from a
  secure secret manager in CI/CD.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Generator

import pytest


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return repo root path."""
    return Path(__file__).parent


@pytest.fixture(scope="session", autouse=True)
def _demo_safe_env_defaults() -> Generator[None, None, None]:
    """
    Set demo-safe environment defaults if not already provided by the user/CI.

    This prevents accidental leakage and keeps local runs predictable.
    """
    defaults = {
        # ConfigLoader overrides
        "API_BASE_URL": "http://localhost:8000",
        # Flat API_TEST_* configuration
        "API_TEST_BASE_URL": "http://localhost:8000",
        "API_TEST_ENVIRONMENT": "Development",
        "LOG_LEVEL": "INFO",
    }

    for k, v in defaults.items():
        os.environ.setdefault(k, v)

    yield
