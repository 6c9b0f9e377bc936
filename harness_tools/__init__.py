"""
================================================================================
Harness Tools
================================================================================

Supporting utilities for the API test harness.

Modules:
    - common: Logging setup and shared helpers
    - report_tools: cURL and JSON rendering for request reproduction
    - data_generator: Named random-data generators and payload blueprints

Example:
    from harness_tools.common import init_logger
    from harness_tools.data_generator import GeneratorRegistry

    init_logger(level="DEBUG")

    registry = GeneratorRegistry(seed=7)
    registry.define("user", {"email": "random_email"})
    payload = registry.generate("user")

================================================================================
"""

__version__ = "1.0.0"

__all__ = [
    "common",
    "data_generator",
    "report_tools",
]
