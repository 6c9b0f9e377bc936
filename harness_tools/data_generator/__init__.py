"""
Test data generation utilities.
"""

from .generator_registry import Blueprint, GeneratorError, GeneratorRegistry

__all__ = [
    "Blueprint",
    "GeneratorError",
    "GeneratorRegistry",
]
