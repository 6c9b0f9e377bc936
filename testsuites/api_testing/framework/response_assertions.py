"""
================================================================================
Response Assertions
================================================================================

Fluent assertions over ResponseResult objects.

Every check raises AssertionError with the response context on failure and
returns the assertion object so checks can be chained:

    assert_that(result).is_successful().has_header("Content-Type") \\
        .has_json_property_value("data.user.id", 42)

JSON paths use dot notation with optional list indices ("data.items[0].id",
"items.0.id"). Schemas are JSON Schema documents checked with jsonschema.

================================================================================
"""

from __future__ import annotations

import json
import re
from typing import Any, Callable, Dict, Optional

import jsonschema

from .models import ResponseResult


_MISSING = object()
_INDEXED_KEY = re.compile(r"^([^\[\]]*)((?:\[\d+\])+)$")


def get_json_path(document: Any, path: str) -> Any:
    """
    Get a value from a decoded JSON document using dot notation.

    Args:
        document: Decoded JSON (dicts and lists)
        path: Dot-separated path, e.g. "data.items[0].id" or "items.0.id"

    Returns:
        The value at the path

    Raises:
        KeyError: If the path doesn't exist
    """
    if not path:
        raise ValueError("path must not be empty")
    current = document
    for key in path.strip().lstrip("$").lstrip(".").split("."):
        # "items[0][1]" walks into the list after resolving "items"
        match = _INDEXED_KEY.match(key)
        if match:
            name, indices = match.group(1), re.findall(r"\d+", match.group(2))
            steps = ([name] if name else []) + [int(i) for i in indices]
        else:
            steps = [key]
        for step in steps:
            current = _step(current, step, path)
    return current


def _step(current: Any, key: Any, path: str) -> Any:
    if isinstance(current, list):
        try:
            return current[int(key)]
        except (ValueError, IndexError):
            raise KeyError(path) from None
    if isinstance(current, dict) and key in current:
        return current[key]
    raise KeyError(path)


class ResponseAssertions:
    """Chainable checks for one ResponseResult."""

    def __init__(self, result: ResponseResult) -> None:
        if result is None:
            raise ValueError("result must not be None")
        self._result = result

    @property
    def result(self) -> ResponseResult:
        return self._result

    @property
    def and_(self) -> "ResponseAssertions":
        """Readability alias for chaining."""
        return self

    # -------------------------------------------------------------------------
    # Status / headers / timing
    # -------------------------------------------------------------------------

    def is_successful(self, because: str = "") -> "ResponseAssertions":
        """Status is 2xx."""
        if not self._result.successful:
            self._fail(f"expected a 2xx status, got {self._result.status_code}", because)
        return self

    def has_status(self, expected: int, because: str = "") -> "ResponseAssertions":
        if self._result.status_code != int(expected):
            self._fail(
                f"expected status {int(expected)}, got {self._result.status_code}", because
            )
        return self

    def has_header(self, name: str, value: Optional[str] = None, because: str = "") -> "ResponseAssertions":
        """Header present; with `value`, its first value equals it."""
        values = self._result.get_header_values(name)
        if not values:
            self._fail(f"expected header {name!r} to be present", because)
        if value is not None and values[0] != value:
            self._fail(f"expected header {name!r} to be {value!r}, got {values[0]!r}", because)
        return self

    def has_content_type(self, expected: str, because: str = "") -> "ResponseAssertions":
        """Content-Type header contains `expected` (case-insensitive)."""
        content_type = self._result.get_header("Content-Type")
        if content_type is None:
            self._fail("expected a Content-Type header", because)
        if expected.lower() not in content_type.lower():
            self._fail(f"expected Content-Type to contain {expected!r}, got {content_type!r}", because)
        return self

    def responded_within(self, max_ms: float, because: str = "") -> "ResponseAssertions":
        if self._result.elapsed_ms > max_ms:
            self._fail(
                f"expected response within {max_ms}ms, took {self._result.elapsed_ms:.1f}ms",
                because,
            )
        return self

    def has_no_exception(self, because: str = "") -> "ResponseAssertions":
        if self._result.exception is not None:
            self._fail(f"expected no exception, got {self._result.exception!r}", because)
        return self

    # -------------------------------------------------------------------------
    # Body
    # -------------------------------------------------------------------------

    def has_body(self, because: str = "") -> "ResponseAssertions":
        if not self._result.raw_body:
            self._fail("expected a non-empty body", because)
        return self

    def body_contains(self, text: str, because: str = "") -> "ResponseAssertions":
        if text not in (self._result.raw_body or ""):
            self._fail(f"expected body to contain {text!r}", because)
        return self

    def has_data(self, because: str = "") -> "ResponseAssertions":
        """The typed body was decoded."""
        if self._result.data is None:
            self._fail("expected decoded data, got None", because)
        return self

    def data_equals(self, expected: Any, because: str = "") -> "ResponseAssertions":
        if self._result.data != expected:
            self._fail(f"expected data {expected!r}, got {self._result.data!r}", because)
        return self

    def satisfies(self, check: Callable[[Any], Any]) -> "ResponseAssertions":
        """Run a custom check against the decoded data."""
        check(self._result.data)
        return self

    def matches_schema(self, schema: Dict[str, Any], because: str = "") -> "ResponseAssertions":
        """Body validates against a JSON Schema document."""
        self.has_body("response should have content for schema validation")
        document = self._document()
        try:
            jsonschema.validate(document, schema)
        except jsonschema.ValidationError as e:
            location = ".".join(str(part) for part in e.absolute_path) or "<root>"
            self._fail(f"expected body to match schema: {e.message} at {location}", because)
        except jsonschema.SchemaError as e:
            raise ValueError(f"Invalid JSON schema: {e.message}") from e
        return self

    # -------------------------------------------------------------------------
    # JSON paths
    # -------------------------------------------------------------------------

    def has_json_property(self, path: str, because: str = "") -> "ResponseAssertions":
        if self._find(path) is _MISSING:
            self._fail(f"expected JSON property {path!r}", because)
        return self

    def has_json_property_value(self, path: str, expected: Any, because: str = "") -> "ResponseAssertions":
        actual = self._find(path)
        if actual is _MISSING:
            self._fail(f"property {path!r} should exist", because)
        if actual != expected:
            self._fail(f"expected {path!r} to be {expected!r}, got {actual!r}", because)
        return self

    def has_json_array_count(
        self,
        expected_count: Optional[int] = None,
        because: str = "",
        *,
        min_count: Optional[int] = None,
        max_count: Optional[int] = None,
    ) -> "ResponseAssertions":
        """Top-level JSON array with an exact length and/or length bounds."""
        document = self._document()
        if not isinstance(document, list):
            self._fail(f"response should be a JSON array, got {type(document).__name__}", because)
        count = len(document)
        if expected_count is not None and count != expected_count:
            self._fail(f"expected {expected_count} items, got {count}", because)
        if min_count is not None and count < min_count:
            self._fail(f"expected at least {min_count} items, got {count}", because)
        if max_count is not None and count > max_count:
            self._fail(f"expected at most {max_count} items, got {count}", because)
        return self

    def has_validation_error(self, field_name: str, because: str = "") -> "ResponseAssertions":
        """400 response mentioning `field_name`."""
        self.has_status(400, "validation errors typically return 400 Bad Request")
        document = self._result.json()
        mentioned = field_name in (self._result.raw_body or "")
        if isinstance(document, dict) and field_name in document:
            mentioned = True
        if not mentioned:
            self._fail(f"expected a validation error for {field_name!r}", because)
        return self

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _document(self) -> Any:
        self.has_body("response should have content")
        try:
            return json.loads(self._result.raw_body)
        except ValueError as e:
            self._fail(f"response body is not JSON: {e}", "")

    def _find(self, path: str) -> Any:
        document = self._document()
        try:
            return get_json_path(document, path)
        except KeyError:
            return _MISSING

    def _fail(self, message: str, because: str) -> None:
        reason = f" because {because}" if because else ""
        raise AssertionError(
            f"{message}{reason}\n"
            f"Response: {self._result.status_code} {self._result.reason_phrase} "
            f"({self._result.url})"
        )


def assert_that(result: ResponseResult) -> ResponseAssertions:
    """Entry point for fluent response assertions."""
    return ResponseAssertions(result)


__all__ = [
    "ResponseAssertions",
    "assert_that",
    "get_json_path",
]
