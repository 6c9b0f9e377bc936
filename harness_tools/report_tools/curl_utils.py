"""
================================================================================
Request Reproduction Utilities
================================================================================

Helpers that render an HTTP exchange so a failing test can be reproduced
by hand.

Features:
- Pretty JSON rendering with a tolerant serializer
- cURL command rendering for request reproduction

================================================================================
"""

import json
from typing import Any, Dict, Optional

from harness_tools.common import safe_json_serialize


def to_pretty_json(data: Any) -> str:
    """
    Render data as indented JSON.

    Args:
        data: Data to render (odd types go through safe_json_serialize)
    """
    return json.dumps(data, indent=2, ensure_ascii=False, default=safe_json_serialize)


def build_curl_command(
    method: str,
    url: str,
    headers: Optional[Dict[str, str]] = None,
    body: Optional[Any] = None,
) -> str:
    """
    Build a copy-paste ready cURL command.

    Headers are rendered as given; mask them before calling.

    Args:
        method: HTTP method
        url: Absolute request URL
        headers: Request headers
        body: Request body (JSON-encoded unless already a string)
    """
    cmd_parts = [f"curl -X {method}"]

    for key, value in (headers or {}).items():
        cmd_parts.append(f"-H '{key}: {value}'")

    if body is not None:
        body_str = body if isinstance(body, str) else json.dumps(
            body, ensure_ascii=False, default=safe_json_serialize
        )
        cmd_parts.append(f"-d '{body_str}'")

    cmd_parts.append(f"'{url}'")
    return " \\\n  ".join(cmd_parts)


__all__ = [
    "build_curl_command",
    "to_pretty_json",
]
