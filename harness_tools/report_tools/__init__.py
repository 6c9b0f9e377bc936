"""
Request reproduction helpers (cURL rendering, pretty JSON).
"""

from .curl_utils import build_curl_command, to_pretty_json

__all__ = [
    "build_curl_command",
    "to_pretty_json",
]
