"""
Utility helpers for JSON serialization and resource manipulation.
"""

from .json_utils import safe_json_serialize, write_json_atomic
from .resources import (
    contains_fields,
    deep_merge,
    dedupe,
    describe,
    image_tag,
    resource_key,
    strip_server_fields,
)

__all__ = [
    "safe_json_serialize",
    "write_json_atomic",
    "contains_fields",
    "deep_merge",
    "dedupe",
    "describe",
    "image_tag",
    "resource_key",
    "strip_server_fields",
]
