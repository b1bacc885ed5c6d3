"""
Safe JSON serialization utilities.

Provides utilities for handling dataclasses, enums, paths and nested data
structures when writing events, journals and snapshot metadata.
"""

import json
import os
from dataclasses import asdict, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any


def safe_json_serialize(obj: Any) -> Any:
    """
    Recursively serialize Python objects to JSON-compatible types.

    Handles Enums, dataclasses, paths and nested collections, and falls back
    to ``str()`` for anything else.

    Args:
        obj: Any Python object to serialize

    Returns:
        JSON-compatible representation of the object
    """
    if obj is None:
        return None
    elif isinstance(obj, (str, int, float, bool)):
        return obj
    elif isinstance(obj, Enum):
        return obj.value
    elif isinstance(obj, Path):
        return str(obj)
    elif isinstance(obj, dict):
        return {str(k): safe_json_serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple, set, frozenset)):
        return [safe_json_serialize(item) for item in obj]
    elif is_dataclass(obj) and not isinstance(obj, type):
        return safe_json_serialize(asdict(obj))
    elif hasattr(obj, "to_dict"):
        return safe_json_serialize(obj.to_dict())
    return str(obj)


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON to a temp file, fsync it and rename it over ``path``."""
    path = Path(path)
    tmp_path = path.with_name(f".{path.name}.tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(safe_json_serialize(payload), f, indent=2, sort_keys=True)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)
