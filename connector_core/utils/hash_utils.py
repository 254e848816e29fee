"""
Hash utilities for upstream item comparison.

Trigger detectors keep a snapshot of ``{item key: content hash}`` and compare
it against the next poll to find new and changed items.
"""

import hashlib
from typing import Any, Dict, List, Optional

from ..exceptions import ErrorCode, ValidationError
from .json_utils import dumps

DEFAULT_IGNORE_FIELDS = ("etag", "updated", "modifiedTime", "updated_at")


def get_nested_value(data: Any, path: Optional[str]) -> Any:
    """
    Extract a value using dot notation, e.g. ``"data.items"`` or ``"rows.0.id"``.

    Returns None when any segment is missing.
    """
    if not path:
        return data

    value = data
    for part in path.split("."):
        if isinstance(value, dict) and part in value:
            value = value[part]
        elif isinstance(value, list) and part.isdigit() and int(part) < len(value):
            value = value[int(part)]
        else:
            return None
    return value


def calculate_item_hash(
    data: Any,
    ignore_fields: Optional[List[str]] = None,
) -> str:
    """
    Calculate a deterministic SHA-256 hash of an upstream item.

    Args:
        data: Item as returned by the upstream API (dict, list or scalar)
        ignore_fields: Top-level keys excluded from the hash. Volatile
            metadata such as etags is excluded by default.

    Returns:
        Hex digest
    """
    if data is None:
        raise ValidationError(
            "Cannot calculate hash for None data",
            error_code=ErrorCode.TYPE_MISMATCH,
            field="data",
        )

    if ignore_fields is None:
        ignore_fields = list(DEFAULT_IGNORE_FIELDS)

    if isinstance(data, dict):
        filtered: Any = {k: v for k, v in data.items() if k not in ignore_fields}
    else:
        filtered = data

    serialized = dumps(filtered, sort_keys=True)
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def compare_snapshots(previous: Dict[str, str], current: Dict[str, str]) -> Dict[str, List[str]]:
    """Keys added, changed and removed between two ``{key: hash}`` snapshots."""
    return {
        "added": [key for key in current if key not in previous],
        "changed": [key for key in current if key in previous and previous[key] != current[key]],
        "removed": [key for key in previous if key not in current],
    }
