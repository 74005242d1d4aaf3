"""Document payload helpers shared by the store adapters."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any


def merge_fields(target: Mapping[str, Any], fields: Mapping[str, Any]) -> dict[str, Any]:
    """Nested dicts merge key by key; any other value overwrites."""
    merged = dict(target)
    for key, value in fields.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge_fields(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def to_json_ready(value: Any) -> Any:
    """Datetimes become ISO-8601 strings and enums their values, recursively."""
    if isinstance(value, Enum):
        return to_json_ready(value.value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_json_ready(v) for v in value]
    return value


def nest(path: str, value: Any) -> dict[str, Any]:
    """``nest("a.b", 1) == {"a": {"b": 1}}``, used for JSONB containment."""
    node: Any = value
    for part in reversed(path.split(".")):
        node = {part: node}
    return node
