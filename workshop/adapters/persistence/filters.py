"""In-Python evaluation of store filters and ordering, shared by both adapters."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from workshop.application.ports.document_store import Document, Filter, OrderBy

_MISSING = object()


def _lookup(data: dict, path: str) -> Any:
    node: Any = data
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
    else:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _normalize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _comparable(left: Any, right: Any) -> tuple[Any, Any]:
    """Bring datetimes and ISO strings onto the same footing."""
    left, right = _normalize(left), _normalize(right)
    if isinstance(left, datetime) or isinstance(right, datetime):
        l_dt, r_dt = _as_datetime(left), _as_datetime(right)
        if l_dt is not None and r_dt is not None:
            return l_dt, r_dt
    return left, right


def matches(doc: Document, flt: Filter) -> bool:
    actual = _lookup(doc.data, flt.field)
    op = flt.op

    if op == "in":
        return actual is not _MISSING and any(
            a == b for a, b in (_comparable(actual, v) for v in flt.value)
        )
    if op == "not-in":
        return actual is _MISSING or not any(
            a == b for a, b in (_comparable(actual, v) for v in flt.value)
        )
    if op == "array-contains":
        return isinstance(actual, list) and any(
            a == b for a, b in (_comparable(item, flt.value) for item in actual)
        )

    if actual is _MISSING:
        return op == "!="
    left, right = _comparable(actual, flt.value)
    if op == "==":
        return left == right
    if op == "!=":
        return left != right
    try:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
    except TypeError:
        return False
    raise ValueError(f"Unsupported filter operator: {op}")


def apply_query(
    docs: Sequence[Document],
    filters: Sequence[Filter] = (),
    order_by: OrderBy | None = None,
    limit: int | None = None,
) -> list[Document]:
    result = [d for d in docs if all(matches(d, f) for f in filters)]
    if order_by is not None:
        present = [d for d in result if _lookup(d.data, order_by.field) is not _MISSING]
        present.sort(
            key=lambda d: _sort_key(_lookup(d.data, order_by.field)),
            reverse=order_by.descending,
        )
        result = present
    else:
        result.sort(key=lambda d: d.id)
    if limit is not None:
        result = result[:limit]
    return result


def _sort_key(value: Any) -> tuple:
    value = _normalize(value)
    as_dt = _as_datetime(value)
    if as_dt is not None:
        return (1, as_dt.timestamp())
    if isinstance(value, (int, float)):
        return (0, float(value))
    return (2, str(value))
