"""
Field-level change computation for audit entries.

Values are normalized to JSON-compatible forms before comparison so that two
representations of the same value (an aware and a naive UTC datetime,
``Decimal("1.50")``, ``Decimal("1.5")`` and ``1.5``, an enum member and its
value) never produce a spurious diff. Integral numbers become ``int``; other
finite numbers become their normalized decimal string.
"""

from __future__ import annotations

from collections.abc import Collection, Mapping
from datetime import UTC, date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import inspect

FieldChange = dict[str, Any]
Changes = dict[str, FieldChange]


def normalize_value(value: Any) -> Any:
    """Convert ``value`` to its canonical JSON-compatible form."""
    if isinstance(value, Enum):
        return normalize_value(value.value)
    if value is None or isinstance(value, bool | str | int):
        return value
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC).isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, float):
        # repr keeps the shortest round-tripping digits, so 0.1 stays "0.1"
        value = Decimal(repr(value))
    if isinstance(value, Decimal):
        if not value.is_finite():
            return str(value)
        normalized = value.normalize()
        if normalized == normalized.to_integral_value():
            return int(normalized)
        return str(normalized)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, Mapping):
        return {str(k): normalize_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple | set | frozenset):
        items = [normalize_value(v) for v in value]
        return sorted(items, key=repr) if isinstance(value, set | frozenset) else items
    return str(value)


def compute_changes(
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any] | None,
    *,
    ignore: Collection[str] = (),
) -> Changes:
    """
    Diff two record snapshots.

    ``before=None`` describes a CREATE (every ``old`` is None), ``after=None``
    a DELETE (every ``new`` is None). For an UPDATE only fields whose
    normalized values differ are returned.
    """
    old_values = {k: normalize_value(v) for k, v in (before or {}).items() if k not in ignore}
    new_values = {k: normalize_value(v) for k, v in (after or {}).items() if k not in ignore}

    if before is None:
        return {field: {"old": None, "new": value} for field, value in new_values.items()}
    if after is None:
        return {field: {"old": value, "new": None} for field, value in old_values.items()}

    changes: Changes = {}
    for field in sorted(old_values.keys() | new_values.keys()):
        old = old_values.get(field)
        new = new_values.get(field)
        if old != new:
            changes[field] = {"old": old, "new": new}
    return changes


def apply_changes(before: Mapping[str, Any] | None, changes: Mapping[str, FieldChange]) -> dict[str, Any]:
    """Replay recorded ``new`` values onto a normalized snapshot."""
    state = {k: normalize_value(v) for k, v in (before or {}).items()}
    for field, change in changes.items():
        state[field] = change.get("new")
    return state


def snapshot_record(obj: Any) -> dict[str, Any]:
    """Column values of an ORM instance keyed by column name (loaded attributes only)."""
    state = inspect(obj)
    loaded = state.dict
    snapshot: dict[str, Any] = {}
    for attr in state.mapper.column_attrs:
        if attr.key in loaded:
            snapshot[attr.columns[0].name] = loaded[attr.key]
    return snapshot
