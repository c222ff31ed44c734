"""
Roster Kernel — Change Construction

Factory functions for creating well-formed change notifications.
Used by the in-memory backend to publish its writes, and by tests to build
changes concisely.
"""

from __future__ import annotations

import copy
from typing import Any

from roster.types import DELETE, INSERT, JOIN_TABLE, UPDATE, Change, KindSpec


def make_change(
    table: str,
    type: str,
    record: dict[str, Any] | None = None,
    old_record: dict[str, Any] | None = None,
) -> Change:
    """Build a Change, copying the rows so later writes can't reach into it."""
    return Change(
        table=table,
        type=type,
        record=copy.deepcopy(record) if record else {},
        old_record=copy.deepcopy(old_record) if old_record else {},
    )


def inserted(kind: KindSpec, row: dict[str, Any]) -> Change:
    return make_change(kind.table, INSERT, record=row)


def updated(kind: KindSpec, row: dict[str, Any], old: dict[str, Any] | None = None) -> Change:
    return make_change(kind.table, UPDATE, record=row, old_record=old)


def deleted(kind: KindSpec, row: dict[str, Any]) -> Change:
    return make_change(kind.table, DELETE, old_record=row)


def assigned(emp_id: Any, project_id: Any) -> Change:
    return make_change(JOIN_TABLE, INSERT, record={"emp_id": emp_id, "project_id": project_id})


def unassigned(emp_id: Any, project_id: Any) -> Change:
    return make_change(JOIN_TABLE, DELETE, old_record={"emp_id": emp_id, "project_id": project_id})
