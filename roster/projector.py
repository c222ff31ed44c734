"""
Roster Kernel — Relation Projector

Pure function: joined backend row → flat record.

A listing query returns each entity with its join rows embedded:

    {"id": 5, "name": "Alice",
     "project_employee": [{"project_id": 1, "Projects": {"id": 1, "name": "X"}}]}

The projector turns that into the shape the store holds:

    {"id": 5, "name": "Alice", "projects": [{"id": 1, "name": "X"}]}
"""

from __future__ import annotations

from typing import Any

from roster.types import JOIN_TABLE, KindSpec, summary


def project_row(kind: KindSpec, row: dict[str, Any]) -> dict[str, Any]:
    """
    Flatten one joined row into a record with a summary list.

    Join-row linkage fields are dropped. A missing or null join list yields
    an empty relation list, never None. Join rows whose nested entity is
    null (a dangling link) are skipped. The input row is not modified.
    """
    record = {k: v for k, v in row.items() if k != JOIN_TABLE}
    related: list[dict[str, Any]] = []
    for join_row in row.get(JOIN_TABLE) or []:
        nested = join_row.get(kind.nested_key)
        if nested is None:
            continue
        related.append(summary(nested))
    record[kind.relation_field] = related
    return record


def project_rows(kind: KindSpec, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [project_row(kind, row) for row in rows]
