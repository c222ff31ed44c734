"""
Roster Kernel — Shared Types

Data classes used across the projector, store, and reducer.
These are the contracts that bind the kernel together.

Records themselves stay plain dicts ({"id", "name", <relation field>}) so the
UI layer can consume them directly. Everything backend-specific (table names,
foreign keys, nested join keys) lives on KindSpec and nowhere else.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ---------------------------------------------------------------------------
# Change event types
# ---------------------------------------------------------------------------

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

CHANGE_TYPES: set[str] = {INSERT, UPDATE, DELETE}

JOIN_TABLE = "project_employee"


# ---------------------------------------------------------------------------
# Entity kinds
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class KindSpec:
    """
    Naming for one entity kind, from both the client's and the backend's side.

    kind:            "employee" / "project"
    label:           human label used in status messages
    table:           remote base table
    relation_field:  key of the summary list on a projected record
    own_fk:          join-table column pointing at this kind
    other_fk:        join-table column pointing at the other kind
    nested_key:      key under which a join row embeds the other entity
    created_verb:    verb used in the create success message
    """

    kind: str
    label: str
    table: str
    relation_field: str
    own_fk: str
    other_fk: str
    nested_key: str
    created_verb: str = "added"

    @property
    def other(self) -> KindSpec:
        return PROJECT if self.kind == EMPLOYEE.kind else EMPLOYEE


EMPLOYEE = KindSpec(
    kind="employee",
    label="Employee",
    table="Employee",
    relation_field="projects",
    own_fk="emp_id",
    other_fk="project_id",
    nested_key="Projects",
)

PROJECT = KindSpec(
    kind="project",
    label="Project",
    table="Projects",
    relation_field="employees",
    own_fk="project_id",
    other_fk="emp_id",
    nested_key="Employee",
    created_verb="created",
)

KINDS: dict[str, KindSpec] = {EMPLOYEE.kind: EMPLOYEE, PROJECT.kind: PROJECT}


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class Change:
    """
    One row-level change delivered by the backend's change feed.

    `record` is the new row (INSERT/UPDATE), `old_record` the previous row
    (UPDATE/DELETE). Either may be empty depending on the event type.
    """

    table: str
    type: str
    record: dict[str, Any] = field(default_factory=dict)
    old_record: dict[str, Any] = field(default_factory=dict)

    @property
    def row(self) -> dict[str, Any]:
        """The row that identifies the change: new row, or old row for deletes."""
        if self.type == DELETE:
            return self.old_record or self.record
        return self.record or self.old_record


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def summary(row: dict[str, Any]) -> dict[str, Any]:
    """Reduce any row to its {id, name} summary."""
    return {"id": row["id"], "name": row.get("name")}
