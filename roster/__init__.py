"""
Roster Kernel — the pure core.

Three components:
  projector  — joined backend row → flat record with {id, name} summaries
  store      — EntityStore / Roster, the client-side cache (upsert, remove)
  reducer    — (store, change) → ReduceResult  (dedupe, merge-preserve)

No IO happens here. The panel package wires these to the backend.
"""

from roster.projector import project_row, project_rows
from roster.reducer import ReduceResult, reduce, reduce_all
from roster.store import EntityStore, Roster
from roster.types import EMPLOYEE, JOIN_TABLE, PROJECT, Change, KindSpec

__all__ = [
    "project_row",
    "project_rows",
    "reduce",
    "reduce_all",
    "ReduceResult",
    "EntityStore",
    "Roster",
    "Change",
    "KindSpec",
    "EMPLOYEE",
    "PROJECT",
    "JOIN_TABLE",
]
