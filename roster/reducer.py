"""
Roster Kernel — Change Reducer

Pure application of one change notification to an EntityStore:

    (store, change) → ReduceResult

Base-table changes are applied directly:
  INSERT  — dedupe by id; only absent ids are added (empty relation list)
  UPDATE  — merge-preserve upsert; relation lists are never touched
  DELETE  — idempotent remove by id

Join-table changes are never applied here. Computing a relation delta
client-side would race with every other writer, so the reducer only emits a
refresh signal naming the one entity (this kind's side of the pair) whose
authoritative snapshot must be re-fetched.

Never throws — unusable notifications come back as rejected results.
"""

from __future__ import annotations

from typing import Any

from roster.store import EntityStore
from roster.types import CHANGE_TYPES, DELETE, INSERT, JOIN_TABLE, UPDATE, Change

# ---------------------------------------------------------------------------
# ReduceResult
# ---------------------------------------------------------------------------


class ReduceResult:
    """
    Outcome of applying one change.

    accepted: the change was understood (it may still have been a no-op)
    changed:  the store was modified
    reason:   CODE: detail, set when rejected or skipped
    message:  user-facing info message, if the change deserves one
    refresh:  entity id to re-fetch with its relations (join-table changes)
    """

    __slots__ = ("accepted", "changed", "reason", "message", "refresh")

    def __init__(
        self,
        accepted: bool,
        changed: bool = False,
        reason: str | None = None,
        message: str | None = None,
        refresh: Any = None,
    ) -> None:
        self.accepted = accepted
        self.changed = changed
        self.reason = reason
        self.message = message
        self.refresh = refresh

    def __repr__(self) -> str:  # pragma: no cover
        if self.accepted:
            return f"ReduceResult(accepted=True, changed={self.changed})"
        return f"ReduceResult(accepted=False, reason={self.reason!r})"


def _reject(reason: str) -> ReduceResult:
    return ReduceResult(accepted=False, reason=reason)


def _ok(changed: bool, message: str | None = None, reason: str | None = None) -> ReduceResult:
    return ReduceResult(accepted=True, changed=changed, message=message, reason=reason)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def reduce(store: EntityStore, change: Change) -> ReduceResult:
    """
    Apply one change notification to the store for its kind.
    Changes for other tables are rejected without touching the store.
    """
    if change.type not in CHANGE_TYPES:
        return _reject(f"UNKNOWN_TYPE: {change.type}")

    if change.table == JOIN_TABLE:
        return _handle_join(store, change)

    if change.table != store.kind.table:
        return _reject(f"WRONG_TABLE: {change.table} is not {store.kind.table}")

    row = change.row
    if row.get("id") is None:
        return _reject(f"MISSING_ID: {change.type} on {change.table} has no id")

    return _HANDLERS[change.type](store, row)


def reduce_all(store: EntityStore, changes: list[Change]) -> list[ReduceResult]:
    """Apply changes in order. Refresh signals are returned, not followed."""
    return [reduce(store, change) for change in changes]


# ---------------------------------------------------------------------------
# Base-table handlers
# ---------------------------------------------------------------------------


def _base_fields(row: dict[str, Any]) -> dict[str, Any]:
    # Records hold id and name only; audit columns on the row are not cached,
    # and a column the row does not carry is left as stored.
    return {k: row[k] for k in ("id", "name") if k in row}


def _handle_insert(store: EntityStore, row: dict[str, Any]) -> ReduceResult:
    if row["id"] in store:
        return _ok(False, reason=f"ALREADY_PRESENT: {row['id']}")

    record = _base_fields(row)
    record[store.kind.relation_field] = []
    store.upsert(record)
    label = store.kind.label
    return _ok(True, message=f'New {label.lower()} "{row.get("name")}" added by another user')


def _handle_update(store: EntityStore, row: dict[str, Any]) -> ReduceResult:
    store.upsert(_base_fields(row))
    return _ok(True)


def _handle_delete(store: EntityStore, row: dict[str, Any]) -> ReduceResult:
    if not store.remove(row["id"]):
        return _ok(False, reason=f"NOT_PRESENT: {row['id']}")
    return _ok(True, message=f"{store.kind.label} deleted by another user")


_HANDLERS = {
    INSERT: _handle_insert,
    UPDATE: _handle_update,
    DELETE: _handle_delete,
}


# ---------------------------------------------------------------------------
# Join-table handler
# ---------------------------------------------------------------------------


def _handle_join(store: EntityStore, change: Change) -> ReduceResult:
    fk = store.kind.own_fk
    entity_id = change.row.get(fk)
    if entity_id is None:
        return _reject(f"MISSING_FK: {change.type} on {JOIN_TABLE} has no {fk}")
    return ReduceResult(accepted=True, changed=False, refresh=entity_id)
