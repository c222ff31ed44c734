"""
Roster Kernel — Entity Store

Client-side cache of the records currently known for each entity kind.

The store is the only shared mutable state in the core. It is mutated
exclusively through upsert() and remove(), both safe to repeat and safe to
interleave: a late or duplicated write can leave stale data until the next
authoritative refresh, but it can never produce two records with one id.

Merge-preserve rule: an upsert whose record carries no relation list keeps
the relation list already stored for that id. Name-only edits and base-table
update notifications never carry relation data, so without this rule they
would silently wipe known assignments.
"""

from __future__ import annotations

import copy
from typing import Any

from roster.types import EMPLOYEE, PROJECT, KindSpec


class EntityStore:
    """In-memory mapping id → record for one entity kind, in insertion order."""

    def __init__(self, kind: KindSpec) -> None:
        self.kind = kind
        self._records: dict[Any, dict[str, Any]] = {}

    def __contains__(self, entity_id: Any) -> bool:
        return entity_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:  # pragma: no cover
        return f"EntityStore({self.kind.kind!r}, size={len(self._records)})"

    def get(self, entity_id: Any) -> dict[str, Any] | None:
        """Return a copy of the record, or None if the id is unknown."""
        record = self._records.get(entity_id)
        return copy.deepcopy(record) if record is not None else None

    def list(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(r) for r in self._records.values()]

    def ids(self) -> list[Any]:
        return list(self._records)

    def upsert(self, record: dict[str, Any], *, replace_relations: bool = False) -> dict[str, Any]:
        """
        Insert or update a record by id. Returns a copy of the stored result.

        New ids get an empty relation list when the record has none.
        Existing ids get the incoming fields merged over the stored ones; the
        stored relation list survives unless the incoming record carries its
        own. replace_relations=True means the record is an authoritative
        snapshot and replaces the stored one wholesale.
        """
        field = self.kind.relation_field
        entity_id = record["id"]
        incoming = copy.deepcopy(record)

        existing = self._records.get(entity_id)
        if existing is None or replace_relations:
            if incoming.get(field) is None:
                incoming[field] = []
            self._records[entity_id] = incoming
        else:
            merged = dict(existing)
            merged.update(incoming)
            if field not in incoming or incoming[field] is None:
                merged[field] = existing.get(field, [])
            self._records[entity_id] = merged

        return copy.deepcopy(self._records[entity_id])

    def remove(self, entity_id: Any) -> bool:
        """Delete by id. Absent ids are a no-op; returns whether anything was removed."""
        return self._records.pop(entity_id, None) is not None

    def replace_all(self, records: list[dict[str, Any]]) -> None:
        """Swap the whole contents for a fresh listing."""
        fresh: dict[Any, dict[str, Any]] = {}
        for record in records:
            incoming = copy.deepcopy(record)
            if incoming.get(self.kind.relation_field) is None:
                incoming[self.kind.relation_field] = []
            fresh[incoming["id"]] = incoming
        self._records = fresh

    def clear(self) -> None:
        self._records = {}


class Roster:
    """One EntityStore per entity kind. Created empty per session, never persisted."""

    def __init__(self) -> None:
        self.employees = EntityStore(EMPLOYEE)
        self.projects = EntityStore(PROJECT)

    def store_for(self, kind: KindSpec) -> EntityStore:
        return self.employees if kind.kind == EMPLOYEE.kind else self.projects
