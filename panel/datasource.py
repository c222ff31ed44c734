"""
Backend collaborator interface.

Everything the panel needs from the hosted backend: joined listings,
single-entity refresh, row writes, assignment writes, and a row-level change
feed. Implement with Postgres for production (postgres_source.py), or
in-memory for tests and local development (MemoryDataSource below).

Rows returned by fetch()/fetch_one() are in the backend's joined shape; the
roster projector turns them into records.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from panel.errors import PartialFailure, RemoteReadError, RemoteWriteError
from roster.events import make_change
from roster.types import DELETE, INSERT, JOIN_TABLE, KINDS, UPDATE, Change, KindSpec, summary

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[Change], Awaitable[None]]

# ---------------------------------------------------------------------------
# Subscription handle
# ---------------------------------------------------------------------------

DISCONNECTED = "disconnected"
CONNECTING = "connecting"
CONNECTED = "connected"
CLOSED = "closed"


class Subscription:
    """
    Disposable handle for one table's change feed.

    State machine: disconnected → connecting → connected, and closed once
    close() has run. Reconnecting after a dropped transport is the
    transport's business, not the subscriber's.
    """

    def __init__(
        self,
        table: str,
        handler: ChangeHandler,
        on_close: Callable[[Subscription], Awaitable[None]] | None = None,
    ) -> None:
        self.table = table
        self.handler = handler
        self.state = DISCONNECTED
        self._on_close = on_close

    def __repr__(self) -> str:  # pragma: no cover
        return f"Subscription({self.table!r}, state={self.state!r})"

    @property
    def connected(self) -> bool:
        return self.state == CONNECTED

    def mark_connecting(self) -> None:
        self.state = CONNECTING

    def mark_connected(self) -> None:
        self.state = CONNECTED

    async def dispatch(self, change: Change) -> None:
        """Hand a change to the handler. Ignored unless connected."""
        if self.state != CONNECTED:
            return
        await self.handler(change)

    async def close(self) -> None:
        if self.state == CLOSED:
            return
        self.state = CLOSED
        if self._on_close is not None:
            await self._on_close(self)


# ---------------------------------------------------------------------------
# Backend protocol
# ---------------------------------------------------------------------------


class DataSource:
    """
    Abstract backend interface.
    Implement with Postgres for production, or in-memory for tests.
    """

    async def fetch(self, kind: KindSpec, name_filter: str | None = None) -> list[dict[str, Any]]:
        """All rows of a kind with their join rows. name_filter is a case-insensitive substring."""
        raise NotImplementedError

    async def fetch_one(self, kind: KindSpec, entity_id: Any) -> dict[str, Any] | None:
        """One row with its join rows, or None if it does not exist."""
        raise NotImplementedError

    async def fetch_summaries(self, kind: KindSpec) -> list[dict[str, Any]]:
        """{id, name} for every row of a kind."""
        raise NotImplementedError

    async def insert(self, kind: KindSpec, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert a base row. Returns the created row including its id."""
        raise NotImplementedError

    async def update(self, kind: KindSpec, entity_id: Any, fields: dict[str, Any]) -> dict[str, Any] | None:
        """Update a base row. Returns the updated row, or None if it does not exist."""
        raise NotImplementedError

    async def delete(self, kind: KindSpec, entity_id: Any) -> int:
        """Delete a base row. Returns the number of rows deleted."""
        raise NotImplementedError

    async def delete_assignments(
        self, kind: KindSpec, entity_id: Any, related_ids: list[Any] | None = None
    ) -> int:
        """
        Delete join rows for entity_id on this kind's side.
        related_ids=None deletes all of them; otherwise only the named pairs.
        """
        raise NotImplementedError

    async def insert_assignments(self, kind: KindSpec, entity_id: Any, related_ids: list[Any]) -> int:
        """Insert one join row per related id."""
        raise NotImplementedError

    async def subscribe(self, table: str, handler: ChangeHandler) -> Subscription:
        """Start delivering changes on `table` to handler. Returns the handle."""
        raise NotImplementedError

    async def replace_assignments(self, kind: KindSpec, entity_id: Any, related_ids: list[Any]) -> None:
        """
        Make the assignment set for entity_id exactly related_ids.

        Default is two separate writes: delete all, then insert the new set.
        If the insert fails after the delete went through, the remote state
        is left with no assignments and PartialFailure is raised.
        Backends with transactions should override this.
        """
        await self.delete_assignments(kind, entity_id)
        if not related_ids:
            return
        try:
            await self.insert_assignments(kind, entity_id, related_ids)
        except RemoteWriteError as e:
            raise PartialFailure(f"Previous assignments were cleared but the new ones could not be saved: {e}") from e

    async def close(self) -> None:
        pass


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemoryDataSource(DataSource):
    """
    In-memory backend for testing.

    Writes queue change notifications instead of delivering them, so callers
    decide when (and in which order) the "realtime" side catches up:

        await source.deliver()       # flush everything queued
        source.pending.reverse()     # simulate out-of-order delivery

    fail_on maps an operation name ("insert", "insert_assignments", ...) to
    the error message it should raise, for fault injection.
    """

    def __init__(self) -> None:
        self.rows: dict[str, dict[Any, dict[str, Any]]] = {spec.table: {} for spec in KINDS.values()}
        self.assignments: list[dict[str, Any]] = []
        self.pending: list[Change] = []
        self.fail_on: dict[str, str] = {}
        self.calls: list[str] = []
        self._next_id: dict[str, int] = {spec.table: 1 for spec in KINDS.values()}
        self._subscriptions: dict[str, list[Subscription]] = {}

    # -- fault injection ---------------------------------------------------

    def _check(self, op: str, error: type[Exception]) -> None:
        self.calls.append(op)
        message = self.fail_on.get(op)
        if message is not None:
            raise error(message)

    # -- change feed -------------------------------------------------------

    def _emit(self, table: str, type: str, record: dict | None = None, old_record: dict | None = None) -> None:
        self.pending.append(make_change(table, type, record=record, old_record=old_record))

    async def subscribe(self, table: str, handler: ChangeHandler) -> Subscription:
        sub = Subscription(table, handler, on_close=self._unsubscribe)
        sub.mark_connecting()
        self._subscriptions.setdefault(table, []).append(sub)
        sub.mark_connected()
        return sub

    async def _unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.table, [])
        if sub in subs:
            subs.remove(sub)

    async def deliver(self, count: int | None = None) -> int:
        """Deliver queued changes in queue order. Returns how many were delivered."""
        delivered = 0
        while self.pending and (count is None or delivered < count):
            change = self.pending.pop(0)
            logger.debug("memory: delivering %s on %s", change.type, change.table)
            for sub in list(self._subscriptions.get(change.table, [])):
                await sub.dispatch(change)
            delivered += 1
        return delivered

    # -- reads -------------------------------------------------------------

    def _joined(self, kind: KindSpec, row: dict[str, Any]) -> dict[str, Any]:
        other_rows = self.rows[kind.other.table]
        join_rows = []
        for pair in self.assignments:
            if pair[kind.own_fk] != row["id"]:
                continue
            other = other_rows.get(pair[kind.other_fk])
            join_rows.append(
                {
                    kind.other_fk: pair[kind.other_fk],
                    kind.nested_key: summary(other) if other is not None else None,
                }
            )
        joined = copy.deepcopy(row)
        joined[JOIN_TABLE] = join_rows
        return joined

    async def fetch(self, kind: KindSpec, name_filter: str | None = None) -> list[dict[str, Any]]:
        self._check("fetch", RemoteReadError)
        rows = list(self.rows[kind.table].values())
        if name_filter is not None:
            needle = name_filter.lower()
            rows = [r for r in rows if needle in (r.get("name") or "").lower()]
        return [self._joined(kind, r) for r in rows]

    async def fetch_one(self, kind: KindSpec, entity_id: Any) -> dict[str, Any] | None:
        self._check("fetch_one", RemoteReadError)
        row = self.rows[kind.table].get(entity_id)
        return self._joined(kind, row) if row is not None else None

    async def fetch_summaries(self, kind: KindSpec) -> list[dict[str, Any]]:
        self._check("fetch_summaries", RemoteReadError)
        return [summary(r) for r in self.rows[kind.table].values()]

    # -- base writes -------------------------------------------------------

    async def insert(self, kind: KindSpec, fields: dict[str, Any]) -> dict[str, Any]:
        self._check("insert", RemoteWriteError)
        table = kind.table
        entity_id = fields.get("id")
        if entity_id is None:
            entity_id = self._next_id[table]
            self._next_id[table] += 1
        elif entity_id in self.rows[table]:
            raise RemoteWriteError(f'duplicate key value violates unique constraint "{table}_pkey"')
        row = {**fields, "id": entity_id}
        self.rows[table][entity_id] = row
        self._emit(table, INSERT, record=row)
        return copy.deepcopy(row)

    async def update(self, kind: KindSpec, entity_id: Any, fields: dict[str, Any]) -> dict[str, Any] | None:
        self._check("update", RemoteWriteError)
        row = self.rows[kind.table].get(entity_id)
        if row is None:
            return None
        old = copy.deepcopy(row)
        row.update({k: v for k, v in fields.items() if k != "id"})
        self._emit(kind.table, UPDATE, record=row, old_record=old)
        return copy.deepcopy(row)

    async def delete(self, kind: KindSpec, entity_id: Any) -> int:
        self._check("delete", RemoteWriteError)
        row = self.rows[kind.table].pop(entity_id, None)
        if row is None:
            return 0
        # ON DELETE CASCADE on the join table
        for pair in [p for p in self.assignments if p[kind.own_fk] == entity_id]:
            self.assignments.remove(pair)
            self._emit(JOIN_TABLE, DELETE, old_record=pair)
        self._emit(kind.table, DELETE, old_record=row)
        return 1

    # -- assignment writes -------------------------------------------------

    async def delete_assignments(
        self, kind: KindSpec, entity_id: Any, related_ids: list[Any] | None = None
    ) -> int:
        self._check("delete_assignments", RemoteWriteError)
        doomed = [
            p
            for p in self.assignments
            if p[kind.own_fk] == entity_id and (related_ids is None or p[kind.other_fk] in related_ids)
        ]
        for pair in doomed:
            self.assignments.remove(pair)
            self._emit(JOIN_TABLE, DELETE, old_record=pair)
        return len(doomed)

    async def insert_assignments(self, kind: KindSpec, entity_id: Any, related_ids: list[Any]) -> int:
        self._check("insert_assignments", RemoteWriteError)
        if entity_id not in self.rows[kind.table]:
            raise RemoteWriteError(f'insert on "{JOIN_TABLE}" violates foreign key constraint on {kind.own_fk}')
        new_pairs = []
        for related_id in related_ids:
            if related_id not in self.rows[kind.other.table]:
                raise RemoteWriteError(f'insert on "{JOIN_TABLE}" violates foreign key constraint on {kind.other_fk}')
            pair = {kind.own_fk: entity_id, kind.other_fk: related_id}
            if pair in self.assignments or pair in new_pairs:
                raise RemoteWriteError(f'duplicate key value violates unique constraint "{JOIN_TABLE}_pkey"')
            new_pairs.append(pair)
        for pair in new_pairs:
            self.assignments.append(pair)
            self._emit(JOIN_TABLE, INSERT, record=pair)
        return len(new_pairs)

    # -- helpers for tests and local seeding ------------------------------

    async def seed(self, kind: KindSpec, *names: str) -> list[dict[str, Any]]:
        """Insert rows without queueing notifications."""
        before = len(self.pending)
        rows = [await self.insert(kind, {"name": name}) for name in names]
        del self.pending[before:]
        return rows

    async def seed_assignments(self, kind: KindSpec, entity_id: Any, related_ids: list[Any]) -> None:
        before = len(self.pending)
        await self.insert_assignments(kind, entity_id, related_ids)
        del self.pending[before:]
