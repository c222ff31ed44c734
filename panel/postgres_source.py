"""
PostgresDataSource — the DataSource over asyncpg.

Reads return the same joined shape the hosted REST layer produces
(entity + nested join rows), built with json_agg so the roster projector
sees one format regardless of backend.

Change feed: the notify trigger installed by the migrations publishes
{"table", "type", "record", "old_record"} on settings.CHANGE_CHANNEL. One
dedicated listener connection receives every notification; a single pump
task hands them to subscriptions in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg
from pydantic import ValidationError as PayloadError

from panel import db
from panel.config import settings
from panel.datasource import ChangeHandler, DataSource, Subscription
from panel.errors import RemoteReadError, RemoteWriteError
from panel.models import ChangeNotification
from roster.types import JOIN_TABLE, KindSpec

logger = logging.getLogger(__name__)

# Base-table columns the panel is allowed to write.
_WRITABLE = ("name",)

# Everything the driver can raise for a failed round trip: server errors,
# dropped connections, refused connections and command_timeout.
_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


def _like_pattern(term: str) -> str:
    """Case-insensitive substring pattern with LIKE wildcards escaped."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _describe(e: BaseException) -> str:
    if isinstance(e, asyncio.TimeoutError):
        return "Database request timed out"
    return str(e) or type(e).__name__


def _affected(status: str) -> int:
    # asyncpg returns command tags like "DELETE 3"
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, IndexError):
        return 0


def _joined_select(kind: KindSpec) -> str:
    other = kind.other
    # S608: identifiers come from KindSpec constants, never from user input
    return f"""
        SELECT b.id, b.name,
               COALESCE(
                   json_agg(
                       json_build_object(
                           '{kind.other_fk}', j.{kind.other_fk},
                           '{kind.nested_key}', json_build_object('id', o.id, 'name', o.name)
                       ) ORDER BY j.{kind.other_fk}
                   ) FILTER (WHERE j.{kind.other_fk} IS NOT NULL),
                   '[]'::json
               ) AS {JOIN_TABLE}
        FROM "{kind.table}" b
        LEFT JOIN {JOIN_TABLE} j ON j.{kind.own_fk} = b.id
        LEFT JOIN "{other.table}" o ON o.id = j.{kind.other_fk}
    """  # noqa: S608


class PostgresDataSource(DataSource):
    """
    Postgres-based backend for the panel.

    All reads and writes run through db.user_conn() so row-level security
    applies to the signed-in user. Without a user id, system_conn() is used
    (seeding, tests).
    """

    def __init__(self, user_id: str | None = None, dsn: str | None = None) -> None:
        self.user_id = user_id
        self.dsn = dsn or settings.DATABASE_URL
        self.channel = settings.CHANGE_CHANNEL
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._listener: asyncpg.Connection | None = None
        self._queue: asyncio.Queue[ChangeNotification] | None = None
        self._pump: asyncio.Task | None = None
        self._listener_lock = asyncio.Lock()

    async def open(self) -> None:
        await db.init_pool(self.dsn)

    @asynccontextmanager
    async def _conn(self) -> AsyncIterator[asyncpg.Connection]:
        if self.user_id:
            async with db.user_conn(self.user_id) as conn:
                yield conn
        else:
            async with db.system_conn() as conn:
                yield conn

    # -- reads -------------------------------------------------------------

    async def fetch(self, kind: KindSpec, name_filter: str | None = None) -> list[dict[str, Any]]:
        query = _joined_select(kind)
        args: list[Any] = []
        if name_filter is not None:
            query += " WHERE b.name ILIKE $1"
            args.append(_like_pattern(name_filter))
        query += " GROUP BY b.id ORDER BY b.id"
        try:
            async with self._conn() as conn:
                rows = await conn.fetch(query, *args)
        except _DRIVER_ERRORS as e:
            raise RemoteReadError(_describe(e)) from e
        return [dict(row) for row in rows]

    async def fetch_one(self, kind: KindSpec, entity_id: Any) -> dict[str, Any] | None:
        query = _joined_select(kind) + " WHERE b.id = $1 GROUP BY b.id"
        try:
            async with self._conn() as conn:
                row = await conn.fetchrow(query, entity_id)
        except _DRIVER_ERRORS as e:
            raise RemoteReadError(_describe(e)) from e
        return dict(row) if row else None

    async def fetch_summaries(self, kind: KindSpec) -> list[dict[str, Any]]:
        try:
            async with self._conn() as conn:
                rows = await conn.fetch(f'SELECT id, name FROM "{kind.table}" ORDER BY id')  # noqa: S608
        except _DRIVER_ERRORS as e:
            raise RemoteReadError(_describe(e)) from e
        return [dict(row) for row in rows]

    # -- base writes -------------------------------------------------------

    async def insert(self, kind: KindSpec, fields: dict[str, Any]) -> dict[str, Any]:
        columns = [c for c in _WRITABLE if c in fields]
        placeholders = ", ".join(f"${i + 1}" for i in range(len(columns)))
        query = f'INSERT INTO "{kind.table}" ({", ".join(columns)}) VALUES ({placeholders}) RETURNING id, name'  # noqa: S608
        try:
            async with self._conn() as conn:
                row = await conn.fetchrow(query, *(fields[c] for c in columns))
        except _DRIVER_ERRORS as e:
            raise RemoteWriteError(_describe(e)) from e
        return dict(row)

    async def update(self, kind: KindSpec, entity_id: Any, fields: dict[str, Any]) -> dict[str, Any] | None:
        columns = [c for c in _WRITABLE if c in fields]
        if not columns:
            row = await self.fetch_one(kind, entity_id)
            return {"id": row["id"], "name": row["name"]} if row else None
        set_clause = ", ".join(f"{c} = ${i + 2}" for i, c in enumerate(columns))
        query = f'UPDATE "{kind.table}" SET {set_clause} WHERE id = $1 RETURNING id, name'  # noqa: S608
        try:
            async with self._conn() as conn:
                row = await conn.fetchrow(query, entity_id, *(fields[c] for c in columns))
        except _DRIVER_ERRORS as e:
            raise RemoteWriteError(_describe(e)) from e
        return dict(row) if row else None

    async def delete(self, kind: KindSpec, entity_id: Any) -> int:
        try:
            async with self._conn() as conn:
                status = await conn.execute(f'DELETE FROM "{kind.table}" WHERE id = $1', entity_id)  # noqa: S608
        except _DRIVER_ERRORS as e:
            raise RemoteWriteError(_describe(e)) from e
        return _affected(status)

    # -- assignment writes -------------------------------------------------

    async def _delete_assignments(
        self, conn: asyncpg.Connection, kind: KindSpec, entity_id: Any, related_ids: list[Any] | None
    ) -> int:
        if related_ids is None:
            status = await conn.execute(
                f"DELETE FROM {JOIN_TABLE} WHERE {kind.own_fk} = $1",  # noqa: S608
                entity_id,
            )
        else:
            status = await conn.execute(
                f"DELETE FROM {JOIN_TABLE} WHERE {kind.own_fk} = $1 AND {kind.other_fk} = ANY($2)",  # noqa: S608
                entity_id,
                list(related_ids),
            )
        return _affected(status)

    async def _insert_assignments(
        self, conn: asyncpg.Connection, kind: KindSpec, entity_id: Any, related_ids: list[Any]
    ) -> int:
        if not related_ids:
            return 0
        await conn.executemany(
            f"INSERT INTO {JOIN_TABLE} ({kind.own_fk}, {kind.other_fk}) VALUES ($1, $2)",  # noqa: S608
            [(entity_id, related_id) for related_id in related_ids],
        )
        return len(related_ids)

    async def delete_assignments(
        self, kind: KindSpec, entity_id: Any, related_ids: list[Any] | None = None
    ) -> int:
        try:
            async with self._conn() as conn:
                return await self._delete_assignments(conn, kind, entity_id, related_ids)
        except _DRIVER_ERRORS as e:
            raise RemoteWriteError(_describe(e)) from e

    async def insert_assignments(self, kind: KindSpec, entity_id: Any, related_ids: list[Any]) -> int:
        try:
            async with self._conn() as conn:
                return await self._insert_assignments(conn, kind, entity_id, related_ids)
        except _DRIVER_ERRORS as e:
            raise RemoteWriteError(_describe(e)) from e

    async def replace_assignments(self, kind: KindSpec, entity_id: Any, related_ids: list[Any]) -> None:
        """Delete and insert in one transaction: either the new set lands or nothing changes."""
        try:
            async with self._conn() as conn:
                await self._delete_assignments(conn, kind, entity_id, None)
                await self._insert_assignments(conn, kind, entity_id, related_ids)
        except _DRIVER_ERRORS as e:
            raise RemoteWriteError(_describe(e)) from e

    # -- change feed -------------------------------------------------------

    async def subscribe(self, table: str, handler: ChangeHandler) -> Subscription:
        sub = Subscription(table, handler, on_close=self._unsubscribe)
        sub.mark_connecting()
        await self._ensure_listener()
        self._subscriptions.setdefault(table, []).append(sub)
        sub.mark_connected()
        logger.info("postgres: subscribed to %s on channel %s", table, self.channel)
        return sub

    async def _ensure_listener(self) -> None:
        async with self._listener_lock:
            if self._listener is not None:
                return
            try:
                listener = await asyncpg.connect(self.dsn)
            except _DRIVER_ERRORS as e:
                raise RemoteReadError(f"Could not open the change feed: {_describe(e)}") from e
            try:
                await listener.add_listener(self.channel, self._on_notify)
            except _DRIVER_ERRORS as e:
                listener.terminate()
                raise RemoteReadError(f"Could not open the change feed: {_describe(e)}") from e
            self._queue = asyncio.Queue()
            self._listener = listener
            self._pump = asyncio.get_running_loop().create_task(self._run_pump())

    def _on_notify(self, connection: asyncpg.Connection, pid: int, channel: str, payload: str) -> None:
        try:
            notification = ChangeNotification.model_validate_json(payload)
        except PayloadError as e:
            logger.warning("postgres: dropping malformed notification on %s: %s", channel, e)
            return
        if self._queue is not None:
            self._queue.put_nowait(notification)

    async def _run_pump(self) -> None:
        assert self._queue is not None
        while True:
            notification = await self._queue.get()
            change = notification.to_change()
            for sub in list(self._subscriptions.get(change.table, [])):
                try:
                    await sub.dispatch(change)
                except Exception:
                    logger.exception("postgres: change handler failed for %s %s", change.type, change.table)

    async def _unsubscribe(self, sub: Subscription) -> None:
        subs = self._subscriptions.get(sub.table, [])
        if sub in subs:
            subs.remove(sub)
        if not any(self._subscriptions.values()):
            await self._stop_listener()

    async def _stop_listener(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None
        if self._listener is not None:
            await self._listener.remove_listener(self.channel, self._on_notify)
            await self._listener.close()
            self._listener = None
        self._queue = None

    async def close(self) -> None:
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                await sub.close()
        await self._stop_listener()
        await db.close_pool()
