"""
Realtime reconciler — merges the backend's change feed into one EntityStore.

Subscribes to the kind's base table and to the join table.

Base-table changes go through the roster reducer (dedupe on insert,
merge-preserve on update, idempotent delete). Join-table changes trigger a
re-fetch of the one affected entity on this kind's side, which then replaces
the stored record wholesale. The other side of the pair is left to its own
reconciler.
"""

from __future__ import annotations

import logging
from typing import Any

from panel.datasource import DataSource, Subscription
from panel.errors import RemoteReadError
from panel.status import StatusChannel
from roster.projector import project_row
from roster.reducer import reduce
from roster.store import EntityStore
from roster.types import JOIN_TABLE, Change, KindSpec

logger = logging.getLogger(__name__)


class Reconciler:
    """Keeps one kind's store in step with other clients' writes."""

    def __init__(self, kind: KindSpec, source: DataSource, store: EntityStore, status: StatusChannel) -> None:
        self.kind = kind
        self.source = source
        self.store = store
        self.status = status
        self.subscriptions: list[Subscription] = []

    @property
    def connected(self) -> bool:
        return bool(self.subscriptions) and all(s.connected for s in self.subscriptions)

    async def start(self) -> None:
        if self.subscriptions:
            return
        for table in (self.kind.table, JOIN_TABLE):
            sub = await self.source.subscribe(table, self.handle)
            self.subscriptions.append(sub)
        logger.info("reconciler: %s listening on %s and %s", self.kind.kind, self.kind.table, JOIN_TABLE)

    async def stop(self) -> None:
        subs, self.subscriptions = self.subscriptions, []
        for sub in subs:
            await sub.close()

    async def handle(self, change: Change) -> None:
        result = reduce(self.store, change)
        if not result.accepted:
            logger.warning("reconciler: %s dropped change: %s", self.kind.kind, result.reason)
            return
        if result.message:
            self.status.set_success(result.message)
        if result.refresh is not None:
            await self.refresh(result.refresh)

    async def refresh(self, entity_id: Any) -> dict[str, Any] | None:
        """
        Replace one record with the backend's current snapshot of it.
        An entity that no longer exists remotely is removed.
        """
        try:
            row = await self.source.fetch_one(self.kind, entity_id)
        except RemoteReadError as e:
            logger.warning("reconciler: refresh of %s %s failed: %s", self.kind.kind, entity_id, e)
            self.status.set_error(str(e))
            return None
        if row is None:
            self.store.remove(entity_id)
            return None
        return self.store.upsert(project_row(self.kind, row), replace_relations=True)
