"""
Mutation coordinator — the panel's write path for one entity kind.

Every operation follows the same shape:

    status.begin() → remote write(s) → apply result to store → status.end()

and returns a MutationResult. Failures become the status channel's error and
a failed result; they never propagate to the caller, and a failed operation
never touches the store.

Direct store updates after a successful write are optimistic hints. The
realtime reconciler may deliver the same change before or after them; both
orders converge because the store dedupes inserts by id and merge-preserves
relation lists on updates.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from panel.datasource import DataSource
from panel.errors import CrewboardError, NotFoundError, RemoteReadError, ValidationError
from panel.models import MutationResult
from panel.search import SearchOverlay
from panel.status import StatusChannel
from roster.projector import project_row, project_rows
from roster.store import EntityStore
from roster.types import KindSpec

logger = logging.getLogger(__name__)


class Coordinator:
    """Create, rename, delete, assign, unassign, search and load one kind."""

    def __init__(
        self,
        kind: KindSpec,
        source: DataSource,
        store: EntityStore,
        status: StatusChannel,
        overlay: SearchOverlay | None = None,
    ) -> None:
        self.kind = kind
        self.source = source
        self.store = store
        self.status = status
        self.overlay = overlay if overlay is not None else SearchOverlay()

    # -- plumbing ----------------------------------------------------------

    async def _run(self, op: str, work: Callable[[], Awaitable[MutationResult]]) -> MutationResult:
        self.status.begin()
        try:
            result = await work()
        except CrewboardError as e:
            message = str(e) or f"Failed to {op} {self.kind.label.lower()}"
            logger.warning("coordinator: %s %s failed: %s", op, self.kind.kind, message)
            self.status.set_error(message)
            return MutationResult(ok=False, error=message)
        finally:
            self.status.end()
        if result.message:
            self.status.set_success(result.message)
        return result

    def _clean_name(self, name: str | None) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError(f"{self.kind.label} name cannot be empty!")
        return cleaned

    async def _refresh_one(self, entity_id: Any) -> dict[str, Any] | None:
        row = await self.source.fetch_one(self.kind, entity_id)
        if row is None:
            self.store.remove(entity_id)
            return None
        return self.store.upsert(project_row(self.kind, row), replace_relations=True)

    # -- reads -------------------------------------------------------------

    async def load(self) -> MutationResult:
        """Fetch the full listing and replace the store with it."""

        async def work() -> MutationResult:
            rows = await self.source.fetch(self.kind)
            records = project_rows(self.kind, rows)
            self.store.replace_all(records)
            logger.info("coordinator: loaded %d %s records", len(records), self.kind.kind)
            return MutationResult(ok=True, entities=self.store.list())

        return await self._run("fetch", work)

    async def choices(self) -> MutationResult:
        """{id, name} of every entity of the other kind, for assignment pickers."""

        async def work() -> MutationResult:
            rows = await self.source.fetch_summaries(self.kind.other)
            return MutationResult(ok=True, entities=rows)

        return await self._run("fetch", work)

    async def search(self, term: str | None) -> MutationResult:
        """
        Case-insensitive substring search on name.

        An empty term clears the overlay so the UI falls back to the main
        list. Results replace the overlay wholesale and never touch the store.
        """
        cleaned = (term or "").strip()
        if not cleaned:
            self.overlay.clear()
            return MutationResult(ok=True, entities=self.store.list())

        async def work() -> MutationResult:
            rows = await self.source.fetch(self.kind, name_filter=cleaned)
            results = project_rows(self.kind, rows)
            self.overlay.replace(cleaned, results)
            return MutationResult(ok=True, entities=results)

        return await self._run("search", work)

    # -- writes ------------------------------------------------------------

    async def create(self, name: str) -> MutationResult:
        async def work() -> MutationResult:
            cleaned = self._clean_name(name)
            row = await self.source.insert(self.kind, {"name": cleaned})
            record = {**row, self.kind.relation_field: []}
            if row["id"] not in self.store:
                self.store.upsert(record)
            message = f'{self.kind.label} "{row["name"]}" {self.kind.created_verb} successfully!'
            return MutationResult(ok=True, entity=self.store.get(row["id"]) or record, message=message)

        return await self._run("add", work)

    async def rename(self, entity_id: Any, name: str) -> MutationResult:
        async def work() -> MutationResult:
            cleaned = self._clean_name(name)
            row = await self.source.update(self.kind, entity_id, {"name": cleaned})
            if row is None:
                raise NotFoundError(f"{self.kind.label} not found")
            # Base rows carry no relation list: merge-preserve keeps the known one.
            record = self.store.upsert(row)
            message = f'{self.kind.label} "{row["name"]}" updated successfully!'
            return MutationResult(ok=True, entity=record, message=message)

        return await self._run("update", work)

    async def delete(self, entity_id: Any) -> MutationResult:
        async def work() -> MutationResult:
            await self.source.delete_assignments(self.kind, entity_id)
            deleted = await self.source.delete(self.kind, entity_id)
            if not deleted:
                raise NotFoundError(f"{self.kind.label} not found")
            self.store.remove(entity_id)
            return MutationResult(ok=True, message=f"{self.kind.label} deleted successfully!")

        return await self._run("delete", work)

    async def set_assignments(self, entity_id: Any, related_ids: list[Any]) -> MutationResult:
        """
        Replace the whole assignment set for entity_id with related_ids.

        An empty list clears every assignment. On success the entity is
        re-fetched and replaced wholesale; the store holds whatever the
        backend says, not a locally computed union.
        """

        async def work() -> MutationResult:
            await self.source.replace_assignments(self.kind, entity_id, list(related_ids))
            record = await self._refresh_one(entity_id)
            if record is None:
                raise RemoteReadError(f"{self.kind.label} not found")
            label = self.kind.other.label
            return MutationResult(ok=True, entity=record, message=f"{label}s assigned successfully!")

        return await self._run("assign", work)

    async def remove_assignments(self, entity_id: Any, subset_ids: list[Any]) -> MutationResult:
        """Delete only the (entity_id, x) pairs for x in subset_ids."""

        async def work() -> MutationResult:
            await self.source.delete_assignments(self.kind, entity_id, list(subset_ids))
            record = await self._refresh_one(entity_id)
            if record is None:
                raise RemoteReadError(f"{self.kind.label} not found")
            label = self.kind.other.label
            return MutationResult(ok=True, entity=record, message=f"{label}s removed successfully!")

        return await self._run("remove", work)
