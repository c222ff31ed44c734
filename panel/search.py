"""
Search overlay — a filtered result list held beside the main store.

The overlay never writes to the EntityStore. A new search replaces the
previous results wholesale; clearing it makes the UI fall back to the main
list.
"""

from __future__ import annotations

import copy
from typing import Any

from roster.store import EntityStore


class SearchOverlay:
    """Non-authoritative search results for one entity kind."""

    def __init__(self) -> None:
        self.term: str | None = None
        self._results: list[dict[str, Any]] | None = None

    @property
    def active(self) -> bool:
        return self._results is not None

    @property
    def results(self) -> list[dict[str, Any]]:
        return copy.deepcopy(self._results) if self._results is not None else []

    def replace(self, term: str, results: list[dict[str, Any]]) -> None:
        self.term = term
        self._results = copy.deepcopy(results)

    def clear(self) -> None:
        self.term = None
        self._results = None

    def visible(self, store: EntityStore) -> list[dict[str, Any]]:
        """What the UI should show: search results if searching, else the main list."""
        if self._results is not None:
            return self.results
        return store.list()
