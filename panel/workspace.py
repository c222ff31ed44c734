"""
Workspace — what the UI layer talks to.

Owns one Roster (both entity stores), one status channel, a search overlay
and a coordinator per kind, and a reconciler per kind. Opening requires a
valid session; the stores start empty and are thrown away on close.

Usage:
    auth = AuthClient()
    async with await Workspace.connect(auth) as ws:
        await ws.employee_ops.create("Alice")
        ws.visible_employees()
    await auth.close()

The AuthClient belongs to the caller: closing the workspace leaves it open
so the caller can still sign out.
"""

from __future__ import annotations

import logging
from typing import Any

from panel.auth import AuthClient
from panel.coordinator import Coordinator
from panel.datasource import DataSource
from panel.errors import SessionRequired
from panel.models import Session
from panel.postgres_source import PostgresDataSource
from panel.reconciler import Reconciler
from panel.search import SearchOverlay
from panel.status import StatusChannel
from roster.store import Roster
from roster.types import EMPLOYEE, PROJECT

logger = logging.getLogger(__name__)


class Workspace:
    """One signed-in panel session."""

    def __init__(
        self,
        source: DataSource,
        auth: AuthClient | None = None,
        status: StatusChannel | None = None,
    ) -> None:
        self.source = source
        self.auth = auth
        self.status = status or StatusChannel()
        self.roster = Roster()
        self.session: Session | None = None

        self.employee_search = SearchOverlay()
        self.project_search = SearchOverlay()

        self.employee_ops = Coordinator(EMPLOYEE, source, self.roster.employees, self.status, self.employee_search)
        self.project_ops = Coordinator(PROJECT, source, self.roster.projects, self.status, self.project_search)

        self.reconcilers = [
            Reconciler(EMPLOYEE, source, self.roster.employees, self.status),
            Reconciler(PROJECT, source, self.roster.projects, self.status),
        ]

    @classmethod
    async def connect(cls, auth: AuthClient, dsn: str | None = None) -> Workspace:
        """Open a workspace against Postgres for the persisted session."""
        session = await auth.current_session()
        if session is None:
            raise SessionRequired("Sign in to continue")
        source = PostgresDataSource(user_id=session.user_id, dsn=dsn)
        await source.open()
        workspace = cls(source, auth=auth)
        try:
            await workspace.open(session)
        except BaseException:
            await workspace.close()
            raise
        return workspace

    async def open(self, session: Session | None = None) -> None:
        """
        Check the session gate, start listening, then load both listings.

        Subscribing before the first listing means a change committed in
        between is seen twice at worst, never missed.
        """
        if session is None and self.auth is not None:
            session = await self.auth.current_session()
        if session is None or not session.is_valid():
            raise SessionRequired("Sign in to continue")
        self.session = session

        for reconciler in self.reconcilers:
            await reconciler.start()
        await self.employee_ops.load()
        await self.project_ops.load()
        logger.info(
            "workspace: opened with %d employees and %d projects",
            len(self.roster.employees),
            len(self.roster.projects),
        )

    async def close(self) -> None:
        for reconciler in self.reconcilers:
            await reconciler.stop()
        await self.source.close()
        self.status.clear()
        self.roster.employees.clear()
        self.roster.projects.clear()
        self.employee_search.clear()
        self.project_search.clear()
        self.session = None

    async def __aenter__(self) -> Workspace:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- read accessors ----------------------------------------------------

    @property
    def is_open(self) -> bool:
        return self.session is not None

    def employees(self) -> list[dict[str, Any]]:
        return self.roster.employees.list()

    def projects(self) -> list[dict[str, Any]]:
        return self.roster.projects.list()

    def visible_employees(self) -> list[dict[str, Any]]:
        return self.employee_search.visible(self.roster.employees)

    def visible_projects(self) -> list[dict[str, Any]]:
        return self.project_search.visible(self.roster.projects)
