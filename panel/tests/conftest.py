"""
Pytest configuration and fixtures for the panel layer.

Everything runs against MemoryDataSource: writes queue change notifications,
and tests call `await source.deliver()` to let the realtime side catch up.
Postgres-backed tests skip unless DATABASE_URL is set.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from panel.coordinator import Coordinator
from panel.datasource import MemoryDataSource
from panel.models import Session
from panel.reconciler import Reconciler
from panel.search import SearchOverlay
from panel.status import StatusChannel
from roster.store import Roster
from roster.types import EMPLOYEE, PROJECT


@pytest.fixture
def source():
    return MemoryDataSource()


@pytest.fixture
def status():
    """Status channel with auto-clear disabled so assertions see the messages."""
    return StatusChannel(clear_after=0)


@pytest.fixture
def roster():
    return Roster()


@pytest.fixture
def employee_ops(source, roster, status):
    return Coordinator(EMPLOYEE, source, roster.employees, status, SearchOverlay())


@pytest.fixture
def project_ops(source, roster, status):
    return Coordinator(PROJECT, source, roster.projects, status, SearchOverlay())


@pytest_asyncio.fixture
async def employee_sync(source, roster, status):
    reconciler = Reconciler(EMPLOYEE, source, roster.employees, status)
    await reconciler.start()
    yield reconciler
    await reconciler.stop()


@pytest_asyncio.fixture
async def project_sync(source, roster, status):
    reconciler = Reconciler(PROJECT, source, roster.projects, status)
    await reconciler.start()
    yield reconciler
    await reconciler.stop()


@pytest_asyncio.fixture
async def staffed(source):
    """
    Employees 1 Alice, 2 Bob; projects 1 Apollo, 2 Gemini, 3 Mercury.
    Alice is on Apollo and Gemini. No notifications queued.
    """
    await source.seed(EMPLOYEE, "Alice", "Bob")
    await source.seed(PROJECT, "Apollo", "Gemini", "Mercury")
    await source.seed_assignments(EMPLOYEE, 1, [1, 2])
    return source


@pytest.fixture
def session():
    return Session(access_token="token", user_id="00000000-0000-0000-0000-000000000001", email="admin@example.com")
