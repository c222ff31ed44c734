"""
Roster kernel test configuration.

Kernel tests are synchronous and need no backend: stores are built directly
and changes come from roster.events.
"""

import pytest

from roster.store import EntityStore
from roster.types import EMPLOYEE, PROJECT


@pytest.fixture
def employees():
    return EntityStore(EMPLOYEE)


@pytest.fixture
def projects():
    return EntityStore(PROJECT)


@pytest.fixture
def alice(employees):
    """Employee 5 "Alice" assigned to project 1 "X"."""
    employees.upsert({"id": 5, "name": "Alice", "projects": [{"id": 1, "name": "X"}]})
    return employees
