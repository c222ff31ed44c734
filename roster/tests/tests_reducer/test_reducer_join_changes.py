"""
Change Reducer -- Join Table and Rejection Tests

Join-table notifications never patch relation lists locally; they name the
entity on the store's own side that must be re-fetched.

Covers:
  - Join INSERT/DELETE → refresh signal with this kind's foreign key
  - Employee store refreshes emp_id, project store refreshes project_id
  - Store contents untouched by join changes
  - Missing foreign key, unknown type, other table, missing id → rejected
"""

from roster.events import assigned, inserted, make_change, unassigned
from roster.reducer import reduce
from roster.types import EMPLOYEE, JOIN_TABLE, PROJECT


class TestJoinRefresh:
    def test_assign_refreshes_employee_side(self, alice):
        before = alice.list()
        r = reduce(alice, assigned(5, 10))
        assert r.accepted
        assert r.refresh == 5
        assert not r.changed
        assert alice.list() == before

    def test_assign_refreshes_project_side(self, projects):
        r = reduce(projects, assigned(5, 10))
        assert r.refresh == 10

    def test_unassign_uses_old_row(self, alice):
        r = reduce(alice, unassigned(5, 1))
        assert r.refresh == 5
        assert alice.get(5)["projects"] == [{"id": 1, "name": "X"}]

    def test_refresh_for_unknown_entity_still_signalled(self, employees):
        assert reduce(employees, assigned(42, 1)).refresh == 42


class TestRejections:
    def test_join_change_without_fk(self, employees):
        r = reduce(employees, make_change(JOIN_TABLE, "DELETE", old_record={"project_id": 1}))
        assert not r.accepted
        assert "MISSING_FK" in r.reason

    def test_unknown_type(self, employees):
        r = reduce(employees, make_change(EMPLOYEE.table, "TRUNCATE"))
        assert not r.accepted
        assert "UNKNOWN_TYPE" in r.reason

    def test_other_table(self, employees):
        r = reduce(employees, inserted(PROJECT, {"id": 1, "name": "Apollo"}))
        assert not r.accepted
        assert "WRONG_TABLE" in r.reason
        assert len(employees) == 0

    def test_missing_id(self, employees):
        r = reduce(employees, make_change(EMPLOYEE.table, "INSERT", record={"name": "Nobody"}))
        assert not r.accepted
        assert "MISSING_ID" in r.reason
        assert len(employees) == 0
