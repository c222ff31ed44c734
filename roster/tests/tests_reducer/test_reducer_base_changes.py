"""
Change Reducer -- Base Table Tests

Base-table notifications are applied straight to the store.

Covers:
  - INSERT of an unknown id adds it with an empty relation list + info message
  - INSERT of a known id (echo of our own create) is a silent no-op
  - UPDATE merge-preserves the relation list
  - UPDATE of an unknown id inserts it
  - DELETE removes and reports; DELETE of an unknown id is a no-op
  - Audit columns on the row are not cached
  - Both orders of "local apply" vs "notification" converge
"""

from roster.events import deleted, inserted, updated
from roster.reducer import reduce, reduce_all
from roster.types import EMPLOYEE, PROJECT


class TestInsert:
    def test_unknown_id_added(self, employees):
        r = reduce(employees, inserted(EMPLOYEE, {"id": 1, "name": "Alice"}))
        assert r.accepted and r.changed
        assert employees.get(1) == {"id": 1, "name": "Alice", "projects": []}
        assert r.message == 'New employee "Alice" added by another user'

    def test_project_message(self, projects):
        r = reduce(projects, inserted(PROJECT, {"id": 1, "name": "Apollo"}))
        assert r.message == 'New project "Apollo" added by another user'

    def test_known_id_is_deduped(self, alice):
        before = alice.list()
        r = reduce(alice, inserted(EMPLOYEE, {"id": 5, "name": "Alice"}))
        assert r.accepted
        assert not r.changed
        assert r.message is None
        assert "ALREADY_PRESENT" in r.reason
        assert alice.list() == before

    def test_insert_echo_does_not_wipe_relations(self, alice):
        reduce(alice, inserted(EMPLOYEE, {"id": 5, "name": "Alice"}))
        assert alice.get(5)["projects"] == [{"id": 1, "name": "X"}]

    def test_audit_columns_not_cached(self, employees):
        reduce(employees, inserted(EMPLOYEE, {"id": 1, "name": "A", "created_at": "2026-10-18T00:00:00Z"}))
        assert set(employees.get(1)) == {"id", "name", "projects"}


class TestUpdate:
    def test_merge_preserve(self, alice):
        r = reduce(alice, updated(EMPLOYEE, {"id": 5, "name": "Bob"}, {"id": 5, "name": "Alice"}))
        assert r.accepted and r.changed
        assert alice.get(5) == {"id": 5, "name": "Bob", "projects": [{"id": 1, "name": "X"}]}

    def test_update_never_touches_relations_even_if_row_has_some(self, alice):
        reduce(alice, updated(EMPLOYEE, {"id": 5, "name": "Bob", "projects": []}))
        assert alice.get(5)["projects"] == [{"id": 1, "name": "X"}]

    def test_update_without_name_keeps_stored_name(self, alice):
        reduce(alice, updated(EMPLOYEE, {"id": 5, "created_at": "2026-10-18T00:00:00Z"}))
        assert alice.get(5) == {"id": 5, "name": "Alice", "projects": [{"id": 1, "name": "X"}]}

    def test_update_unknown_id_inserts(self, employees):
        reduce(employees, updated(EMPLOYEE, {"id": 2, "name": "Zed"}))
        assert employees.get(2) == {"id": 2, "name": "Zed", "projects": []}

    def test_update_has_no_message(self, alice):
        assert reduce(alice, updated(EMPLOYEE, {"id": 5, "name": "Bob"})).message is None


class TestDelete:
    def test_delete_present(self, alice):
        r = reduce(alice, deleted(EMPLOYEE, {"id": 5, "name": "Alice"}))
        assert r.accepted and r.changed
        assert alice.get(5) is None
        assert r.message == "Employee deleted by another user"

    def test_delete_absent_is_noop(self, employees):
        r = reduce(employees, deleted(EMPLOYEE, {"id": 5}))
        assert r.accepted
        assert not r.changed
        assert r.message is None

    def test_delete_twice(self, alice):
        reduce_all(alice, [deleted(EMPLOYEE, {"id": 5}), deleted(EMPLOYEE, {"id": 5})])
        assert len(alice) == 0


class TestOrderings:
    def test_local_apply_then_echo(self, employees):
        # The create call returned first and applied its row...
        employees.upsert({"id": 1, "name": "Alice", "projects": []})
        # ...then the realtime echo of the same insert arrives.
        reduce(employees, inserted(EMPLOYEE, {"id": 1, "name": "Alice"}))
        assert employees.list() == [{"id": 1, "name": "Alice", "projects": []}]

    def test_echo_then_local_apply(self, employees):
        reduce(employees, inserted(EMPLOYEE, {"id": 1, "name": "Alice"}))
        employees.upsert({"id": 1, "name": "Alice"})
        assert employees.list() == [{"id": 1, "name": "Alice", "projects": []}]

    def test_rename_both_orders(self, alice):
        # notification first, then the rename result
        reduce(alice, updated(EMPLOYEE, {"id": 5, "name": "Bob"}))
        alice.upsert({"id": 5, "name": "Bob"})
        first = alice.list()

        alice.upsert({"id": 5, "name": "Alice"})
        # rename result first, then the notification
        alice.upsert({"id": 5, "name": "Bob"})
        reduce(alice, updated(EMPLOYEE, {"id": 5, "name": "Bob"}))
        assert alice.list() == first == [{"id": 5, "name": "Bob", "projects": [{"id": 1, "name": "X"}]}]
