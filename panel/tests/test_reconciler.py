"""
Tests for the realtime reconciler.

Covers:
  - Subscription lifecycle (connect, close, no delivery after close)
  - Base-table notifications: dedupe on insert, merge-preserve on update,
    idempotent delete, "another user" messages
  - Join-table notifications: authoritative re-fetch of the affected entity
  - Concurrent writers converging on the backend's state
"""

from __future__ import annotations

import pytest

from panel.datasource import CLOSED, CONNECTED, MemoryDataSource, Subscription
from panel.reconciler import Reconciler
from roster import events
from roster.types import EMPLOYEE, JOIN_TABLE, PROJECT


async def _noop(change):
    return None


# ---------------------------------------------------------------------------
# Subscription lifecycle
# ---------------------------------------------------------------------------


class TestSubscription:
    @pytest.mark.asyncio
    async def test_new_handle_is_disconnected(self):
        sub = Subscription("Employee", _noop)
        assert sub.state == "disconnected"
        assert not sub.connected

    @pytest.mark.asyncio
    async def test_dispatch_ignored_until_connected(self):
        seen = []

        async def handler(change):
            seen.append(change)

        sub = Subscription("Employee", handler)
        sub.mark_connecting()
        await sub.dispatch(events.inserted(EMPLOYEE, {"id": 1, "name": "A"}))
        assert seen == []
        sub.mark_connected()
        await sub.dispatch(events.inserted(EMPLOYEE, {"id": 1, "name": "A"}))
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self):
        closed = []

        async def on_close(sub):
            closed.append(sub)

        sub = Subscription("Employee", _noop, on_close=on_close)
        sub.mark_connected()
        await sub.close()
        await sub.close()
        assert sub.state == CLOSED
        assert len(closed) == 1


class TestReconcilerLifecycle:
    @pytest.mark.asyncio
    async def test_start_subscribes_to_base_and_join_tables(self, employee_sync):
        assert [s.table for s in employee_sync.subscriptions] == ["Employee", JOIN_TABLE]
        assert all(s.state == CONNECTED for s in employee_sync.subscriptions)
        assert employee_sync.connected

    @pytest.mark.asyncio
    async def test_start_twice_does_not_double_subscribe(self, source, employee_sync):
        await employee_sync.start()
        assert len(source._subscriptions["Employee"]) == 1

    @pytest.mark.asyncio
    async def test_no_delivery_after_stop(self, source, roster, status):
        sync = Reconciler(EMPLOYEE, source, roster.employees, status)
        await sync.start()
        subs = list(sync.subscriptions)
        await sync.stop()
        assert not sync.connected
        assert all(s.state == CLOSED for s in subs)

        await source.insert(EMPLOYEE, {"name": "Alice"})
        await source.deliver()
        assert len(roster.employees) == 0


# ---------------------------------------------------------------------------
# Base-table notifications
# ---------------------------------------------------------------------------


class TestBaseTableChanges:
    @pytest.mark.asyncio
    async def test_insert_from_another_user(self, source, employee_sync, roster, status):
        other = MemoryDataSource()
        other._subscriptions = source._subscriptions
        other._next_id = source._next_id
        await other.insert(EMPLOYEE, {"name": "Carol"})
        await other.deliver()

        assert roster.employees.list() == [{"id": 1, "name": "Carol", "projects": []}]
        assert status.success_message == 'New employee "Carol" added by another user'

    @pytest.mark.asyncio
    async def test_duplicate_insert_notifications_leave_one_record(self, source, employee_sync, roster):
        await source.insert(EMPLOYEE, {"name": "Alice"})
        source.pending.append(source.pending[0])
        await source.deliver()
        assert len(roster.employees) == 1

    @pytest.mark.asyncio
    async def test_update_preserves_relations(self, staffed, employee_ops, employee_sync, roster):
        await employee_ops.load()
        await staffed.update(EMPLOYEE, 1, {"name": "Alicia"})
        await staffed.deliver()
        assert roster.employees.get(1) == {
            "id": 1,
            "name": "Alicia",
            "projects": [{"id": 1, "name": "Apollo"}, {"id": 2, "name": "Gemini"}],
        }

    @pytest.mark.asyncio
    async def test_delete_from_another_user(self, staffed, employee_ops, employee_sync, roster, status):
        await employee_ops.load()
        await staffed.delete(EMPLOYEE, 2)
        await staffed.deliver()
        assert roster.employees.get(2) is None
        assert status.success_message == "Employee deleted by another user"

    @pytest.mark.asyncio
    async def test_delete_of_unknown_id_is_silent(self, source, employee_sync, roster, status):
        await employee_sync.handle(events.deleted(EMPLOYEE, {"id": 99}))
        assert len(roster.employees) == 0
        assert status.success_message is None

    @pytest.mark.asyncio
    async def test_malformed_change_is_dropped(self, employee_sync, roster, status):
        await employee_sync.handle(events.inserted(EMPLOYEE, {"name": "No id"}))
        assert len(roster.employees) == 0
        assert status.error is None

    @pytest.mark.asyncio
    async def test_other_kind_changes_ignored(self, source, employee_sync, roster):
        await source.insert(PROJECT, {"name": "Apollo"})
        await source.deliver()
        assert len(roster.employees) == 0


# ---------------------------------------------------------------------------
# Join-table notifications
# ---------------------------------------------------------------------------


class TestJoinTableChanges:
    @pytest.mark.asyncio
    async def test_assignment_refreshes_entity(self, staffed, employee_ops, employee_sync, roster):
        await employee_ops.load()
        await staffed.insert_assignments(EMPLOYEE, 2, [3])
        await staffed.deliver()
        assert roster.employees.get(2)["projects"] == [{"id": 3, "name": "Mercury"}]

    @pytest.mark.asyncio
    async def test_unassignment_refreshes_entity(self, staffed, employee_ops, employee_sync, roster):
        await employee_ops.load()
        await staffed.delete_assignments(EMPLOYEE, 1, [1])
        await staffed.deliver()
        assert roster.employees.get(1)["projects"] == [{"id": 2, "name": "Gemini"}]

    @pytest.mark.asyncio
    async def test_both_sides_refreshed_by_their_own_reconcilers(
        self, staffed, employee_ops, project_ops, employee_sync, project_sync, roster
    ):
        await employee_ops.load()
        await project_ops.load()
        await staffed.insert_assignments(EMPLOYEE, 2, [3])
        await staffed.deliver()
        assert roster.employees.get(2)["projects"] == [{"id": 3, "name": "Mercury"}]
        assert roster.projects.get(3)["employees"] == [{"id": 2, "name": "Bob"}]

    @pytest.mark.asyncio
    async def test_refresh_of_vanished_entity_removes_it(self, staffed, employee_ops, employee_sync, roster):
        await employee_ops.load()
        await employee_sync.handle(events.assigned(42, 1))
        assert roster.employees.get(42) is None
        assert len(roster.employees) == 2

    @pytest.mark.asyncio
    async def test_refresh_failure_reports_error(self, staffed, employee_ops, employee_sync, roster, status):
        await employee_ops.load()
        staffed.fail_on["fetch_one"] = "Failed to fetch employee"
        await employee_sync.handle(events.assigned(1, 3))
        assert status.error == "Failed to fetch employee"
        assert len(roster.employees.get(1)["projects"]) == 2


# ---------------------------------------------------------------------------
# Concurrent writers
# ---------------------------------------------------------------------------


class TestConvergence:
    @pytest.mark.asyncio
    async def test_concurrent_unassign_after_set_assignments(self, staffed, employee_ops, employee_sync, roster):
        """Another client drops (1, 2) right after we set [2, 3]: the store ends on the backend's answer."""
        await employee_ops.load()
        await employee_ops.set_assignments(1, [2, 3])
        await staffed.delete_assignments(EMPLOYEE, 1, [2])
        await staffed.deliver()
        assert roster.employees.get(1)["projects"] == [{"id": 3, "name": "Mercury"}]

    @pytest.mark.asyncio
    async def test_out_of_order_join_notifications(self, staffed, employee_ops, employee_sync, roster):
        await employee_ops.load()
        await employee_ops.set_assignments(1, [3])
        staffed.pending.reverse()
        await staffed.deliver()
        assert roster.employees.get(1)["projects"] == [{"id": 3, "name": "Mercury"}]

    @pytest.mark.asyncio
    async def test_create_rename_delete_echoes(self, source, employee_ops, employee_sync, roster):
        created = await employee_ops.create("Alice")
        entity_id = created.entity["id"]
        await employee_ops.rename(entity_id, "Alicia")
        await source.deliver()
        assert roster.employees.list() == [{"id": entity_id, "name": "Alicia", "projects": []}]

        await employee_ops.delete(entity_id)
        await source.deliver()
        assert len(roster.employees) == 0
