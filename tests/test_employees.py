"""Tests for shiftbook.repositories.employees.

Coverage
--------
    1. add_employee assigns EMP001, EMP002 … from the persisted counter
    2. a failed insert does not consume an id; ids already stored are skipped
    3. toggle_employee_status flips isActive and audits the direction
    4. soft delete tombstones the record and hides it from the cache
    5. soft delete is blocked by punches or assignments
"""

from shiftbook.repositories.employees import (
    MSG_HAS_ASSIGNMENTS,
    MSG_HAS_RECORDS,
    MSG_NAME_REQUIRED,
)
from shiftbook.services.settings_registry import EMPLOYEE_ID_COUNTER


def _make_employee(ctx, name="Pedro Soto", **extra):
    result = ctx.employees.add_employee({"name": name, **extra}, actor="admin")
    assert result.ok, result.message
    return result.record


class TestAddEmployee:
    def test_sequential_ids(self, ctx):
        first = _make_employee(ctx, "Ana")
        second = _make_employee(ctx, "Bea")
        assert (first["id"], second["id"]) == ("EMP001", "EMP002")
        assert ctx.settings.get_value(EMPLOYEE_ID_COUNTER) == 3

    def test_fields_are_trimmed(self, ctx):
        emp = _make_employee(ctx, "  Ana  ", position=" Operador ", area="Planta")
        assert emp["name"] == "Ana"
        assert emp["position"] == "Operador"
        assert emp["isActive"] is True

    def test_name_required(self, ctx):
        result = ctx.employees.add_employee({"name": "   "}, actor="admin")
        assert result.message == MSG_NAME_REQUIRED
        assert ctx.settings.get_value(EMPLOYEE_ID_COUNTER) is None

    def test_failed_insert_does_not_consume_id(self, ctx, fail_writes):
        with fail_writes("employees"):
            result = ctx.employees.add_employee({"name": "Ana"}, actor="admin")
        assert result.storage_failure
        assert ctx.settings.get_value(EMPLOYEE_ID_COUNTER) is None
        assert _make_employee(ctx, "Ana")["id"] == "EMP001"
        assert ctx.audit.search("Employee Add Failed")

    def test_lagging_counter_skips_taken_ids(self, ctx):
        # EMP001 arrived from the server; this device never drew an id
        ctx.store.put("employees", {
            "id": "EMP001", "name": "Persona Sincronizada", "isActive": True,
            "syncStatus": "synced", "isDeleted": False, "lastModified": 1,
        })
        emp = _make_employee(ctx, "Nuevo Ingreso")
        assert emp["id"] == "EMP002"
        assert ctx.store.get("employees", "EMP001")["name"] == "Persona Sincronizada"
        assert ctx.settings.get_value(EMPLOYEE_ID_COUNTER) == 3


class TestStatusAndDelete:
    def test_toggle_status(self, ctx):
        emp = _make_employee(ctx)
        result = ctx.employees.toggle_employee_status(emp["id"], actor="admin")
        assert result.record["isActive"] is False
        assert ctx.audit.search("Employee Deactivated")
        result = ctx.employees.toggle_employee_status(emp["id"], actor="admin")
        assert result.record["isActive"] is True
        assert ctx.audit.search("Employee Activated")

    def test_inactive_sorted_last(self, ctx):
        a = _make_employee(ctx, "Ana")
        _make_employee(ctx, "Bea")
        ctx.employees.toggle_employee_status(a["id"], actor="admin")
        assert [e["name"] for e in ctx.employees.items] == ["Bea", "Ana"]
        assert [e["name"] for e in ctx.employees.active_employees()] == ["Bea"]

    def test_soft_delete_tombstones(self, ctx):
        emp = _make_employee(ctx)
        assert ctx.employees.soft_delete_employee(emp["id"], actor="admin").ok
        stored = ctx.store.get("employees", emp["id"])
        assert stored["isDeleted"] is True
        assert stored["isActive"] is False
        assert ctx.employees.get_employee(emp["id"]) is None
        assert ctx.employees.load() == []

    def test_soft_delete_blocked_by_time_records(self, ctx):
        emp = _make_employee(ctx)
        assert ctx.time_records.clock_in(emp, actor="admin").ok
        result = ctx.employees.soft_delete_employee(emp["id"], actor="admin")
        assert result.message == MSG_HAS_RECORDS
        assert ctx.store.get("employees", emp["id"])["isDeleted"] is False

    def test_soft_delete_blocked_by_assignments(self, ctx):
        emp = _make_employee(ctx)
        ctx.store.put("assignedShifts", {
            "id": "as1", "employeeId": emp["id"], "shiftPatternId": "p1",
            "startDate": "2024-05-01",
        })
        result = ctx.employees.soft_delete_employee(emp["id"], actor="admin")
        assert result.message == MSG_HAS_ASSIGNMENTS
