"""Tests for shiftbook.services.shift_lifecycle.

Coverage
--------
    1. start_shift draws a zero-padded folio and seeds the start annotation
    2. default shift name: DÍA 08:00-19:59, NOCHE otherwise
    3. only one shift may be open; closing twice is rejected
    4. a failed start does not consume the folio; a failed close leaves the shift open
    5. entries are kept sorted by timestamp; close appends the close annotation
    6. supplier entries validate required fields and paxCount
    7. entries cannot be added without an open shift
    8. the responsible user is clocked in when scheduled for the day
"""

from datetime import datetime

import pytest

from shiftbook.models.base import SYNC_PENDING
from shiftbook.models.logbook import SHIFT_CLOSED, SHIFT_OPEN
from shiftbook.services.settings_registry import FOLIO_COUNTER
from shiftbook.services.shift_lifecycle import (
    CLOSE_ANNOTATION,
    MSG_BAD_PAX,
    MSG_ENTRY_NOT_FOUND,
    MSG_NO_OPEN_SHIFT,
    MSG_SUPPLIER_REQUIRED,
    START_ANNOTATION,
    default_shift_name,
)

USER = {"id": "u1", "username": "ana", "role": "Usuario"}

SUPPLIER = {"licensePlate": "abcd12", "driverName": "Juan", "company": "Gas Sur",
            "reason": "Entrega", "paxCount": "2"}


def _start(ctx, user=USER, **kwargs):
    result = ctx.logbook.start_shift(user, **kwargs)
    assert result.ok, result.message
    return result.record


class TestLifecycle:
    def test_start_then_close_with_sorted_entries(self, ctx, clock):
        ctx.settings.set_value(FOLIO_COUNTER, 7)
        report = _start(ctx)
        assert report["folio"] == "007"
        assert report["shiftName"] == "DÍA"
        assert report["responsibleUser"] == "ana"
        assert ctx.settings.get_value(FOLIO_COUNTER) == 8

        ctx.logbook.add_log_entry("Novedad A", USER, at=datetime(2024, 5, 21, 10, 0))
        ctx.logbook.add_log_entry("Novedad B", USER, at=datetime(2024, 5, 21, 9, 30))
        clock.set(datetime(2024, 5, 21, 20, 0))
        closed = ctx.logbook.close_shift(USER).record

        annotations = [e["annotation"] for e in closed["logEntries"]]
        assert annotations == [START_ANNOTATION, "Novedad B", "Novedad A", CLOSE_ANNOTATION]
        assert [e["time"] for e in closed["logEntries"]] == ["08:00", "09:30", "10:00", "20:00"]
        assert closed["status"] == SHIFT_CLOSED
        assert closed["endTime"].endswith("Z")
        stored = ctx.store.get("shiftReports", report["id"])
        assert stored["status"] == SHIFT_CLOSED
        assert stored["syncStatus"] == SYNC_PENDING
        assert ctx.reports.open_shift() is None
        assert [r["id"] for r in ctx.reports.closed_reports("2024-05-21")] == [report["id"]]

    @pytest.mark.parametrize("hour,expected", [(8, "DÍA"), (19, "DÍA"), (20, "NOCHE"), (3, "NOCHE")])
    def test_default_shift_name(self, hour, expected):
        assert default_shift_name(datetime(2024, 5, 21, hour, 59)) == expected

    def test_night_start_uses_noche(self, ctx, clock):
        clock.set(datetime(2024, 5, 21, 21, 15))
        assert _start(ctx)["shiftName"] == "NOCHE"

    def test_explicit_name_wins(self, ctx):
        assert _start(ctx, shift_name=" Turno Especial ")["shiftName"] == "Turno Especial"

    def test_second_start_rejected_while_open(self, ctx):
        first = _start(ctx)
        result = ctx.logbook.start_shift(USER)
        assert not result
        assert first["folio"] in result.message

    def test_close_twice_rejected(self, ctx):
        _start(ctx)
        assert ctx.logbook.close_shift(USER).ok
        assert ctx.logbook.close_shift(USER).message == MSG_NO_OPEN_SHIFT

    def test_failed_start_keeps_folio(self, ctx, fail_writes):
        ctx.settings.set_value(FOLIO_COUNTER, 7)
        with fail_writes("shiftReports"):
            result = ctx.logbook.start_shift(USER)
        assert result.storage_failure
        assert ctx.settings.get_value(FOLIO_COUNTER) == 7
        assert ctx.reports.open_shift() is None
        assert ctx.audit.search("Shift Start Failed")
        assert _start(ctx)["folio"] == "007"

    def test_failed_close_keeps_shift_open(self, ctx, fail_writes):
        report = _start(ctx)
        with fail_writes("shiftReports"):
            result = ctx.logbook.close_shift(USER)
        assert result.storage_failure
        assert ctx.reports.open_shift()["id"] == report["id"]
        assert ctx.store.get("shiftReports", report["id"])["status"] == SHIFT_OPEN
        assert ctx.audit.search("Shift Close Failed")
        assert ctx.logbook.close_shift(USER).ok

    def test_folios_increase_across_shifts(self, ctx, clock):
        first = _start(ctx)
        ctx.logbook.close_shift(USER)
        clock.advance(minutes=1)
        second = _start(ctx)
        assert (first["folio"], second["folio"]) == ("001", "002")


class TestEntries:
    def test_no_open_shift_rejects_entries(self, ctx):
        assert ctx.logbook.add_log_entry("x", USER).message == MSG_NO_OPEN_SHIFT
        assert ctx.logbook.add_supplier_entry(SUPPLIER, USER).message == MSG_NO_OPEN_SHIFT

    def test_edit_and_delete_log_entry(self, ctx):
        _start(ctx)
        entry = ctx.logbook.add_log_entry("Original", USER).record["logEntries"][-1]
        edited = ctx.logbook.edit_log_entry(entry["id"], "Corregida", USER).record
        match = [e for e in edited["logEntries"] if e["id"] == entry["id"]][0]
        assert match["annotation"] == "Corregida"
        assert match["timestamp"] == entry["timestamp"]
        after = ctx.logbook.delete_log_entry(entry["id"], USER).record
        assert entry["id"] not in [e["id"] for e in after["logEntries"]]
        assert ctx.logbook.delete_log_entry(entry["id"], USER).message == MSG_ENTRY_NOT_FOUND

    def test_supplier_entry_is_normalised(self, ctx):
        _start(ctx)
        report = ctx.logbook.add_supplier_entry(SUPPLIER, USER).record
        entry = report["supplierEntries"][0]
        assert entry["licensePlate"] == "ABCD12"
        assert entry["paxCount"] == 2
        assert entry["time"] == "08:00"

    @pytest.mark.parametrize("override,message", [
        ({"driverName": "  "}, MSG_SUPPLIER_REQUIRED),
        ({"reason": None}, MSG_SUPPLIER_REQUIRED),
        ({"paxCount": -1}, MSG_BAD_PAX),
        ({"paxCount": "dos"}, MSG_BAD_PAX),
    ])
    def test_supplier_validation(self, ctx, override, message):
        _start(ctx)
        result = ctx.logbook.add_supplier_entry({**SUPPLIER, **override}, USER)
        assert result.message == message

    def test_edit_supplier_replaces_mutable_fields(self, ctx):
        _start(ctx)
        entry = ctx.logbook.add_supplier_entry(SUPPLIER, USER).record["supplierEntries"][0]
        changed = {k: v for k, v in SUPPLIER.items() if k != "paxCount"}
        changed["company"] = "Agua Norte"
        report = ctx.logbook.edit_supplier_entry(entry["id"], changed, USER).record
        updated = report["supplierEntries"][0]
        assert updated["company"] == "Agua Norte"
        assert "paxCount" not in updated
        assert updated["id"] == entry["id"]


class TestAutoClockIn:
    def _schedule(self, ctx):
        schedules = [
            {"startTime": "08:00", "endTime": "17:00", "isOffDay": False,
             "hasColacion": True, "colacionMinutes": 60}
            for _ in range(5)
        ] + [{"isOffDay": True}, {"isOffDay": True}]
        pattern = ctx.patterns.add_pattern(
            {"name": "5x2", "cycleLengthDays": 7, "dailySchedules": schedules}, actor="admin",
        ).record
        employee = ctx.employees.add_employee({"name": "Ana Pérez"}, actor="admin").record
        ctx.assignments.assign_shift(
            employee, {"shiftPatternId": pattern["id"], "startDate": "2024-05-20"}, actor="admin",
        )
        return employee

    def test_scheduled_user_is_clocked_in(self, ctx):
        employee = self._schedule(ctx)
        _start(ctx, {**USER, "employeeId": employee["id"]})
        punch = ctx.time_records.open_punch_for(employee["id"])
        assert punch is not None
        assert punch["entrada"] == "2024-05-21T08:00"
        assert ctx.audit.search("Auto Clock-In on Shift Start")

    def test_off_day_does_not_clock_in(self, ctx, clock):
        employee = self._schedule(ctx)
        clock.set(datetime(2024, 5, 25, 8, 0))  # cycle day 5, off
        _start(ctx, {**USER, "employeeId": employee["id"]})
        assert ctx.time_records.open_punch_for(employee["id"]) is None

    def test_too_early_does_not_clock_in(self, ctx, clock):
        employee = self._schedule(ctx)
        clock.set(datetime(2024, 5, 21, 7, 0))
        _start(ctx, {**USER, "employeeId": employee["id"]})
        assert ctx.time_records.open_punch_for(employee["id"]) is None

    def test_unlinked_user_is_not_clocked_in(self, ctx):
        self._schedule(ctx)
        _start(ctx)
        assert ctx.store.count("dailyTimeRecords") == 0
