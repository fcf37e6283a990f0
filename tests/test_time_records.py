"""Tests for shiftbook.repositories.time_records.

Coverage
--------
    1. clock_in creates an open punch with display string and timestamp
    2. punches closer than 3 minutes are rejected
    3. clock_in over an open punch closes it with SIN REGISTRO
    4. clock_out without an open punch creates an entrada-less record
    5. edit_record parses YYYY-MM-DDTHH:MM and rejects salida < entrada
    6. load only keeps the last 31 days
"""

from datetime import datetime

from shiftbook.models.workforce import MISSING_PUNCH
from shiftbook.repositories.time_records import (
    MSG_BAD_FORMAT,
    MSG_SALIDA_BEFORE_ENTRADA,
    MSG_TOO_SOON,
)
from shiftbook.utils.timeutils import to_ms


def _make_employee(ctx, name="Pedro Soto"):
    return ctx.employees.add_employee({"name": name, "area": "Planta"}, actor="admin").record


class TestPunchWorkflow:
    def test_clock_in_opens_punch(self, ctx, clock):
        emp = _make_employee(ctx)
        result = ctx.time_records.clock_in(emp, actor="admin")
        record = result.record
        assert record["entrada"] == "2024-05-21T08:00"
        assert record["entradaTimestamp"] == clock()
        assert record["date"] == "2024-05-21"
        assert record["employeeArea"] == "Planta"
        assert "salida" not in record
        assert ctx.time_records.open_punch_for(emp["id"])["id"] == record["id"]

    def test_second_punch_within_three_minutes_rejected(self, ctx, clock):
        emp = _make_employee(ctx)
        ctx.time_records.clock_in(emp, actor="admin")
        clock.advance(minutes=2)
        result = ctx.time_records.clock_out(emp, actor="admin")
        assert result.message == MSG_TOO_SOON

    def test_clock_out_closes_open_punch(self, ctx, clock):
        emp = _make_employee(ctx)
        opened = ctx.time_records.clock_in(emp, actor="admin").record
        clock.advance(minutes=540)
        closed = ctx.time_records.clock_out(emp, actor="admin").record
        assert closed["id"] == opened["id"]
        assert closed["salida"] == "2024-05-21T17:00"
        assert ctx.time_records.open_punch_for(emp["id"]) is None
        assert ctx.audit.search("Clock Out Success")

    def test_clock_in_over_open_punch_auto_closes_it(self, ctx, clock):
        emp = _make_employee(ctx)
        stale = ctx.time_records.clock_in(emp, actor="admin").record
        clock.advance(days=1)
        fresh = ctx.time_records.clock_in(emp, actor="admin").record
        old = ctx.store.get("dailyTimeRecords", stale["id"])
        assert old["salida"] == MISSING_PUNCH
        assert "salidaTimestamp" not in old
        assert ctx.time_records.open_punch_for(emp["id"])["id"] == fresh["id"]
        assert ctx.audit.search("Missed Clock-Out Auto-Closed")

    def test_clock_out_without_entrada(self, ctx):
        emp = _make_employee(ctx)
        record = ctx.time_records.clock_out(emp, actor="admin").record
        assert record["entrada"] == MISSING_PUNCH
        assert record["salida"] == "2024-05-21T08:00"
        assert ctx.audit.search("Missed Clock-In Auto-Created With Salida")

    def test_failed_clock_in_leaves_no_trace(self, ctx, fail_writes):
        emp = _make_employee(ctx)
        with fail_writes("dailyTimeRecords"):
            result = ctx.time_records.clock_in(emp, actor="admin")
        assert result.storage_failure
        assert ctx.time_records.items == []
        assert ctx.audit.search("Clock In Failed")


class TestCorrections:
    def test_edit_record_sets_both_punches(self, ctx):
        emp = _make_employee(ctx)
        record = ctx.time_records.clock_in(emp, actor="admin").record
        result = ctx.time_records.edit_record(
            record["id"], {"entrada": "2024-05-20T22:00", "salida": "2024-05-21T06:00"}, actor="admin",
        )
        assert result.ok
        assert result.record["entradaTimestamp"] == to_ms(datetime(2024, 5, 20, 22, 0))
        assert result.record["salidaTimestamp"] == to_ms(datetime(2024, 5, 21, 6, 0))
        assert result.record["date"] == "2024-05-20"
        entry = ctx.audit.search("Time Record Edited")[0]
        assert entry["details"]["old"]["entrada"] == "2024-05-21T08:00"

    def test_salida_before_entrada_rejected(self, ctx):
        emp = _make_employee(ctx)
        record = ctx.time_records.clock_in(emp, actor="admin").record
        result = ctx.time_records.edit_record(record["id"], {"salida": "2024-05-21T07:00"}, actor="admin")
        assert result.message == MSG_SALIDA_BEFORE_ENTRADA

    def test_bad_format_rejected(self, ctx):
        emp = _make_employee(ctx)
        record = ctx.time_records.clock_in(emp, actor="admin").record
        result = ctx.time_records.edit_record(record["id"], {"entrada": "21/05/2024 08:00"}, actor="admin")
        assert result.message == MSG_BAD_FORMAT

    def test_missing_punch_clears_timestamp(self, ctx):
        emp = _make_employee(ctx)
        record = ctx.time_records.clock_in(emp, actor="admin").record
        result = ctx.time_records.edit_record(record["id"], {"entrada": MISSING_PUNCH}, actor="admin")
        assert result.record["entrada"] == MISSING_PUNCH
        assert "entradaTimestamp" not in result.record

    def test_delete_record(self, ctx):
        emp = _make_employee(ctx)
        record = ctx.time_records.clock_in(emp, actor="admin").record
        assert ctx.time_records.delete_record(record["id"], actor="admin").ok
        assert ctx.store.get("dailyTimeRecords", record["id"]) is None


class TestRecentWindow:
    def test_load_skips_punches_older_than_31_days(self, ctx, clock):
        emp = _make_employee(ctx)
        old = ctx.time_records.clock_in(emp, actor="admin").record
        clock.advance(minutes=60)
        ctx.time_records.clock_out(emp, actor="admin")
        clock.advance(days=40)
        recent = ctx.time_records.clock_in(emp, actor="admin").record
        ids = [r["id"] for r in ctx.time_records.load()]
        assert ids == [recent["id"]]
        assert old["id"] in [r["id"] for r in ctx.time_records.records_for(emp["id"])]
