"""Tests for shiftbook.services.backup_service.

Coverage
--------
    1. export covers every collection and is audited after the snapshot
    2. export → change → import reproduces the exported records exactly
    3. import accepts table-name aliases
    4. malformed payloads are refused before anything is touched
    5. a storage failure during import rolls the whole replace back
"""

import pytest

from shiftbook.core.exceptions import ImportRejectedError, StorageError
from shiftbook.models.registry import COLLECTION_MODELS
from shiftbook.services.backup_service import (
    MSG_NOT_LIST,
    MSG_NOT_OBJECT,
    MSG_UNKNOWN_COLLECTIONS,
)

USER = {"id": "u1", "username": "ana", "role": "Usuario"}


def _seed(ctx, clock):
    ctx.users.add_user({"username": "ana", "password": "pw"}, actor="admin")
    emp = ctx.employees.add_employee({"name": "Pedro Soto", "area": "Planta"}, actor="admin").record
    ctx.time_records.clock_in(emp, actor="admin")
    ctx.logbook.start_shift(USER)
    ctx.logbook.add_log_entry("Novedad", USER)
    ctx.quick_notes.add_note("Nota", author="ana")
    clock.advance(minutes=10)


def _by_id(payload):
    return {name: sorted(records, key=lambda r: r["id"]) for name, records in payload.items()}


class TestExport:
    def test_export_contains_every_collection(self, ctx, clock):
        _seed(ctx, clock)
        payload = ctx.backup.export_database("admin")
        assert set(payload) == set(COLLECTION_MODELS)
        assert len(payload["employees"]) == 1
        assert payload["shiftReports"][0]["logEntries"][-1]["annotation"] == "Novedad"

    def test_export_audit_entry_is_not_in_the_snapshot(self, ctx, clock):
        _seed(ctx, clock)
        payload = ctx.backup.export_database("admin")
        assert "Database Exported" not in [e["action"] for e in payload["auditLogs"]]
        entry = ctx.audit.search("Database Exported")[0]
        assert entry["details"]["records"] == sum(len(v) for v in payload.values())


class TestImport:
    def test_round_trip(self, ctx, clock):
        _seed(ctx, clock)
        exported = ctx.backup.export_database("admin")
        ctx.employees.add_employee({"name": "Después del respaldo"}, actor="admin")

        counts = ctx.backup.import_database(exported, "admin")

        assert counts["employees"] == 1
        again = ctx.backup.export_database("admin")
        assert _by_id(again) == _by_id(exported)
        assert [e["name"] for e in ctx.employees.items] == ["Pedro Soto"]

    def test_aliases_are_normalised(self, ctx):
        counts = ctx.backup.import_database({
            "daily_time_records": [{"id": "t1", "employeeId": "EMP001"}],
            "employees": [{"id": "EMP001", "name": "Ana"}],
        })
        assert counts == {"dailyTimeRecords": 1, "employees": 1}
        assert ctx.store.get("dailyTimeRecords", "t1")["employeeId"] == "EMP001"

    @pytest.mark.parametrize("payload,message", [
        ([{"id": "x"}], MSG_NOT_OBJECT),
        ({"employees": [], "passwords": []}, MSG_UNKNOWN_COLLECTIONS),
        ({"employees": {"id": "EMP001"}}, MSG_NOT_LIST),
        ({"employees": [{"name": "sin id"}]}, MSG_NOT_LIST),
    ])
    def test_bad_payload_is_rejected_untouched(self, ctx, clock, payload, message):
        _seed(ctx, clock)
        before = _by_id(ctx.backup.export_database("admin"))
        with pytest.raises(ImportRejectedError) as exc_info:
            ctx.backup.import_database(payload, "admin")
        assert str(exc_info.value) == message
        assert _by_id({k: ctx.store.get_all(k) for k in ("employees", "shiftReports")}) == {
            k: before[k] for k in ("employees", "shiftReports")
        }
        assert ctx.audit.search("Database Import Failed")

    def test_unknown_collections_are_listed(self, ctx):
        with pytest.raises(ImportRejectedError) as exc_info:
            ctx.backup.import_database({"passwords": [], "secrets": []})
        assert exc_info.value.details == {"unknown": ["passwords", "secrets"]}

    def test_storage_failure_rolls_back(self, ctx, clock, fail_writes):
        _seed(ctx, clock)
        exported = ctx.backup.export_database("admin")
        with fail_writes("shiftReports"):
            with pytest.raises(StorageError):
                ctx.backup.import_database(exported, "admin")
        assert len(ctx.store.get_all("employees")) == 1
        assert len(ctx.store.get_all("shiftReports")) == 1
        assert ctx.audit.search("Database Import Failed")
