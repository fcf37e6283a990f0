"""Tests for shiftbook.services.durable_store.

Coverage
--------
    1. put/get round-trip in wire form, None fields omitted
    2. put is an upsert; missing keys fall back to column defaults
    3. unknown collection / index / missing id raise ValueError
    4. index equality and range lookups
    5. delete of a missing id is a no-op; clear empties the collection
    6. transaction() commits once or rolls back everything; a savepoint fails alone
    7. a failing write surfaces as StorageError and leaves nothing behind
    8. device-local state get/set
    9. transaction depth is tracked per thread
"""

import threading
from unittest.mock import MagicMock

import pytest

from shiftbook.core.exceptions import StorageError
from shiftbook.models.base import SYNC_PENDING, SYNC_SYNCED
from shiftbook.services.durable_store import DurableStore


def _user(uid="u1", username="ana", **extra):
    return {"id": uid, "username": username, "password": "x", "role": "Usuario",
            "lastModified": 1, "syncStatus": SYNC_PENDING, "isDeleted": False, **extra}


def _punch(rid, employee_id="EMP001", entrada_ts=None, **extra):
    record = {"id": rid, "employeeId": employee_id, "date": "2024-05-21",
              "lastModified": 1, "syncStatus": SYNC_PENDING, "isDeleted": False, **extra}
    if entrada_ts is not None:
        record["entrada"] = "2024-05-21T08:00"
        record["entradaTimestamp"] = entrada_ts
    return record


class TestReadsAndWrites:
    """Basic collection access."""

    def test_put_then_get_returns_wire_dict(self, ctx):
        ctx.store.put("users", _user())
        got = ctx.store.get("users", "u1")
        assert got["username"] == "ana"
        assert got["syncStatus"] == SYNC_PENDING
        assert "employeeId" not in got
        assert "syncError" not in got

    def test_put_replaces_whole_record(self, ctx):
        ctx.store.put("users", _user(employeeId="EMP001", syncError="boom", syncStatus="error"))
        ctx.store.put("users", _user(syncStatus=SYNC_SYNCED))
        got = ctx.store.get("users", "u1")
        assert "employeeId" not in got
        assert "syncError" not in got
        assert got["syncStatus"] == SYNC_SYNCED

    def test_json_fields_are_detached_copies(self, ctx):
        entries = [{"id": "e1", "timestamp": 1, "annotation": "x"}]
        ctx.store.put("shiftReports", {
            "id": "r1", "folio": "001", "date": "2024-05-21", "shiftName": "DÍA",
            "responsibleUser": "ana", "startTime": "2024-05-21T12:00:00.000Z",
            "status": "open", "logEntries": entries,
        })
        entries.append({"id": "e2"})
        got = ctx.store.get("shiftReports", "r1")
        assert [e["id"] for e in got["logEntries"]] == ["e1"]
        got["logEntries"].clear()
        assert len(ctx.store.get("shiftReports", "r1")["logEntries"]) == 1

    def test_unknown_collection_raises_value_error(self, ctx):
        with pytest.raises(ValueError):
            ctx.store.get_all("nope")

    def test_put_without_id_raises_value_error(self, ctx):
        with pytest.raises(ValueError):
            ctx.store.put("users", {"username": "x"})

    def test_unknown_index_raises_value_error(self, ctx):
        with pytest.raises(ValueError):
            ctx.store.get_all_by_index("users", "password", "x")

    def test_get_all_by_index(self, ctx):
        ctx.store.put("users", _user("u1", "ana"))
        ctx.store.put("users", _user("u2", "bea", syncStatus=SYNC_SYNCED))
        pending = ctx.store.get_all_by_index("users", "syncStatus", SYNC_PENDING)
        assert [u["id"] for u in pending] == ["u1"]

    def test_get_all_by_range_is_inclusive(self, ctx):
        for rid, ts in (("a", 100), ("b", 200), ("c", 300)):
            ctx.store.put("dailyTimeRecords", _punch(rid, entrada_ts=ts))
        got = ctx.store.get_all_by_range("dailyTimeRecords", "entradaTimestamp", lower=200)
        assert sorted(r["id"] for r in got) == ["b", "c"]
        got = ctx.store.get_all_by_range("dailyTimeRecords", "entradaTimestamp", lower=100, upper=200)
        assert sorted(r["id"] for r in got) == ["a", "b"]

    def test_delete_missing_id_is_noop(self, ctx):
        ctx.store.delete("users", "ghost")
        assert ctx.store.count("users") == 0

    def test_clear_empties_collection(self, ctx):
        ctx.store.bulk_put("users", [_user("u1", "ana"), _user("u2", "bea")])
        assert ctx.store.count("users") == 2
        ctx.store.clear("users")
        assert ctx.store.get_all("users") == []


class TestTransactions:
    """Atomic scopes."""

    def test_transaction_commits_all_writes(self, ctx):
        with ctx.store.transaction():
            ctx.store.put("users", _user("u1", "ana"))
            ctx.settings.set_value("logbookFolioCounter", 8)
        assert ctx.store.get("users", "u1") is not None
        assert ctx.settings.get_value("logbookFolioCounter") == 8

    def test_exception_inside_transaction_rolls_back_and_propagates(self, ctx):
        with pytest.raises(RuntimeError):
            with ctx.store.transaction():
                ctx.store.put("users", _user("u1", "ana"))
                raise RuntimeError("boom")
        assert ctx.store.get("users", "u1") is None
        assert not ctx.store.in_transaction

    def test_integrity_failure_becomes_storage_error_and_rolls_back(self, ctx):
        with pytest.raises(StorageError):
            with ctx.store.transaction():
                ctx.settings.set_value("logbookFolioCounter", 8)
                ctx.store.put("users", _user("u1", "ana"))
                ctx.store.put("users", _user("u2", "ana"))  # duplicate username
        assert ctx.store.get("users", "u1") is None
        assert ctx.settings.get_value("logbookFolioCounter") is None

    def test_single_write_failure_raises_storage_error(self, ctx):
        # startTime is mandatory on shift reports
        with pytest.raises(StorageError) as exc_info:
            ctx.store.put("shiftReports", {"id": "r1"})
        assert exc_info.value.collection == "shiftReports"
        assert ctx.store.get("shiftReports", "r1") is None

    def test_nested_transactions_join_outer_scope(self, ctx):
        with pytest.raises(RuntimeError):
            with ctx.store.transaction():
                with ctx.store.transaction():
                    ctx.store.put("users", _user("u1", "ana"))
                raise RuntimeError("outer fails")
        assert ctx.store.get("users", "u1") is None

    def test_failed_savepoint_keeps_rest_of_transaction(self, ctx):
        with ctx.store.transaction():
            ctx.store.put("users", _user("u1", "ana"))
            with pytest.raises(StorageError):
                with ctx.store.savepoint():
                    ctx.store.put("users", _user("u2", "ana"))  # duplicate username
            ctx.store.put("users", _user("u3", "bea"))
        assert ctx.store.get("users", "u1") is not None
        assert ctx.store.get("users", "u2") is None
        assert ctx.store.get("users", "u3") is not None

    def test_savepoint_outside_transaction_is_an_error(self, ctx):
        with pytest.raises(RuntimeError):
            with ctx.store.savepoint():
                pass

    def test_depth_is_per_thread(self):
        session = MagicMock()
        store = DurableStore(session)
        seen = {}

        def _other_thread():
            seen["in_transaction"] = store.in_transaction
            store.put("users", _user("u9", "zoe"))
            seen["commits"] = session.commit.call_count

        with store.transaction():
            worker = threading.Thread(target=_other_thread)
            worker.start()
            worker.join()
            assert store.in_transaction
        assert seen == {"in_transaction": False, "commits": 1}
        assert session.commit.call_count == 2


class TestLocalState:
    def test_state_roundtrip(self, ctx):
        assert ctx.store.get_state("lastSyncTimestamp", 0) == 0
        ctx.store.set_state("lastSyncTimestamp", 1716300000000)
        assert ctx.store.get_state("lastSyncTimestamp", 0) == 1716300000000

    def test_none_state_returns_default(self, ctx):
        ctx.store.set_state("sessionToken", None)
        assert ctx.store.get_state("sessionToken", "fallback") == "fallback"
