"""
Time record repository and punch workflow.

Invariant: an employee has at most one open punch (``entrada`` set, no
``salida``). Clocking in while a punch is open closes the old one with
``SIN REGISTRO``; clocking out with nothing open creates a record whose
``entrada`` is ``SIN REGISTRO``.
"""

import logging
import uuid

from shiftbook.core.exceptions import StorageError
from shiftbook.models.workforce import MISSING_PUNCH, DailyTimeRecord
from shiftbook.repositories.base import BaseRepository, OperationResult
from shiftbook.utils.timeutils import (
    DAY_MS,
    MINUTE_MS,
    local_minute_str,
    parse_local_minute,
    to_datetime,
    to_ms,
)

logger = logging.getLogger(__name__)

MIN_PUNCH_GAP_MS = 3 * MINUTE_MS
RECENT_DAYS = 31

MSG_TOO_SOON = "Debe esperar al menos 3 minutos entre marcas."
MSG_NOT_FOUND = "Registro de asistencia no encontrado."
MSG_BAD_FORMAT = "Formato de fecha y hora no válido."
MSG_SALIDA_BEFORE_ENTRADA = "La salida no puede ser anterior a la entrada."


def is_open_punch(record: dict) -> bool:
    entrada = record.get("entrada")
    return bool(entrada) and entrada != MISSING_PUNCH and not record.get("salida")


class TimeRecordRepository(BaseRepository):
    COLLECTION = DailyTimeRecord.COLLECTION
    SORT_DESCENDING = True

    def sort_key(self, record):
        return record.get("entradaTimestamp") or record.get("salidaTimestamp") or 0

    def load(self) -> list[dict]:
        """Load punches from the last 31 days (by entrada or salida time)."""
        lower = self.clock() - RECENT_DAYS * DAY_MS
        by_id = {
            r["id"]: r
            for r in self.store.get_all_by_range(self.COLLECTION, "entradaTimestamp", lower=lower)
        }
        for r in self.store.get_all_by_range(self.COLLECTION, "salidaTimestamp", lower=lower):
            by_id.setdefault(r["id"], r)
        self._items = self._sorted(by_id.values())
        return self.items

    def load_all(self) -> list[dict]:
        return super().load()

    def records_for(self, employee_id: str) -> list[dict]:
        """Every stored punch of one employee, newest first (not limited to the cache window)."""
        return self._sorted(self.store.get_all_by_index(self.COLLECTION, "employeeId", employee_id))

    def open_punch_for(self, employee_id: str) -> dict | None:
        for record in self.records_for(employee_id):
            if is_open_punch(record):
                return record
        return None

    def last_punch_ms(self, employee_id: str) -> int | None:
        stamps = [
            ts
            for r in self.records_for(employee_id)
            for ts in (r.get("entradaTimestamp"), r.get("salidaTimestamp"))
            if ts
        ]
        return max(stamps) if stamps else None

    # ── Punch workflow ───────────────────────────────────────────────────

    def _new_record(self, employee: dict, day_ms: int) -> dict:
        return {
            "id": str(uuid.uuid4()),
            "employeeId": employee["id"],
            "employeeName": employee.get("name"),
            "employeePosition": employee.get("position"),
            "employeeArea": employee.get("area"),
            "date": to_datetime(day_ms).strftime("%Y-%m-%d"),
        }

    def _too_soon(self, employee_id: str, now: int) -> bool:
        last = self.last_punch_ms(employee_id)
        return last is not None and now - last < MIN_PUNCH_GAP_MS

    def _write_all(self, records: list[dict]) -> None:
        with self.store.transaction():
            for record in records:
                self.store.put(self.COLLECTION, record)

    def clock_in(self, employee: dict, actor: str | None, at_ms: int | None = None) -> OperationResult:
        now = at_ms if at_ms is not None else self.clock()
        if self._too_soon(employee["id"], now):
            return OperationResult.rejected(MSG_TOO_SOON)

        writes = []
        stale = self.open_punch_for(employee["id"])
        if stale is not None:
            stale["salida"] = MISSING_PUNCH
            stale.pop("salidaTimestamp", None)
            writes.append(self.stamp(stale))

        record = self._new_record(employee, now)
        record["entrada"] = local_minute_str(to_datetime(now))
        record["entradaTimestamp"] = now
        writes.append(self.stamp(record))

        details = {"employeeId": employee["id"], "employeeName": employee.get("name")}
        try:
            self._write_all(writes)
        except StorageError as exc:
            return self._storage_failed(exc, actor, "Clock In Failed", details)

        for written in writes:
            self._cache_upsert(written)
        if stale is not None:
            self.audit.add_log(actor, "Missed Clock-Out Auto-Closed",
                               {**details, "recordId": stale["id"]})
        self.audit.add_log(actor, "Clock In Success", {**details, "recordId": record["id"]})
        return OperationResult.success(dict(record))

    def clock_out(self, employee: dict, actor: str | None, at_ms: int | None = None) -> OperationResult:
        now = at_ms if at_ms is not None else self.clock()
        if self._too_soon(employee["id"], now):
            return OperationResult.rejected(MSG_TOO_SOON)

        details = {"employeeId": employee["id"], "employeeName": employee.get("name")}
        record = self.open_punch_for(employee["id"])
        if record is not None:
            action = "Clock Out Success"
        else:
            record = self._new_record(employee, now)
            record["entrada"] = MISSING_PUNCH
            action = "Missed Clock-In Auto-Created With Salida"
        record["salida"] = local_minute_str(to_datetime(now))
        record["salidaTimestamp"] = now
        self.stamp(record)
        return self._save(
            record, actor=actor,
            action=action, failed_action="Clock Out Failed",
            details={**details, "recordId": record["id"]},
        )

    # ── Manual corrections ───────────────────────────────────────────────

    @staticmethod
    def _parse_punch(value: str | None) -> tuple[str | None, int | None]:
        """``"2024-05-21T08:00"`` → (display, ms); ``SIN REGISTRO`` / empty → (value, None)."""
        if not value:
            return None, None
        if value == MISSING_PUNCH:
            return MISSING_PUNCH, None
        return value, to_ms(parse_local_minute(value))

    def edit_record(self, record_id: str, changes: dict, actor: str | None) -> OperationResult:
        """Replace ``entrada`` and/or ``salida`` (``YYYY-MM-DDTHH:MM`` or ``SIN REGISTRO``)."""
        current = self.store.get(self.COLLECTION, record_id)
        if current is None:
            return OperationResult.rejected(MSG_NOT_FOUND)

        updated = dict(current)
        try:
            for field in ("entrada", "salida"):
                if field not in changes:
                    continue
                display, ms = self._parse_punch(changes[field])
                for key, value in ((field, display), (f"{field}Timestamp", ms)):
                    if value is None:
                        updated.pop(key, None)
                    else:
                        updated[key] = value
        except ValueError:
            return OperationResult.rejected(MSG_BAD_FORMAT)

        entrada_ms = updated.get("entradaTimestamp")
        salida_ms = updated.get("salidaTimestamp")
        if entrada_ms and salida_ms and salida_ms < entrada_ms:
            return OperationResult.rejected(MSG_SALIDA_BEFORE_ENTRADA)
        anchor = entrada_ms or salida_ms
        if anchor:
            updated["date"] = to_datetime(anchor).strftime("%Y-%m-%d")

        self.stamp(updated)
        return self._save(
            updated, actor=actor,
            action="Time Record Edited", failed_action="Time Record Edit Failed",
            details={
                "recordId": record_id,
                "employeeId": updated.get("employeeId"),
                "old": {"entrada": current.get("entrada"), "salida": current.get("salida")},
                "new": {"entrada": updated.get("entrada"), "salida": updated.get("salida")},
            },
        )

    def delete_record(self, record_id: str, actor: str | None) -> OperationResult:
        current = self.store.get(self.COLLECTION, record_id)
        if current is None:
            return OperationResult.rejected(MSG_NOT_FOUND)
        return self._remove(
            record_id, actor=actor,
            action="Time Record Deleted", failed_action="Time Record Delete Failed",
            details={"recordId": record_id, "employeeId": current.get("employeeId"),
                     "date": current.get("date")},
        )
