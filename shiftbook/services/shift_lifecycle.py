"""
Shift lifecycle orchestration over the ShiftReport repository.

State machine per shift: ``open → closed`` (terminal). At most one shift
is open at a time; the folio is drawn from the counter registry in the
same transaction that writes the new report, so a failed start never
consumes a folio.

Embedded log / supplier entries are only mutable on the open shift. Every
mutation re-sorts the affected array ascending by ``timestamp``; edits keep
``id`` and ``timestamp`` and replace only the mutable fields.
"""

import copy
import logging
from datetime import datetime

from shiftbook.models.logbook import SHIFT_CLOSED, SHIFT_OPEN
from shiftbook.repositories.base import OperationResult
from shiftbook.utils.timeutils import (
    MINUTE_MS,
    date_str,
    iso_utc,
    new_record_id,
    now_ms,
    time_str,
    to_datetime,
    to_ms,
)

logger = logging.getLogger(__name__)

SHIFT_DAY = "DÍA"
SHIFT_NIGHT = "NOCHE"
START_ANNOTATION = "Inicio de Turno, con Novedades Mencionadas"
CLOSE_ANNOTATION = "Cierre de Turno, con Novedades Mencionadas"
AUTO_CLOCK_IN_LEAD_MS = 15 * MINUTE_MS

SUPPLIER_REQUIRED = ("licensePlate", "driverName", "company", "reason")
SUPPLIER_FIELDS = SUPPLIER_REQUIRED + ("paxCount",)

MSG_SHIFT_ALREADY_OPEN = "Ya existe un turno abierto (Folio {folio}). Ciérrelo antes de iniciar otro."
MSG_NO_OPEN_SHIFT = "No hay un turno abierto."
MSG_EMPTY_ANNOTATION = "La novedad no puede estar vacía."
MSG_ENTRY_NOT_FOUND = "Registro no encontrado en el turno abierto."
MSG_SUPPLIER_REQUIRED = "Campos obligatorios: patente, conductor, empresa y motivo."
MSG_BAD_PAX = "La cantidad de pasajeros debe ser un número entero no negativo."


def default_shift_name(moment: datetime) -> str:
    """``DÍA`` from 08:00 to 19:59, ``NOCHE`` otherwise."""
    return SHIFT_DAY if 8 <= moment.hour < 20 else SHIFT_NIGHT


def _sort_entries(report: dict) -> None:
    for key in ("logEntries", "supplierEntries"):
        report[key] = sorted(report.get(key) or [], key=lambda e: e.get("timestamp") or 0)


class ShiftLogbook:
    """Start / close shifts and edit the open shift's entries.

    Args:
        reports: ShiftReportRepository.
        settings: SettingsRegistry (folio counter).
        employees / assignments / time_records: optional; when present a shift
            start clocks the responsible user in if they are scheduled today.
    """

    def __init__(
        self,
        reports,
        settings,
        employees=None,
        assignments=None,
        time_records=None,
        clock=now_ms,
    ) -> None:
        self.reports = reports
        self.settings = settings
        self.employees = employees
        self.assignments = assignments
        self.time_records = time_records
        self.clock = clock

    def _entry_ms(self, at) -> int:
        if at is None:
            return self.clock()
        if isinstance(at, datetime):
            return to_ms(at)
        return int(at)

    # ── Lifecycle ────────────────────────────────────────────────────────

    def start_shift(self, user: dict, shift_name: str | None = None) -> OperationResult:
        actor = user.get("username")
        current = self.reports.open_shift()
        if current is not None:
            return OperationResult.rejected(MSG_SHIFT_ALREADY_OPEN.format(folio=current.get("folio")))

        now = self.clock()
        moment = to_datetime(now)
        name = (shift_name or "").strip() or default_shift_name(moment)
        report = {
            "id": new_record_id(now),
            "date": date_str(moment.date()),
            "shiftName": name,
            "responsibleUser": actor,
            "startTime": iso_utc(now),
            "status": SHIFT_OPEN,
            "logEntries": [{
                "id": new_record_id(now),
                "time": time_str(moment),
                "timestamp": now,
                "annotation": START_ANNOTATION,
            }],
            "supplierEntries": [],
        }
        self.reports.stamp(report)

        result = self.reports.create_report(report, self.settings, actor)
        if not result:
            return result
        logger.info("Shift %s started by %s", result.record["folio"], actor,
                    extra={"record_id": report["id"], "actor": actor})
        self._auto_clock_in(user, now)
        return result

    def _auto_clock_in(self, user: dict, now: int) -> None:
        """Clock the responsible user in when their employee is scheduled now."""
        if self.employees is None or self.assignments is None or self.time_records is None:
            return
        employee_id = user.get("employeeId")
        employee = self.employees.get(employee_id) if employee_id else None
        if employee is None or not employee.get("isActive", True):
            return
        moment = to_datetime(now)
        info = self.assignments.daily_schedule_info(employee_id, moment.date())
        if not info or not info.get("isWorkDay"):
            return
        hours, minutes = (int(p) for p in info["startTime"].split(":")[:2])
        scheduled = to_ms(moment.replace(hour=hours, minute=minutes, second=0, microsecond=0))
        if now < scheduled - AUTO_CLOCK_IN_LEAD_MS:
            return
        if self.time_records.open_punch_for(employee_id) is not None:
            return
        result = self.time_records.clock_in(employee, user.get("username"), at_ms=now)
        if result:
            self.reports.audit.add_log(user.get("username"), "Auto Clock-In on Shift Start",
                                       {"employeeId": employee_id, "recordId": result.record["id"]})

    def close_shift(self, user: dict) -> OperationResult:
        """Close the open shift. A second close finds no open shift and is rejected."""
        actor = user.get("username")
        current = self.reports.open_shift()
        if current is None:
            return OperationResult.rejected(MSG_NO_OPEN_SHIFT)

        now = self.clock()
        updated = copy.deepcopy(current)
        updated["logEntries"] = (updated.get("logEntries") or []) + [{
            "id": new_record_id(now),
            "time": time_str(to_datetime(now)),
            "timestamp": now,
            "annotation": CLOSE_ANNOTATION,
        }]
        _sort_entries(updated)
        updated["status"] = SHIFT_CLOSED
        updated["endTime"] = iso_utc(now)
        self.reports.stamp(updated)
        return self.reports.save_report(
            updated, actor, "Shift Closed", "Shift Close Failed",
            {"folio": updated.get("folio"), "shiftName": updated.get("shiftName")},
        )

    # ── Entry CRUD on the open shift ─────────────────────────────────────

    def _mutate_open_shift(self, actor, mutate, action, failed_action, details) -> OperationResult:
        current = self.reports.open_shift()
        if current is None:
            return OperationResult.rejected(MSG_NO_OPEN_SHIFT)
        updated = copy.deepcopy(current)
        error = mutate(updated)
        if error:
            return OperationResult.rejected(error)
        _sort_entries(updated)
        self.reports.stamp(updated)
        return self.reports.save_report(
            updated, actor, action, failed_action,
            {"shiftFolio": updated.get("folio"), **details},
        )

    @staticmethod
    def _find(entries: list[dict], entry_id: str) -> dict | None:
        return next((e for e in entries if e.get("id") == entry_id), None)

    def add_log_entry(self, annotation: str, user: dict, at=None) -> OperationResult:
        annotation = (annotation or "").strip()
        if not annotation:
            return OperationResult.rejected(MSG_EMPTY_ANNOTATION)
        ms = self._entry_ms(at)
        entry = {"id": new_record_id(ms), "time": time_str(to_datetime(ms)),
                 "timestamp": ms, "annotation": annotation}

        def mutate(report):
            report["logEntries"] = (report.get("logEntries") or []) + [entry]

        return self._mutate_open_shift(
            user.get("username"), mutate, "Log Entry Added", "Log Entry Add Failed",
            {"entryId": entry["id"], "annotation": annotation[:50]},
        )

    def edit_log_entry(self, entry_id: str, annotation: str, user: dict) -> OperationResult:
        annotation = (annotation or "").strip()
        if not annotation:
            return OperationResult.rejected(MSG_EMPTY_ANNOTATION)

        def mutate(report):
            entry = self._find(report.get("logEntries") or [], entry_id)
            if entry is None:
                return MSG_ENTRY_NOT_FOUND
            entry["annotation"] = annotation
            return None

        return self._mutate_open_shift(
            user.get("username"), mutate, "Log Entry Edited", "Log Entry Edit Failed",
            {"entryId": entry_id, "annotation": annotation[:50]},
        )

    def delete_log_entry(self, entry_id: str, user: dict) -> OperationResult:
        def mutate(report):
            entries = report.get("logEntries") or []
            if self._find(entries, entry_id) is None:
                return MSG_ENTRY_NOT_FOUND
            report["logEntries"] = [e for e in entries if e.get("id") != entry_id]
            return None

        return self._mutate_open_shift(
            user.get("username"), mutate, "Log Entry Deleted", "Log Entry Delete Failed",
            {"entryId": entry_id},
        )

    @staticmethod
    def _clean_supplier(fields: dict) -> tuple[dict | None, str | None]:
        cleaned = {k: (str(fields.get(k) or "")).strip() for k in SUPPLIER_REQUIRED}
        if not all(cleaned.values()):
            return None, MSG_SUPPLIER_REQUIRED
        pax = fields.get("paxCount")
        if pax not in (None, ""):
            if isinstance(pax, bool):
                return None, MSG_BAD_PAX
            try:
                pax = int(pax)
            except (TypeError, ValueError):
                return None, MSG_BAD_PAX
            if pax < 0:
                return None, MSG_BAD_PAX
            cleaned["paxCount"] = pax
        cleaned["licensePlate"] = cleaned["licensePlate"].upper()
        return cleaned, None

    def add_supplier_entry(self, fields: dict, user: dict, at=None) -> OperationResult:
        cleaned, error = self._clean_supplier(fields)
        if error:
            return OperationResult.rejected(error)
        ms = self._entry_ms(at)
        entry = {"id": new_record_id(ms), "time": time_str(to_datetime(ms)), "timestamp": ms, **cleaned}

        def mutate(report):
            report["supplierEntries"] = (report.get("supplierEntries") or []) + [entry]

        return self._mutate_open_shift(
            user.get("username"), mutate, "Supplier Entry Added", "Supplier Entry Add Failed",
            {"entryId": entry["id"], "licensePlate": cleaned["licensePlate"],
             "company": cleaned["company"]},
        )

    def edit_supplier_entry(self, entry_id: str, fields: dict, user: dict) -> OperationResult:
        cleaned, error = self._clean_supplier(fields)
        if error:
            return OperationResult.rejected(error)

        def mutate(report):
            entry = self._find(report.get("supplierEntries") or [], entry_id)
            if entry is None:
                return MSG_ENTRY_NOT_FOUND
            for key in SUPPLIER_FIELDS:
                entry.pop(key, None)
            entry.update(cleaned)
            return None

        return self._mutate_open_shift(
            user.get("username"), mutate, "Supplier Entry Edited", "Supplier Entry Edit Failed",
            {"entryId": entry_id, "licensePlate": cleaned["licensePlate"]},
        )

    def delete_supplier_entry(self, entry_id: str, user: dict) -> OperationResult:
        def mutate(report):
            entries = report.get("supplierEntries") or []
            if self._find(entries, entry_id) is None:
                return MSG_ENTRY_NOT_FOUND
            report["supplierEntries"] = [e for e in entries if e.get("id") != entry_id]
            return None

        return self._mutate_open_shift(
            user.get("username"), mutate, "Supplier Entry Deleted", "Supplier Entry Delete Failed",
            {"entryId": entry_id},
        )
