"""
Shift patterns, assignments and schedule resolution.

Pattern ``hours`` per day and ``maxHoursPattern`` are derived values:
``enrich_pattern`` recomputes them on every write and every time the
global max weekly hours setting changes; stored values are never trusted.

The effective assignment for a date is the one with the latest
``startDate`` on or before the date whose ``endDate`` (if any) has not
passed. Overlapping assignments are allowed.
"""

import logging
import uuid
from datetime import date

from shiftbook.core.exceptions import StorageError
from shiftbook.models.scheduling import DEFAULT_PATTERN_COLOR, AssignedShift, TheoreticalShiftPattern
from shiftbook.repositories.base import BaseRepository, OperationResult
from shiftbook.services.settings_registry import (
    DEFAULT_MAX_WEEKLY_HOURS,
    GLOBAL_AREA_LIST,
    GLOBAL_MAX_WEEKLY_HOURS,
)
from shiftbook.utils.timeutils import date_str, days_between, month_days, now_ms, parse_date

logger = logging.getLogger(__name__)

DAYS_IN_WEEK = 7
MAX_WEEKLY_HOURS_LIMIT = 168

NO_ASSIGNMENT = "Sin Turno Asignado"
OFF_DAY = "Libre"

MSG_NAME_REQUIRED = "El nombre del turno es obligatorio."
MSG_NAME_EXISTS = "Ya existe un turno con ese nombre."
MSG_BAD_CYCLE = "La duración del ciclo debe coincidir con los días definidos."
MSG_TIMES_REQUIRED = "Día {day}: hora de inicio y término son obligatorias."
MSG_BAD_COLACION = "Día {day}: la colación debe ser mayor a 0 y no exceder la duración del turno."
MSG_PATTERN_NOT_FOUND = "Turno teórico no encontrado."
MSG_PATTERN_IN_USE = "No se puede eliminar: el turno está asignado a empleados."
MSG_ASSIGNMENT_NOT_FOUND = "Asignación no encontrada."
MSG_BAD_DATES = "La fecha de término no puede ser anterior a la fecha de inicio."
MSG_EXCEEDS_MAX = "La asignación excede las {limit} horas semanales (Calculado: {hours:.2f} hrs)."
MSG_BAD_MAX = "Las horas semanales deben estar entre 1 y 168."


# ── Hour arithmetic ──────────────────────────────────────────────────────────

def _minutes(hhmm: str | None) -> int | None:
    if not hhmm:
        return None
    try:
        hours, minutes = (int(p) for p in hhmm.split(":")[:2])
    except ValueError:
        return None
    return hours * 60 + minutes


def gross_minutes(start: str | None, end: str | None) -> int:
    """Minutes from ``start`` to ``end``; an end before the start rolls over midnight."""
    s, e = _minutes(start), _minutes(end)
    if s is None or e is None:
        return 0
    if e < s:
        e += 24 * 60
    return e - s


def calculate_hours_between(start: str | None, end: str | None, break_minutes: int = 0) -> float:
    """Net hours between two ``HH:MM`` times, clamped at 0 and rounded to 2 decimals."""
    net = gross_minutes(start, end) - (break_minutes or 0)
    return round(max(net, 0) / 60, 2)


def enrich_pattern(pattern: dict, global_max_hours: float) -> dict:
    """Return a copy of ``pattern`` with derived fields recomputed."""
    enriched = dict(pattern)
    enriched["color"] = pattern.get("color") or DEFAULT_PATTERN_COLOR
    enriched["maxHoursPattern"] = global_max_hours
    schedules = []
    for index, day in enumerate(pattern.get("dailySchedules") or []):
        day = dict(day)
        day["dayIndex"] = index
        if day.get("isOffDay"):
            day["hours"] = 0
        else:
            breaks = (day.get("colacionMinutes") or 0) if day.get("hasColacion") else 0
            day["hours"] = calculate_hours_between(day.get("startTime"), day.get("endTime"), breaks)
        schedules.append(day)
    enriched["dailySchedules"] = schedules
    return enriched


def _cycle_length(data: dict) -> int | None:
    # Form posts carry numbers as strings
    try:
        return int(data.get("cycleLengthDays") or 0)
    except (TypeError, ValueError):
        return None


def weekly_hours(pattern: dict) -> float:
    """Average weekly hours contributed by one pattern."""
    cycle = pattern.get("cycleLengthDays") or 0
    if cycle <= 0:
        return 0.0
    in_cycle = sum(d.get("hours") or 0 for d in pattern.get("dailySchedules") or [] if not d.get("isOffDay"))
    return in_cycle / cycle * DAYS_IN_WEEK


# ── Patterns ─────────────────────────────────────────────────────────────────

class ShiftPatternRepository(BaseRepository):
    COLLECTION = TheoreticalShiftPattern.COLLECTION

    def __init__(self, store, audit, settings, clock=now_ms) -> None:
        super().__init__(store, audit, clock)
        self.settings = settings
        self.global_max_hours = DEFAULT_MAX_WEEKLY_HOURS

    def sort_key(self, record):
        return (record.get("name") or "").lower()

    def load(self) -> list[dict]:
        self.global_max_hours = self.settings.get_value(GLOBAL_MAX_WEEKLY_HOURS, DEFAULT_MAX_WEEKLY_HOURS)
        self._items = self._sorted(
            enrich_pattern(p, self.global_max_hours) for p in self.store.get_all(self.COLLECTION)
        )
        return self.items

    def validate(self, data: dict, exclude_id: str | None = None) -> str | None:
        """Return a user-facing error message, or None when ``data`` is valid."""
        name = (data.get("name") or "").strip()
        if not name:
            return MSG_NAME_REQUIRED
        if any(
            (p.get("name") or "").strip().lower() == name.lower() and p["id"] != exclude_id
            for p in self._items
        ):
            return MSG_NAME_EXISTS
        schedules = data.get("dailySchedules") or []
        cycle = _cycle_length(data)
        if cycle is None or cycle < 1 or len(schedules) != cycle:
            return MSG_BAD_CYCLE
        for index, day in enumerate(schedules, start=1):
            if day.get("isOffDay"):
                continue
            if not day.get("startTime") or not day.get("endTime"):
                return MSG_TIMES_REQUIRED.format(day=index)
            if day.get("hasColacion"):
                minutes = day.get("colacionMinutes") or 0
                if minutes <= 0 or minutes > gross_minutes(day["startTime"], day["endTime"]):
                    return MSG_BAD_COLACION.format(day=index)
        return None

    def add_pattern(self, data: dict, actor: str | None) -> OperationResult:
        error = self.validate(data)
        if error:
            return OperationResult.rejected(error)
        record = enrich_pattern({
            "id": data.get("id") or str(uuid.uuid4()),
            "name": data["name"].strip(),
            "cycleLengthDays": _cycle_length(data),
            "startDayOfWeek": data.get("startDayOfWeek"),
            "dailySchedules": data["dailySchedules"],
            "color": data.get("color"),
        }, self.global_max_hours)
        self.stamp(record)
        return self._save(
            record, actor=actor,
            action="Shift Pattern Added", failed_action="Shift Pattern Add Failed",
            details={"patternId": record["id"], "name": record["name"]},
        )

    def update_pattern(self, pattern_id: str, data: dict, actor: str | None) -> OperationResult:
        current = self.get(pattern_id)
        if current is None:
            return OperationResult.rejected(MSG_PATTERN_NOT_FOUND)
        merged = {**current, **{k: v for k, v in data.items() if k != "id"}}
        error = self.validate(merged, exclude_id=pattern_id)
        if error:
            return OperationResult.rejected(error)
        merged["name"] = merged["name"].strip()
        merged["cycleLengthDays"] = _cycle_length(merged)
        record = self.stamp(enrich_pattern(merged, self.global_max_hours))
        return self._save(
            record, actor=actor,
            action="Shift Pattern Updated", failed_action="Shift Pattern Update Failed",
            details={"patternId": pattern_id, "name": record["name"]},
        )

    def delete_pattern(self, pattern_id: str, actor: str | None) -> OperationResult:
        """Hard delete; blocked while any assignment references the pattern."""
        current = self.get(pattern_id)
        if current is None:
            return OperationResult.rejected(MSG_PATTERN_NOT_FOUND)
        if self.store.get_all_by_index(AssignedShift.COLLECTION, "shiftPatternId", pattern_id):
            self.audit.add_log(actor, "Shift Pattern Delete Rejected - In Use",
                               {"patternId": pattern_id, "name": current.get("name")})
            return OperationResult.rejected(MSG_PATTERN_IN_USE)
        return self._remove(
            pattern_id, actor=actor,
            action="Shift Pattern Deleted", failed_action="Shift Pattern Delete Failed",
            details={"patternId": pattern_id, "name": current.get("name")},
        )

    # ── Global settings ──────────────────────────────────────────────────

    def update_global_max_weekly_hours(self, hours, actor: str | None) -> OperationResult:
        """Change the weekly limit and re-derive every pattern from it."""
        try:
            hours = float(hours)
        except (TypeError, ValueError):
            return OperationResult.rejected(MSG_BAD_MAX)
        if not 1 <= hours <= MAX_WEEKLY_HOURS_LIMIT:
            return OperationResult.rejected(MSG_BAD_MAX)
        if hours.is_integer():
            hours = int(hours)

        old = self.global_max_hours
        try:
            self.settings.set_value(GLOBAL_MAX_WEEKLY_HOURS, hours)
        except StorageError as exc:
            return self._storage_failed(exc, actor, "Global Max Weekly Hours Update Failed", {"newValue": hours})
        self.global_max_hours = hours
        self._items = self._sorted(enrich_pattern(p, hours) for p in self._items)
        self.audit.add_log(actor, "Global Max Weekly Hours Updated", {"oldValue": old, "newValue": hours})
        return OperationResult.success({"globalMaxWeeklyHours": hours})

    def area_list(self) -> list[str]:
        return list(self.settings.get_value(GLOBAL_AREA_LIST, []) or [])

    def update_area_list(self, areas: list[str], actor: str | None) -> OperationResult:
        cleaned = sorted({a.strip() for a in areas if a and a.strip()})
        try:
            self.settings.set_value(GLOBAL_AREA_LIST, cleaned)
        except StorageError as exc:
            return self._storage_failed(exc, actor, "Global Area List Update Failed", {"areas": cleaned})
        self.audit.add_log(actor, "Global Area List Updated", {"areas": cleaned})
        return OperationResult.success({"globalAreaList": cleaned})


# ── Assignments ──────────────────────────────────────────────────────────────

class AssignedShiftRepository(BaseRepository):
    COLLECTION = AssignedShift.COLLECTION

    def __init__(self, store, audit, patterns: ShiftPatternRepository, clock=now_ms) -> None:
        super().__init__(store, audit, clock)
        self.patterns = patterns

    def sort_key(self, record):
        return (record.get("employeeName") or "", record.get("startDate") or "")

    def for_employee(self, employee_id: str) -> list[dict]:
        return [a for a in self.items if a.get("employeeId") == employee_id]

    def average_weekly_hours(
        self,
        employee_id: str,
        extra_pattern_id: str | None = None,
        exclude_id: str | None = None,
    ) -> float:
        """Sum of weekly averages over the employee's assignments (plus a candidate)."""
        pattern_ids = [
            a["shiftPatternId"] for a in self._items
            if a.get("employeeId") == employee_id and a["id"] != exclude_id
        ]
        if extra_pattern_id:
            pattern_ids.append(extra_pattern_id)
        total = 0.0
        for pattern_id in pattern_ids:
            pattern = self.patterns.get(pattern_id)
            if pattern is not None:
                total += weekly_hours(pattern)
        return round(total, 2)

    def _validate(self, data: dict, exclude_id: str | None = None) -> tuple[str | None, dict | None]:
        pattern = self.patterns.get(data.get("shiftPatternId") or "")
        if pattern is None:
            return MSG_PATTERN_NOT_FOUND, None
        try:
            start = parse_date(data["startDate"])
            end = parse_date(data["endDate"]) if data.get("endDate") else None
        except (KeyError, TypeError, ValueError):
            return MSG_BAD_DATES, None
        if end is not None and end < start:
            return MSG_BAD_DATES, None
        limit = self.patterns.global_max_hours
        hours = self.average_weekly_hours(data["employeeId"], pattern["id"], exclude_id=exclude_id)
        if hours > limit:
            return MSG_EXCEEDS_MAX.format(limit=limit, hours=hours), None
        return None, pattern

    def assign_shift(self, employee: dict, data: dict, actor: str | None) -> OperationResult:
        data = {**data, "employeeId": employee["id"]}
        error, pattern = self._validate(data)
        if error:
            return OperationResult.rejected(error)
        record = self.stamp({
            "id": str(uuid.uuid4()),
            "employeeId": employee["id"],
            "employeeName": employee.get("name"),
            "shiftPatternId": pattern["id"],
            "shiftPatternName": pattern.get("name"),
            "startDate": data["startDate"],
        })
        if data.get("endDate"):
            record["endDate"] = data["endDate"]
        return self._save(
            record, actor=actor,
            action="Shift Assigned to Employee", failed_action="Shift Assignment Failed",
            details={"assignmentId": record["id"], "employeeId": employee["id"],
                     "patternName": pattern.get("name")},
        )

    def update_assignment(self, assignment_id: str, data: dict, actor: str | None) -> OperationResult:
        current = self.get(assignment_id)
        if current is None:
            return OperationResult.rejected(MSG_ASSIGNMENT_NOT_FOUND)
        merged = {**current, **{k: v for k, v in data.items() if k in ("shiftPatternId", "startDate", "endDate")}}
        error, pattern = self._validate(merged, exclude_id=assignment_id)
        if error:
            return OperationResult.rejected(error)
        merged["shiftPatternName"] = pattern.get("name")
        if not merged.get("endDate"):
            merged.pop("endDate", None)
        self.stamp(merged)
        return self._save(
            merged, actor=actor,
            action="Assigned Shift Updated", failed_action="Assigned Shift Update Failed",
            details={"assignmentId": assignment_id, "changes": data},
        )

    def delete_assignment(self, assignment_id: str, actor: str | None) -> OperationResult:
        current = self.get(assignment_id)
        if current is None:
            return OperationResult.rejected(MSG_ASSIGNMENT_NOT_FOUND)
        return self._remove(
            assignment_id, actor=actor,
            action="Assigned Shift Deleted", failed_action="Assigned Shift Delete Failed",
            details={"assignmentId": assignment_id, "employeeId": current.get("employeeId")},
        )

    # ── Schedule resolution ──────────────────────────────────────────────

    def effective_assignment(self, employee_id: str, on: date) -> dict | None:
        best = None
        for assignment in self._items:
            if assignment.get("employeeId") != employee_id:
                continue
            start = parse_date(assignment["startDate"])
            if start > on:
                continue
            if assignment.get("endDate") and parse_date(assignment["endDate"]) < on:
                continue
            if best is None or start > parse_date(best["startDate"]):
                best = assignment
        return best

    def daily_schedule_info(self, employee_id: str, on: date) -> dict | None:
        """Resolve what an employee works on ``on``.

        Returns None when the employee has no assignments at all, otherwise a
        dict with ``scheduleText``, ``isWorkDay`` and, on work days,
        ``startTime`` / ``endTime`` / ``hours`` / ``shiftPatternName`` / ``patternColor``.
        """
        if not any(a.get("employeeId") == employee_id for a in self._items):
            return None
        assignment = self.effective_assignment(employee_id, on)
        if assignment is None:
            return {"scheduleText": NO_ASSIGNMENT, "isWorkDay": False}

        pattern = self.patterns.get(assignment["shiftPatternId"])
        if pattern is None or (pattern.get("cycleLengthDays") or 0) <= 0:
            return {"scheduleText": "Patrón no encontrado o inválido", "isWorkDay": False,
                    "shiftPatternName": assignment.get("shiftPatternName"),
                    "patternColor": DEFAULT_PATTERN_COLOR}

        offset = days_between(parse_date(assignment["startDate"]), on)
        day_index = offset % pattern["cycleLengthDays"]
        day = next((d for d in pattern.get("dailySchedules") or [] if d.get("dayIndex") == day_index), None)
        base = {"shiftPatternName": pattern.get("name"), "patternColor": pattern.get("color")}
        if day is None:
            return {**base, "scheduleText": "Error en definición de patrón", "isWorkDay": False}
        if day.get("isOffDay") or not day.get("startTime") or not day.get("endTime"):
            return {**base, "scheduleText": OFF_DAY, "isWorkDay": False}

        text = f"{day['startTime']} a {day['endTime']}"
        if day.get("hasColacion") and (day.get("colacionMinutes") or 0) > 0:
            text += f" (Col: {day['colacionMinutes']}m)"
        text += f" ({day['hours']:.2f} hrs)"
        return {
            **base,
            "scheduleText": text,
            "isWorkDay": True,
            "startTime": day["startTime"],
            "endTime": day["endTime"],
            "hours": day["hours"],
        }

    def is_scheduled(self, employee_id: str, on: date) -> bool:
        info = self.daily_schedule_info(employee_id, on)
        return bool(info and info["isWorkDay"])

    def scheduled_employees_on(self, employees: list[dict], on: date) -> list[dict]:
        """Work-day details for every employee scheduled on ``on``, by start time."""
        out = []
        for employee in employees:
            info = self.daily_schedule_info(employee["id"], on)
            if info and info["isWorkDay"]:
                out.append({"employeeId": employee["id"], "employeeName": employee.get("name"), **info})
        return sorted(out, key=lambda d: d.get("startTime") or "99:99")

    def monthly_schedule(self, employee_id: str, year: int, month: int) -> list[dict]:
        days = []
        for day in month_days(year, month):
            info = self.daily_schedule_info(employee_id, day)
            days.append({
                "date": date_str(day),
                "dayOfMonth": day.day,
                "scheduleText": info["scheduleText"] if info else NO_ASSIGNMENT,
                "isWorkDay": bool(info and info["isWorkDay"]),
            })
        return days
