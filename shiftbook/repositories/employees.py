"""Employee repository: staff list with soft delete and active toggling."""

from shiftbook.core.exceptions import StorageError
from shiftbook.models.scheduling import AssignedShift
from shiftbook.models.workforce import DailyTimeRecord, Employee
from shiftbook.repositories.base import BaseRepository, OperationResult
from shiftbook.services.settings_registry import EMPLOYEE_ID_COUNTER
from shiftbook.utils.timeutils import now_ms

MSG_NAME_REQUIRED = "El nombre del empleado es obligatorio."
MSG_NOT_FOUND = "Empleado no encontrado."
MSG_HAS_RECORDS = "No se puede eliminar: el empleado tiene registros de asistencia."
MSG_HAS_ASSIGNMENTS = "No se puede eliminar: el empleado tiene turnos asignados."

_EDITABLE = ("name", "rut", "position", "area")


class EmployeeRepository(BaseRepository):
    COLLECTION = Employee.COLLECTION

    def __init__(self, store, audit, settings, clock=now_ms) -> None:
        super().__init__(store, audit, clock)
        self.settings = settings

    def sort_key(self, record):
        # Active employees first, then by name
        return (not record.get("isActive", True), (record.get("name") or "").lower())

    def load(self) -> list[dict]:
        records = [r for r in self.store.get_all(self.COLLECTION) if not r.get("isDeleted")]
        self._items = self._sorted(records)
        return self.items

    def active_employees(self) -> list[dict]:
        return [e for e in self.items if e.get("isActive", True)]

    def get_employee(self, employee_id: str) -> dict | None:
        return self.get(employee_id)

    def _next_free_id(self) -> str:
        # The counter can lag behind rows that arrived by bootstrap or import
        while True:
            emp_id = f"EMP{self.settings.draw_counter(EMPLOYEE_ID_COUNTER):03d}"
            if self.store.get(self.COLLECTION, emp_id) is None:
                return emp_id

    def add_employee(self, data: dict, actor: str | None) -> OperationResult:
        name = (data.get("name") or "").strip()
        if not name:
            return OperationResult.rejected(MSG_NAME_REQUIRED)

        record = {f: (data.get(f) or "").strip() for f in _EDITABLE}
        record["name"] = name
        record["isActive"] = True
        try:
            with self.store.transaction():
                record["id"] = self._next_free_id()
                self.stamp(record)
                self.store.put(self.COLLECTION, record)
        except StorageError as exc:
            return self._storage_failed(exc, actor, "Employee Add Failed", {"name": name})
        self._cache_upsert(record)
        self.audit.add_log(actor, "Employee Added", {"employeeId": record["id"], "name": name})
        return OperationResult.success(dict(record))

    def update_employee(self, employee_id: str, changes: dict, actor: str | None) -> OperationResult:
        current = self.get(employee_id)
        if current is None:
            return OperationResult.rejected(MSG_NOT_FOUND)
        if "name" in changes and not (changes.get("name") or "").strip():
            return OperationResult.rejected(MSG_NAME_REQUIRED)
        for field in _EDITABLE:
            if field in changes:
                current[field] = (changes[field] or "").strip()
        self.stamp(current)
        return self._save(
            current, actor=actor,
            action="Employee Updated", failed_action="Employee Update Failed",
            details={"employeeId": employee_id, "changes": {k: v for k, v in changes.items() if k in _EDITABLE}},
        )

    def toggle_employee_status(self, employee_id: str, actor: str | None) -> OperationResult:
        current = self.get(employee_id)
        if current is None:
            return OperationResult.rejected(MSG_NOT_FOUND)
        current["isActive"] = not current.get("isActive", True)
        self.stamp(current)
        action = "Employee Activated" if current["isActive"] else "Employee Deactivated"
        return self._save(
            current, actor=actor,
            action=action, failed_action="Employee Status Update Failed",
            details={"employeeId": employee_id, "name": current.get("name")},
        )

    def soft_delete_employee(self, employee_id: str, actor: str | None) -> OperationResult:
        """Tombstone the employee; blocked while punches or assignments reference it."""
        current = self.get(employee_id)
        if current is None:
            return OperationResult.rejected(MSG_NOT_FOUND)
        if self.store.get_all_by_index(DailyTimeRecord.COLLECTION, "employeeId", employee_id):
            return OperationResult.rejected(MSG_HAS_RECORDS)
        if self.store.get_all_by_index(AssignedShift.COLLECTION, "employeeId", employee_id):
            return OperationResult.rejected(MSG_HAS_ASSIGNMENTS)

        current["isDeleted"] = True
        current["isActive"] = False
        self.stamp(current)
        details = {"employeeId": employee_id, "name": current.get("name")}
        try:
            self.store.put(self.COLLECTION, current)
        except StorageError as exc:
            return self._storage_failed(exc, actor, "Employee Delete Failed", details)
        self._cache_remove(employee_id)
        self.audit.add_log(actor, "Employee Soft Deleted", details)
        return OperationResult.success(current)
