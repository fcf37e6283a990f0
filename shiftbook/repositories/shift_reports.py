"""Shift report repository. Lifecycle rules live in services.shift_lifecycle."""

import copy

from shiftbook.core.exceptions import StorageError
from shiftbook.models.logbook import SHIFT_CLOSED, SHIFT_OPEN, ShiftReport
from shiftbook.repositories.base import BaseRepository, OperationResult
from shiftbook.services.settings_registry import FOLIO_COUNTER

FOLIO_WIDTH = 3


def format_folio(value: int) -> str:
    return str(value).zfill(FOLIO_WIDTH)


class ShiftReportRepository(BaseRepository):
    COLLECTION = ShiftReport.COLLECTION
    SORT_DESCENDING = True

    def sort_key(self, record):
        return record.get("startTime") or ""

    def open_shift(self) -> dict | None:
        """The single report with ``status == open``, if any."""
        for report in self._items:
            if report.get("status") == SHIFT_OPEN:
                return self.get(report["id"])
        return None

    def get_report(self, report_id: str) -> dict | None:
        return self.get(report_id)

    def closed_reports(self, on_date: str | None = None) -> list[dict]:
        """Closed reports, newest first, optionally restricted to one ``YYYY-MM-DD``."""
        return [
            r for r in self.items
            if r.get("status") == SHIFT_CLOSED and (on_date is None or r.get("date") == on_date)
        ]

    def create_report(self, report: dict, settings, actor: str | None) -> OperationResult:
        """Persist a new report; its folio is drawn in the same transaction."""
        try:
            with self.store.transaction():
                report["folio"] = format_folio(settings.draw_counter(FOLIO_COUNTER))
                self.store.put(self.COLLECTION, report)
        except StorageError as exc:
            report.pop("folio", None)
            return self._storage_failed(exc, actor, "Shift Start Failed",
                                        {"shiftName": report.get("shiftName")})
        self._cache_upsert(report)
        self.audit.add_log(actor, "Shift Started",
                           {"folio": report["folio"], "shiftName": report.get("shiftName")})
        return OperationResult.success(copy.deepcopy(report))

    def save_report(
        self,
        report: dict,
        actor: str | None,
        action: str,
        failed_action: str,
        details: dict | None = None,
    ) -> OperationResult:
        return self._save(report, actor=actor, action=action,
                          failed_action=failed_action, details=details)
