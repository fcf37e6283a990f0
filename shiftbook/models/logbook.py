"""
Shiftbook offline client
Logbook domain model.

Models:
    - ShiftReport: one shift handover report with embedded entries.
    - QuickNote: short-lived note shared between shifts.
    - MeterReading: batch of meter values captured during a shift.
"""

from shiftbook.models import db
from shiftbook.models.base import SyncableMixin

SHIFT_OPEN = "open"
SHIFT_CLOSED = "closed"


class ShiftReport(SyncableMixin, db.Model):
    """
    Shift handover report.

    ``log_entries`` / ``supplier_entries`` are embedded JSON arrays owned by
    the report. Each item carries ``id``, ``time`` and ``timestamp`` and is
    kept sorted ascending by ``timestamp``.
    """

    __tablename__ = "shift_reports"
    COLLECTION = "shiftReports"

    folio = db.Column(db.String(10), nullable=False, index=True)
    date = db.Column(db.String(10), nullable=False)
    shift_name = db.Column(db.String(40), nullable=False)
    responsible_user = db.Column(db.String(80), nullable=False)
    start_time = db.Column(db.String(40), nullable=False)
    end_time = db.Column(db.String(40), nullable=True)
    status = db.Column(db.String(10), nullable=False, default=SHIFT_OPEN, index=True)
    log_entries = db.Column(db.JSON, nullable=True)
    supplier_entries = db.Column(db.JSON, nullable=True)


class QuickNote(SyncableMixin, db.Model):
    __tablename__ = "quick_notes"
    COLLECTION = "quickNotes"

    content = db.Column(db.Text, nullable=False, default="")
    author_username = db.Column(db.String(80), nullable=False, default="")
    created_at = db.Column(db.BigInteger, nullable=False, default=0, index=True)


class MeterReading(SyncableMixin, db.Model):
    __tablename__ = "meter_readings"
    COLLECTION = "meterReadings"

    timestamp = db.Column(db.BigInteger, nullable=False, default=0, index=True)
    author_username = db.Column(db.String(80), nullable=False, default="")
    readings = db.Column(db.JSON, nullable=True)
