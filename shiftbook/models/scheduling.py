"""
Shiftbook offline client
Scheduling domain model.

Models:
    - TheoreticalShiftPattern: repeating N-day schedule template.
    - AssignedShift: binds an employee to a pattern over a date range.
"""

from shiftbook.models import db
from shiftbook.models.base import SyncableMixin

DEFAULT_PATTERN_COLOR = "#E0E0E0"


class TheoreticalShiftPattern(SyncableMixin, db.Model):
    """
    Pattern cycle.

    ``daily_schedules`` is a JSON array indexed by ``dayIndex``:
    ``{dayIndex, startTime, endTime, isOffDay, hasColacion, colacionMinutes, hours}``.
    ``hours`` and ``max_hours_pattern`` are derived; they are recomputed on
    every write and whenever the global max weekly hours change.
    """

    __tablename__ = "theoretical_shift_patterns"
    COLLECTION = "theoreticalShiftPatterns"

    name = db.Column(db.String(120), nullable=False, default="")
    cycle_length_days = db.Column(db.Integer, nullable=False, default=7)
    start_day_of_week = db.Column(db.Integer, nullable=True)
    daily_schedules = db.Column(db.JSON, nullable=True)
    color = db.Column(db.String(20), nullable=True)
    max_hours_pattern = db.Column(db.Float, nullable=True)


class AssignedShift(SyncableMixin, db.Model):
    """Assignment of a pattern to an employee for ``[start_date, end_date?]``."""

    __tablename__ = "assigned_shifts"
    COLLECTION = "assignedShifts"

    employee_id = db.Column(db.String(64), nullable=False, index=True)
    employee_name = db.Column(db.String(150), nullable=True)
    shift_pattern_id = db.Column(db.String(64), nullable=False, index=True)
    shift_pattern_name = db.Column(db.String(120), nullable=True)
    start_date = db.Column(db.String(10), nullable=False)
    end_date = db.Column(db.String(10), nullable=True)
