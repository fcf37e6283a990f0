"""
Shiftbook offline client
Workforce domain model.

Models:
    - Employee: staff member referenced by users, punches and assignments.
    - DailyTimeRecord: one clock-in / clock-out pair for an employee.
"""

from shiftbook.models import db
from shiftbook.models.base import SyncableMixin

# Placeholder written where a punch is missing (auto-closed or auto-created)
MISSING_PUNCH = "SIN REGISTRO"


class Employee(SyncableMixin, db.Model):
    """Staff member. Soft-deleted via ``is_deleted`` once nothing references it."""

    __tablename__ = "employees"
    COLLECTION = "employees"

    name = db.Column(db.String(150), nullable=False, default="")
    rut = db.Column(db.String(20), nullable=True)
    position = db.Column(db.String(100), nullable=True)
    area = db.Column(db.String(100), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class DailyTimeRecord(SyncableMixin, db.Model):
    """
    A punch pair.

    ``entrada`` / ``salida`` are display strings (``YYYY-MM-DDTHH:MM`` or
    ``SIN REGISTRO``); the ``*_timestamp`` columns carry epoch milliseconds.
    ``entrada_timestamp`` is indexed for the recent-days range load.
    """

    __tablename__ = "daily_time_records"
    COLLECTION = "dailyTimeRecords"

    employee_id = db.Column(db.String(64), nullable=False, index=True)
    employee_name = db.Column(db.String(150), nullable=True)
    employee_position = db.Column(db.String(100), nullable=True)
    employee_area = db.Column(db.String(100), nullable=True)
    date = db.Column(db.String(10), nullable=True)
    entrada = db.Column(db.String(20), nullable=True)
    entrada_timestamp = db.Column(db.BigInteger, nullable=True, index=True)
    salida = db.Column(db.String(20), nullable=True)
    salida_timestamp = db.Column(db.BigInteger, nullable=True, index=True)
