"""
Collection registry: wire collection name → ORM model.

``SYNCABLE_COLLECTIONS`` are pushed to / pulled from the remote authority
(the audit log travels separately under ``auditLogs``). Quick notes and
meter readings carry the envelope but stay on the device.
"""

from shiftbook.models.audit import AuditLog
from shiftbook.models.auth import User
from shiftbook.models.base import snake
from shiftbook.models.logbook import MeterReading, QuickNote, ShiftReport
from shiftbook.models.scheduling import AssignedShift, TheoreticalShiftPattern
from shiftbook.models.settings import AppSetting
from shiftbook.models.workforce import DailyTimeRecord, Employee

AUDIT_COLLECTION = AuditLog.COLLECTION

COLLECTION_MODELS = {
    model.COLLECTION: model
    for model in (
        Employee,
        User,
        DailyTimeRecord,
        TheoreticalShiftPattern,
        AssignedShift,
        ShiftReport,
        AppSetting,
        AuditLog,
        QuickNote,
        MeterReading,
    )
}

SYNCABLE_COLLECTIONS = (
    Employee.COLLECTION,
    User.COLLECTION,
    DailyTimeRecord.COLLECTION,
    TheoreticalShiftPattern.COLLECTION,
    AssignedShift.COLLECTION,
    ShiftReport.COLLECTION,
    AppSetting.COLLECTION,
)

LOCAL_ONLY_COLLECTIONS = (QuickNote.COLLECTION, MeterReading.COLLECTION)

# Accept both the wire name and the table name (``daily_time_records``);
# bootstrap payloads from older servers use the latter.
_ALIASES = {}
for _name, _model in COLLECTION_MODELS.items():
    _ALIASES[_name] = _name
    _ALIASES[_model.__tablename__] = _name
    _ALIASES[snake(_name)] = _name


def resolve_collection(name: str) -> str | None:
    """Return the canonical collection name for ``name`` or None if unknown."""
    return _ALIASES.get(name)


def model_for(collection: str):
    """Return the model class for a canonical collection name.

    Raises:
        ValueError: if the collection is unknown.
    """
    try:
        return COLLECTION_MODELS[collection]
    except KeyError:
        raise ValueError(f"Unknown collection: {collection!r}") from None
