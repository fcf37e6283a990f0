"""
Shiftbook offline client
Audit domain model.

Models:
    - AuditLog: append-only journal of user actions, synced like any other collection.
"""

from shiftbook.models import db
from shiftbook.models.base import SyncableMixin


class AuditLog(SyncableMixin, db.Model):
    """
    Immutable audit trail entry.

    One row per action. Rows are only ever appended or bulk-cleared;
    ``details`` carries the free-form context of the action.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_actor", "actor_username"),
        db.Index("idx_audit_action", "action"),
    )
    COLLECTION = "auditLogs"

    # ISO-8601 UTC string; sorts lexicographically
    timestamp = db.Column(db.String(40), nullable=False, index=True)
    actor_username = db.Column(db.String(150), nullable=False, default="Sistema")
    action = db.Column(db.String(120), nullable=False)
    details = db.Column(db.JSON, nullable=True)
