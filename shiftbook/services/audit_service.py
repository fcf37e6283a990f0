"""
Audit Log Sink: append-only action journal.

Every repository mutation appends one entry. Entries are syncable records
of the ``auditLogs`` collection: they start ``pending`` and travel to the
remote authority alongside the other changes.

Writing an audit entry never fails the business operation that triggered
it: a storage error here is logged and swallowed. Clearing the journal is
an administrative bulk operation and re-raises.
"""

import logging

from shiftbook.models.audit import AuditLog
from shiftbook.models.base import SYNC_PENDING
from shiftbook.core.exceptions import StorageError
from shiftbook.utils.timeutils import iso_utc, new_record_id, now_ms

logger = logging.getLogger(__name__)

COLLECTION = AuditLog.COLLECTION
SYSTEM_ACTOR = "Sistema"


class AuditService:
    def __init__(self, store, clock=now_ms) -> None:
        self.store = store
        self.clock = clock
        self._logs: list[dict] = []
        self._loaded = False

    @property
    def logs(self) -> list[dict]:
        return list(self._logs)

    def load(self) -> list[dict]:
        """Load all entries, newest first."""
        self._logs = sorted(
            self.store.get_all(COLLECTION),
            key=lambda e: e.get("timestamp", ""),
            reverse=True,
        )
        self._loaded = True
        return self.logs

    def add_log(self, actor: str | None, action: str, details: dict | None = None) -> dict | None:
        """Append one entry. Returns the stored record, or None if the write failed."""
        ms = self.clock()
        entry = {
            "id": new_record_id(ms),
            "timestamp": iso_utc(ms),
            "actorUsername": actor or SYSTEM_ACTOR,
            "action": action,
            "details": details or {},
            "lastModified": ms,
            "syncStatus": SYNC_PENDING,
            "isDeleted": False,
        }
        try:
            self.store.put(COLLECTION, entry)
        except StorageError:
            logger.exception("Audit entry %r could not be written", action,
                             extra={"action": action, "actor": entry["actorUsername"]})
            return None
        if self._loaded:
            self._logs.insert(0, entry)
        return entry

    def search(self, term: str | None = None) -> list[dict]:
        """Case-insensitive filter over actor, action and serialised details."""
        if not self._loaded:
            self.load()
        if not term:
            return self.logs
        needle = term.lower()
        return [
            e for e in self._logs
            if needle in (e.get("actorUsername") or "").lower()
            or needle in (e.get("action") or "").lower()
            or needle in str(e.get("details") or "").lower()
        ]

    def clear_all_logs(self) -> None:
        """Delete every entry in one transaction.

        Raises:
            StorageError: the caller decides how to report a failed clear.
        """
        with self.store.transaction():
            self.store.clear(COLLECTION)
        self._logs = []
        logger.info("Audit log cleared")
