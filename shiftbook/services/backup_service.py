"""
Backup / restore of the whole local database.

Export format: ``{collection: [record, ...]}`` for every collection, records
in wire form (envelope fields included), so an export followed by an
import reproduces the same records field for field.

Import is destructive. The payload is fully validated first; only then are
all collections cleared and refilled, inside one transaction.
"""

import logging

from shiftbook.core.exceptions import ImportRejectedError, StorageError
from shiftbook.models.registry import COLLECTION_MODELS, resolve_collection

logger = logging.getLogger(__name__)

MSG_NOT_OBJECT = "El archivo de respaldo no tiene el formato esperado."
MSG_UNKNOWN_COLLECTIONS = "El respaldo contiene colecciones desconocidas."
MSG_NOT_LIST = "Cada colección del respaldo debe ser una lista de registros."


class BackupService:
    def __init__(self, store, audit, repositories=()) -> None:
        self.store = store
        self.audit = audit
        self.repositories = list(repositories)

    def export_database(self, actor: str | None = None) -> dict[str, list[dict]]:
        """Snapshot every collection. The export audit entry is written after the snapshot."""
        payload = {name: self.store.get_all(name) for name in COLLECTION_MODELS}
        total = sum(len(v) for v in payload.values())
        self.audit.add_log(actor, "Database Exported", {"records": total})
        logger.info("Database exported (%d records)", total)
        return payload

    @staticmethod
    def validate_payload(payload) -> dict[str, list[dict]]:
        """Return the payload keyed by canonical collection names.

        Raises:
            ImportRejectedError: on any shape problem. Nothing has been touched yet.
        """
        if not isinstance(payload, dict):
            raise ImportRejectedError(MSG_NOT_OBJECT)
        unknown = sorted(k for k in payload if resolve_collection(k) is None)
        if unknown:
            raise ImportRejectedError(MSG_UNKNOWN_COLLECTIONS, details={"unknown": unknown})

        normalized: dict[str, list[dict]] = {}
        for key, records in payload.items():
            if not isinstance(records, list) or not all(isinstance(r, dict) and r.get("id") for r in records):
                raise ImportRejectedError(MSG_NOT_LIST, details={"collection": key})
            normalized.setdefault(resolve_collection(key), []).extend(records)
        return normalized

    def import_database(self, payload, actor: str | None = None) -> dict[str, int]:
        """Replace the whole database with ``payload``.

        Returns:
            Record count per imported collection.

        Raises:
            ImportRejectedError: the payload was refused; the database is unchanged.
            StorageError: the replace was rolled back; the database is unchanged.
        """
        try:
            normalized = self.validate_payload(payload)
        except ImportRejectedError as exc:
            logger.warning("Database import rejected: %s", exc)
            self.audit.add_log(actor, "Database Import Failed", {"error": str(exc), **exc.details})
            raise

        try:
            with self.store.transaction():
                for name in COLLECTION_MODELS:
                    self.store.clear(name)
                for name, records in normalized.items():
                    for record in records:
                        self.store.put(name, record)
        except StorageError as exc:
            self.audit.add_log(actor, "Database Import Failed", {"error": str(exc)})
            raise

        for repository in self.repositories:
            repository.load()
        counts = {name: len(records) for name, records in normalized.items()}
        logger.info("Database imported: %s", counts)
        return counts
