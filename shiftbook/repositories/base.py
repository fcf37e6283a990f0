"""
Shared repository plumbing.

A repository owns one collection: an in-memory cache sorted by the entity's
comparator, plus mutation methods that validate, persist, update the cache
and append an audit entry. Mutations return an ``OperationResult`` instead
of raising; storage failures become a ``<Action> Failed`` audit entry and a
negative result, and leave the cache untouched.
"""

import copy
import logging

from shiftbook.core.exceptions import StorageError
from shiftbook.models.base import SYNC_PENDING
from shiftbook.utils.timeutils import now_ms

logger = logging.getLogger(__name__)

STORAGE_FAILURE_MESSAGE = "No se pudo guardar el cambio en la base de datos local."


class OperationResult:
    """Outcome of a repository mutation.

    Attributes:
        ok:              True if the change was validated and persisted.
        record:          The created / updated record (wire dict) on success.
        message:         User-facing explanation on failure.
        storage_failure: True when the failure came from the Durable Store
                         rather than a business rule.
    """

    def __init__(
        self,
        ok: bool,
        record: dict | None = None,
        message: str | None = None,
        storage_failure: bool = False,
    ) -> None:
        self.ok = ok
        self.record = record
        self.message = message
        self.storage_failure = storage_failure

    def __bool__(self) -> bool:
        return self.ok

    def __repr__(self):
        return f"<OperationResult ok={self.ok} message={self.message!r}>"

    @classmethod
    def success(cls, record: dict | None = None) -> "OperationResult":
        return cls(True, record=record)

    @classmethod
    def rejected(cls, message: str) -> "OperationResult":
        return cls(False, message=message)

    @classmethod
    def failed(cls, message: str = STORAGE_FAILURE_MESSAGE) -> "OperationResult":
        return cls(False, message=message, storage_failure=True)


class BaseRepository:
    """Cache + persist + audit cycle shared by every entity repository."""

    COLLECTION = ""
    # Cache sort: key function over wire dicts, descending when True
    SORT_DESCENDING = False

    def __init__(self, store, audit, clock=now_ms) -> None:
        self.store = store
        self.audit = audit
        self.clock = clock
        self._items: list[dict] = []

    # ── Cache ────────────────────────────────────────────────────────────

    def sort_key(self, record: dict):
        return record.get("id", "")

    def _sorted(self, records) -> list[dict]:
        return sorted(records, key=self.sort_key, reverse=self.SORT_DESCENDING)

    @property
    def items(self) -> list[dict]:
        return copy.deepcopy(self._items)

    def load(self) -> list[dict]:
        self._items = self._sorted(self.store.get_all(self.COLLECTION))
        return self.items

    def get(self, record_id: str) -> dict | None:
        for item in self._items:
            if item["id"] == record_id:
                return copy.deepcopy(item)
        return None

    def _cache_upsert(self, record: dict) -> None:
        others = [i for i in self._items if i["id"] != record["id"]]
        self._items = self._sorted(others + [copy.deepcopy(record)])

    def _cache_remove(self, record_id: str) -> None:
        self._items = [i for i in self._items if i["id"] != record_id]

    # ── Persistence helpers ──────────────────────────────────────────────

    def stamp(self, record: dict) -> dict:
        """Mark ``record`` as a local change awaiting sync."""
        record["lastModified"] = self.clock()
        record["syncStatus"] = SYNC_PENDING
        record.pop("syncError", None)
        record.setdefault("isDeleted", False)
        return record

    def _save(
        self,
        record: dict,
        *,
        actor: str | None,
        action: str,
        failed_action: str,
        details: dict | None = None,
    ) -> OperationResult:
        """Persist ``record``, then update the cache and audit ``action``."""
        details = details or {}
        try:
            self.store.put(self.COLLECTION, record)
        except StorageError as exc:
            return self._storage_failed(exc, actor, failed_action, details)
        self._cache_upsert(record)
        self.audit.add_log(actor, action, details)
        return OperationResult.success(copy.deepcopy(record))

    def _remove(
        self,
        record_id: str,
        *,
        actor: str | None,
        action: str,
        failed_action: str,
        details: dict | None = None,
    ) -> OperationResult:
        details = details or {}
        try:
            self.store.delete(self.COLLECTION, record_id)
        except StorageError as exc:
            return self._storage_failed(exc, actor, failed_action, details)
        self._cache_remove(record_id)
        self.audit.add_log(actor, action, details)
        return OperationResult.success()

    def _storage_failed(self, exc, actor, failed_action, details) -> OperationResult:
        logger.error("%s: %s", failed_action, exc,
                     extra={"collection": self.COLLECTION, "action": failed_action})
        self.audit.add_log(actor, failed_action, {**details, "error": str(exc)})
        return OperationResult.failed()
