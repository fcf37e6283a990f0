"""
Quick notes and meter readings.

Quick notes expire five days after creation. ``load`` returns the valid
subset first and purges the expired rows afterwards; a failed purge is
logged and never affects what the caller got back.
"""

import logging
import math
import uuid

from shiftbook.core.exceptions import StorageError
from shiftbook.models.auth import ROLE_ADMIN
from shiftbook.models.logbook import MeterReading, QuickNote
from shiftbook.repositories.base import BaseRepository, OperationResult
from shiftbook.services.settings_registry import METER_CONFIGS
from shiftbook.utils.timeutils import DAY_MS, now_ms

logger = logging.getLogger(__name__)

NOTE_RETENTION_MS = 5 * DAY_MS

MSG_EMPTY_NOTE = "La nota no puede estar vacía."
MSG_NOTE_NOT_FOUND = "Nota no encontrada."
MSG_NOT_AUTHOR = "Solo el autor o un Administrador puede eliminar esta nota."
MSG_NO_READINGS = "Debe ingresar al menos una lectura."
MSG_NEGATIVE = "Las lecturas deben ser números no negativos."
MSG_UNKNOWN_METER = "Medidor no configurado: {meter}."


class QuickNoteRepository(BaseRepository):
    COLLECTION = QuickNote.COLLECTION
    SORT_DESCENDING = True

    def sort_key(self, record):
        return record.get("createdAt") or 0

    def is_expired(self, note: dict, now: int) -> bool:
        return now - (note.get("createdAt") or 0) >= NOTE_RETENTION_MS

    def load(self) -> list[dict]:
        now = self.clock()
        valid, expired = [], []
        for note in self.store.get_all(self.COLLECTION):
            (expired if self.is_expired(note, now) else valid).append(note)
        self._items = self._sorted(valid)
        result = self.items
        self._purge(expired)
        return result

    def _purge(self, expired: list[dict]) -> None:
        if not expired:
            return
        try:
            with self.store.transaction():
                for note in expired:
                    self.store.delete(self.COLLECTION, note["id"])
        except StorageError:
            logger.exception("Could not purge %d expired quick notes", len(expired),
                             extra={"collection": self.COLLECTION})
            return
        logger.info("Purged %d expired quick notes", len(expired),
                    extra={"collection": self.COLLECTION})

    def add_note(self, content: str, author: str) -> OperationResult:
        content = (content or "").strip()
        if not content:
            return OperationResult.rejected(MSG_EMPTY_NOTE)
        now = self.clock()
        record = self.stamp({
            "id": str(uuid.uuid4()),
            "content": content,
            "authorUsername": author,
            "createdAt": now,
        })
        return self._save(
            record, actor=author,
            action="Quick Note Added", failed_action="Quick Note Add Failed",
            details={"noteId": record["id"], "content": content[:50]},
        )

    def delete_note(self, note_id: str, user: dict) -> OperationResult:
        """Only the author or an Administrador may delete a note."""
        note = self.get(note_id)
        if note is None:
            return OperationResult.rejected(MSG_NOTE_NOT_FOUND)
        username = user.get("username")
        if note.get("authorUsername") != username and user.get("role") != ROLE_ADMIN:
            return OperationResult.rejected(MSG_NOT_AUTHOR)
        return self._remove(
            note_id, actor=username,
            action="Quick Note Deleted", failed_action="Quick Note Delete Failed",
            details={"noteId": note_id, "author": note.get("authorUsername")},
        )


class MeterReadingRepository(BaseRepository):
    COLLECTION = MeterReading.COLLECTION
    SORT_DESCENDING = True

    def __init__(self, store, audit, settings, clock=now_ms) -> None:
        super().__init__(store, audit, clock)
        self.settings = settings

    def sort_key(self, record):
        return record.get("timestamp") or 0

    def meter_configs(self) -> list[dict]:
        """Configured meters: ``[{id, label, unit?}]``."""
        return list(self.settings.get_value(METER_CONFIGS, []) or [])

    def update_meter_configs(self, configs: list[dict], actor: str | None) -> OperationResult:
        cleaned = [
            {"id": c.get("id") or str(uuid.uuid4()), "label": c["label"].strip(),
             **({"unit": c["unit"]} if c.get("unit") else {})}
            for c in configs if (c.get("label") or "").strip()
        ]
        try:
            self.settings.set_value(METER_CONFIGS, cleaned)
        except StorageError as exc:
            return self._storage_failed(exc, actor, "Meter Configs Update Failed", {"count": len(cleaned)})
        self.audit.add_log(actor, "Meter Configs Updated", {"meters": [c["label"] for c in cleaned]})
        return OperationResult.success({"meterConfigs": cleaned})

    def add_reading(self, values: dict, author: str) -> OperationResult:
        """Store one batch of readings given as ``{meterConfigId: value}``."""
        if not values:
            return OperationResult.rejected(MSG_NO_READINGS)
        configs = {c["id"]: c for c in self.meter_configs()}
        readings = []
        for meter_id, raw in values.items():
            if meter_id not in configs:
                return OperationResult.rejected(MSG_UNKNOWN_METER.format(meter=meter_id))
            if isinstance(raw, bool):
                return OperationResult.rejected(MSG_NEGATIVE)
            try:
                value = float(raw)
            except (TypeError, ValueError):
                return OperationResult.rejected(MSG_NEGATIVE)
            if not math.isfinite(value) or value < 0:
                return OperationResult.rejected(MSG_NEGATIVE)
            readings.append({"meterConfigId": meter_id, "label": configs[meter_id]["label"], "value": value})

        record = self.stamp({
            "id": str(uuid.uuid4()),
            "timestamp": self.clock(),
            "authorUsername": author,
            "readings": readings,
        })
        return self._save(
            record, actor=author,
            action="Meter Reading Added", failed_action="Meter Reading Add Failed",
            details={"readingId": record["id"], "count": len(readings)},
        )
