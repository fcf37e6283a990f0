"""
SyncableMixin: envelope carried by every record collection.

Adds the sync-tracking columns (``id``, ``last_modified``, ``sync_status``,
``sync_error``, ``is_deleted``) and the conversion between ORM rows and the
camelCase wire dicts that repositories, the remote authority and backups
exchange.

Usage:
    class Employee(SyncableMixin, db.Model):
        __tablename__ = "employees"
        COLLECTION = "employees"
        ...

    row.to_dict()          # {"id": ..., "lastModified": ..., "syncStatus": ...}
    row.replace_with(rec)  # full-record upsert semantics
"""

import copy
import re

from shiftbook.models import db

SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_ERROR = "error"
SYNC_STATUSES = (SYNC_PENDING, SYNC_SYNCED, SYNC_ERROR)

_CAMEL_RE = re.compile(r"_([a-z0-9])")
_SNAKE_RE = re.compile(r"(?<!^)(?=[A-Z])")


def camel(name: str) -> str:
    """``entrada_timestamp`` → ``entradaTimestamp``."""
    return _CAMEL_RE.sub(lambda m: m.group(1).upper(), name)


def snake(name: str) -> str:
    """``entradaTimestamp`` → ``entrada_timestamp``."""
    return _SNAKE_RE.sub("_", name).lower()


class SyncableMixin:
    """Mixin that adds the syncable envelope to any collection model."""

    # Wire name of the collection; set on every concrete model
    COLLECTION: str = ""

    id = db.Column(db.String(64), primary_key=True)
    last_modified = db.Column(db.BigInteger, nullable=False, default=0)
    sync_status = db.Column(db.String(10), nullable=False, default=SYNC_PENDING, index=True)
    sync_error = db.Column(db.Text, nullable=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False, index=True)

    # ── Wire mapping ─────────────────────────────────────────────────────

    @classmethod
    def wire_fields(cls) -> dict:
        """Return ``{wireKey: column_name}`` for every column."""
        return {camel(col.name): col.name for col in cls.__table__.columns}

    @classmethod
    def indexed_fields(cls) -> dict:
        """Return ``{wireKey: column_name}`` for columns backed by an index."""
        out = {}
        for index in cls.__table__.indexes:
            for col in index.columns:
                out[camel(col.name)] = col.name
        return out

    def to_dict(self) -> dict:
        """Serialise to the wire form. ``None`` values are omitted."""
        out = {}
        for col in self.__table__.columns:
            value = getattr(self, col.name)
            if value is None:
                continue
            out[camel(col.name)] = copy.deepcopy(value)
        return out

    def replace_with(self, record: dict) -> None:
        """Overwrite every column from ``record`` (missing keys reset to defaults).

        Unknown keys are ignored; the remote authority adds bookkeeping fields
        of its own (``createdAt``, ``updatedAt``) that have no local column.
        """
        for col in self.__table__.columns:
            key = camel(col.name)
            if key in record and record[key] is not None:
                setattr(self, col.name, copy.deepcopy(record[key]))
            elif col.primary_key:
                continue
            elif col.default is not None and col.default.is_scalar:
                setattr(self, col.name, copy.deepcopy(col.default.arg))
            else:
                setattr(self, col.name, None)

    def __repr__(self):
        return f"<{type(self).__name__} {self.id} {self.sync_status}>"
