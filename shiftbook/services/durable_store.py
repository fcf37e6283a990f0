"""
Durable Store: named record collections over the local SQLite database.

Every read returns detached wire dicts (camelCase, deep-copied), so callers
can keep them in in-memory caches without aliasing ORM state.

Writes commit immediately unless they run inside ``transaction()``, in
which case the whole block commits once or rolls back entirely:

    with store.transaction():
        store.put("shiftReports", report)
        settings.set_value("logbookFolioCounter", 8)

Inside a transaction, ``savepoint()`` scopes a block whose failure undoes
only that block; the sync engine applies each server update this way.

Any SQLAlchemy failure is rolled back and re-raised as ``StorageError``.
The nesting depth is tracked per thread: the scoped session already is,
and a request on another thread must not join someone else's scope.
"""

import logging
import threading
from contextlib import contextmanager

import sqlalchemy as sa
from sqlalchemy.exc import SQLAlchemyError

from shiftbook.core.exceptions import StorageError
from shiftbook.models import db
from shiftbook.models.registry import COLLECTION_MODELS, model_for
from shiftbook.models.settings import LocalState

logger = logging.getLogger(__name__)


class DurableStore:
    """Collection-oriented facade over a SQLAlchemy session.

    Args:
        session: SQLAlchemy session; defaults to the Flask-SQLAlchemy scoped session.
    """

    def __init__(self, session=None) -> None:
        self._session = session if session is not None else db.session
        self._local = threading.local()

    @property
    def session(self):
        return self._session

    @property
    def collections(self) -> tuple:
        return tuple(COLLECTION_MODELS)

    # ── Transactions ─────────────────────────────────────────────────────

    @property
    def _depth(self) -> int:
        return getattr(self._local, "depth", 0)

    @_depth.setter
    def _depth(self, value: int) -> None:
        self._local.depth = value

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self):
        """Atomic scope. Nested scopes join the outermost one."""
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
            self._session.commit()
        except SQLAlchemyError as exc:
            self._session.rollback()
            logger.error("Transaction rolled back: %s", exc)
            raise StorageError("transaction", cause=exc) from exc
        except BaseException:
            self._session.rollback()
            raise
        finally:
            self._depth = 0

    @contextmanager
    def savepoint(self):
        """Run a block inside the open transaction as its own SAVEPOINT.

        A failure rolls back only this block and propagates; the enclosing
        transaction stays usable.
        """
        if not self._depth:
            raise RuntimeError("savepoint() needs an open transaction()")
        try:
            with self._session.begin_nested():
                yield self
        except SQLAlchemyError as exc:
            raise StorageError("savepoint", cause=exc) from exc

    def _write(self, operation: str, collection: str | None, fn):
        """Run ``fn`` and commit unless an outer transaction owns the commit."""
        try:
            result = fn()
            if self._depth:
                self._session.flush()
            else:
                self._session.commit()
            return result
        except SQLAlchemyError as exc:
            # An open scope (transaction or savepoint) owns the rollback
            if not self._depth:
                self._session.rollback()
            logger.error(
                "Store %s failed on %s: %s", operation, collection, exc,
                extra={"collection": collection},
            )
            raise StorageError(operation, collection=collection, cause=exc) from exc

    # ── Reads ────────────────────────────────────────────────────────────

    def get_all(self, collection: str) -> list[dict]:
        model = model_for(collection)
        rows = self._session.execute(sa.select(model)).scalars().all()
        return [row.to_dict() for row in rows]

    def get_all_by_index(self, collection: str, index_name: str, value) -> list[dict]:
        """Equality lookup on a secondary index (``syncStatus``, ``employeeId`` …)."""
        model = model_for(collection)
        column = self._indexed_column(model, index_name)
        rows = self._session.execute(
            sa.select(model).where(column == value)
        ).scalars().all()
        return [row.to_dict() for row in rows]

    def get_all_by_range(
        self,
        collection: str,
        index_name: str,
        lower=None,
        upper=None,
    ) -> list[dict]:
        """Inclusive range lookup on an indexed field; either bound may be open."""
        model = model_for(collection)
        column = self._indexed_column(model, index_name)
        stmt = sa.select(model)
        if lower is not None:
            stmt = stmt.where(column >= lower)
        if upper is not None:
            stmt = stmt.where(column <= upper)
        rows = self._session.execute(stmt).scalars().all()
        return [row.to_dict() for row in rows]

    def get(self, collection: str, record_id: str) -> dict | None:
        model = model_for(collection)
        row = self._session.get(model, record_id)
        return row.to_dict() if row is not None else None

    def count(self, collection: str) -> int:
        model = model_for(collection)
        return self._session.execute(
            sa.select(sa.func.count()).select_from(model)
        ).scalar_one()

    @staticmethod
    def _indexed_column(model, index_name: str):
        fields = model.indexed_fields()
        if index_name not in fields:
            raise ValueError(f"No index {index_name!r} on {model.COLLECTION}")
        return getattr(model, fields[index_name])

    # ── Writes ───────────────────────────────────────────────────────────

    def put(self, collection: str, record: dict) -> str:
        """Upsert ``record`` by primary key. Returns the id."""
        model = model_for(collection)
        record_id = record.get("id")
        if not record_id:
            raise ValueError(f"Record for {collection} has no id")

        def _do():
            row = self._session.get(model, record_id)
            if row is None:
                row = model(id=record_id)
                self._session.add(row)
            row.replace_with(record)
            return record_id

        return self._write("put", collection, _do)

    def bulk_put(self, collection: str, records: list[dict]) -> int:
        """Upsert many records in one atomic scope."""
        with self.transaction():
            for record in records:
                self.put(collection, record)
        return len(records)

    def delete(self, collection: str, record_id: str) -> None:
        """Hard delete. A missing id is a no-op."""
        model = model_for(collection)

        def _do():
            row = self._session.get(model, record_id)
            if row is not None:
                self._session.delete(row)

        self._write("delete", collection, _do)

    def clear(self, collection: str) -> None:
        model = model_for(collection)
        self._write(
            "clear", collection,
            lambda: self._session.execute(sa.delete(model)),
        )

    # ── Device-local state (watermark, token, schema version) ────────────

    def get_state(self, key: str, default=None):
        row = self._session.get(LocalState, key)
        return row.value if row is not None and row.value is not None else default

    def set_state(self, key: str, value) -> None:
        def _do():
            row = self._session.get(LocalState, key)
            if row is None:
                row = LocalState(key=key)
                self._session.add(row)
            row.value = value

        self._write("set_state", "local_state", _do)
