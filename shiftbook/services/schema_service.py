"""
Forward-only, idempotent schema migration for the local database.

Compares model metadata against the live schema and only ever ADDS:
missing tables, missing columns and missing indexes (every collection ends
up with its ``sync_status`` and ``is_deleted`` indexes). Nothing is
dropped or rewritten, so it is safe to run on every startup and against a
database left half-upgraded by an interrupted run.

Usage:
    from shiftbook.services.schema_service import migrate_schema
    migrate_schema(db.engine)
"""

import logging

import sqlalchemy as sa

from shiftbook.models import db
from shiftbook.models.settings import STATE_SCHEMA_VERSION, LocalState

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 6


def _column_ddl(col, dialect) -> str:
    """Build the ``ADD COLUMN`` clause for ``col``.

    Added columns are always nullable; existing rows get the literal scalar
    default when the model declares one.
    """
    try:
        col_type = col.type.compile(dialect=dialect)
    except sa.exc.CompileError:
        col_type = "TEXT"

    default = ""
    if col.default is not None and col.default.is_scalar:
        literal = sa.literal(col.default.arg, type_=col.type).compile(
            dialect=dialect, compile_kwargs={"literal_binds": True},
        )
        default = f" DEFAULT {literal}"
    return f'"{col.name}" {col_type}{default}'


def _read_version(conn) -> int | None:
    row = conn.execute(
        sa.select(LocalState.__table__.c.value).where(
            LocalState.__table__.c.key == STATE_SCHEMA_VERSION
        )
    ).first()
    return int(row[0]) if row is not None and row[0] is not None else None


def _write_version(conn, version: int) -> None:
    table = LocalState.__table__
    updated = conn.execute(
        table.update().where(table.c.key == STATE_SCHEMA_VERSION).values(value=version)
    )
    if updated.rowcount == 0:
        conn.execute(table.insert().values(key=STATE_SCHEMA_VERSION, value=version))


def migrate_schema(engine=None, metadata=None) -> dict:
    """Bring the database up to ``SCHEMA_VERSION``.

    Args:
        engine: SQLAlchemy engine; defaults to ``db.engine``.
        metadata: Metadata to migrate to; defaults to the models' metadata.

    Returns:
        Summary dict ``{"from_version", "to_version", "tables", "columns", "indexes"}``
        listing what was added (empty lists on a no-op run).
    """
    engine = engine if engine is not None else db.engine
    metadata = metadata if metadata is not None else db.metadata

    summary = {"from_version": None, "to_version": SCHEMA_VERSION,
               "tables": [], "columns": [], "indexes": []}

    with engine.begin() as conn:
        inspector = sa.inspect(conn)
        existing_tables = set(inspector.get_table_names())

        if LocalState.__tablename__ in existing_tables:
            stored = _read_version(conn)
            summary["from_version"] = stored
            if stored is not None and stored > SCHEMA_VERSION:
                logger.warning(
                    "Database schema v%s is newer than this client (v%s); leaving it untouched",
                    stored, SCHEMA_VERSION,
                )
                summary["to_version"] = stored
                return summary

        for table in metadata.sorted_tables:
            if table.name not in existing_tables:
                table.create(conn)
                summary["tables"].append(table.name)
                continue

            existing_cols = {c["name"] for c in inspector.get_columns(table.name)}
            for col in table.columns:
                if col.name in existing_cols:
                    continue
                conn.execute(sa.text(
                    f'ALTER TABLE "{table.name}" ADD COLUMN {_column_ddl(col, conn.dialect)}'
                ))
                summary["columns"].append(f"{table.name}.{col.name}")

            existing_idx = {i["name"] for i in inspector.get_indexes(table.name)}
            for index in table.indexes:
                if index.name in existing_idx:
                    continue
                index.create(conn)
                summary["indexes"].append(index.name)

        _write_version(conn, SCHEMA_VERSION)

    if summary["tables"] or summary["columns"] or summary["indexes"]:
        logger.info(
            "Schema migrated v%s → v%s: %d tables, %d columns, %d indexes added",
            summary["from_version"], SCHEMA_VERSION,
            len(summary["tables"]), len(summary["columns"]), len(summary["indexes"]),
        )
    else:
        logger.debug("Schema at v%s: no migration needed", SCHEMA_VERSION)
    return summary
