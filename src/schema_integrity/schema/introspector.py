"""Live schema introspection via SQLAlchemy's ``Inspector``.

This module reads the connected database into a canonical
``DatabaseSchema``:
- Tables, columns, normalized type strings, nullability, defaults
- Primary key, foreign key, unique and check constraints
- Indexes (name, columns, uniqueness)
- Views (definition and columns)

The same code path serves every engine; dialect differences are absorbed
by SQLAlchemy's reflection API.  Output is deterministic for a fixed
database state: everything without an intrinsic order is sorted by name
and unnamed constraints get derived names.
"""

import logging
import re
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import CompileError

from schema_integrity.adapters.base import DatabaseConnection
from schema_integrity.errors import ErrorCode, IntegrityFailure
from schema_integrity.schema.models import (
    Column,
    ColumnReference,
    Constraint,
    ConstraintKind,
    DatabaseSchema,
    Index,
    Table,
    View,
    ViewColumn,
)

logger = logging.getLogger(__name__)

# Longest prefix first so "timestamp with time zone" wins over "timestamp"
TYPE_ALIASES: list[tuple[str, str]] = [
    ("timestamp without time zone", "timestamp"),
    ("timestamp with time zone", "timestamptz"),
    ("time without time zone", "time"),
    ("time with time zone", "timetz"),
    ("character varying", "varchar"),
    ("double precision", "double"),
    ("national varchar", "nvarchar"),
    ("character", "char"),
]

_INTEGER_TYPES = {"integer", "int", "bigint", "smallint", "int4", "int8", "int2"}


def normalize_type(raw: str) -> str:
    """Normalize a compiled type string.

    Example:
        >>> normalize_type("CHARACTER VARYING(255)")
        'varchar(255)'
        >>> normalize_type("NUMERIC(10, 2)")
        'numeric(10,2)'
    """
    value = re.sub(r"\s+", " ", raw.strip().lower())
    value = re.sub(r"\s*,\s*", ",", value)
    value = re.sub(r"\s*\(\s*", "(", value)
    value = re.sub(r"\s*\)", ")", value)
    for long_name, short_name in TYPE_ALIASES:
        if value.startswith(long_name):
            return short_name + value[len(long_name):]
    return value


def _compile_type(coltype: Any, dialect: Dialect) -> str:
    try:
        return normalize_type(coltype.compile(dialect=dialect))
    except CompileError:
        return type(coltype).__name__.lower()


def _derived_name(table: str, columns: list[str], suffix: str) -> str:
    parts = [table, *columns, suffix] if columns else [table, suffix]
    return "_".join(parts)


def _column_list(columns: Iterable[str]) -> str:
    return ", ".join(columns)


class SchemaAnalyzer:
    """Introspects a live database into a ``DatabaseSchema``.

    Usage:
        analyzer = SchemaAnalyzer(connection, include_views=True)
        schema = await analyzer.analyze()
        print([t.name for t in schema.tables])

    Args:
        connection: Pooled connection exposing ``run_sync``.
        include_views: Reflect views (``schema.views`` is ``None`` otherwise).
        include_indexes: Reflect indexes (``schema.indexes`` is ``None`` otherwise).
        excluded_tables: Extra table names to skip, on top of migration
            bookkeeping tables.
        schema_name: Database schema/namespace to inspect (engine default
            when ``None``).
    """

    # Migration bookkeeping tables are never part of the application schema
    EXCLUDED_TABLES = frozenset({
        "database_migrations",
        "alembic_version",
        "schema_migrations",
        "_prisma_migrations",
        "sqlite_sequence",
    })

    def __init__(
        self,
        connection: DatabaseConnection,
        *,
        include_views: bool = True,
        include_indexes: bool = True,
        excluded_tables: Iterable[str] | None = None,
        schema_name: str | None = None,
    ) -> None:
        self._connection = connection
        self._include_views = include_views
        self._include_indexes = include_indexes
        self._excluded = self.EXCLUDED_TABLES | frozenset(excluded_tables or ())
        self._schema_name = schema_name

    async def analyze(self) -> DatabaseSchema:
        """Capture a snapshot of the live schema.

        Returns:
            ``DatabaseSchema`` versioned by the capture time (UTC ISO-8601).

        Raises:
            IntegrityFailure: ``SCHEMA_ANALYSIS_FAILED`` on any reflection
                or driver error.
        """
        try:
            schema = await self._connection.run_sync(self._reflect)
        except Exception as e:
            raise IntegrityFailure(
                ErrorCode.SCHEMA_ANALYSIS_FAILED,
                "Failed to analyze database schema",
                details=str(e),
            ) from e

        logger.info(
            f"Analyzed schema: {len(schema.tables)} tables, "
            f"{len(schema.indexes or [])} indexes, {len(schema.views or [])} views"
        )
        return schema

    # ------------------------------------------------------------------
    # Reflection (runs on a sync connection inside run_sync)
    # ------------------------------------------------------------------

    def _reflect(self, sync_conn: Connection) -> DatabaseSchema:
        inspector = inspect(sync_conn)
        dialect = sync_conn.dialect

        table_names = sorted(
            name
            for name in inspector.get_table_names(schema=self._schema_name)
            if name not in self._excluded
        )
        tables = [self._reflect_table(inspector, dialect, name) for name in table_names]

        indexes = None
        if self._include_indexes:
            indexes = []
            for name in table_names:
                indexes.extend(self._reflect_indexes(inspector, name))
            indexes.sort(key=lambda idx: (idx.table, idx.name))

        views = None
        if self._include_views:
            views = [
                self._reflect_view(inspector, dialect, name)
                for name in sorted(inspector.get_view_names(schema=self._schema_name))
            ]

        captured_at = datetime.now(timezone.utc)
        return DatabaseSchema(
            version=captured_at.isoformat(),
            captured_at=captured_at,
            tables=tables,
            views=views,
            indexes=indexes,
        )

    def _reflect_table(self, inspector: Inspector, dialect: Dialect, name: str) -> Table:
        schema = self._schema_name
        raw_columns = inspector.get_columns(name, schema=schema)
        pk = inspector.get_pk_constraint(name, schema=schema) or {}
        pk_columns: list[str] = pk.get("constrained_columns") or []

        constraints: list[Constraint] = []
        references: dict[str, ColumnReference] = {}
        unique_columns: set[str] = set()

        if pk_columns:
            constraints.append(
                Constraint(
                    name=pk.get("name") or _derived_name(name, [], "pkey"),
                    kind=ConstraintKind.PRIMARY_KEY,
                    columns=pk_columns,
                    definition=f"PRIMARY KEY ({_column_list(pk_columns)})",
                )
            )

        for fk in inspector.get_foreign_keys(name, schema=schema):
            cols = fk["constrained_columns"]
            ref_table = fk["referred_table"]
            ref_cols = fk["referred_columns"]
            options = fk.get("options") or {}
            definition = (
                f"FOREIGN KEY ({_column_list(cols)}) "
                f"REFERENCES {ref_table} ({_column_list(ref_cols)})"
            )
            if options.get("ondelete"):
                definition += f" ON DELETE {options['ondelete'].upper()}"
            constraints.append(
                Constraint(
                    name=fk.get("name") or _derived_name(name, cols, "fkey"),
                    kind=ConstraintKind.FOREIGN_KEY,
                    columns=cols,
                    definition=definition,
                    references_table=ref_table,
                    references_columns=ref_cols,
                )
            )
            if len(cols) == 1 and len(ref_cols) == 1:
                references[cols[0]] = ColumnReference(
                    table=ref_table,
                    column=ref_cols[0],
                    on_delete=options.get("ondelete"),
                    on_update=options.get("onupdate"),
                )

        for uq in inspector.get_unique_constraints(name, schema=schema):
            cols = uq["column_names"]
            if len(cols) == 1:
                unique_columns.add(cols[0])
            constraints.append(
                Constraint(
                    name=uq.get("name") or _derived_name(name, cols, "key"),
                    kind=ConstraintKind.UNIQUE,
                    columns=cols,
                    definition=f"UNIQUE ({_column_list(cols)})",
                )
            )

        try:
            checks = inspector.get_check_constraints(name, schema=schema)
        except NotImplementedError:
            checks = []
        for position, check in enumerate(checks, start=1):
            constraints.append(
                Constraint(
                    name=check.get("name") or _derived_name(name, [str(position)], "check"),
                    kind=ConstraintKind.CHECK,
                    definition=f"CHECK ({check['sqltext']})",
                )
            )

        if self._include_indexes:
            for idx in inspector.get_indexes(name, schema=schema):
                cols = [c for c in idx.get("column_names") or [] if c]
                if idx.get("unique") and len(cols) == 1:
                    unique_columns.add(cols[0])

        single_integer_pk = len(pk_columns) == 1
        columns: list[Column] = []
        for raw in raw_columns:
            col_name = raw["name"]
            type_str = _compile_type(raw["type"], dialect)
            default = raw.get("default")
            default_str = str(default) if default is not None else None
            columns.append(
                Column(
                    name=col_name,
                    type=type_str,
                    nullable=bool(raw.get("nullable", True)) and col_name not in pk_columns,
                    unique=col_name in unique_columns,
                    auto_increment=self._is_auto_increment(
                        raw,
                        type_str,
                        default_str,
                        dialect.name,
                        single_integer_pk and col_name in pk_columns,
                    ),
                    default=default_str,
                    references=references.get(col_name),
                )
            )

        constraints.sort(key=lambda c: c.name)
        return Table(
            name=name,
            columns=columns,
            primary_key=pk_columns or None,
            constraints=constraints,
        )

    @staticmethod
    def _is_auto_increment(
        raw: dict[str, Any],
        type_str: str,
        default: str | None,
        dialect_name: str,
        sole_pk: bool,
    ) -> bool:
        if raw.get("autoincrement") is True:
            return True
        if raw.get("identity") is not None:
            return True
        if default and default.lower().startswith("nextval("):
            return True
        # INTEGER PRIMARY KEY is an alias for the rowid on SQLite
        return dialect_name == "sqlite" and sole_pk and type_str in _INTEGER_TYPES

    def _reflect_indexes(self, inspector: Inspector, table: str) -> list[Index]:
        indexes = []
        for idx in inspector.get_indexes(table, schema=self._schema_name):
            # Indexes backing a unique constraint are reported as the constraint
            if idx.get("duplicates_constraint"):
                continue
            indexes.append(
                Index(
                    table=table,
                    name=idx["name"],
                    columns=[c for c in idx.get("column_names") or [] if c],
                    unique=bool(idx.get("unique")),
                )
            )
        return indexes

    def _reflect_view(self, inspector: Inspector, dialect: Dialect, name: str) -> View:
        try:
            definition = inspector.get_view_definition(name, schema=self._schema_name) or ""
        except NotImplementedError:
            definition = ""
        columns = [
            ViewColumn(name=c["name"], type=_compile_type(c["type"], dialect))
            for c in inspector.get_columns(name, schema=self._schema_name)
        ]
        return View(
            name=name,
            definition=re.sub(r"\s+", " ", str(definition)).strip(),
            columns=columns,
        )
