"""Tests for live schema introspection.

Builds a small SQLite database and checks the DatabaseSchema produced by
SchemaAnalyzer: columns, keys, constraints, indexes, views and
determinism across runs.
"""

import pathlib
from unittest.mock import AsyncMock

import pytest

from schema_integrity.adapters.pooled import ConnectionManager
from schema_integrity.config.models import DatabaseSettings, EngineKind
from schema_integrity.drift.comparator import compare_schemas
from schema_integrity.errors import ErrorCode, IntegrityFailure
from schema_integrity.schema.introspector import SchemaAnalyzer, normalize_type
from schema_integrity.schema.models import ConstraintKind

DDL = [
    """CREATE TABLE customers (
        id INTEGER PRIMARY KEY,
        email VARCHAR(255) NOT NULL,
        name TEXT,
        UNIQUE (email)
    )""",
    """CREATE TABLE orders (
        id INTEGER PRIMARY KEY,
        customer_id INTEGER NOT NULL REFERENCES customers(id),
        total NUMERIC(10, 2) NOT NULL,
        status VARCHAR(20) NOT NULL DEFAULT 'pending'
    )""",
    "CREATE INDEX idx_orders_status ON orders (status)",
    """CREATE VIEW customer_totals AS
        SELECT customer_id, SUM(total) AS total FROM orders GROUP BY customer_id""",
    "CREATE TABLE database_migrations (version TEXT, status TEXT)",
]


async def _build_database(path: pathlib.Path) -> ConnectionManager:
    manager = ConnectionManager(DatabaseSettings(engine=EngineKind.SQLITE, database=str(path)))
    result = await manager.connect()
    assert result.success, result.error
    for statement in DDL:
        await result.data.query(statement)
    return manager


# ============================================================================
# Test: Type normalization
# ============================================================================


class TestNormalizeType:
    """Verify canonical type strings."""

    def test_long_names_shortened(self) -> None:
        assert normalize_type("CHARACTER VARYING(255)") == "varchar(255)"
        assert normalize_type("timestamp with time zone") == "timestamptz"
        assert normalize_type("TIMESTAMP WITHOUT TIME ZONE") == "timestamp"

    def test_whitespace_collapsed(self) -> None:
        assert normalize_type("NUMERIC( 10 , 2 )") == "numeric(10,2)"


# ============================================================================
# Test: Analyzer against SQLite
# ============================================================================


class TestSchemaAnalyzer:
    """Verify analyze() against a real SQLite database."""

    @pytest.mark.asyncio
    async def test_tables_and_columns(self, tmp_path: pathlib.Path) -> None:
        """Tables are sorted, migration bookkeeping is excluded, columns are normalized."""
        manager = await _build_database(tmp_path / "shop.db")
        try:
            schema = await SchemaAnalyzer(manager.connection).analyze()
        finally:
            await manager.disconnect()

        assert schema.table_names == ["customers", "orders"]

        orders = schema.table("orders")
        assert orders.column_names == ["id", "customer_id", "total", "status"]
        assert orders.primary_key == ["id"]

        order_id = orders.column("id")
        assert order_id.type == "integer"
        assert order_id.nullable is False
        assert order_id.auto_increment is True

        total = orders.column("total")
        assert total.type == "numeric(10,2)"
        assert total.nullable is False
        assert total.auto_increment is False

        status = orders.column("status")
        assert status.type == "varchar(20)"
        assert "pending" in status.default

        assert schema.table("customers").column("name").nullable is True

    @pytest.mark.asyncio
    async def test_keys_and_constraints(self, tmp_path: pathlib.Path) -> None:
        """Primary, foreign and unique keys are captured with derived names."""
        manager = await _build_database(tmp_path / "shop.db")
        try:
            schema = await SchemaAnalyzer(manager.connection).analyze()
        finally:
            await manager.disconnect()

        orders = schema.table("orders")
        kinds = {c.kind for c in orders.constraints}
        assert ConstraintKind.PRIMARY_KEY in kinds
        assert ConstraintKind.FOREIGN_KEY in kinds

        reference = orders.column("customer_id").references
        assert reference.table == "customers"
        assert reference.column == "id"

        fk = next(c for c in orders.constraints if c.kind is ConstraintKind.FOREIGN_KEY)
        assert fk.references_table == "customers"
        assert fk.columns == ["customer_id"]

        assert schema.table("customers").column("email").unique is True

    @pytest.mark.asyncio
    async def test_indexes_and_views(self, tmp_path: pathlib.Path) -> None:
        """Explicit indexes and views are reflected when requested."""
        manager = await _build_database(tmp_path / "shop.db")
        try:
            schema = await SchemaAnalyzer(manager.connection).analyze()
            bare = await SchemaAnalyzer(
                manager.connection, include_views=False, include_indexes=False
            ).analyze()
        finally:
            await manager.disconnect()

        assert "orders.idx_orders_status" in [i.key for i in schema.indexes]
        status_index = next(i for i in schema.indexes if i.name == "idx_orders_status")
        assert status_index.columns == ["status"]
        assert status_index.unique is False

        assert [v.name for v in schema.views] == ["customer_totals"]
        assert "SUM(total)" in schema.views[0].definition

        assert bare.views is None
        assert bare.indexes is None

    @pytest.mark.asyncio
    async def test_analysis_is_deterministic(self, tmp_path: pathlib.Path) -> None:
        """Two snapshots of an unchanged database compare equal."""
        manager = await _build_database(tmp_path / "shop.db")
        try:
            analyzer = SchemaAnalyzer(manager.connection)
            first = await analyzer.analyze()
            second = await analyzer.analyze()
        finally:
            await manager.disconnect()

        assert compare_schemas(first, second) == []
        assert first.tables == second.tables
        assert first.indexes == second.indexes

    @pytest.mark.asyncio
    async def test_excluded_tables(self, tmp_path: pathlib.Path) -> None:
        """Extra exclusions are honoured on top of migration tables."""
        manager = await _build_database(tmp_path / "shop.db")
        try:
            schema = await SchemaAnalyzer(
                manager.connection, excluded_tables=["customers"]
            ).analyze()
        finally:
            await manager.disconnect()

        assert schema.table_names == ["orders"]

    @pytest.mark.asyncio
    async def test_failure_wrapped(self) -> None:
        """Driver errors surface as SCHEMA_ANALYSIS_FAILED."""
        connection = AsyncMock()
        connection.run_sync.side_effect = RuntimeError("connection reset")

        with pytest.raises(IntegrityFailure) as excinfo:
            await SchemaAnalyzer(connection).analyze()

        assert excinfo.value.code is ErrorCode.SCHEMA_ANALYSIS_FAILED
        assert excinfo.value.error.details == "connection reset"
