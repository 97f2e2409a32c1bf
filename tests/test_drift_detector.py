"""Tests for drift detection, persistence and notification.

Most tests drive DriftDetector with an in-memory analyzer and temporary
baseline/report locations.  TestEndToEnd runs the full pipeline against a
SQLite database, including the migration-history lookup.
"""

import asyncio
import json
import pathlib
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
from pydantic import ValidationError

from schema_integrity.adapters.pooled import ConnectionManager
from schema_integrity.config.models import (
    DatabaseSettings,
    DriftSettings,
    EngineKind,
    FormValidationSettings,
    RouteValidationSettings,
)
from schema_integrity.drift.detector import (
    UNAUTHORIZED_OBJECT,
    DetectorState,
    DriftDetector,
    migration_count_sql,
)
from schema_integrity.drift.models import (
    Drift,
    DriftReport,
    DriftSeverity,
    DriftType,
    SuggestionKind,
)
from schema_integrity.drift.notify import WebhookNotifier
from schema_integrity.drift.storage import BaselineStore, ReportWriter
from schema_integrity.errors import ErrorCode
from schema_integrity.schema.introspector import SchemaAnalyzer
from schema_integrity.schema.models import Column, DatabaseSchema, Index, Table
from schema_integrity.validation.forms import FormValidator
from schema_integrity.validation.routes import RouteValidator

ORDERS = Table(
    name="orders",
    columns=[
        Column(name="id", type="integer", nullable=False, auto_increment=True),
        Column(name="total", type="numeric(10,2)", nullable=False),
    ],
    primary_key=["id"],
)
ORDERS_WITH_DISCOUNT = ORDERS.model_copy(
    update={"columns": [*ORDERS.columns, Column(name="discount", type="numeric")]}
)

WEBHOOK_URL = "https://hooks.example.com/drift"


class StaticAnalyzer:
    """Returns a fixed snapshot; swap ``schema`` to simulate changes."""

    def __init__(self, schema: DatabaseSchema) -> None:
        self.schema = schema

    async def analyze(self) -> DatabaseSchema:
        return self.schema


class FailingAnalyzer:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def analyze(self) -> DatabaseSchema:
        raise self.error


def _schema(*tables: Table, version: str = "v1", indexes=None) -> DatabaseSchema:
    return DatabaseSchema(version=version, tables=list(tables), indexes=indexes)


def _detector(
    tmp_path: pathlib.Path,
    analyzer,
    settings: DriftSettings | None = None,
    **kwargs,
) -> DriftDetector:
    return DriftDetector(
        analyzer,
        settings or DriftSettings(),
        baseline_store=BaselineStore(tmp_path / "schema" / "schema.json"),
        report_writer=ReportWriter(tmp_path / "reports"),
        **kwargs,
    )


def _report_files(tmp_path: pathlib.Path) -> list[pathlib.Path]:
    return sorted((tmp_path / "reports").glob("drift-report-*.json"))


# ============================================================================
# Test: Storage
# ============================================================================


class TestStorage:
    """Verify baseline replacement and write-once reports."""

    def test_baseline_round_trip(self, tmp_path: pathlib.Path) -> None:
        store = BaselineStore(tmp_path / "schema" / "schema.json")
        assert store.load() is None

        store.save(_schema(ORDERS))
        store.save(_schema(ORDERS_WITH_DISCOUNT, version="v2"))

        loaded = store.load()
        assert loaded.version == "v2"
        assert loaded.table("orders").column("discount") is not None
        assert [p.name for p in store.path.parent.iterdir()] == ["schema.json"]

    def test_reports_never_overwritten(self, tmp_path: pathlib.Path) -> None:
        """Two reports with the same timestamp land in different files."""
        writer = ReportWriter(tmp_path / "reports")
        report = DriftReport(
            timestamp=datetime(2026, 3, 1, 9, 30, 0, tzinfo=timezone.utc),
            schema_version="v1",
            database_version="v2",
        )

        first = writer.write(report)
        second = writer.write(report)

        assert first.name == "drift-report-2026-03-01-093000.json"
        assert second.name == "drift-report-2026-03-01-093000-1.json"
        assert len(writer.list_reports()) == 2
        assert writer.latest().database_version == "v2"

    def test_no_reports_yet(self, tmp_path: pathlib.Path) -> None:
        writer = ReportWriter(tmp_path / "reports")
        assert writer.list_reports() == []
        assert writer.latest() is None


# ============================================================================
# Test: Detection
# ============================================================================


class TestDetect:
    """Verify one detection pass against a stored baseline."""

    @pytest.mark.asyncio
    async def test_extra_column_reported_and_written(self, tmp_path: pathlib.Path) -> None:
        detector = _detector(tmp_path, StaticAnalyzer(_schema(ORDERS)))
        assert (await detector.save_baseline()).success

        detector._analyzer.schema = _schema(ORDERS_WITH_DISCOUNT, version="v2")
        detector._connection = AsyncMock()
        detector._connection.query.return_value = [{"count": 1}]

        result = await detector.detect()

        assert result.success
        report = result.data
        assert [(d.type, d.severity, d.object) for d in report.drifts] == [
            (DriftType.EXTRA_COLUMN, DriftSeverity.MEDIUM, "orders.discount")
        ]
        assert report.schema_version == "v1"
        assert report.database_version == "v2"
        assert report.has_blocking_drift is False
        assert [s.type for s in report.suggestions] == [SuggestionKind.SCHEMA_UPDATE]

        (path,) = _report_files(tmp_path)
        assert result.metadata["report_path"] == str(path)
        assert json.loads(path.read_text())["drifts"][0]["object"] == "orders.discount"
        assert detector.state is DetectorState.IDLE

    @pytest.mark.asyncio
    async def test_unrecorded_change_is_critical(self, tmp_path: pathlib.Path) -> None:
        """A structural change with no migration in range adds a CRITICAL finding."""
        analyzer = StaticAnalyzer(_schema(ORDERS))
        detector = _detector(tmp_path, analyzer)
        await detector.save_baseline()
        analyzer.schema = _schema(ORDERS_WITH_DISCOUNT, version="v2")

        result = await detector.detect()

        critical = [d for d in result.data.drifts if d.severity is DriftSeverity.CRITICAL]
        (drift,) = critical
        assert drift.object == UNAUTHORIZED_OBJECT
        assert drift.message == "Database schema changed without migration"
        assert drift.expected != drift.actual
        assert result.data.has_blocking_drift is True

        suggestion = next(s for s in result.data.suggestions if s.object == UNAUTHORIZED_OBJECT)
        assert suggestion.type is SuggestionKind.CODE_CHANGE

    @pytest.mark.asyncio
    async def test_missing_baseline_warns(self, tmp_path: pathlib.Path) -> None:
        detector = _detector(tmp_path, StaticAnalyzer(_schema(ORDERS)))

        result = await detector.detect()

        assert result.success
        assert result.data.drifts == []
        assert result.data.schema_version == "N/A"
        assert any(w.startswith("No baseline at") for w in result.warnings)
        assert len(_report_files(tmp_path)) == 1

    @pytest.mark.asyncio
    async def test_disabled(self, tmp_path: pathlib.Path) -> None:
        """A disabled detector returns an empty report and touches nothing."""
        detector = _detector(
            tmp_path, FailingAnalyzer(RuntimeError("unused")), DriftSettings(enabled=False)
        )

        result = await detector.detect()

        assert result.success
        assert result.data.drifts == []
        assert result.data.schema_version == "N/A"
        assert result.data.database_version == "N/A"
        assert result.warnings == ["Drift detection is disabled"]
        assert not (tmp_path / "reports").exists()

    @pytest.mark.asyncio
    async def test_failure_writes_nothing(self, tmp_path: pathlib.Path) -> None:
        detector = _detector(tmp_path, FailingAnalyzer(RuntimeError("connection reset")))

        result = await detector.detect()

        assert result.success is False
        assert result.error.code is ErrorCode.DRIFT_DETECTION_FAILED
        assert result.error.message == "Failed to detect schema drift"
        assert result.error.details == "connection reset"
        assert not (tmp_path / "reports").exists()
        assert detector.state is DetectorState.IDLE

    @pytest.mark.asyncio
    async def test_analysis_timeout(self, tmp_path: pathlib.Path) -> None:
        class SlowAnalyzer:
            async def analyze(self) -> DatabaseSchema:
                await asyncio.sleep(5)
                return _schema(ORDERS)

        detector = _detector(tmp_path, SlowAnalyzer(), DriftSettings(timeout=0.05))

        result = await detector.detect()

        assert result.success is False
        assert result.error.details == "TimeoutError"
        assert not (tmp_path / "reports").exists()

    @pytest.mark.asyncio
    async def test_route_findings_included(self, tmp_path: pathlib.Path) -> None:
        """Route problems become ROUTE_MISMATCH drifts and ignore_tables does not hide them."""
        routes = tmp_path / "app" / "routes"
        routes.mkdir(parents=True)
        (routes / "orders.py").write_text(
            "@router.get('/api/orders')\n"
            "async def list_orders(db):\n"
            "    return await db.execute('SELECT id, coupon FROM orders')\n"
        )
        analyzer = StaticAnalyzer(_schema(ORDERS))
        detector = _detector(
            tmp_path,
            analyzer,
            DriftSettings(ignore_tables=["orders"]),
            route_validator=RouteValidator(RouteValidationSettings(), tmp_path / "app"),
        )
        await detector.save_baseline()

        result = await detector.detect()

        summary = result.data.summary()
        assert (summary.high, summary.medium) == (1, 4)
        invalid = next(d for d in result.data.drifts if d.severity is DriftSeverity.HIGH)
        assert invalid.type is DriftType.ROUTE_MISMATCH
        assert invalid.object == "GET /api/orders"
        assert "orders.coupon" in invalid.actual

    @pytest.mark.asyncio
    async def test_form_findings_included(self, tmp_path: pathlib.Path) -> None:
        """Each form problem kind maps to its own severity."""
        templates = tmp_path / "templates"
        templates.mkdir()
        (templates / "customer.html").write_text(
            '<form id="customer-form">\n'
            '  <input type="email" name="email" required>\n'
            '  <input type="text" name="nickname" required>\n'
            '  <input type="text" name="active">\n'
            '  <input type="text" name="referrer">\n'
            "</form>\n"
        )
        customers = Table(
            name="customers",
            columns=[
                Column(name="id", type="integer", nullable=False, auto_increment=True),
                Column(name="email", type="varchar(255)", nullable=False),
                Column(name="nickname", type="varchar(50)"),
                Column(name="active", type="boolean"),
                Column(name="status", type="varchar(20)", nullable=False),
            ],
            primary_key=["id"],
        )
        detector = _detector(
            tmp_path,
            StaticAnalyzer(_schema(customers)),
            form_validator=FormValidator(FormValidationSettings(), tmp_path),
        )
        await detector.save_baseline()

        result = await detector.detect()

        assert result.success
        found = {d.object: d for d in result.data.drifts}
        assert {obj: d.severity for obj, d in found.items()} == {
            "customer-form.status": DriftSeverity.HIGH,
            "customer-form.active": DriftSeverity.MEDIUM,
            "customer-form.nickname": DriftSeverity.MEDIUM,
            "customer-form.referrer": DriftSeverity.LOW,
        }
        assert all(d.type is DriftType.FORM_FIELD_MISMATCH for d in found.values())

        nickname = found["customer-form.nickname"]
        assert (nickname.expected, nickname.actual) == ("NULL", "required")
        assert (found["customer-form.active"].expected, found["customer-form.active"].actual) == (
            "checkbox",
            "text",
        )
        assert all(s.type is SuggestionKind.CODE_CHANGE for s in result.data.suggestions)


# ============================================================================
# Test: Filtering
# ============================================================================


class TestFilterDrifts:
    """Verify allowed types and ignored objects are dropped."""

    def _drift(self, kind: DriftType, obj: str) -> Drift:
        return Drift(type=kind, severity=DriftSeverity.MEDIUM, object=obj, actual=obj, message=obj)

    def test_allowed_and_ignored(self, tmp_path: pathlib.Path) -> None:
        settings = DriftSettings(
            allowed_drifts=["extra_table"],
            ignore_tables=["audit_log"],
            ignore_columns=["orders.notes", "updated_at"],
        )
        detector = _detector(tmp_path, StaticAnalyzer(_schema()), settings)

        drifts = [
            self._drift(DriftType.EXTRA_TABLE, "sessions"),
            self._drift(DriftType.MISSING_COLUMN, "audit_log.actor"),
            self._drift(DriftType.EXTRA_COLUMN, "orders.notes"),
            self._drift(DriftType.COLUMN_TYPE_MISMATCH, "customers.updated_at"),
            self._drift(DriftType.EXTRA_COLUMN, "orders.discount"),
            self._drift(DriftType.FORM_FIELD_MISMATCH, "audit_log.actor"),
        ]

        kept = detector.filter_drifts(drifts)

        assert [(d.type, d.object) for d in kept] == [
            (DriftType.EXTRA_COLUMN, "orders.discount"),
            (DriftType.FORM_FIELD_MISMATCH, "audit_log.actor"),
        ]

    def test_drift_needs_expected_or_actual(self) -> None:
        with pytest.raises(ValidationError, match="neither expected nor actual"):
            Drift(
                type=DriftType.FORM_FIELD_MISMATCH,
                severity=DriftSeverity.MEDIUM,
                object="users.nickname",
                message="Field is required but column allows NULL",
            )


# ============================================================================
# Test: Auto-fix and baseline
# ============================================================================


class TestAutoFix:
    """Verify LOW schema-update drifts are absorbed into the baseline."""

    @pytest.mark.asyncio
    async def test_low_drift_absorbed(self, tmp_path: pathlib.Path) -> None:
        events: list[tuple[str, dict]] = []
        analyzer = StaticAnalyzer(_schema(ORDERS, indexes=[]))
        detector = _detector(tmp_path, analyzer, DriftSettings(auto_fix=True))
        detector.on("drift_fixed", lambda p: events.append(("drift_fixed", p)))
        detector.on("baseline_saved", lambda p: events.append(("baseline_saved", p)))
        await detector.save_baseline()
        events.clear()

        new_index = Index(table="orders", name="idx_orders_total", columns=["total"])
        analyzer.schema = _schema(ORDERS, version="v2", indexes=[new_index])

        result = await detector.detect()

        assert result.success
        assert result.metadata["auto_fixed"] == 1
        assert [d.type for d in result.data.drifts] == [DriftType.INDEX_MISMATCH]
        assert [name for name, _ in events] == ["drift_fixed", "baseline_saved"]
        assert events[0][1]["object"] == "orders.idx_orders_total"

        baseline = detector._baseline_store.load()
        assert baseline.version == "v2"
        assert [i.name for i in baseline.indexes] == ["idx_orders_total"]

    @pytest.mark.asyncio
    async def test_medium_drift_not_absorbed(self, tmp_path: pathlib.Path) -> None:
        analyzer = StaticAnalyzer(_schema(ORDERS))
        detector = _detector(tmp_path, analyzer, DriftSettings(auto_fix=True))
        await detector.save_baseline()
        analyzer.schema = _schema(ORDERS_WITH_DISCOUNT, version="v2")

        result = await detector.detect()

        assert result.metadata["auto_fixed"] == 0
        assert detector._baseline_store.load().version == "v1"

    @pytest.mark.asyncio
    async def test_save_baseline(self, tmp_path: pathlib.Path) -> None:
        detector = _detector(tmp_path, StaticAnalyzer(_schema(ORDERS)))

        result = await detector.save_baseline()

        assert result.success
        assert result.data.version == "v1"
        assert result.metadata["baseline_path"] == str(tmp_path / "schema" / "schema.json")

    @pytest.mark.asyncio
    async def test_save_baseline_failure(self, tmp_path: pathlib.Path) -> None:
        detector = _detector(tmp_path, FailingAnalyzer(RuntimeError("boom")))

        result = await detector.save_baseline()

        assert result.success is False
        assert result.error.code is ErrorCode.DRIFT_DETECTION_FAILED
        assert not (tmp_path / "schema").exists()


# ============================================================================
# Test: Migration history
# ============================================================================


class TestMigrationHistory:
    """Verify the completed-migration lookup."""

    def test_table_name_validated(self) -> None:
        assert "FROM ops.database_migrations" in migration_count_sql("ops.database_migrations")
        with pytest.raises(ValueError, match="Invalid migration table name"):
            migration_count_sql("migrations; DROP TABLE users")

    @pytest.mark.asyncio
    async def test_lookup(self, tmp_path: pathlib.Path) -> None:
        connection = AsyncMock()
        connection.query.return_value = [{"count": 2}]
        detector = _detector(tmp_path, StaticAnalyzer(_schema()), connection=connection)

        assert await detector.has_migration_between("v1", "v2") is True
        params = connection.query.call_args.args[1]
        assert params == {"from_version": "v1", "to_version": "v2"}

    @pytest.mark.asyncio
    async def test_lookup_failure_counts_as_none(self, tmp_path: pathlib.Path) -> None:
        connection = AsyncMock()
        connection.query.side_effect = RuntimeError("no such table: database_migrations")
        detector = _detector(tmp_path, StaticAnalyzer(_schema()), connection=connection)

        assert await detector.has_migration_between("v1", "v2") is False

    @pytest.mark.asyncio
    async def test_no_connection(self, tmp_path: pathlib.Path) -> None:
        detector = _detector(tmp_path, StaticAnalyzer(_schema()))
        assert await detector.has_migration_between("v1", "v2") is False


# ============================================================================
# Test: Notification
# ============================================================================


class TestNotification:
    """Verify webhook delivery through httpx.MockTransport."""

    async def _run(self, tmp_path: pathlib.Path, status_code: int):
        received: list[dict] = []
        failures: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(status_code)

        analyzer = StaticAnalyzer(_schema(ORDERS))
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            detector = _detector(
                tmp_path, analyzer, notifier=WebhookNotifier(WEBHOOK_URL, client=client)
            )
            detector.on("notification_failed", failures.append)
            await detector.save_baseline()
            analyzer.schema = _schema(ORDERS_WITH_DISCOUNT, version="v2")
            result = await detector.detect()
        return result, received, failures

    @pytest.mark.asyncio
    async def test_delivered(self, tmp_path: pathlib.Path) -> None:
        result, received, failures = await self._run(tmp_path, 200)

        assert result.success
        (payload,) = received
        assert payload["event"] == "drift_detected"
        assert payload["summary"]["total"] == len(result.data.drifts)
        assert {d["object"] for d in payload["drifts"]} >= {"orders.discount"}
        assert failures == []
        assert not any(w.startswith("Drift notification failed") for w in result.warnings)

    @pytest.mark.asyncio
    async def test_server_error_is_a_warning(self, tmp_path: pathlib.Path) -> None:
        """A failed webhook never fails the run."""
        result, received, failures = await self._run(tmp_path, 500)

        assert result.success
        assert len(received) == 1
        assert "Drift notification failed: HTTP 500" in result.warnings
        assert failures == [{"url": WEBHOOK_URL, "error": "HTTP 500"}]
        assert len(_report_files(tmp_path)) == 1

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        report = DriftReport(
            timestamp=datetime.now(timezone.utc), schema_version="v1", database_version="v2"
        )
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            delivery = await WebhookNotifier(WEBHOOK_URL, client=client).send(report)

        assert delivery.delivered is False
        assert delivery.status_code is None
        assert delivery.error.startswith("ConnectError")


# ============================================================================
# Test: End to end against SQLite
# ============================================================================


class TestEndToEnd:
    """Baseline, change the database, detect."""

    async def _setup(self, tmp_path: pathlib.Path):
        manager = ConnectionManager(
            DatabaseSettings(engine=EngineKind.SQLITE, database=str(tmp_path / "shop.db"))
        )
        conn = (await manager.connect()).data
        await conn.query(
            "CREATE TABLE orders (id INTEGER PRIMARY KEY, total NUMERIC(10, 2) NOT NULL)"
        )
        await conn.query("CREATE TABLE database_migrations (version TEXT, status TEXT)")
        detector = _detector(tmp_path, SchemaAnalyzer(conn), connection=conn)
        assert (await detector.save_baseline()).success
        return manager, conn, detector

    @pytest.mark.asyncio
    async def test_recorded_migration(self, tmp_path: pathlib.Path) -> None:
        """An added column with a completed migration in range is one MEDIUM drift."""
        manager, conn, detector = await self._setup(tmp_path)
        try:
            await conn.query("ALTER TABLE orders ADD COLUMN discount NUMERIC")
            await conn.query(
                "INSERT INTO database_migrations (version, status) VALUES (:version, 'completed')",
                {"version": datetime.now(timezone.utc).isoformat()},
            )

            result = await detector.detect()
        finally:
            await manager.disconnect()

        assert result.success, result.error
        assert [(d.type, d.severity, d.object) for d in result.data.drifts] == [
            (DriftType.EXTRA_COLUMN, DriftSeverity.MEDIUM, "orders.discount")
        ]
        assert len(_report_files(tmp_path)) == 1

    @pytest.mark.asyncio
    async def test_unrecorded_change(self, tmp_path: pathlib.Path) -> None:
        manager, conn, detector = await self._setup(tmp_path)
        try:
            await conn.query("ALTER TABLE orders ADD COLUMN discount NUMERIC")
            result = await detector.detect()
        finally:
            await manager.disconnect()

        kinds = {(d.type, d.severity) for d in result.data.drifts}
        assert kinds == {
            (DriftType.EXTRA_COLUMN, DriftSeverity.MEDIUM),
            (DriftType.CONSTRAINT_MISMATCH, DriftSeverity.CRITICAL),
        }

    @pytest.mark.asyncio
    async def test_unchanged_database(self, tmp_path: pathlib.Path) -> None:
        manager, conn, detector = await self._setup(tmp_path)
        try:
            result = await detector.detect()
        finally:
            await manager.disconnect()

        assert result.data.drifts == []
        assert result.data.format_report() == "No drift detected"
