"""Drift detection orchestration.

One detection run:

1. Analyze the live schema (bounded by the configured timeout).
2. Diff it against the stored baseline and check the migration history
   for an unrecorded structural change.
3. Fold in route and form findings when those validators are wired in.
4. Drop allowed and ignored findings, attach suggestions.
5. Persist the report, then optionally auto-fix and notify.

A run that fails before step 5 writes nothing and leaves the baseline
untouched.

Usage:
    detector = DriftDetector(
        analyzer,
        config.drift,
        connection=connection,
        baseline_store=BaselineStore(config.resolve(config.drift.baseline_path)),
        report_writer=ReportWriter(config.resolve(config.drift.report_directory)),
    )
    detector.on("drift_detected", lambda payload: print(payload["summary"]))
    result = await detector.detect()
    if result.success and result.data.has_blocking_drift:
        ...
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from schema_integrity.adapters.base import QueryRunner
from schema_integrity.config.models import DriftSettings
from schema_integrity.drift.comparator import compare_schemas, schema_hash
from schema_integrity.drift.models import (
    Drift,
    DriftReport,
    DriftSeverity,
    DriftSuggestion,
    DriftType,
    SuggestionKind,
)
from schema_integrity.drift.notify import WebhookNotifier
from schema_integrity.drift.storage import BaselineStore, ReportWriter
from schema_integrity.drift.suggestions import generate_suggestion
from schema_integrity.errors import ErrorCode, IntegrityResult
from schema_integrity.events import EventRegistry
from schema_integrity.schema.introspector import SchemaAnalyzer
from schema_integrity.schema.models import DatabaseSchema
from schema_integrity.validation.forms import FormValidator
from schema_integrity.validation.routes import RouteValidator

logger = logging.getLogger(__name__)

DETECTOR_EVENTS = frozenset({"drift_detected", "drift_fixed", "baseline_saved", "notification_failed"})
UNAUTHORIZED_OBJECT = "database_schema"
NOT_AVAILABLE = "N/A"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_SCHEMA_DRIFT_TYPES = frozenset({
    DriftType.MISSING_TABLE,
    DriftType.EXTRA_TABLE,
    DriftType.MISSING_COLUMN,
    DriftType.EXTRA_COLUMN,
    DriftType.COLUMN_TYPE_MISMATCH,
    DriftType.CONSTRAINT_MISMATCH,
    DriftType.INDEX_MISMATCH,
})


class DetectorState(str, Enum):
    IDLE = "idle"
    ANALYZING_SCHEMA = "analyzing_schema"
    DIFFING = "diffing"
    VALIDATING = "validating_routes_forms"
    REPORTING = "reporting"
    AUTO_FIXING = "auto_fixing"


def migration_count_sql(table: str) -> str:
    """Query counting completed migrations in a version range.

    Raises:
        ValueError: If ``table`` is not a plain (optionally schema-qualified)
            identifier.
    """
    if not _IDENTIFIER.match(table):
        raise ValueError(f"Invalid migration table name: {table!r}")
    return (
        f"SELECT COUNT(*) AS count FROM {table} "
        "WHERE version > :from_version AND version <= :to_version "
        "AND status = 'completed'"
    )


class DriftDetector:
    """Compares the live database with its baseline and reports drift.

    Args:
        analyzer: Produces live schema snapshots.
        settings: ``[drift]`` settings.
        baseline_store: Where the baseline lives.
        report_writer: Where reports are written.
        connection: Used for the migration-history lookup; without it every
            structural change counts as unrecorded.
        route_validator: Optional; adds ROUTE_MISMATCH findings.
        form_validator: Optional; adds FORM_FIELD_MISMATCH findings.
        notifier: Optional webhook notifier.
    """

    def __init__(
        self,
        analyzer: SchemaAnalyzer,
        settings: DriftSettings,
        *,
        baseline_store: BaselineStore,
        report_writer: ReportWriter,
        connection: QueryRunner | None = None,
        route_validator: RouteValidator | None = None,
        form_validator: FormValidator | None = None,
        notifier: WebhookNotifier | None = None,
    ) -> None:
        self._analyzer = analyzer
        self._settings = settings
        self._baseline_store = baseline_store
        self._report_writer = report_writer
        self._connection = connection
        self._route_validator = route_validator
        self._form_validator = form_validator
        self._notifier = notifier
        self._events = EventRegistry(DETECTOR_EVENTS, source="drift_detector")
        self._state = DetectorState.IDLE

    @property
    def state(self) -> DetectorState:
        return self._state

    def on(self, event: str, callback) -> None:
        """Register a listener for one of ``DETECTOR_EVENTS``."""
        self._events.on(event, callback)

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def detect(self) -> IntegrityResult[DriftReport]:
        """Run one detection pass.

        Returns:
            IntegrityResult holding the report.  ``metadata`` carries
            ``report_path`` and ``auto_fixed``.  Fails with
            DRIFT_DETECTION_FAILED on any error before the report is written.
        """
        if not self._settings.enabled:
            report = DriftReport(
                timestamp=datetime.now(timezone.utc),
                schema_version=NOT_AVAILABLE,
                database_version=NOT_AVAILABLE,
            )
            return IntegrityResult.ok(report, warnings=["Drift detection is disabled"])

        warnings: list[str] = []
        try:
            report, live, pairs = await self._build_report(warnings)
            self._state = DetectorState.REPORTING
            report_path = self._report_writer.write(report)
        except Exception as e:
            details = str(e) or type(e).__name__
            logger.error(f"Drift detection failed: {details}")
            return IntegrityResult.fail(
                ErrorCode.DRIFT_DETECTION_FAILED,
                "Failed to detect schema drift",
                details=details,
                warnings=warnings,
            )
        finally:
            self._state = DetectorState.IDLE

        metadata: dict[str, Any] = {"report_path": str(report_path), "auto_fixed": 0}
        if report.drifts:
            summary = report.summary()
            logger.warning(
                f"Detected {summary.total} drifts "
                f"({summary.critical} critical, {summary.high} high)"
            )
            self._events.emit(
                "drift_detected",
                {"summary": summary.model_dump(), "report_path": str(report_path)},
            )
        else:
            logger.info("No drift detected")

        if self._settings.auto_fix:
            metadata["auto_fixed"] = self._auto_fix(live, pairs, warnings)

        if self._notifier is not None and report.drifts:
            delivery = await self._notifier.send(report)
            if not delivery.delivered:
                warnings.append(f"Drift notification failed: {delivery.error}")
                self._events.emit(
                    "notification_failed", {"url": self._notifier.url, "error": delivery.error}
                )

        return IntegrityResult.ok(report, warnings=warnings, metadata=metadata)

    async def _build_report(
        self, warnings: list[str]
    ) -> tuple[DriftReport, DatabaseSchema, list[tuple[Drift, DriftSuggestion | None]]]:
        self._state = DetectorState.ANALYZING_SCHEMA
        live = await self._analyze()

        self._state = DetectorState.DIFFING
        baseline = self._baseline_store.load()
        drifts: list[Drift] = []
        if baseline is None:
            warnings.append(
                f"No baseline at {self._baseline_store.path}; "
                "run 'schema-integrity baseline' to create one"
            )
        else:
            drifts.extend(compare_schemas(baseline, live))
            unrecorded = await self._unrecorded_change(baseline, live)
            if unrecorded is not None:
                drifts.append(unrecorded)

        self._state = DetectorState.VALIDATING
        drifts.extend(await self._route_drifts(live, warnings))
        drifts.extend(await self._form_drifts(live, warnings))

        drifts = self.filter_drifts(drifts)
        pairs = [(drift, generate_suggestion(drift)) for drift in drifts]
        report = DriftReport(
            timestamp=datetime.now(timezone.utc),
            schema_version=baseline.version if baseline else NOT_AVAILABLE,
            database_version=live.version,
            drifts=drifts,
            suggestions=[s for _, s in pairs if s is not None],
        )
        return report, live, pairs

    async def _analyze(self) -> DatabaseSchema:
        async with asyncio.timeout(self._settings.timeout):
            return await self._analyzer.analyze()

    # ------------------------------------------------------------------
    # Unrecorded changes
    # ------------------------------------------------------------------

    async def _unrecorded_change(self, baseline: DatabaseSchema, live: DatabaseSchema) -> Drift | None:
        expected_hash = schema_hash(baseline)
        actual_hash = schema_hash(live)
        if expected_hash == actual_hash:
            return None
        if await self.has_migration_between(baseline.version, live.version):
            return None
        return Drift(
            type=DriftType.CONSTRAINT_MISMATCH,
            severity=DriftSeverity.CRITICAL,
            object=UNAUTHORIZED_OBJECT,
            expected=expected_hash,
            actual=actual_hash,
            message="Database schema changed without migration",
        )

    async def has_migration_between(self, from_version: str, to_version: str) -> bool:
        """True if a completed migration falls in ``(from_version, to_version]``.

        Any lookup failure (missing table, bad name, connection error)
        counts as "no migration".
        """
        if self._connection is None:
            return False
        try:
            sql = migration_count_sql(self._settings.migration_table)
            rows = await self._connection.query(
                sql, {"from_version": from_version, "to_version": to_version}
            )
        except Exception as e:
            logger.warning(f"Migration history lookup failed: {e}")
            return False
        return bool(rows) and int(rows[0]["count"]) > 0

    # ------------------------------------------------------------------
    # Route and form findings
    # ------------------------------------------------------------------

    async def _route_drifts(self, schema: DatabaseSchema, warnings: list[str]) -> list[Drift]:
        if self._route_validator is None or not self._route_validator.enabled:
            return []
        result = await self._route_validator.validate(schema)
        warnings.extend(result.warnings)
        if not result.success:
            warnings.append(f"Route validation skipped: {result.error.details}")
            return []

        drifts = []
        for invalid in result.data.invalid:
            drifts.append(
                Drift(
                    type=DriftType.ROUTE_MISMATCH,
                    severity=DriftSeverity.HIGH,
                    object=invalid.route.key,
                    expected="valid table and column references",
                    actual="; ".join(invalid.reasons),
                    message=f"Route {invalid.route.key} references missing database objects",
                )
            )
        for route in result.data.missing:
            drifts.append(
                Drift(
                    type=DriftType.ROUTE_MISMATCH,
                    severity=DriftSeverity.MEDIUM,
                    object=route.key,
                    expected=route.key,
                    message=f"Missing CRUD route {route.key}",
                )
            )
        return drifts

    async def _form_drifts(self, schema: DatabaseSchema, warnings: list[str]) -> list[Drift]:
        if self._form_validator is None or not self._form_validator.enabled:
            return []
        result = await self._form_validator.validate(schema)
        warnings.extend(result.warnings)
        if not result.success:
            warnings.append(f"Form validation skipped: {result.error.details}")
            return []

        drifts = []
        for form_result in result.data:
            if form_result.table is None:
                continue
            form = form_result.form.name
            table = form_result.table
            for column in form_result.missing_columns:
                drifts.append(
                    Drift(
                        type=DriftType.FORM_FIELD_MISMATCH,
                        severity=DriftSeverity.HIGH,
                        object=f"{form}.{column}",
                        expected=column,
                        message=f"Form '{form}' has no field for required column '{table}.{column}'",
                    )
                )
            for mismatch in form_result.type_mismatches:
                drifts.append(
                    Drift(
                        type=DriftType.FORM_FIELD_MISMATCH,
                        severity=DriftSeverity.MEDIUM,
                        object=f"{form}.{mismatch.field}",
                        expected=mismatch.expected.value,
                        actual=mismatch.actual.value,
                        message=(
                            f"Form field '{mismatch.field}' is {mismatch.actual.value} "
                            f"but '{table}.{mismatch.column}' expects {mismatch.expected.value}"
                        ),
                    )
                )
            for mismatch in form_result.validation_mismatches:
                drifts.append(
                    Drift(
                        type=DriftType.FORM_FIELD_MISMATCH,
                        severity=DriftSeverity.MEDIUM,
                        object=f"{form}.{mismatch.field}",
                        expected=mismatch.expected,
                        actual=mismatch.actual,
                        message=mismatch.message,
                    )
                )
            for field_name in form_result.extra_fields:
                drifts.append(
                    Drift(
                        type=DriftType.FORM_FIELD_MISMATCH,
                        severity=DriftSeverity.LOW,
                        object=f"{form}.{field_name}",
                        actual=field_name,
                        message=f"Form field '{field_name}' has no column in '{table}'",
                    )
                )
        return drifts

    # ------------------------------------------------------------------
    # Filtering, auto-fix, baseline
    # ------------------------------------------------------------------

    def filter_drifts(self, drifts: list[Drift]) -> list[Drift]:
        """Drop drifts of allowed types and drifts on ignored tables or columns.

        ``ignore_columns`` entries match either ``table.column`` or a bare
        column name.
        """
        allowed = {name.upper() for name in self._settings.allowed_drifts}
        ignored_tables = set(self._settings.ignore_tables)
        ignored_columns = set(self._settings.ignore_columns)

        kept = []
        for drift in drifts:
            if drift.type.value in allowed:
                continue
            if drift.type in _SCHEMA_DRIFT_TYPES:
                table, _, column = drift.object.partition(".")
                if table in ignored_tables:
                    continue
                if drift.object in ignored_columns or (column and column in ignored_columns):
                    continue
            kept.append(drift)
        return kept

    def _auto_fix(
        self,
        live: DatabaseSchema,
        pairs: list[tuple[Drift, DriftSuggestion | None]],
        warnings: list[str],
    ) -> int:
        """Absorb LOW schema-update drifts by saving the live schema as baseline."""
        fixable = [
            drift
            for drift, suggestion in pairs
            if suggestion is not None
            and drift.severity == DriftSeverity.LOW
            and suggestion.type == SuggestionKind.SCHEMA_UPDATE
        ]
        if not fixable:
            return 0

        self._state = DetectorState.AUTO_FIXING
        try:
            path = self._baseline_store.save(live)
        except OSError as e:
            warnings.append(f"Auto-fix could not save the baseline: {e}")
            logger.error(f"Auto-fix failed: {e}")
            return 0
        finally:
            self._state = DetectorState.IDLE

        for drift in fixable:
            self._events.emit("drift_fixed", {"object": drift.object, "type": drift.type.value})
        self._events.emit("baseline_saved", {"path": str(path), "version": live.version})
        logger.info(f"Auto-fixed {len(fixable)} low-severity drifts")
        return len(fixable)

    async def save_baseline(self) -> IntegrityResult[DatabaseSchema]:
        """Capture the live schema and store it as the new baseline."""
        try:
            self._state = DetectorState.ANALYZING_SCHEMA
            live = await self._analyze()
            path = self._baseline_store.save(live)
        except Exception as e:
            details = str(e) or type(e).__name__
            logger.error(f"Saving baseline failed: {details}")
            return IntegrityResult.fail(
                ErrorCode.DRIFT_DETECTION_FAILED, "Failed to save baseline", details=details
            )
        finally:
            self._state = DetectorState.IDLE

        self._events.emit("baseline_saved", {"path": str(path), "version": live.version})
        return IntegrityResult.ok(live, metadata={"baseline_path": str(path)})
