"""Component factory.

Builds the connection manager, analyzer, validators and drift detector
from one ``IntegrityConfig``.  Nothing here is cached: each call returns
fresh objects and callers own their lifetimes.

Usage:
    config = load_integrity_config()
    manager = build_connection_manager(config)
    result = await manager.connect()
    if result.success:
        detector = build_drift_detector(config, result.data)
        report = await detector.detect()
        await manager.disconnect()
"""

from schema_integrity.adapters.base import DatabaseConnection
from schema_integrity.adapters.engines import resolve_url
from schema_integrity.adapters.pooled import ConnectionManager
from schema_integrity.config.models import IntegrityConfig
from schema_integrity.drift.detector import DriftDetector
from schema_integrity.drift.notify import WebhookNotifier
from schema_integrity.drift.storage import BaselineStore, ReportWriter
from schema_integrity.schema.introspector import SchemaAnalyzer
from schema_integrity.validation.forms import FormValidator
from schema_integrity.validation.routes import RouteValidator

__all__ = [
    "build_analyzer",
    "build_connection_manager",
    "build_drift_detector",
    "build_form_validator",
    "build_route_validator",
    "resolve_url",
]


def build_connection_manager(config: IntegrityConfig) -> ConnectionManager:
    return ConnectionManager(config.database)


def build_analyzer(config: IntegrityConfig, connection: DatabaseConnection) -> SchemaAnalyzer:
    """Analyzer that skips the migration table and the ignored tables."""
    excluded = {config.drift.migration_table, *config.drift.ignore_tables}
    return SchemaAnalyzer(connection, excluded_tables=excluded)


def build_route_validator(config: IntegrityConfig) -> RouteValidator:
    return RouteValidator(config.validation.routes, config.project_root)


def build_form_validator(config: IntegrityConfig) -> FormValidator:
    return FormValidator(config.validation.forms, config.project_root)


def build_drift_detector(
    config: IntegrityConfig,
    connection: DatabaseConnection,
    *,
    include_validators: bool = True,
) -> DriftDetector:
    """Wire a ``DriftDetector`` against an open connection.

    Args:
        config: Loaded configuration.
        connection: Connection returned by ``ConnectionManager.connect()``.
        include_validators: Fold route and form findings into the report
            (each still honours its own ``enabled`` flag).

    Returns:
        A ready-to-run detector.
    """
    drift = config.drift
    notifier = None
    if drift.notification_webhook:
        notifier = WebhookNotifier(drift.notification_webhook, timeout=drift.notification_timeout)

    return DriftDetector(
        build_analyzer(config, connection),
        drift,
        baseline_store=BaselineStore(config.resolve(drift.baseline_path)),
        report_writer=ReportWriter(config.resolve(drift.report_directory)),
        connection=connection,
        route_validator=build_route_validator(config) if include_validators else None,
        form_validator=build_form_validator(config) if include_validators else None,
        notifier=notifier,
    )
