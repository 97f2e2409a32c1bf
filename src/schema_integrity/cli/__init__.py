"""CLI module for schema integrity checks.

Provides commands for drift detection, baseline capture, route and form
validation, and connection health.

Usage:
    schema-integrity detect
    schema-integrity baseline
    schema-integrity routes --strict
    schema-integrity forms --suggest
    schema-integrity --config ci/schema-integrity.toml --verbose health

Commands:
    detect    - Compare the live database with the baseline (exit 1 on critical/high drift)
    baseline  - Save the live schema as the new baseline
    routes    - Validate API routes against the live schema
    forms     - Validate UI forms against the live schema
    health    - Show connection health and pool metrics
"""

import argparse
import asyncio
import logging
import sys

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from schema_integrity.adapters.pooled import ConnectionManager, PooledConnection
from schema_integrity.config.loader import load_integrity_config
from schema_integrity.config.models import IntegrityConfig
from schema_integrity.drift.models import DriftReport, DriftSeverity
from schema_integrity.errors import ErrorCode, IntegrityFailure
from schema_integrity.factory import (
    build_analyzer,
    build_connection_manager,
    build_drift_detector,
    build_form_validator,
    build_route_validator,
)
from schema_integrity.validation.forms import generate_migration_suggestions
from schema_integrity.schema.models import DatabaseSchema
from schema_integrity.validation.routes import RouteValidator

console = Console()

NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")

_SEVERITY_STYLES = {
    DriftSeverity.CRITICAL: "bold red",
    DriftSeverity.HIGH: "red",
    DriftSeverity.MEDIUM: "yellow",
    DriftSeverity.LOW: "dim",
}


# ============================================================================
# Logging
# ============================================================================


def configure_logging(level: str | int = "INFO") -> None:
    """Route all logging through a rich handler.

    Third-party loggers stay at WARNING unless ``level`` is DEBUG.
    """
    numeric = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(numeric, int):
        numeric = logging.INFO

    logging.basicConfig(
        level=numeric,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
    noisy_level = logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(noisy_level)


# ============================================================================
# Shared helpers
# ============================================================================


def _load_config(args: argparse.Namespace) -> IntegrityConfig | None:
    try:
        config = load_integrity_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        return None
    if not args.verbose:
        configure_logging(config.logging.level)
    return config


async def _connect(config: IntegrityConfig) -> tuple[ConnectionManager, PooledConnection | None]:
    manager = build_connection_manager(config)
    result = await manager.connect()
    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.error.message}")
        if result.error.details:
            console.print(f"  [dim]{result.error.details}[/dim]")
        return manager, None
    return manager, result.data


async def _analyze(config: IntegrityConfig, connection: PooledConnection) -> DatabaseSchema | None:
    """Live schema bounded by ``[drift].timeout``; failures are printed, not raised."""
    try:
        async with asyncio.timeout(config.drift.timeout):
            return await build_analyzer(config, connection).analyze()
    except IntegrityFailure as e:
        console.print(f"[bold red]x[/bold red] {e.error.code.value}: {e.error.message}")
        if e.error.details:
            console.print(f"  [dim]{e.error.details}[/dim]")
    except TimeoutError:
        console.print(
            f"[bold red]x[/bold red] {ErrorCode.SCHEMA_ANALYSIS_FAILED.value}: "
            f"Schema analysis timed out after {config.drift.timeout}s"
        )
    return None


def _print_warnings(warnings: list[str]) -> None:
    for warning in warnings:
        console.print(f"[yellow]![/yellow] {warning}")


def _drift_table(report: DriftReport) -> Table:
    table = Table(title="Schema Drift", show_header=True, header_style="bold")
    table.add_column("Severity")
    table.add_column("Type", style="dim")
    table.add_column("Object", style="cyan")
    table.add_column("Message")
    for drift in report.drifts:
        style = _SEVERITY_STYLES[drift.severity]
        table.add_row(
            f"[{style}]{drift.severity.value.upper()}[/{style}]",
            drift.type.value,
            drift.object,
            drift.message,
        )
    return table


# ============================================================================
# Commands
# ============================================================================


async def _async_detect(args: argparse.Namespace) -> int:
    """Async implementation for detect command.

    Returns:
        0 when no critical/high drift was found, 1 otherwise or on failure.
    """
    config = _load_config(args)
    if config is None:
        return 1

    manager, connection = await _connect(config)
    if connection is None:
        return 1

    try:
        detector = build_drift_detector(config, connection)
        result = await detector.detect()
    finally:
        await manager.disconnect()

    _print_warnings(result.warnings)
    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.error.message}: {result.error.details}")
        return 1

    report = result.data
    if not report.drifts:
        console.print("[bold green]v[/bold green] No drift detected")
        return 0

    console.print()
    console.print(_drift_table(report))

    sql = [s.sql for s in report.suggestions if s.sql]
    if sql:
        console.print("\n[bold]Suggested migrations:[/bold]")
        for statement in sql:
            console.print(f"  [cyan]{statement}[/cyan]")

    console.print(f"\n[dim]Report written to {result.metadata['report_path']}[/dim]")
    if result.metadata.get("auto_fixed"):
        console.print(f"[dim]Auto-fixed {result.metadata['auto_fixed']} low-severity drifts[/dim]")

    return 1 if report.has_blocking_drift else 0


async def _async_baseline(args: argparse.Namespace) -> int:
    """Async implementation for baseline command."""
    config = _load_config(args)
    if config is None:
        return 1

    manager, connection = await _connect(config)
    if connection is None:
        return 1

    try:
        detector = build_drift_detector(config, connection, include_validators=False)
        result = await detector.save_baseline()
    finally:
        await manager.disconnect()

    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.error.message}: {result.error.details}")
        return 1

    schema = result.data
    console.print(
        f"[bold green]v[/bold green] Saved baseline with {len(schema.tables)} tables "
        f"to [cyan]{result.metadata['baseline_path']}[/cyan]"
    )
    return 0


async def _async_routes(args: argparse.Namespace) -> int:
    """Async implementation for routes command.

    Returns:
        0 when every route is valid and no CRUD route is missing.
    """
    config = _load_config(args)
    if config is None:
        return 1

    if args.strict:
        settings = config.validation.routes.model_copy(update={"strict": True})
        validator = RouteValidator(settings, config.project_root)
    else:
        validator = build_route_validator(config)

    manager, connection = await _connect(config)
    if connection is None:
        return 1

    try:
        schema = await _analyze(config, connection)
        if schema is None:
            return 1
        result = await validator.validate(schema)
    finally:
        await manager.disconnect()

    _print_warnings(result.warnings)
    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.error.message}: {result.error.details}")
        return 1

    routes = result.data
    console.print(
        f"Routes: [bold]{len(routes.routes)}[/bold] found, "
        f"[green]{len(routes.valid)}[/green] valid, "
        f"[red]{len(routes.invalid)}[/red] invalid, "
        f"[yellow]{len(routes.missing)}[/yellow] missing"
    )

    if routes.invalid:
        table = Table(title="Invalid Routes", show_header=True, header_style="bold")
        table.add_column("Route", style="cyan")
        table.add_column("Source", style="dim")
        table.add_column("Reasons")
        for invalid in routes.invalid:
            table.add_row(invalid.route.key, invalid.route.source, "\n".join(invalid.reasons))
        console.print(table)

    for route in routes.missing:
        console.print(f"  [yellow]missing[/yellow] {route.key}")
    for stub in routes.generated_stubs:
        console.print(f"  [green]generated[/green] {stub}")

    return 0 if routes.is_valid else 1


async def _async_forms(args: argparse.Namespace) -> int:
    """Async implementation for forms command."""
    config = _load_config(args)
    if config is None:
        return 1

    manager, connection = await _connect(config)
    if connection is None:
        return 1

    try:
        schema = await _analyze(config, connection)
        if schema is None:
            return 1
        result = await build_form_validator(config).validate(schema)
    finally:
        await manager.disconnect()

    _print_warnings(result.warnings)
    if not result.success:
        console.print(f"[bold red]x[/bold red] {result.error.message}: {result.error.details}")
        return 1

    table = Table(title="Forms", show_header=True, header_style="bold")
    table.add_column("Form", style="cyan")
    table.add_column("Table")
    table.add_column("Status")
    table.add_column("Details")
    for form_result in result.data:
        details = []
        if form_result.missing_columns:
            details.append(f"missing: {', '.join(form_result.missing_columns)}")
        for mismatch in form_result.type_mismatches:
            details.append(
                f"{mismatch.field}: {mismatch.actual.value} (expected {mismatch.expected.value})"
            )
        for mismatch in form_result.validation_mismatches:
            details.append(f"{mismatch.field}: {mismatch.message}")
        if form_result.extra_fields:
            details.append(f"extra: {', '.join(form_result.extra_fields)}")
        status = "[green]ok[/green]" if form_result.valid else "[red]mismatch[/red]"
        if form_result.table is None:
            status = "[dim]unmatched[/dim]"
        table.add_row(form_result.form.name, form_result.table or "-", status, "\n".join(details))
    console.print(table)

    if args.suggest:
        statements = generate_migration_suggestions(result.data)
        if statements:
            console.print("\n[bold]Suggested migrations:[/bold]")
            for statement in statements:
                console.print(f"  [cyan]{statement}[/cyan]")

    return 0 if all(r.valid for r in result.data if r.table is not None) else 1


async def _async_health(args: argparse.Namespace) -> int:
    """Async implementation for health command."""
    config = _load_config(args)
    if config is None:
        return 1

    manager, connection = await _connect(config)
    if connection is None:
        return 1

    try:
        healthy = await connection.is_healthy()
        metrics = connection.get_metrics()
    finally:
        await manager.disconnect()

    state = "[green]healthy[/green]" if healthy else "[red]unhealthy[/red]"
    console.print(f"[bold]{config.database.engine.value}[/bold] connection: {state}")

    table = Table(title="Pool Metrics", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim")
    table.add_column("Value", justify="right")
    for name, value in metrics.model_dump().items():
        table.add_row(name, f"{value:.2f}" if isinstance(value, float) else str(value))
    console.print(table)

    return 0 if healthy else 1


def cmd_detect(args: argparse.Namespace) -> int:
    """Run drift detection.

    Wraps the async implementation with ``asyncio.run()``.
    """
    return asyncio.run(_async_detect(args))


def cmd_baseline(args: argparse.Namespace) -> int:
    """Save the live schema as the baseline."""
    return asyncio.run(_async_baseline(args))


def cmd_routes(args: argparse.Namespace) -> int:
    """Validate routes against the live schema."""
    return asyncio.run(_async_routes(args))


def cmd_forms(args: argparse.Namespace) -> int:
    """Validate forms against the live schema."""
    return asyncio.run(_async_forms(args))


def cmd_health(args: argparse.Namespace) -> int:
    """Show connection health."""
    return asyncio.run(_async_health(args))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schema-integrity",
        description="Keep database schema, API routes and UI forms in agreement",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to schema-integrity.toml (default: ./schema-integrity.toml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_detect = subparsers.add_parser("detect", help="Detect schema drift against the baseline")
    p_detect.set_defaults(func=cmd_detect)

    p_baseline = subparsers.add_parser("baseline", help="Save the live schema as the baseline")
    p_baseline.set_defaults(func=cmd_baseline)

    p_routes = subparsers.add_parser("routes", help="Validate API routes against the schema")
    p_routes.add_argument(
        "--strict",
        action="store_true",
        help="Generate route stubs for tables missing CRUD routes",
    )
    p_routes.set_defaults(func=cmd_routes)

    p_forms = subparsers.add_parser("forms", help="Validate UI forms against the schema")
    p_forms.add_argument(
        "--suggest",
        action="store_true",
        help="Print migration SQL for form fields without columns",
    )
    p_forms.set_defaults(func=cmd_forms)

    p_health = subparsers.add_parser("health", help="Show connection health and pool metrics")
    p_health.set_defaults(func=cmd_health)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
