"""Structural schema comparison.

Compares a baseline ``DatabaseSchema`` against a live one.
Pure logic -- no I/O, no database connections.

Severity follows direction: losing something that the baseline has is
worse than gaining something new, and tightening a column (NULL to
NOT NULL) is worse than loosening it.

Usage:
    from schema_integrity.drift.comparator import compare_schemas, schema_hash

    drifts = compare_schemas(baseline, live)
    if schema_hash(baseline) != schema_hash(live):
        print("structure changed")
"""

import hashlib
import json

from schema_integrity.drift.models import Drift, DriftSeverity, DriftType
from schema_integrity.schema.models import Column, DatabaseSchema, Table


def _null_label(nullable: bool) -> str:
    return "NULL" if nullable else "NOT NULL"


# ------------------------------------------------------------------
# Tables and columns
# ------------------------------------------------------------------


def _compare_columns(expected: Table, actual: Table) -> list[Drift]:
    drifts: list[Drift] = []
    actual_columns = {c.name: c for c in actual.columns}
    expected_names = {c.name for c in expected.columns}

    for column in expected.columns:
        obj = f"{expected.name}.{column.name}"
        live = actual_columns.get(column.name)
        if live is None:
            drifts.append(
                Drift(
                    type=DriftType.MISSING_COLUMN,
                    severity=DriftSeverity.HIGH,
                    object=obj,
                    expected=column,
                    message=f"Column '{obj}' is missing from the database",
                )
            )
            continue
        drifts.extend(_compare_column(obj, column, live))

    for column in actual.columns:
        if column.name not in expected_names:
            obj = f"{actual.name}.{column.name}"
            drifts.append(
                Drift(
                    type=DriftType.EXTRA_COLUMN,
                    severity=DriftSeverity.MEDIUM,
                    object=obj,
                    actual=column,
                    message=f"Column '{obj}' exists in the database but not in the baseline",
                )
            )
    return drifts


def _compare_column(obj: str, expected: Column, actual: Column) -> list[Drift]:
    drifts: list[Drift] = []
    if expected.type != actual.type:
        drifts.append(
            Drift(
                type=DriftType.COLUMN_TYPE_MISMATCH,
                severity=DriftSeverity.HIGH,
                object=obj,
                expected=expected.type,
                actual=actual.type,
                message=f"Column '{obj}' type changed from {expected.type} to {actual.type}",
            )
        )
    if expected.nullable != actual.nullable:
        drifts.append(
            Drift(
                type=DriftType.CONSTRAINT_MISMATCH,
                # Loosening to NULL is less risky than tightening to NOT NULL
                severity=DriftSeverity.MEDIUM if actual.nullable else DriftSeverity.HIGH,
                object=obj,
                expected=expected.nullable,
                actual=actual.nullable,
                message=(
                    f"Column '{obj}' changed from {_null_label(expected.nullable)} "
                    f"to {_null_label(actual.nullable)}"
                ),
            )
        )
    if expected.default != actual.default:
        drifts.append(
            Drift(
                type=DriftType.CONSTRAINT_MISMATCH,
                severity=DriftSeverity.LOW,
                object=obj,
                expected=expected.default,
                actual=actual.default,
                message=f"Column '{obj}' default changed from {expected.default} to {actual.default}",
            )
        )
    return drifts


def _compare_constraints(expected: Table, actual: Table) -> list[Drift]:
    drifts: list[Drift] = []
    expected_map = {c.name: c for c in expected.constraints}
    actual_map = {c.name: c for c in actual.constraints}

    for name in sorted(expected_map.keys() - actual_map.keys()):
        obj = f"{expected.name}.{name}"
        drifts.append(
            Drift(
                type=DriftType.CONSTRAINT_MISMATCH,
                severity=DriftSeverity.HIGH,
                object=obj,
                expected=expected_map[name],
                message=f"Constraint '{obj}' was removed",
            )
        )
    for name in sorted(actual_map.keys() - expected_map.keys()):
        obj = f"{actual.name}.{name}"
        drifts.append(
            Drift(
                type=DriftType.CONSTRAINT_MISMATCH,
                severity=DriftSeverity.MEDIUM,
                object=obj,
                actual=actual_map[name],
                message=f"Constraint '{obj}' was added",
            )
        )
    for name in sorted(expected_map.keys() & actual_map.keys()):
        before, after = expected_map[name], actual_map[name]
        if (before.kind, before.columns, before.definition) != (after.kind, after.columns, after.definition):
            obj = f"{expected.name}.{name}"
            drifts.append(
                Drift(
                    type=DriftType.CONSTRAINT_MISMATCH,
                    severity=DriftSeverity.MEDIUM,
                    object=obj,
                    expected=before,
                    actual=after,
                    message=f"Constraint '{obj}' definition changed",
                )
            )
    return drifts


def _compare_tables(expected: DatabaseSchema, actual: DatabaseSchema) -> list[Drift]:
    drifts: list[Drift] = []
    expected_map = {t.name: t for t in expected.tables}
    actual_map = {t.name: t for t in actual.tables}

    for name in sorted(expected_map.keys() - actual_map.keys()):
        drifts.append(
            Drift(
                type=DriftType.MISSING_TABLE,
                severity=DriftSeverity.HIGH,
                object=name,
                expected=expected_map[name],
                message=f"Table '{name}' is missing from the database",
            )
        )
    for name in sorted(actual_map.keys() - expected_map.keys()):
        drifts.append(
            Drift(
                type=DriftType.EXTRA_TABLE,
                severity=DriftSeverity.MEDIUM,
                object=name,
                actual=actual_map[name],
                message=f"Table '{name}' exists in the database but not in the baseline",
            )
        )
    for name in sorted(expected_map.keys() & actual_map.keys()):
        drifts.extend(_compare_columns(expected_map[name], actual_map[name]))
        drifts.extend(_compare_constraints(expected_map[name], actual_map[name]))
    return drifts


# ------------------------------------------------------------------
# Indexes and views
# ------------------------------------------------------------------


def _compare_indexes(expected: DatabaseSchema, actual: DatabaseSchema) -> list[Drift]:
    # Indexes of added/removed tables are covered by the table drift
    shared = {t.name for t in expected.tables} & {t.name for t in actual.tables}
    expected_map = {i.key: i for i in expected.indexes or [] if i.table in shared}
    actual_map = {i.key: i for i in actual.indexes or [] if i.table in shared}
    drifts: list[Drift] = []

    for key in sorted(expected_map.keys() - actual_map.keys()):
        drifts.append(
            Drift(
                type=DriftType.INDEX_MISMATCH,
                severity=DriftSeverity.MEDIUM,
                object=key,
                expected=expected_map[key],
                message=f"Index '{key}' is missing from the database",
            )
        )
    for key in sorted(actual_map.keys() - expected_map.keys()):
        drifts.append(
            Drift(
                type=DriftType.INDEX_MISMATCH,
                severity=DriftSeverity.LOW,
                object=key,
                actual=actual_map[key],
                message=f"Index '{key}' exists in the database but not in the baseline",
            )
        )
    for key in sorted(expected_map.keys() & actual_map.keys()):
        before, after = expected_map[key], actual_map[key]
        if (before.columns, before.unique) != (after.columns, after.unique):
            drifts.append(
                Drift(
                    type=DriftType.INDEX_MISMATCH,
                    severity=DriftSeverity.MEDIUM,
                    object=key,
                    expected=before,
                    actual=after,
                    message=f"Index '{key}' definition changed",
                )
            )
    return drifts


def _compare_views(expected: DatabaseSchema, actual: DatabaseSchema) -> list[Drift]:
    expected_map = {v.name: v for v in expected.views or []}
    actual_map = {v.name: v for v in actual.views or []}
    drifts: list[Drift] = []

    for name in sorted(expected_map.keys() - actual_map.keys()):
        drifts.append(
            Drift(
                type=DriftType.MISSING_TABLE,
                severity=DriftSeverity.MEDIUM,
                object=name,
                expected=expected_map[name],
                message=f"View '{name}' is missing from the database",
            )
        )
    for name in sorted(actual_map.keys() - expected_map.keys()):
        drifts.append(
            Drift(
                type=DriftType.EXTRA_TABLE,
                severity=DriftSeverity.LOW,
                object=name,
                actual=actual_map[name],
                message=f"View '{name}' exists in the database but not in the baseline",
            )
        )
    for name in sorted(expected_map.keys() & actual_map.keys()):
        if expected_map[name].definition != actual_map[name].definition:
            drifts.append(
                Drift(
                    type=DriftType.CONSTRAINT_MISMATCH,
                    severity=DriftSeverity.MEDIUM,
                    object=name,
                    expected=expected_map[name],
                    actual=actual_map[name],
                    message=f"View '{name}' definition changed",
                )
            )
    return drifts


# ------------------------------------------------------------------
# Public API
# ------------------------------------------------------------------


def compare_schemas(expected: DatabaseSchema, actual: DatabaseSchema) -> list[Drift]:
    """Diff a baseline schema against a live schema.

    Indexes and views are compared only when both snapshots include them.

    Args:
        expected: Baseline snapshot (source of truth).
        actual: Live snapshot.

    Returns:
        Drifts in a deterministic order: tables (with their columns and
        constraints), then indexes, then views.

    Examples:
        >>> s = DatabaseSchema(version="1", tables=[Table(name="t")])
        >>> compare_schemas(s, s)
        []
    """
    drifts = _compare_tables(expected, actual)
    if expected.indexes is not None and actual.indexes is not None:
        drifts.extend(_compare_indexes(expected, actual))
    if expected.views is not None and actual.views is not None:
        drifts.extend(_compare_views(expected, actual))
    return drifts


def schema_hash(schema: DatabaseSchema) -> str:
    """Order-independent structural hash.

    Covers table names and each column's name, type and nullability,
    sorted by name.  Versions, timestamps and column order are excluded.
    """
    payload = [
        {
            "name": table.name,
            "columns": [
                {"name": c.name, "type": c.type, "nullable": c.nullable}
                for c in sorted(table.columns, key=lambda c: c.name)
            ],
        }
        for table in sorted(schema.tables, key=lambda t: t.name)
    ]
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(encoded.encode()).hexdigest()
