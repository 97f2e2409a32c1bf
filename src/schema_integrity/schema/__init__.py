"""Canonical schema models and live introspection.

Usage:
    from schema_integrity.schema import SchemaAnalyzer, DatabaseSchema
"""

from schema_integrity.schema.introspector import SchemaAnalyzer, normalize_type
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

__all__ = [
    "SchemaAnalyzer",
    "normalize_type",
    "Column",
    "ColumnReference",
    "Constraint",
    "ConstraintKind",
    "DatabaseSchema",
    "Index",
    "Table",
    "View",
    "ViewColumn",
]
