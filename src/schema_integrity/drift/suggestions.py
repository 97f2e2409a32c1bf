"""Remediation suggestions for drifts.

The baseline is the source of truth, so migrations restore the baseline
shape in the live database.  Changes that the baseline can simply absorb
are ``schema_update`` suggestions; route and form findings become
``code_change`` suggestions.

Usage:
    from schema_integrity.drift.suggestions import generate_suggestion

    suggestion = generate_suggestion(drift)
    if suggestion and suggestion.sql:
        print(suggestion.sql)
"""

from schema_integrity.drift.models import Drift, DriftSuggestion, DriftType, SuggestionKind
from schema_integrity.schema.models import Column, Constraint, ConstraintKind, Index, Table, View


# ------------------------------------------------------------------
# SQL rendering
# ------------------------------------------------------------------


def _quote(name: str) -> str:
    return f'"{name}"'


def column_definition(column: Column) -> str:
    """Render a column definition for CREATE/ALTER statements.

    Example:
        >>> column_definition(Column(name="email", type="varchar(255)", nullable=False))
        '"email" VARCHAR(255) NOT NULL'
    """
    parts = [_quote(column.name), column.type.upper()]
    if not column.nullable:
        parts.append("NOT NULL")
    if column.default is not None:
        parts.append(f"DEFAULT {column.default}")
    if column.unique:
        parts.append("UNIQUE")
    if column.references is not None:
        ref = column.references
        parts.append(f"REFERENCES {_quote(ref.table)}({_quote(ref.column)})")
    return " ".join(parts)


def create_table_sql(table: Table) -> str:
    """Rebuild a CREATE TABLE statement from a baseline table."""
    lines = [f"  {column_definition(c)}" for c in table.columns]
    if table.primary_key:
        keys = ", ".join(_quote(k) for k in table.primary_key)
        lines.append(f"  PRIMARY KEY ({keys})")
    for constraint in table.constraints:
        if constraint.kind == ConstraintKind.CHECK and constraint.definition:
            lines.append(f"  CONSTRAINT {_quote(constraint.name)} {constraint.definition}")
    body = ",\n".join(lines)
    return f"CREATE TABLE {_quote(table.name)} (\n{body}\n);"


def create_index_sql(index: Index) -> str:
    unique = "UNIQUE " if index.unique else ""
    columns = ", ".join(_quote(c) for c in index.columns)
    return f"CREATE {unique}INDEX {_quote(index.name)} ON {_quote(index.table)} ({columns});"


def add_constraint_sql(table: str, constraint: Constraint) -> str | None:
    """ALTER TABLE ... ADD CONSTRAINT, or None when there is nothing to restore from."""
    if constraint.definition:
        clause = constraint.definition
    elif constraint.kind == ConstraintKind.UNIQUE and constraint.columns:
        clause = f"UNIQUE ({', '.join(_quote(c) for c in constraint.columns)})"
    elif constraint.kind == ConstraintKind.PRIMARY_KEY and constraint.columns:
        clause = f"PRIMARY KEY ({', '.join(_quote(c) for c in constraint.columns)})"
    elif (
        constraint.kind == ConstraintKind.FOREIGN_KEY
        and constraint.references_table
        and constraint.columns
    ):
        local = ", ".join(_quote(c) for c in constraint.columns)
        remote = ", ".join(_quote(c) for c in constraint.references_columns or [])
        clause = f"FOREIGN KEY ({local}) REFERENCES {_quote(constraint.references_table)}({remote})"
    else:
        return None
    return f"ALTER TABLE {_quote(table)} ADD CONSTRAINT {_quote(constraint.name)} {clause};"


# ------------------------------------------------------------------
# Per-type suggestions
# ------------------------------------------------------------------


def _split(obj: str) -> tuple[str, str]:
    table, _, rest = obj.partition(".")
    return table, rest


def _accept(drift: Drift, description: str, impact: list[str] | None = None) -> DriftSuggestion:
    return DriftSuggestion(
        type=SuggestionKind.SCHEMA_UPDATE,
        object=drift.object,
        description=description,
        impact=impact or ["Baseline will be updated to match the database"],
    )


def _missing_table(drift: Drift) -> DriftSuggestion:
    if isinstance(drift.expected, View):
        view = drift.expected
        if view.definition:
            return DriftSuggestion(
                type=SuggestionKind.MIGRATION,
                object=drift.object,
                description=f"Recreate view '{view.name}'",
                sql=f"CREATE VIEW {_quote(view.name)} AS {view.definition};",
                impact=["Queries against the view will work again"],
            )
        return _accept(drift, f"Remove view '{view.name}' from the baseline")
    if isinstance(drift.expected, Table):
        return DriftSuggestion(
            type=SuggestionKind.MIGRATION,
            object=drift.object,
            description=f"Create table '{drift.object}' from the baseline definition",
            sql=create_table_sql(drift.expected),
            impact=[
                f"Routes and forms using '{drift.object}' will work again",
                "Table is created empty; data must be restored separately",
            ],
        )
    return _accept(drift, f"Remove table '{drift.object}' from the baseline")


def _missing_column(drift: Drift) -> DriftSuggestion:
    table, column_name = _split(drift.object)
    if isinstance(drift.expected, Column):
        column = drift.expected
        impact = [f"Queries selecting '{column_name}' will work again"]
        if not column.nullable and column.default is None:
            impact.append("Existing rows need a value; add a DEFAULT or backfill first")
        return DriftSuggestion(
            type=SuggestionKind.MIGRATION,
            object=drift.object,
            description=f"Add column '{column_name}' to '{table}'",
            sql=f"ALTER TABLE {_quote(table)} ADD COLUMN {column_definition(column)};",
            impact=impact,
        )
    return _accept(drift, f"Remove column '{drift.object}' from the baseline")


def _type_mismatch(drift: Drift) -> DriftSuggestion:
    table, column_name = _split(drift.object)
    return DriftSuggestion(
        type=SuggestionKind.MIGRATION,
        object=drift.object,
        description=f"Restore type of '{drift.object}' to {drift.expected}",
        sql=(
            f"ALTER TABLE {_quote(table)} ALTER COLUMN {_quote(column_name)} "
            f"TYPE {str(drift.expected).upper()};"
        ),
        impact=[
            "Existing values must convert to the restored type",
            "Application code written against the new type may break",
        ],
    )


def _constraint_mismatch(drift: Drift) -> DriftSuggestion | None:
    table, name = _split(drift.object)

    if isinstance(drift.expected, bool):
        action = "DROP NOT NULL" if drift.expected else "SET NOT NULL"
        if drift.expected:
            impact = ["Column will accept NULL values again"]
        else:
            impact = [
                "Inserts omitting the column will be rejected",
                "Existing NULL values must be backfilled first",
            ]
        return DriftSuggestion(
            type=SuggestionKind.MIGRATION,
            object=drift.object,
            description=f"Restore nullability of '{drift.object}'",
            sql=f"ALTER TABLE {_quote(table)} ALTER COLUMN {_quote(name)} {action};",
            impact=impact,
        )

    if isinstance(drift.expected, View) or isinstance(drift.actual, View):
        return _accept(drift, f"Record the new definition of view '{drift.object}' in the baseline")

    if isinstance(drift.expected, Constraint):
        sql = add_constraint_sql(table, drift.expected)
        if isinstance(drift.actual, Constraint):
            drop = f"ALTER TABLE {_quote(table)} DROP CONSTRAINT {_quote(name)};"
            sql = f"{drop}\n{sql}" if sql else None
        if sql is None:
            return _accept(drift, f"Record constraint '{drift.object}' as it exists in the database")
        return DriftSuggestion(
            type=SuggestionKind.MIGRATION,
            object=drift.object,
            description=f"Restore constraint '{drift.object}'",
            sql=sql,
            impact=["Existing rows that violate the constraint will block the migration"],
        )

    if isinstance(drift.actual, Constraint):
        return _accept(drift, f"Add constraint '{drift.object}' to the baseline")

    if drift.object == "database_schema":
        return DriftSuggestion(
            type=SuggestionKind.CODE_CHANGE,
            object=drift.object,
            description="Record the schema change as a migration, then save a new baseline",
            impact=["Untracked changes cannot be reproduced in other environments"],
        )

    # Default value change
    return _accept(drift, f"Record the new default of '{drift.object}' in the baseline")


def _index_mismatch(drift: Drift) -> DriftSuggestion:
    if isinstance(drift.expected, Index) and drift.actual is None:
        return DriftSuggestion(
            type=SuggestionKind.MIGRATION,
            object=drift.object,
            description=f"Recreate index '{drift.expected.name}'",
            sql=create_index_sql(drift.expected),
            impact=["Queries filtering on the indexed columns will speed up again"],
        )
    return _accept(drift, f"Record index '{drift.object}' in the baseline")


def generate_suggestion(drift: Drift) -> DriftSuggestion | None:
    """Build a remediation suggestion for one drift.

    Args:
        drift: Any drift produced by the comparator or the detector.

    Returns:
        A suggestion, or None when the drift has no useful remediation.

    Example:
        >>> d = Drift(type=DriftType.EXTRA_COLUMN, severity="medium",
        ...           object="orders.discount", actual="numeric", message="extra")
        >>> generate_suggestion(d).type.value
        'schema_update'
    """
    match drift.type:
        case DriftType.MISSING_TABLE:
            return _missing_table(drift)
        case DriftType.EXTRA_TABLE:
            kind = "view" if isinstance(drift.actual, View) else "table"
            return _accept(drift, f"Add {kind} '{drift.object}' to the baseline")
        case DriftType.MISSING_COLUMN:
            return _missing_column(drift)
        case DriftType.EXTRA_COLUMN:
            return _accept(drift, f"Add column '{drift.object}' to the baseline")
        case DriftType.COLUMN_TYPE_MISMATCH:
            return _type_mismatch(drift)
        case DriftType.CONSTRAINT_MISMATCH:
            return _constraint_mismatch(drift)
        case DriftType.INDEX_MISMATCH:
            return _index_mismatch(drift)
        case DriftType.ROUTE_MISMATCH | DriftType.FORM_FIELD_MISMATCH:
            return DriftSuggestion(
                type=SuggestionKind.CODE_CHANGE,
                object=drift.object,
                description=drift.message,
                impact=["Application code and database schema will agree"],
            )
    return None
