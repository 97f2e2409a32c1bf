"""Pydantic models for the canonical, engine-independent schema.

Snapshots are frozen: a new analysis produces a new ``DatabaseSchema``
value, it never mutates an existing one.

Models:
- ColumnReference, Column, Constraint, Table
- Index, ViewColumn, View
- DatabaseSchema
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ============================================================================
# Tables
# ============================================================================


class ConstraintKind(str, Enum):
    PRIMARY_KEY = "primary_key"
    FOREIGN_KEY = "foreign_key"
    UNIQUE = "unique"
    CHECK = "check"


class ColumnReference(_Frozen):
    """Foreign-key target of a single column."""

    table: str
    column: str
    on_delete: str | None = None
    on_update: str | None = None


class Column(_Frozen):
    """A table column.

    Example:
        >>> col = Column(name="id", type="integer", nullable=False)
        >>> col.auto_increment
        False
    """

    name: str
    type: str
    nullable: bool = True
    unique: bool = False
    auto_increment: bool = False
    default: str | None = None
    references: ColumnReference | None = None


class Constraint(_Frozen):
    """A named table constraint."""

    name: str
    kind: ConstraintKind
    columns: list[str] = Field(default_factory=list)
    definition: str = ""
    references_table: str | None = None
    references_columns: list[str] | None = None


class Table(_Frozen):
    """A table with ordered columns."""

    name: str
    columns: list[Column] = Field(default_factory=list)
    primary_key: list[str] | None = None
    constraints: list[Constraint] = Field(default_factory=list)

    def column(self, name: str) -> Column | None:
        """Return the column called ``name`` or ``None``."""
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


# ============================================================================
# Indexes and views
# ============================================================================


class Index(_Frozen):
    """A table index."""

    table: str
    name: str
    columns: list[str] = Field(default_factory=list)
    unique: bool = False

    @property
    def key(self) -> str:
        return f"{self.table}.{self.name}"


class ViewColumn(_Frozen):
    name: str
    type: str


class View(_Frozen):
    """A database view."""

    name: str
    definition: str = ""
    columns: list[ViewColumn] = Field(default_factory=list)


# ============================================================================
# Snapshot
# ============================================================================


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DatabaseSchema(_Frozen):
    """Versioned snapshot of a database.

    ``views`` and ``indexes`` are ``None`` when they were not analyzed,
    which is distinct from "analyzed and empty".

    Example:
        >>> schema = DatabaseSchema(version="2024-01-01T00:00:00+00:00")
        >>> schema.table("orders") is None
        True
    """

    version: str
    captured_at: datetime = Field(default_factory=_utc_now)
    tables: list[Table] = Field(default_factory=list)
    views: list[View] | None = None
    indexes: list[Index] | None = None

    def table(self, name: str) -> Table | None:
        """Return the table called ``name`` or ``None``."""
        for table in self.tables:
            if table.name == name:
                return table
        return None

    @property
    def table_names(self) -> list[str]:
        return [t.name for t in self.tables]
