"""Pydantic models for drift findings and reports.

This module contains:
- Enums: DriftType, DriftSeverity, SuggestionKind
- Findings: Drift, DriftSuggestion
- Report: DriftSummary, DriftReport
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Findings
# ============================================================================


class DriftType(str, Enum):
    MISSING_TABLE = "MISSING_TABLE"
    EXTRA_TABLE = "EXTRA_TABLE"
    MISSING_COLUMN = "MISSING_COLUMN"
    EXTRA_COLUMN = "EXTRA_COLUMN"
    COLUMN_TYPE_MISMATCH = "COLUMN_TYPE_MISMATCH"
    CONSTRAINT_MISMATCH = "CONSTRAINT_MISMATCH"
    INDEX_MISMATCH = "INDEX_MISMATCH"
    ROUTE_MISMATCH = "ROUTE_MISMATCH"
    FORM_FIELD_MISMATCH = "FORM_FIELD_MISMATCH"


class DriftSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_ORDER = [
    DriftSeverity.CRITICAL,
    DriftSeverity.HIGH,
    DriftSeverity.MEDIUM,
    DriftSeverity.LOW,
]


class Drift(BaseModel):
    """One discrepancy between expected and actual state.

    ``object`` identifies the affected object (``orders``,
    ``orders.discount``, ``GET /api/orders``); ``expected`` and ``actual``
    hold whatever value describes it on each side, ``None`` when absent.
    At least one side must be present.

    Example:
        >>> d = Drift(type=DriftType.EXTRA_COLUMN, severity=DriftSeverity.MEDIUM,
        ...           object="orders.discount", actual="numeric", message="extra")
        >>> d.severity.value
        'medium'
    """

    model_config = ConfigDict(frozen=True)

    type: DriftType
    severity: DriftSeverity
    object: str
    expected: Any = None
    actual: Any = None
    message: str

    @model_validator(mode="after")
    def _check_sides(self) -> "Drift":
        if self.expected is None and self.actual is None:
            raise ValueError(f"Drift on '{self.object}' has neither expected nor actual value")
        return self


class SuggestionKind(str, Enum):
    MIGRATION = "migration"
    SCHEMA_UPDATE = "schema_update"
    CODE_CHANGE = "code_change"


class DriftSuggestion(BaseModel):
    """Proposed remediation for one drift."""

    type: SuggestionKind
    object: str
    description: str
    sql: str | None = None
    code: str | None = None
    impact: list[str] = Field(default_factory=list)


# ============================================================================
# Report
# ============================================================================


class DriftSummary(BaseModel):
    total: int = 0
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


class DriftReport(BaseModel):
    """Outcome of one detection run.

    Example:
        >>> from datetime import datetime, timezone
        >>> report = DriftReport(timestamp=datetime.now(timezone.utc),
        ...                      schema_version="N/A", database_version="N/A")
        >>> report.format_report()
        'No drift detected'
    """

    timestamp: datetime
    schema_version: str
    database_version: str
    drifts: list[Drift] = Field(default_factory=list)
    suggestions: list[DriftSuggestion] = Field(default_factory=list)

    def summary(self) -> DriftSummary:
        """Drift counts by severity."""
        counts = {severity: 0 for severity in DriftSeverity}
        for drift in self.drifts:
            counts[drift.severity] += 1
        return DriftSummary(
            total=len(self.drifts),
            critical=counts[DriftSeverity.CRITICAL],
            high=counts[DriftSeverity.HIGH],
            medium=counts[DriftSeverity.MEDIUM],
            low=counts[DriftSeverity.LOW],
        )

    @property
    def has_blocking_drift(self) -> bool:
        """True if any drift is CRITICAL or HIGH."""
        return any(
            d.severity in (DriftSeverity.CRITICAL, DriftSeverity.HIGH) for d in self.drifts
        )

    def format_report(self) -> str:
        """Format the report as human-readable text."""
        if not self.drifts:
            return "No drift detected"

        summary = self.summary()
        lines = [
            f"Drift detected ({summary.total}): "
            f"{summary.critical} critical, {summary.high} high, "
            f"{summary.medium} medium, {summary.low} low",
        ]
        for severity in SEVERITY_ORDER:
            matching = [d for d in self.drifts if d.severity == severity]
            if not matching:
                continue
            lines.append(f"\n  {severity.value.upper()} ({len(matching)}):")
            for drift in matching:
                lines.append(f"    - [{drift.type.value}] {drift.object}: {drift.message}")

        sql = [s.sql for s in self.suggestions if s.sql]
        if sql:
            lines.append(f"\n  Suggested SQL ({len(sql)}):")
            for statement in sql:
                lines.append(f"    {statement}")

        return "\n".join(lines)
