"""Schema drift detection.

Usage:
    from schema_integrity.drift import DriftDetector, compare_schemas
"""

from schema_integrity.drift.comparator import compare_schemas, schema_hash
from schema_integrity.drift.detector import DETECTOR_EVENTS, DetectorState, DriftDetector
from schema_integrity.drift.models import (
    Drift,
    DriftReport,
    DriftSeverity,
    DriftSuggestion,
    DriftSummary,
    DriftType,
    SuggestionKind,
)
from schema_integrity.drift.notify import Delivery, WebhookNotifier
from schema_integrity.drift.storage import BaselineStore, ReportWriter
from schema_integrity.drift.suggestions import generate_suggestion

__all__ = [
    "compare_schemas",
    "schema_hash",
    "DETECTOR_EVENTS",
    "DetectorState",
    "DriftDetector",
    "Drift",
    "DriftReport",
    "DriftSeverity",
    "DriftSuggestion",
    "DriftSummary",
    "DriftType",
    "SuggestionKind",
    "Delivery",
    "WebhookNotifier",
    "BaselineStore",
    "ReportWriter",
    "generate_suggestion",
]
