"""schema-integrity: schema drift detection with route and form validation.

Captures a live relational schema, compares it with a stored baseline,
and checks that API route handlers and UI forms still agree with it.

Usage:
    from schema_integrity import load_integrity_config, build_connection_manager
    from schema_integrity import build_drift_detector, DriftReport
    from schema_integrity import RouteValidator, FormValidator
"""

__version__ = "0.1.0"

# Results
from schema_integrity.errors import ErrorCode, IntegrityError, IntegrityFailure, IntegrityResult

# Config
from schema_integrity.config.loader import load_integrity_config
from schema_integrity.config.models import EngineKind, IntegrityConfig

# Connections and schema
from schema_integrity.adapters.pooled import ConnectionManager, PooledConnection
from schema_integrity.schema.introspector import SchemaAnalyzer
from schema_integrity.schema.models import DatabaseSchema

# Validation
from schema_integrity.validation.forms import FormExtractor, FormValidator
from schema_integrity.validation.routes import RouteExtractor, RouteValidator

# Drift
from schema_integrity.drift.comparator import compare_schemas
from schema_integrity.drift.detector import DriftDetector
from schema_integrity.drift.models import Drift, DriftReport, DriftSeverity, DriftType

# Factory
from schema_integrity.factory import (
    build_analyzer,
    build_connection_manager,
    build_drift_detector,
    build_form_validator,
    build_route_validator,
    resolve_url,
)

__all__ = [
    # Results
    "ErrorCode",
    "IntegrityError",
    "IntegrityFailure",
    "IntegrityResult",
    # Config
    "load_integrity_config",
    "EngineKind",
    "IntegrityConfig",
    # Connections and schema
    "ConnectionManager",
    "PooledConnection",
    "SchemaAnalyzer",
    "DatabaseSchema",
    # Validation
    "FormExtractor",
    "FormValidator",
    "RouteExtractor",
    "RouteValidator",
    # Drift
    "compare_schemas",
    "DriftDetector",
    "Drift",
    "DriftReport",
    "DriftSeverity",
    "DriftType",
    # Factory
    "build_analyzer",
    "build_connection_manager",
    "build_drift_detector",
    "build_form_validator",
    "build_route_validator",
    "resolve_url",
]
