"""Configuration loading and models for schema-integrity."""

from schema_integrity.config.loader import load_integrity_config
from schema_integrity.config.models import (
    DatabaseSettings,
    DriftSettings,
    EngineKind,
    FormValidationSettings,
    IntegrityConfig,
    PoolSettings,
    RouteValidationSettings,
)

__all__ = [
    "load_integrity_config",
    "DatabaseSettings",
    "DriftSettings",
    "EngineKind",
    "FormValidationSettings",
    "IntegrityConfig",
    "PoolSettings",
    "RouteValidationSettings",
]
