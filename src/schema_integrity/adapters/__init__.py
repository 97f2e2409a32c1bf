"""Connection management for the supported relational engines.

Usage:
    from schema_integrity.adapters import ConnectionManager, DatabaseConnection
    from schema_integrity.adapters import get_engine_profile, resolve_url
"""

from schema_integrity.adapters.base import ConnectionMetrics, DatabaseConnection, QueryRunner
from schema_integrity.adapters.engines import (
    ENGINE_PROFILES,
    EngineProfile,
    connection_fingerprint,
    get_engine_profile,
    resolve_url,
)
from schema_integrity.adapters.pooled import ConnectionManager, PooledConnection

__all__ = [
    "ConnectionManager",
    "ConnectionMetrics",
    "DatabaseConnection",
    "ENGINE_PROFILES",
    "EngineProfile",
    "PooledConnection",
    "QueryRunner",
    "connection_fingerprint",
    "get_engine_profile",
    "resolve_url",
]
