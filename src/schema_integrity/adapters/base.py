"""Database connection protocol.

Defines the ``DatabaseConnection`` Protocol consumed by the schema
analyzer and the drift detector.  All I/O methods are ``async def``.

Usage:
    from schema_integrity.adapters.base import DatabaseConnection

    async def count_orders(conn: DatabaseConnection) -> int:
        rows = await conn.query("SELECT COUNT(*) AS n FROM orders")
        return rows[0]["n"]
"""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ConnectionMetrics(BaseModel):
    """Live pool and query statistics.

    Example:
        >>> ConnectionMetrics().error_rate
        0.0
    """

    active: int = 0
    idle: int = 0
    waiting: int = 0
    total: int = 0
    avg_query_time_ms: float = 0.0
    error_rate: float = 0.0
    total_queries: int = 0
    error_count: int = 0


class QueryRunner(Protocol):
    """Anything that can run a parameterized SQL statement."""

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run ``sql`` with named ``:param`` placeholders.

        Returns:
            List of dicts, one per row.  Empty list for statements that
            return no rows.
        """
        ...


class DatabaseConnection(QueryRunner, Protocol):
    """Pooled connection interface shared by all engines."""

    async def transaction(self, fn: Callable[[QueryRunner], Awaitable[T]]) -> T:
        """Run ``fn`` inside BEGIN/COMMIT on one pooled connection.

        Any exception raised by ``fn`` rolls the transaction back and is
        re-raised.  The connection is released afterwards in every case.
        """
        ...

    async def run_sync(self, fn: Callable[[Any], T]) -> T:
        """Run a synchronous callable against a pooled connection.

        Used for SQLAlchemy ``inspect()`` based introspection.
        """
        ...

    async def is_healthy(self) -> bool:
        """Round-trip check.  Never raises."""
        ...

    def get_metrics(self) -> ConnectionMetrics:
        """Current pool and query statistics."""
        ...

    async def close(self) -> None:
        """Dispose of the pool."""
        ...
