"""Pooled async connections for every supported engine.

``ConnectionManager`` turns ``DatabaseSettings`` into a verified
``PooledConnection`` backed by a SQLAlchemy ``AsyncEngine``.  The
connection tracks per-query latency over a sliding window, success and
error counters, and pool occupancy from SQLAlchemy pool events.

Usage:
    from schema_integrity.adapters.pooled import ConnectionManager

    manager = ConnectionManager(settings)
    manager.on("pool_error", lambda payload: alert(payload))
    result = await manager.connect()
    if not result.success:
        raise SystemExit(result.error.message)

    conn = result.data
    rows = await conn.query("SELECT id FROM orders WHERE total > :min", {"min": 10})
    await manager.disconnect()
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from schema_integrity.adapters.base import ConnectionMetrics, QueryRunner
from schema_integrity.adapters.engines import (
    EngineProfile,
    connection_fingerprint,
    get_engine_profile,
    resolve_url,
)
from schema_integrity.config.models import DatabaseSettings
from schema_integrity.errors import ErrorCode, IntegrityResult
from schema_integrity.events import EventRegistry, Listener

logger = logging.getLogger(__name__)

T = TypeVar("T")

CONNECTION_EVENTS = frozenset({"connected", "disconnected", "pool_error", "connection_error"})
QUERY_WINDOW = 1000
HEALTH_QUERY = "SELECT 1"


def _rows(result: Any) -> list[dict]:
    if not result.returns_rows:
        return []
    return [dict(row) for row in result.mappings().all()]


class TransactionScope:
    """Query runner bound to the connection held by ``transaction()``."""

    def __init__(self, conn: AsyncConnection, owner: "PooledConnection") -> None:
        self._conn = conn
        self._owner = owner

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run ``sql`` inside the open transaction."""
        return await self._owner._timed(self._conn, sql, params)


class PooledConnection:
    """SQLAlchemy-backed implementation of ``DatabaseConnection``.

    Safe for concurrent callers on one event loop: every call checks a
    connection out of the pool for its own duration.

    Args:
        engine: Async engine owning the pool.
        profile: Engine profile the engine was built from.
        events: Registry receiving ``pool_error`` and ``disconnected``.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        profile: EngineProfile,
        events: EventRegistry | None = None,
    ) -> None:
        self._engine = engine
        self._profile = profile
        self._events = events or EventRegistry(CONNECTION_EVENTS, source="connection")
        self._closed = False

        self._query_times: deque[float] = deque(maxlen=QUERY_WINDOW)
        self._query_count = 0
        self._error_count = 0
        self._waiting = 0
        self._active = 0
        self._total = 0

        self._install_pool_listeners()

    @property
    def engine_kind(self) -> str:
        return self._profile.kind.value

    # ------------------------------------------------------------------
    # Pool accounting
    # ------------------------------------------------------------------

    def _install_pool_listeners(self) -> None:
        sync_engine = self._engine.sync_engine
        event.listen(sync_engine, "connect", self._on_pool_connect)
        event.listen(sync_engine, "checkout", self._on_checkout)
        event.listen(sync_engine, "checkin", self._on_checkin)
        event.listen(sync_engine, "close", self._on_pool_close)

    def _on_pool_connect(self, dbapi_connection: Any, connection_record: Any) -> None:
        self._total += 1

    def _on_checkout(
        self, dbapi_connection: Any, connection_record: Any, connection_proxy: Any
    ) -> None:
        self._active += 1

    def _on_checkin(self, dbapi_connection: Any, connection_record: Any) -> None:
        self._active = max(self._active - 1, 0)

    def _on_pool_close(self, dbapi_connection: Any, connection_record: Any) -> None:
        self._total = max(self._total - 1, 0)

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[AsyncConnection]:
        """Check out a connection and hold one transaction on it."""
        if self._closed:
            raise RuntimeError("Connection is closed")

        self._waiting += 1
        try:
            conn = await self._engine.connect()
        finally:
            self._waiting -= 1

        try:
            async with conn.begin():
                yield conn
        finally:
            await conn.close()

    async def _timed(
        self, conn: AsyncConnection, sql: str, params: dict[str, Any] | None
    ) -> list[dict]:
        started = time.perf_counter()
        try:
            result = await conn.execute(text(sql), params or {})
            return _rows(result)
        except Exception as e:
            self._error_count += 1
            if isinstance(e, DBAPIError) and e.connection_invalidated:
                self._events.emit("pool_error", {"engine": self.engine_kind, "error": str(e)})
            raise
        finally:
            self._query_count += 1
            self._query_times.append((time.perf_counter() - started) * 1000)

    # ------------------------------------------------------------------
    # DatabaseConnection
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Run one statement on its own pooled connection.

        The statement is committed on success.  Errors are counted and
        re-raised.

        Example:
            rows = await conn.query(
                "SELECT id, total FROM orders WHERE status = :status",
                {"status": "paid"},
            )
        """
        async with self._acquire() as conn:
            return await self._timed(conn, sql, params)

    async def transaction(self, fn: Callable[[QueryRunner], Awaitable[T]]) -> T:
        """Run ``fn`` inside BEGIN/COMMIT on one pooled connection.

        ``fn`` receives a ``TransactionScope`` whose ``query`` runs on the
        held connection.  Any exception rolls back and is re-raised; the
        connection is released in every case.

        Example:
            async def move(tx):
                await tx.query("UPDATE accounts SET balance = balance - 10 WHERE id = 1")
                await tx.query("UPDATE accounts SET balance = balance + 10 WHERE id = 2")

            await conn.transaction(move)
        """
        async with self._acquire() as conn:
            return await fn(TransactionScope(conn, self))

    async def run_sync(self, fn: Callable[[Any], T]) -> T:
        """Run a synchronous callable (e.g. ``inspect``) on a pooled connection."""
        async with self._acquire() as conn:
            return await conn.run_sync(fn)

    async def ping(self) -> None:
        """Round trip that raises on failure and is not counted in metrics."""
        async with self._acquire() as conn:
            await conn.execute(text(HEALTH_QUERY))

    async def is_healthy(self) -> bool:
        """Return ``True`` if a trivial round trip succeeds.  Never raises."""
        if self._closed:
            return False
        try:
            await self.ping()
        except Exception as e:
            logger.warning(f"Health check failed for {self.engine_kind}: {e}")
            return False
        return True

    def get_metrics(self) -> ConnectionMetrics:
        """Snapshot of pool occupancy and query statistics.

        ``avg_query_time_ms`` covers the last 1000 queries; ``error_rate``
        is ``errors / max(total_queries, 1)``.
        """
        window = list(self._query_times)
        avg = sum(window) / len(window) if window else 0.0
        return ConnectionMetrics(
            active=self._active,
            idle=max(self._total - self._active, 0),
            waiting=self._waiting,
            total=self._total,
            avg_query_time_ms=round(avg, 3),
            error_rate=self._error_count / max(self._query_count, 1),
            total_queries=self._query_count,
            error_count=self._error_count,
        )

    async def close(self) -> None:
        """Dispose of the pool.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        await self._engine.dispose()
        self._events.emit("disconnected", {"engine": self.engine_kind})


class ConnectionManager:
    """Builds and verifies pooled connections from settings.

    Never retries; a failed ``connect()`` is reported once and the caller
    decides what to do next.

    Args:
        settings: Database section of the configuration.
    """

    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings
        self._events = EventRegistry(CONNECTION_EVENTS, source="connection")
        self._connection: PooledConnection | None = None

    @property
    def connection(self) -> PooledConnection | None:
        return self._connection

    def on(self, event_name: str, callback: Listener) -> None:
        """Register a listener for connected/disconnected/pool_error/connection_error."""
        self._events.on(event_name, callback)

    async def connect(self) -> IntegrityResult[PooledConnection]:
        """Create the pool and verify it with a round trip.

        Returns:
            ``IntegrityResult`` with the ``PooledConnection`` as ``data``,
            or a ``CONNECTION_FAILED`` error.
        """
        if self._connection is not None:
            return IntegrityResult.ok(self._connection)

        kind = self._settings.engine.value
        engine: AsyncEngine | None = None
        try:
            profile = get_engine_profile(self._settings.engine)
            engine = create_async_engine(
                resolve_url(self._settings), **profile.engine_kwargs(self._settings)
            )
            connection = PooledConnection(engine, profile, self._events)
            async with asyncio.timeout(self._settings.connect_timeout * 2):
                await connection.ping()
        except Exception as e:
            if engine is not None:
                await engine.dispose()
            logger.error(f"Failed to connect to {kind} database: {e}")
            self._events.emit("connection_error", {"engine": kind, "error": str(e)})
            return IntegrityResult.fail(
                ErrorCode.CONNECTION_FAILED,
                f"Failed to connect to {kind} database",
                details=str(e) or type(e).__name__,
            )

        self._connection = connection
        fingerprint = connection_fingerprint(self._settings)[:12]
        logger.info(f"Connected to {kind} database ({fingerprint})")
        self._events.emit("connected", {"engine": kind, "fingerprint": fingerprint})
        return IntegrityResult.ok(connection)

    async def disconnect(self) -> None:
        """Close the current connection, if any."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
