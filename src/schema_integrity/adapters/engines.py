"""Per-engine connection profiles.

Each supported engine is described by an ``EngineProfile`` value: the
SQLAlchemy async driver to use, the URL schemes it accepts, whether
queue-pool sizing applies, and how TLS and connect timeouts are passed to
the driver.  ``get_engine_profile`` selects the profile for an
``EngineKind``; there is no adapter class hierarchy.

Usage:
    from schema_integrity.adapters.engines import get_engine_profile, resolve_url

    profile = get_engine_profile(settings.engine)
    url = resolve_url(settings)
    engine = create_async_engine(url, **profile.engine_kwargs(settings))
"""

import hashlib
import logging
import ssl
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import quote

from sqlalchemy.engine import URL, make_url

from schema_integrity.config.models import DatabaseSettings, EngineKind

logger = logging.getLogger(__name__)

PASSWORD_PLACEHOLDER = "[YOUR-PASSWORD]"


def _postgres_tls() -> dict[str, Any]:
    return {"ssl": "require"}


def _mysql_tls() -> dict[str, Any]:
    return {"ssl": ssl.create_default_context()}


@dataclass(frozen=True)
class EngineProfile:
    """Capabilities of one engine behind the uniform connection interface.

    Attributes:
        kind: Engine this profile describes.
        driver: SQLAlchemy ``dialect+driver`` name.
        url_schemes: URL schemes normalized to ``driver``.
        default_port: Port used when building a URL from discrete fields.
        pooled: Whether ``pool_size``/``max_overflow`` apply.
        timeout_arg: Driver keyword for the connect timeout.
        tls_connect_args: Factory for driver TLS arguments.
        tls_query: URL query parameters that enable TLS.
        default_query: URL query parameters always present.
    """

    kind: EngineKind
    driver: str
    url_schemes: tuple[str, ...]
    default_port: int | None = None
    pooled: bool = True
    timeout_arg: str | None = "timeout"
    tls_connect_args: Any = None
    tls_query: tuple[tuple[str, str], ...] = ()
    default_query: tuple[tuple[str, str], ...] = field(default=())

    def normalize_url(self, raw_url: str) -> str:
        """Rewrite a URL's scheme to this profile's async driver.

        Raises:
            ValueError: If the scheme belongs to another engine.
        """
        scheme, sep, rest = raw_url.partition("://")
        if not sep:
            raise ValueError(f"Not a database URL: {raw_url!r}")
        if scheme != self.driver and scheme not in self.url_schemes:
            raise ValueError(
                f"URL scheme '{scheme}' does not match engine '{self.kind.value}'"
            )
        return f"{self.driver}://{rest}"

    def connect_args(self, settings: DatabaseSettings) -> dict[str, Any]:
        """Driver keyword arguments for timeout and TLS."""
        args: dict[str, Any] = {}
        if self.timeout_arg:
            args[self.timeout_arg] = settings.connect_timeout
        if settings.ssl:
            if self.tls_connect_args is not None:
                args.update(self.tls_connect_args())
            elif not self.tls_query:
                logger.warning(f"TLS requested but not supported by {self.kind.value}")
        return args

    def engine_kwargs(self, settings: DatabaseSettings) -> dict[str, Any]:
        """Keyword arguments for ``create_async_engine``.

        Pool mapping: ``min`` becomes ``pool_size``, the headroom up to
        ``max`` becomes ``max_overflow`` and ``idle_timeout`` becomes
        ``pool_recycle``.
        """
        kwargs: dict[str, Any] = {
            "pool_pre_ping": True,
            "echo": False,
            "connect_args": self.connect_args(settings),
        }
        if self.pooled:
            pool = settings.pool
            kwargs.update(
                pool_size=max(pool.min, 1),
                max_overflow=max(pool.max - max(pool.min, 1), 0),
                pool_recycle=int(pool.idle_timeout),
                pool_timeout=settings.connect_timeout,
            )
        return kwargs


ENGINE_PROFILES: dict[EngineKind, EngineProfile] = {
    EngineKind.POSTGRES: EngineProfile(
        kind=EngineKind.POSTGRES,
        driver="postgresql+asyncpg",
        url_schemes=("postgres", "postgresql", "postgresql+psycopg", "postgresql+psycopg2"),
        default_port=5432,
        tls_connect_args=_postgres_tls,
    ),
    EngineKind.MYSQL: EngineProfile(
        kind=EngineKind.MYSQL,
        driver="mysql+aiomysql",
        url_schemes=("mysql", "mariadb", "mysql+pymysql"),
        default_port=3306,
        timeout_arg="connect_timeout",
        tls_connect_args=_mysql_tls,
    ),
    EngineKind.SQLITE: EngineProfile(
        kind=EngineKind.SQLITE,
        driver="sqlite+aiosqlite",
        url_schemes=("sqlite",),
        pooled=False,
    ),
    EngineKind.SQLSERVER: EngineProfile(
        kind=EngineKind.SQLSERVER,
        driver="mssql+aioodbc",
        url_schemes=("mssql", "sqlserver", "mssql+pyodbc"),
        default_port=1433,
        tls_query=(("Encrypt", "yes"),),
        default_query=(("driver", "ODBC Driver 18 for SQL Server"),),
    ),
}


def get_engine_profile(kind: EngineKind | str) -> EngineProfile:
    """Return the profile for an engine kind.

    Raises:
        ValueError: If ``kind`` is not a supported engine.
    """
    return ENGINE_PROFILES[EngineKind(kind)]


def resolve_url(settings: DatabaseSettings) -> URL:
    """Build the SQLAlchemy URL for the configured database.

    Substitutes ``[YOUR-PASSWORD]`` with ``db_password`` when a full URL is
    configured, otherwise assembles the URL from the discrete fields.

    Example:
        >>> s = DatabaseSettings(engine="sqlite", database="app.db")
        >>> resolve_url(s).render_as_string()
        'sqlite+aiosqlite:///app.db'
    """
    profile = get_engine_profile(settings.engine)

    if settings.url:
        raw = settings.url
        if settings.db_password and PASSWORD_PLACEHOLDER in raw:
            raw = raw.replace(PASSWORD_PLACEHOLDER, quote(settings.db_password, safe=""))
        url = make_url(profile.normalize_url(raw))
    elif profile.kind is EngineKind.SQLITE:
        url = URL.create(profile.driver, database=settings.database or ":memory:")
    else:
        url = URL.create(
            profile.driver,
            username=settings.username,
            password=settings.password or settings.db_password,
            host=settings.host,
            port=settings.port or profile.default_port,
            database=settings.database or None,
        )

    query = dict(profile.default_query)
    if settings.ssl:
        query.update(profile.tls_query)
    missing = {k: v for k, v in query.items() if k not in url.query}
    if missing:
        url = url.update_query_dict(missing)
    return url


def connection_fingerprint(settings: DatabaseSettings) -> str:
    """Stable sha256 identifier for a target database, password excluded."""
    url = resolve_url(settings).set(password=None)
    return hashlib.sha256(url.render_as_string().encode()).hexdigest()
