"""Pydantic models for schema-integrity configuration."""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, model_validator


# ============================================================================
# Database
# ============================================================================


class EngineKind(str, Enum):
    """Supported relational engines."""

    POSTGRES = "postgres"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    SQLSERVER = "sqlserver"


class PoolSettings(BaseModel):
    """Connection pool bounds."""

    min: int = Field(default=2, ge=0)
    max: int = Field(default=10, ge=1)
    idle_timeout: float = 30.0  # seconds

    @model_validator(mode="after")
    def _check_bounds(self) -> "PoolSettings":
        if self.min > self.max:
            raise ValueError(f"pool.min ({self.min}) exceeds pool.max ({self.max})")
        return self


class DatabaseSettings(BaseModel):
    """Connection settings for the target database.

    Either ``url`` or the discrete ``host``/``database`` fields may be used.
    For SQLite, ``database`` is the file path.
    """

    engine: EngineKind = EngineKind.POSTGRES
    url: str | None = None
    host: str = "localhost"
    port: int | None = None
    database: str = ""
    username: str | None = None
    password: str | None = None
    db_password: str | None = None  # For [YOUR-PASSWORD] placeholder substitution
    ssl: bool = False
    connect_timeout: float = 5.0
    pool: PoolSettings = Field(default_factory=PoolSettings)


# ============================================================================
# Feature sections
# ============================================================================

DEFAULT_ROUTE_PATTERNS = [
    "**/routes/**/*.py",
    "**/api/**/*.py",
    "**/controllers/**/*.py",
    "**/routers/**/*.py",
]

DEFAULT_FORM_PATTERNS = [
    "**/templates/**/*.html",
    "**/templates/**/*.jinja",
    "**/templates/**/*.jinja2",
    "**/templates/**/*.j2",
    "**/components/**/*.vue",
    "**/views/**/*.vue",
    "**/pages/**/*.vue",
    "**/forms/**/*.html",
    "**/components/**/*.svelte",
    "**/routes/**/*.svelte",
]


class DriftSettings(BaseModel):
    """Drift detection behaviour."""

    enabled: bool = True
    auto_fix: bool = False
    baseline_path: str = "schema/schema.json"
    report_directory: str = "drift-reports"
    notification_webhook: str | None = None
    migration_table: str = "database_migrations"
    timeout: float = 30.0
    notification_timeout: float = 10.0
    allowed_drifts: list[str] = Field(default_factory=list)
    ignore_tables: list[str] = Field(default_factory=list)
    ignore_columns: list[str] = Field(default_factory=list)


class RouteValidationSettings(BaseModel):
    """Route scanning and validation."""

    enabled: bool = True
    patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_ROUTE_PATTERNS))
    directories: list[str] = Field(default_factory=list)
    strict: bool = False
    output_directory: str = "routes"


class FormValidationSettings(BaseModel):
    """Form scanning and validation."""

    enabled: bool = True
    patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_FORM_PATTERNS))
    directories: list[str] = Field(default_factory=list)


class ValidationSettings(BaseModel):
    """Container for the ``[validation.*]`` tables."""

    routes: RouteValidationSettings = Field(default_factory=RouteValidationSettings)
    forms: FormValidationSettings = Field(default_factory=FormValidationSettings)


class LoggingSettings(BaseModel):
    """Logging level used by the CLI."""

    level: str = "INFO"


class IntegrityConfig(BaseModel):
    """Complete configuration from schema-integrity.toml."""

    project_root: Path = Path(".")
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    drift: DriftSettings = Field(default_factory=DriftSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def resolve(self, path: str | Path) -> Path:
        """Resolve a configured path against ``project_root``."""
        candidate = Path(path)
        if candidate.is_absolute():
            return candidate
        return self.project_root / candidate
