"""Error codes and result envelopes shared by every component.

Top-level operations never raise for expected failures; they return an
``IntegrityResult`` carrying either ``data`` or an ``IntegrityError``.
``IntegrityFailure`` is the internal exception used to carry an error
up to the nearest orchestration boundary.

Usage:
    from schema_integrity.errors import ErrorCode, IntegrityResult

    result = IntegrityResult.fail(
        ErrorCode.CONNECTION_FAILED,
        "Failed to connect to postgres database",
        details="timeout",
    )
    if not result.success:
        print(result.error.code, result.error.message)
"""

from enum import Enum
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Stable error codes surfaced to callers."""

    CONNECTION_FAILED = "CONNECTION_FAILED"
    SCHEMA_ANALYSIS_FAILED = "SCHEMA_ANALYSIS_FAILED"
    ROUTE_VALIDATION_FAILED = "ROUTE_VALIDATION_FAILED"
    FORM_SCAN_FAILED = "FORM_SCAN_FAILED"
    DRIFT_DETECTION_FAILED = "DRIFT_DETECTION_FAILED"


class IntegrityError(BaseModel):
    """An error with a stable code, a human message and opaque details."""

    code: ErrorCode
    message: str
    details: Any = None


class IntegrityResult(BaseModel, Generic[T]):
    """Outcome of a top-level operation.

    Example:
        >>> result = IntegrityResult.ok([1, 2], warnings=["slow"])
        >>> result.success, result.data
        (True, [1, 2])
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool
    data: T | None = None
    error: IntegrityError | None = None
    warnings: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(
        cls,
        data: Any = None,
        warnings: list[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "IntegrityResult":
        """Build a successful result."""
        return cls(
            success=True,
            data=data,
            warnings=list(warnings or []),
            metadata=dict(metadata or {}),
        )

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        message: str,
        details: Any = None,
        warnings: list[str] | None = None,
    ) -> "IntegrityResult":
        """Build a failed result."""
        return cls(
            success=False,
            error=IntegrityError(code=code, message=message, details=details),
            warnings=list(warnings or []),
        )


class IntegrityFailure(Exception):
    """Raised internally when an operation cannot continue.

    Args:
        code: Error code to surface.
        message: Human-readable message.
        details: Optional diagnostic payload.
    """

    def __init__(self, code: ErrorCode, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.error = IntegrityError(code=code, message=message, details=details)

    @property
    def code(self) -> ErrorCode:
        return self.error.code
