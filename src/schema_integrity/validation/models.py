"""Pydantic models for routes and forms recovered from source files.

This module contains:
- Route models: RouteParameter, RequestBody, DatabaseOperation, ApiRoute
- Route results: InvalidRoute, RouteValidationResult
- Form models: FormFieldType, FieldValidation, FormField, FormSchema
- Form results: TypeMismatch, ValidationMismatch, FormValidationResult
"""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


# ============================================================================
# Routes
# ============================================================================


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"


class OperationKind(str, Enum):
    SELECT = "select"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class RouteParameter(BaseModel):
    """A path or query parameter."""

    name: str
    location: Literal["path", "query"] = "path"
    type: str = "string"
    required: bool = True


class RequestBody(BaseModel):
    """Request body shape: field name -> type expression."""

    content_type: str = "application/json"
    required: bool = True
    fields: dict[str, str] = Field(default_factory=dict)


class DatabaseOperation(BaseModel):
    """A database access inferred from a handler body."""

    kind: OperationKind
    table: str
    columns: list[str] | None = None


class ApiRoute(BaseModel):
    """An endpoint exposed by the request-handling layer.

    Example:
        >>> route = ApiRoute(method=HttpMethod.GET, path="/api/widgets/:id")
        >>> route.key
        'GET /api/widgets/:id'
    """

    method: HttpMethod
    path: str
    source: str = ""
    handler: str | None = None
    parameters: list[RouteParameter] = Field(default_factory=list)
    request_body: RequestBody | None = None
    operations: list[DatabaseOperation] = Field(default_factory=list)
    responses: list[int] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.method.value} {self.path}"


class InvalidRoute(BaseModel):
    """A route whose database operations do not fit the schema."""

    route: ApiRoute
    reasons: list[str] = Field(default_factory=list)


class RouteValidationResult(BaseModel):
    """Route inventory checked against a schema."""

    routes: list[ApiRoute] = Field(default_factory=list)
    valid: list[ApiRoute] = Field(default_factory=list)
    invalid: list[InvalidRoute] = Field(default_factory=list)
    missing: list[ApiRoute] = Field(default_factory=list)
    generated_stubs: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.invalid and not self.missing


# ============================================================================
# Forms
# ============================================================================


class FormFieldType(str, Enum):
    TEXT = "text"
    EMAIL = "email"
    PASSWORD = "password"
    NUMBER = "number"
    DATE = "date"
    DATETIME = "datetime"
    TIME = "time"
    CHECKBOX = "checkbox"
    RADIO = "radio"
    SELECT = "select"
    MULTISELECT = "multiselect"
    TEXTAREA = "textarea"
    FILE = "file"
    HIDDEN = "hidden"


class FieldValidation(BaseModel):
    """Declared constraints on a form field."""

    min: float | None = None
    max: float | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None


class FormField(BaseModel):
    """One input control of a form."""

    name: str
    type: FormFieldType = FormFieldType.TEXT
    required: bool = False
    validation: FieldValidation | None = None


class FormSchema(BaseModel):
    """A form recovered from a UI source file."""

    name: str
    source: str = ""
    fields: list[FormField] = Field(default_factory=list)
    submit_action: str = "submit"

    def get_field(self, name: str) -> FormField | None:
        for form_field in self.fields:
            if form_field.name == name:
                return form_field
        return None


class TypeMismatch(BaseModel):
    field: str
    column: str
    expected: FormFieldType
    actual: FormFieldType
    column_type: str = ""


class ValidationMismatch(BaseModel):
    """A field rule that disagrees with its column.

    ``expected`` is the column side (``"NOT NULL"``, ``"max_length<=255"``);
    ``actual`` is what the form field declares.
    """

    field: str
    column: str
    expected: str
    actual: str
    message: str


class FormValidationResult(BaseModel):
    """A form checked against its matching table.

    ``table`` is ``None`` when no table matched; all lists are then empty.
    """

    form: FormSchema
    table: str | None = None
    missing_columns: list[str] = Field(default_factory=list)
    type_mismatches: list[TypeMismatch] = Field(default_factory=list)
    extra_fields: list[str] = Field(default_factory=list)
    validation_mismatches: list[ValidationMismatch] = Field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not (
            self.missing_columns
            or self.type_mismatches
            or self.extra_fields
            or self.validation_mismatches
        )
