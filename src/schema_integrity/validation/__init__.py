"""Route and form extraction, validated against a schema snapshot.

Usage:
    from schema_integrity.validation import RouteValidator, FormValidator

    routes = await RouteValidator(settings.routes, project_root).validate(schema)
    forms = await FormValidator(settings.forms, project_root).validate(schema)
"""

from schema_integrity.validation.forms import (
    FormExtractor,
    FormValidator,
    generate_migration_suggestions,
    match_table,
    types_compatible,
    validate_form,
)
from schema_integrity.validation.models import (
    ApiRoute,
    DatabaseOperation,
    FieldValidation,
    FormField,
    FormFieldType,
    FormSchema,
    FormValidationResult,
    HttpMethod,
    InvalidRoute,
    OperationKind,
    RequestBody,
    RouteParameter,
    RouteValidationResult,
    TypeMismatch,
    ValidationMismatch,
)
from schema_integrity.validation.routes import (
    RouteExtractor,
    RouteValidator,
    crud_routes,
    missing_crud_routes,
    validate_routes,
)
from schema_integrity.validation.stubs import render_route_stub, write_route_stub

__all__ = [
    "FormExtractor",
    "FormValidator",
    "generate_migration_suggestions",
    "match_table",
    "types_compatible",
    "validate_form",
    "ApiRoute",
    "DatabaseOperation",
    "FieldValidation",
    "FormField",
    "FormFieldType",
    "FormSchema",
    "FormValidationResult",
    "HttpMethod",
    "InvalidRoute",
    "OperationKind",
    "RequestBody",
    "RouteParameter",
    "RouteValidationResult",
    "TypeMismatch",
    "ValidationMismatch",
    "RouteExtractor",
    "RouteValidator",
    "crud_routes",
    "missing_crud_routes",
    "validate_routes",
    "render_route_stub",
    "write_route_stub",
]
