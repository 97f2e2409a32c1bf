"""Route extraction from Python request handlers and validation against a schema.

Handlers are parsed with ``ast`` and matched structurally:

- ``<router>.<verb>("/path", handler, ...)`` calls
- ``@router.<verb>("/path")``, ``@Get("/path")`` and
  ``@app.route("/path", methods=[...])`` decorators

Only string-literal paths starting with ``/`` are recognized.  Within a
handler, ORM calls (``prisma.widget.find_unique(...)``,
``Widget.objects.create(...)``) and raw SQL passed to ``query``/
``execute``/``text`` become ``DatabaseOperation`` values.

Usage:
    from schema_integrity.validation.routes import RouteValidator

    validator = RouteValidator(settings.validation.routes, project_root)
    result = await validator.validate(schema)
    for invalid in result.data.invalid:
        print(invalid.route.key, invalid.reasons)
"""

import ast
import logging
import re
from pathlib import Path

from schema_integrity.config.models import RouteValidationSettings
from schema_integrity.errors import ErrorCode, IntegrityResult
from schema_integrity.schema.models import DatabaseSchema, Table
from schema_integrity.validation.models import (
    ApiRoute,
    DatabaseOperation,
    HttpMethod,
    InvalidRoute,
    OperationKind,
    RequestBody,
    RouteParameter,
    RouteValidationResult,
)
from schema_integrity.validation.naming import pluralize, singularize, snake_case
from schema_integrity.validation.scanning import discover_files, scan_files
from schema_integrity.validation.stubs import request_fields, resource_name, write_route_stub

logger = logging.getLogger(__name__)

ROUTE_VERBS = frozenset(m.value.lower() for m in HttpMethod)
ROUTE_DECORATORS = frozenset({"route", "api_route"})
RAW_QUERY_METHODS = frozenset({
    "query",
    "execute",
    "executemany",
    "exec_driver_sql",
    "fetch",
    "fetchrow",
    "fetchval",
    "fetch_all",
    "fetch_one",
    "fetch_val",
    "raw",
})

# Attributes that hold a client or request object, never a model
NON_TABLE_ATTRIBUTES = frozenset({
    "app",
    "cache",
    "client",
    "config",
    "conn",
    "connection",
    "cursor",
    "db",
    "engine",
    "headers",
    "request",
    "response",
    "router",
    "self",
    "session",
    "settings",
    "state",
})

_TABLE = r"(?P<table>[\w.\"`\[\]]+)"
SQL_PATTERNS: list[tuple[OperationKind, re.Pattern[str]]] = [
    (OperationKind.SELECT, re.compile(rf"\bselect\b(?P<cols>.*?)\bfrom\s+{_TABLE}", re.I | re.S)),
    (OperationKind.INSERT, re.compile(rf"\binsert\s+into\s+{_TABLE}(?:\s*\((?P<cols>[^)]*)\))?", re.I)),
    (
        OperationKind.UPDATE,
        re.compile(rf"\bupdate\s+{_TABLE}\s+set\s+(?P<cols>.*?)(?=\bwhere\b|\breturning\b|\bfrom\b|$)", re.I | re.S),
    ),
    (OperationKind.DELETE, re.compile(rf"\bdelete\s+from\s+{_TABLE}", re.I)),
]

PATH_PARAM = re.compile(r":(\w+)|\{(\w+)(?::[^}]*)?\}|<(?:(\w+):)?(\w+)>")
_CONVERTER_TYPES = {"int": "integer", "float": "number"}
_SIMPLE_COLUMN = re.compile(r"(?:[\w\"`]+\.)?[\"`]?(\w+)[\"`]?(?:\s+as\s+\w+)?", re.I)
_SET_COLUMN = re.compile(r"(?:^|,)\s*[\"`\[]?(\w+)[\"`\]]?\s*=", re.S)
_STATUS_NAME = re.compile(r"HTTP_(\d{3})")


# ============================================================================
# SQL and path helpers
# ============================================================================


def _table_name(raw: str) -> str:
    cleaned = re.sub(r"[\"`\[\]]", "", raw)
    return cleaned.split(".")[-1].lower()


def _select_columns(text: str) -> list[str] | None:
    text = re.sub(r"^\s*distinct\s+", "", text, flags=re.I).strip()
    if not text or text == "*":
        return None
    names = []
    for part in text.split(","):
        match = _SIMPLE_COLUMN.fullmatch(part.strip())
        if not match:
            return None
        names.append(match.group(1))
    return names


def _insert_columns(text: str | None) -> list[str] | None:
    if not text:
        return None
    names = [re.sub(r"[\"`\[\]\s]", "", part) for part in text.split(",")]
    return [n for n in names if n] or None


def sql_operations(sql: str | None) -> list[DatabaseOperation]:
    """Infer operations from a SQL string, one per statement.

    Within a statement the earliest matching keyword wins.

    Example:
        >>> [op.table for op in sql_operations("SELECT id FROM Users; DELETE FROM logs")]
        ['users', 'logs']
    """
    if not sql:
        return []

    operations = []
    for statement in sql.split(";"):
        best: tuple[OperationKind, re.Match[str]] | None = None
        for kind, pattern in SQL_PATTERNS:
            match = pattern.search(statement)
            if match and (best is None or match.start() < best[1].start()):
                best = (kind, match)
        if best is None:
            continue

        kind, match = best
        if kind is OperationKind.SELECT:
            columns = _select_columns(match.group("cols"))
        elif kind is OperationKind.INSERT:
            columns = _insert_columns(match.group("cols"))
        elif kind is OperationKind.UPDATE:
            columns = _SET_COLUMN.findall(match.group("cols")) or None
        else:
            columns = None
        operations.append(
            DatabaseOperation(kind=kind, table=_table_name(match.group("table")), columns=columns)
        )
    return operations


def path_parameters(path: str) -> list[RouteParameter]:
    """Path parameters in ``:name``, ``{name}`` or ``<conv:name>`` form."""
    params = []
    for match in PATH_PARAM.finditer(path):
        express, braces, converter, angle = match.groups()
        name = express or braces or angle
        params.append(
            RouteParameter(name=name, type=_CONVERTER_TYPES.get(converter or "", "string"))
        )
    return params


def _is_param_segment(segment: str) -> bool:
    return segment.startswith(":") or (segment[:1], segment[-1:]) in (("{", "}"), ("<", ">"))


def paths_match(left: str, right: str) -> bool:
    """Compare route paths, treating parameter segments as wildcards."""
    a = left.strip("/").split("/")
    b = right.strip("/").split("/")
    if len(a) != len(b):
        return False
    return all(
        x == y or _is_param_segment(x) or _is_param_segment(y) for x, y in zip(a, b)
    )


def _id_parameter_base(name: str) -> str | None:
    if name.endswith("Id") and len(name) > 2:
        return name[:-2]
    if name.endswith("_id") and len(name) > 3:
        return name[:-3]
    return None


# ============================================================================
# AST extraction
# ============================================================================


def orm_operation_kind(method: str) -> OperationKind | None:
    """Map an ORM method name (camelCase or snake_case) to an operation."""
    name = method.replace("_", "").lower()
    if name.startswith("find"):
        return OperationKind.SELECT
    if name.startswith("create"):
        return OperationKind.INSERT
    if name.startswith("update"):
        return OperationKind.UPDATE
    if name.startswith("delete"):
        return OperationKind.DELETE
    return None


def _orm_table(base: ast.expr, attribute: str) -> str | None:
    if attribute == "objects":
        match base:
            case ast.Name(id=model) | ast.Attribute(attr=model):
                return snake_case(model)
        return None
    if attribute in NON_TABLE_ATTRIBUTES or attribute.startswith("_"):
        return None
    return attribute


def _orm_columns(call: ast.Call) -> list[str] | None:
    columns: list[str] = []
    for keyword in call.keywords:
        if keyword.arg not in ("data", "select"):
            continue
        match keyword.value:
            case ast.Dict(keys=keys):
                columns.extend(
                    k.value for k in keys if isinstance(k, ast.Constant) and isinstance(k.value, str)
                )
    return columns or None


def literal_sql(node: ast.expr) -> str | None:
    """String value of a literal, f-string or literal concatenation.

    Interpolated parts of an f-string become ``?``.
    """
    match node:
        case ast.Constant(value=str() as value):
            return value
        case ast.JoinedStr(values=values):
            return "".join(
                v.value if isinstance(v, ast.Constant) and isinstance(v.value, str) else "?"
                for v in values
            )
        case ast.BinOp(left=left, op=ast.Add(), right=right):
            head, tail = literal_sql(left), literal_sql(right)
            if head is not None and tail is not None:
                return head + tail
    return None


def extract_operations(node: ast.AST) -> list[DatabaseOperation]:
    """Collect database operations from every call nested in ``node``."""
    operations: list[DatabaseOperation] = []
    for child in ast.walk(node):
        match child:
            case ast.Call(
                func=ast.Attribute(value=ast.Attribute(value=base, attr=attribute), attr=method)
            ) if orm_operation_kind(method) is not None:
                table = _orm_table(base, attribute)
                if table:
                    operations.append(
                        DatabaseOperation(
                            kind=orm_operation_kind(method),
                            table=table,
                            columns=_orm_columns(child),
                        )
                    )
            case ast.Call(func=ast.Attribute(attr=method), args=[sql, *_]) if method in RAW_QUERY_METHODS:
                operations.extend(sql_operations(literal_sql(sql)))
            case ast.Call(func=ast.Name(id="text") | ast.Attribute(attr="text"), args=[sql, *_]):
                operations.extend(sql_operations(literal_sql(sql)))

    unique: list[DatabaseOperation] = []
    for op in operations:
        if op not in unique:
            unique.append(op)
    return unique


def _function_index(tree: ast.Module) -> dict[str, ast.AST]:
    index: dict[str, ast.AST] = {}
    for node in ast.walk(tree):
        match node:
            case ast.FunctionDef(name=name) | ast.AsyncFunctionDef(name=name):
                index.setdefault(name, node)
    return index


def _methods_keyword(keywords: list[ast.keyword]) -> list[str]:
    for keyword in keywords:
        if keyword.arg != "methods":
            continue
        match keyword.value:
            case ast.List(elts=elts) | ast.Tuple(elts=elts) | ast.Set(elts=elts):
                return [
                    e.value.lower()
                    for e in elts
                    if isinstance(e, ast.Constant)
                    and isinstance(e.value, str)
                    and e.value.lower() in ROUTE_VERBS
                ]
    return []


def _status_codes(keywords: list[ast.keyword]) -> list[int]:
    for keyword in keywords:
        if keyword.arg != "status_code":
            continue
        match keyword.value:
            case ast.Constant(value=int() as code):
                return [code]
            case ast.Attribute(attr=name) if _STATUS_NAME.match(name):
                return [int(_STATUS_NAME.match(name).group(1))]
    return []


class RouteExtractor:
    """Recovers ``ApiRoute`` values from Python source.

    Args:
        root: Project root; source references are reported relative to it.
    """

    def __init__(self, root: Path | None = None) -> None:
        self._root = root

    def _display(self, path: Path) -> str:
        if self._root is not None:
            try:
                return path.relative_to(self._root).as_posix()
            except ValueError:
                pass
        return path.as_posix()

    def extract_file(self, path: Path) -> list[ApiRoute]:
        """Parse one file.  Raises ``SyntaxError``/``OSError`` on unreadable files."""
        source = path.read_text(encoding="utf-8")
        return self.extract_source(source, self._display(path))

    def extract_source(self, source: str, source_ref: str = "<string>") -> list[ApiRoute]:
        """Extract routes from a module's source text.

        Example:
            >>> src = "app.get('/api/widgets/:id', h)\\n"
            >>> [r.key for r in RouteExtractor().extract_source(src)]
            ['GET /api/widgets/:id']
        """
        tree = ast.parse(source, filename=source_ref)
        functions = _function_index(tree)
        routes: list[ApiRoute] = []

        for node in ast.walk(tree):
            match node:
                case ast.Call(
                    func=ast.Attribute(attr=verb),
                    args=[ast.Constant(value=str() as path), *handlers],
                ) if verb in ROUTE_VERBS and handlers and path.startswith("/"):
                    routes.append(self._call_route(verb, path, handlers, functions, source_ref))
                case ast.FunctionDef() | ast.AsyncFunctionDef():
                    for decorator in node.decorator_list:
                        routes.extend(self._decorator_routes(decorator, node, source_ref))
        return routes

    def _call_route(
        self,
        verb: str,
        path: str,
        handlers: list[ast.expr],
        functions: dict[str, ast.AST],
        source_ref: str,
    ) -> ApiRoute:
        bodies: list[ast.AST] = []
        handler_name = None
        for handler in handlers:
            match handler:
                case ast.Name(id=name) | ast.Attribute(attr=name):
                    handler_name = name
                    if name in functions:
                        bodies.append(functions[name])
                case ast.Lambda() | ast.Call():
                    bodies.append(handler)
        return self._build_route(verb, path, source_ref, handler_name, bodies, [])

    def _decorator_routes(
        self,
        decorator: ast.expr,
        func: ast.FunctionDef | ast.AsyncFunctionDef,
        source_ref: str,
    ) -> list[ApiRoute]:
        match decorator:
            case ast.Call(
                func=ast.Attribute(attr=name) | ast.Name(id=name),
                args=[ast.Constant(value=str() as path), *_],
                keywords=keywords,
            ) if path.startswith("/"):
                pass
            case _:
                return []

        lowered = name.lower()
        if lowered in ROUTE_VERBS:
            methods = [lowered]
        elif lowered in ROUTE_DECORATORS:
            methods = _methods_keyword(keywords) or ["get"]
        else:
            return []

        responses = _status_codes(keywords)
        return [
            self._build_route(method, path, source_ref, func.name, [func], responses)
            for method in methods
        ]

    @staticmethod
    def _build_route(
        verb: str,
        path: str,
        source_ref: str,
        handler_name: str | None,
        bodies: list[ast.AST],
        responses: list[int],
    ) -> ApiRoute:
        operations: list[DatabaseOperation] = []
        for body in bodies:
            for op in extract_operations(body):
                if op not in operations:
                    operations.append(op)
        return ApiRoute(
            method=HttpMethod(verb.upper()),
            path=path,
            source=source_ref,
            handler=handler_name,
            parameters=path_parameters(path),
            operations=operations,
            responses=responses,
        )


# ============================================================================
# Validation
# ============================================================================


class TableLookup:
    """Lenient table resolution: exact, case-insensitive, singular, plural."""

    def __init__(self, schema: DatabaseSchema) -> None:
        self._tables = {t.name.lower(): t for t in schema.tables}

    def find(self, name: str) -> Table | None:
        for candidate in (name, snake_case(name)):
            lowered = candidate.lower()
            for variant in (lowered, singularize(lowered), pluralize(lowered)):
                if variant in self._tables:
                    return self._tables[variant]
        return None


def crud_routes(table: Table) -> list[ApiRoute]:
    """The five CRUD routes every table is expected to expose."""
    base = f"/api/{resource_name(table)}"
    pk = (table.primary_key or ["id"])[0]
    item = f"{base}/:{pk}"
    pk_params = [RouteParameter(name=pk)]
    list_params = [
        RouteParameter(name="page", location="query", type="integer", required=False),
        RouteParameter(name="limit", location="query", type="integer", required=False),
        RouteParameter(name="sort", location="query", required=False),
        RouteParameter(name="filter", location="query", required=False),
    ]

    def op(kind: OperationKind) -> list[DatabaseOperation]:
        return [DatabaseOperation(kind=kind, table=table.name)]

    return [
        ApiRoute(
            method=HttpMethod.GET, path=base, parameters=list_params,
            operations=op(OperationKind.SELECT), responses=[200, 401, 500],
        ),
        ApiRoute(
            method=HttpMethod.GET, path=item, parameters=pk_params,
            operations=op(OperationKind.SELECT), responses=[200, 404, 500],
        ),
        ApiRoute(
            method=HttpMethod.POST, path=base,
            request_body=RequestBody(fields=request_fields(table, partial=False)),
            operations=op(OperationKind.INSERT), responses=[201, 400, 401, 500],
        ),
        ApiRoute(
            method=HttpMethod.PUT, path=item, parameters=pk_params,
            request_body=RequestBody(fields=request_fields(table, partial=True)),
            operations=op(OperationKind.UPDATE), responses=[200, 400, 404, 500],
        ),
        ApiRoute(
            method=HttpMethod.DELETE, path=item, parameters=pk_params,
            operations=op(OperationKind.DELETE), responses=[204, 404, 500],
        ),
    ]


def missing_crud_routes(schema: DatabaseSchema, routes: list[ApiRoute]) -> list[ApiRoute]:
    """CRUD routes with no discovered counterpart (same method, matching path)."""
    missing = []
    for table in schema.tables:
        for expected in crud_routes(table):
            if not any(
                r.method == expected.method and paths_match(r.path, expected.path) for r in routes
            ):
                missing.append(expected)
    return missing


def validate_routes(routes: list[ApiRoute], schema: DatabaseSchema) -> RouteValidationResult:
    """Check routes against ``schema``.  Pure; writes nothing.

    Operations referencing a missing table or column make a route invalid.
    ``...Id``/``..._id`` path parameters without a matching table only
    produce warnings.
    """
    lookup = TableLookup(schema)
    result = RouteValidationResult(routes=list(routes))

    for route in routes:
        reasons: list[str] = []
        for op in route.operations:
            table = lookup.find(op.table)
            if table is None:
                reasons.append(f"Table '{op.table}' does not exist ({op.kind.value})")
                continue
            for column in op.columns or []:
                if table.column(column) is None and table.column(snake_case(column)) is None:
                    reasons.append(f"Column '{table.name}.{column}' does not exist")

        for param in route.parameters:
            base = _id_parameter_base(param.name) if param.location == "path" else None
            if base and lookup.find(base) is None:
                result.warnings.append(
                    f"Path parameter '{param.name}' in {route.key} does not match any table"
                )

        if reasons:
            result.invalid.append(InvalidRoute(route=route, reasons=reasons))
        else:
            result.valid.append(route)

    result.missing = missing_crud_routes(schema, routes)
    return result


class RouteValidator:
    """Scans handler sources and validates them against a schema.

    Args:
        settings: ``[validation.routes]`` settings.
        project_root: Root the glob patterns are evaluated against.
        extractor: Optional extractor (defaults to one rooted at
            ``project_root``).
    """

    def __init__(
        self,
        settings: RouteValidationSettings,
        project_root: Path,
        extractor: RouteExtractor | None = None,
    ) -> None:
        self._settings = settings
        self._root = project_root
        self._extractor = extractor or RouteExtractor(project_root)

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    async def extract_routes(self) -> tuple[list[ApiRoute], list[str]]:
        """Discover and parse handler files.

        Returns:
            Tuple of (routes keyed uniquely by ``METHOD path``, warnings).
        """
        files = discover_files(
            self._root, self._settings.patterns, self._settings.directories, {".py"}
        )
        found, warnings = await scan_files(files, self._extractor.extract_file)

        merged: dict[str, ApiRoute] = {}
        for route in found:
            merged[route.key] = route
        logger.info(f"Extracted {len(merged)} routes from {len(files)} files")
        return list(merged.values()), warnings

    def write_stubs(self, missing: list[ApiRoute], schema: DatabaseSchema) -> list[str]:
        """Write one stub per table that has missing CRUD routes."""
        output_dir = self._root / self._settings.output_directory
        written = []
        seen: set[str] = set()
        for route in missing:
            table_name = route.operations[0].table
            if table_name in seen:
                continue
            seen.add(table_name)
            table = schema.table(table_name)
            if table is None:
                continue
            path = write_route_stub(table, output_dir)
            if path is not None:
                written.append(path.as_posix())
        return written

    async def validate(self, schema: DatabaseSchema) -> IntegrityResult[RouteValidationResult]:
        """Extract routes, validate them and, in strict mode, write stubs."""
        try:
            routes, scan_warnings = await self.extract_routes()
            result = validate_routes(routes, schema)
            result.warnings = scan_warnings + result.warnings
            if self._settings.strict and result.missing:
                result.generated_stubs = self.write_stubs(result.missing, schema)
        except Exception as e:
            logger.error(f"Route validation failed: {e}")
            return IntegrityResult.fail(
                ErrorCode.ROUTE_VALIDATION_FAILED,
                "Failed to validate routes",
                details=str(e),
            )
        return IntegrityResult.ok(result, warnings=result.warnings)
