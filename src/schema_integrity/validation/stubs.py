"""CRUD route stub generation for tables without route coverage.

A stub is a FastAPI ``APIRouter`` module with list/get/create/update/
delete handlers and pydantic input models derived from the table's
columns.  Stubs are written with exclusive-create, so an existing file
for the same resource is never touched.

Usage:
    from schema_integrity.validation.stubs import write_route_stub

    path = write_route_stub(schema.table("order_items"), Path("routes"))
    # routes/order-items.py, or None if it already existed
"""

import keyword
import logging
import re
from pathlib import Path
from string import Template

from schema_integrity.schema.models import Column, Table
from schema_integrity.validation.naming import (
    kebab_case,
    pascal_case,
    pluralize,
    singularize,
    snake_case,
)

logger = logging.getLogger(__name__)

AUDIT_COLUMNS = frozenset({"created_at", "updated_at", "createdAt", "updatedAt"})

_LENGTH = re.compile(r"char\((\d+)\)")


# ------------------------------------------------------------------
# Column -> input schema
# ------------------------------------------------------------------


def python_type(column: Column) -> str:
    """Python annotation for a column's values.

    Example:
        >>> python_type(Column(name="price", type="numeric(10,2)"))
        'float'
    """
    t = column.type.lower()
    if "uuid" in t:
        return "UUID"
    if "bool" in t:
        return "bool"
    if "json" in t:
        return "dict[str, Any]"
    if "timestamp" in t or "datetime" in t:
        return "datetime"
    if t.startswith("date"):
        return "date"
    if t.startswith("time"):
        return "time"
    if "interval" in t:
        return "str"
    if "int" in t or "serial" in t:
        return "int"
    if any(k in t for k in ("numeric", "decimal", "float", "double", "real", "money")):
        return "float"
    return "str"


def max_length(column: Column) -> int | None:
    """``N`` of a ``varchar(N)``/``char(N)`` column."""
    match = _LENGTH.search(column.type.lower())
    return int(match.group(1)) if match else None


def input_columns(table: Table, partial: bool) -> list[Column]:
    """Columns accepted as client input.

    Create input drops auto-increment and audit timestamp columns; update
    input additionally drops primary-key columns.
    """
    primary_key = set(table.primary_key or [])
    columns = []
    for column in table.columns:
        if column.auto_increment or column.name in AUDIT_COLUMNS:
            continue
        if partial and column.name in primary_key:
            continue
        columns.append(column)
    return columns


def is_required_input(column: Column, partial: bool) -> bool:
    return not partial and not column.nullable and column.default is None


def request_fields(table: Table, partial: bool) -> dict[str, str]:
    """Request body shape for a table: field name -> annotation."""
    fields = {}
    for column in input_columns(table, partial):
        annotation = python_type(column)
        if not is_required_input(column, partial):
            annotation = f"{annotation} | None"
        fields[column.name] = annotation
    return fields


def field_attribute(name: str) -> str:
    """Model attribute for a column; keywords and non-identifiers are respelled.

    Example:
        >>> field_attribute("class")
        'class_'
    """
    attribute = re.sub(r"\W", "_", name)
    if not attribute.isidentifier() or attribute.startswith("_"):
        attribute = f"f_{attribute}"
    if keyword.iskeyword(attribute):
        attribute = f"{attribute}_"
    return attribute


def _needs_field(column: Column) -> bool:
    length = max_length(column) if python_type(column) == "str" else None
    return bool(length) or field_attribute(column.name) != column.name


def _field_line(column: Column, partial: bool) -> str:
    annotation = python_type(column)
    length = max_length(column) if annotation == "str" else None
    attribute = field_attribute(column.name)

    options = []
    if not is_required_input(column, partial):
        annotation = f"{annotation} | None"
        options.append("default=None")
    if attribute != column.name:
        options.append(f'alias="{column.name}"')
    if length:
        options.append(f"max_length={length}")

    if not options:
        return f"    {attribute}: {annotation}"
    if options == ["default=None"]:
        return f"    {attribute}: {annotation} = None"
    return f"    {attribute}: {annotation} = Field({', '.join(options)})"


# ------------------------------------------------------------------
# Rendering
# ------------------------------------------------------------------

_HEADER = Template('''"""CRUD routes for the $table table.

Generated by schema-integrity from the live schema. This file is never
overwritten; edit it freely.
"""

$imports

router = APIRouter(tags=["$resource"])


async def get_db() -> Any:
    """Return the application's database client."""
    raise NotImplementedError("Connect get_db to the application's database client")


''')

_HANDLERS = Template('''

@router.get("$base")
async def list_$plural(
    page: int = 1,
    limit: int = 10,
    sort: str | None = None,
    filter: str | None = None,
    db: Any = Depends(get_db),
) -> dict[str, Any]:
    rows = await db.select("$table", "*", order_by=sort)
    start = (page - 1) * limit
    return {"data": rows[start:start + limit], "page": page, "limit": limit, "total": len(rows)}


@router.get("$base/{$pk}")
async def get_$single($pk: $pk_type, db: Any = Depends(get_db)) -> dict[str, Any]:
    rows = await db.select("$table", "*", filters={"$pk": $pk})
    if not rows:
        raise HTTPException(status_code=404, detail="$model not found")
    return {"data": rows[0]}


@router.post("$base", status_code=201)
async def create_$single(payload: Create$model, db: Any = Depends(get_db)) -> dict[str, Any]:
    row = await db.insert("$table", payload.model_dump(by_alias=True, exclude_unset=True))
    return {"data": row}


@router.put("$base/{$pk}")
async def update_$single(
    $pk: $pk_type,
    payload: Update$model,
    db: Any = Depends(get_db),
) -> dict[str, Any]:
    if not await db.select("$table", "$pk", filters={"$pk": $pk}):
        raise HTTPException(status_code=404, detail="$model not found")
    values = payload.model_dump(by_alias=True, exclude_unset=True)
    row = await db.update("$table", values, filters={"$pk": $pk})
    return {"data": row}


@router.delete("$base/{$pk}", status_code=204)
async def delete_$single($pk: $pk_type, db: Any = Depends(get_db)) -> Response:
    if not await db.select("$table", "$pk", filters={"$pk": $pk}):
        raise HTTPException(status_code=404, detail="$model not found")
    await db.delete("$table", filters={"$pk": $pk})
    return Response(status_code=204)
''')


def _model_block(name: str, lines: list[str]) -> str:
    body = "\n".join(lines) if lines else "    pass"
    return f"class {name}(BaseModel):\n{body}\n"


def _imports(annotations: set[str], needs_field: bool) -> str:
    lines = []
    datetime_names = sorted(name for name in ("date", "datetime", "time") if name in annotations)
    if datetime_names:
        lines.append(f"from datetime import {', '.join(datetime_names)}")
    lines.append("from typing import Any")
    if "UUID" in annotations:
        lines.append("from uuid import UUID")
    lines.append("")
    lines.append("from fastapi import APIRouter, Depends, HTTPException, Response")
    lines.append("from pydantic import BaseModel, Field" if needs_field else "from pydantic import BaseModel")
    return "\n".join(lines)


def resource_name(table: Table) -> str:
    """Pluralized, kebab-cased resource name of a table."""
    return kebab_case(pluralize(table.name))


def render_route_stub(table: Table) -> str:
    """Render the stub module source for ``table``."""
    resource = resource_name(table)
    model = pascal_case(singularize(table.name))
    pk = (table.primary_key or ["id"])[0]
    pk_column = table.column(pk)
    pk_type = python_type(pk_column) if pk_column else "str"

    create_cols = input_columns(table, partial=False)
    update_cols = input_columns(table, partial=True)
    annotations = {python_type(c) for c in create_cols} | {pk_type}
    needs_field = any(_needs_field(c) for c in create_cols + update_cols)

    header = _HEADER.substitute(
        table=table.name,
        resource=resource,
        imports=_imports(annotations, needs_field),
    )
    models = "\n\n".join([
        _model_block(f"Create{model}", [_field_line(c, partial=False) for c in create_cols]),
        _model_block(f"Update{model}", [_field_line(c, partial=True) for c in update_cols]),
    ])
    handlers = _HANDLERS.substitute(
        table=table.name,
        base=f"/api/{resource}",
        plural=snake_case(pluralize(table.name)),
        single=snake_case(singularize(table.name)),
        model=model,
        pk=pk,
        pk_type=pk_type,
    )
    return header + models + handlers


def stub_path(table: Table, output_dir: Path) -> Path:
    return output_dir / f"{resource_name(table)}.py"


def write_route_stub(table: Table, output_dir: Path) -> Path | None:
    """Write the stub for ``table`` unless one already exists.

    Returns:
        Path of the new file, or ``None`` when the file already existed.
    """
    path = stub_path(table, output_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, "x", encoding="utf-8") as f:
            f.write(render_route_stub(table))
    except FileExistsError:
        logger.info(f"Route stub exists, leaving it untouched: {path}")
        return None

    logger.info(f"Generated route stub: {path}")
    return path
