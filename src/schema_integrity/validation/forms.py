"""Form extraction from UI templates and validation against a schema.

Templates (HTML/Jinja, Vue single-file components, Svelte) are parsed
with BeautifulSoup.  Native ``input``/``textarea``/``select`` controls
and common component-library wrappers become ``FormField`` values; the
field name comes from ``name`` or from a two-way binding such as
``v-model="form.email"`` or ``bind:value={email}``.

Usage:
    from schema_integrity.validation.forms import FormValidator

    validator = FormValidator(settings.validation.forms, project_root)
    result = await validator.validate(schema)
    for check in result.data:
        print(check.form.name, check.table, check.missing_columns)
"""

import logging
import re
from collections.abc import Iterable
from pathlib import Path

from bs4 import BeautifulSoup, Tag

from schema_integrity.config.models import FormValidationSettings
from schema_integrity.errors import ErrorCode, IntegrityResult
from schema_integrity.schema.models import Column, DatabaseSchema, Table
from schema_integrity.validation.models import (
    FieldValidation,
    FormField,
    FormFieldType,
    FormSchema,
    FormValidationResult,
    TypeMismatch,
    ValidationMismatch,
)
from schema_integrity.validation.naming import compact, pluralize, singularize, snake_case
from schema_integrity.validation.scanning import discover_files, scan_files
from schema_integrity.validation.stubs import max_length

logger = logging.getLogger(__name__)

UI_EXTENSIONS = frozenset({".html", ".htm", ".jinja", ".jinja2", ".j2", ".vue", ".svelte"})

NATIVE_CONTROLS = frozenset({"input", "textarea", "select"})

# Library wrapper -> fixed kind, or None to read the ``type`` attribute
LIBRARY_CONTROLS: dict[str, FormFieldType | None] = {
    # Element
    "el-input": None,
    "el-input-number": FormFieldType.NUMBER,
    "el-select": FormFieldType.SELECT,
    "el-date-picker": FormFieldType.DATE,
    "el-time-picker": FormFieldType.TIME,
    "el-time-select": FormFieldType.TIME,
    "el-checkbox": FormFieldType.CHECKBOX,
    "el-switch": FormFieldType.CHECKBOX,
    "el-radio-group": FormFieldType.RADIO,
    "el-upload": FormFieldType.FILE,
    # Vuetify
    "v-text-field": None,
    "v-textarea": FormFieldType.TEXTAREA,
    "v-select": FormFieldType.SELECT,
    "v-autocomplete": FormFieldType.SELECT,
    "v-checkbox": FormFieldType.CHECKBOX,
    "v-switch": FormFieldType.CHECKBOX,
    "v-radio-group": FormFieldType.RADIO,
    "v-file-input": FormFieldType.FILE,
    # Ant Design Vue
    "a-input": None,
    "a-input-password": FormFieldType.PASSWORD,
    "a-input-number": FormFieldType.NUMBER,
    "a-textarea": FormFieldType.TEXTAREA,
    "a-select": FormFieldType.SELECT,
    "a-date-picker": FormFieldType.DATE,
    "a-checkbox": FormFieldType.CHECKBOX,
    "a-switch": FormFieldType.CHECKBOX,
    "a-radio-group": FormFieldType.RADIO,
    "a-upload": FormFieldType.FILE,
    # Quasar
    "q-input": None,
    "q-select": FormFieldType.SELECT,
    "q-checkbox": FormFieldType.CHECKBOX,
    "q-toggle": FormFieldType.CHECKBOX,
    "q-option-group": FormFieldType.RADIO,
    "q-file": FormFieldType.FILE,
    # BootstrapVue
    "b-form-input": None,
    "b-form-textarea": FormFieldType.TEXTAREA,
    "b-form-select": FormFieldType.SELECT,
    "b-form-checkbox": FormFieldType.CHECKBOX,
    "b-form-file": FormFieldType.FILE,
}

INPUT_TYPES: dict[str, FormFieldType] = {
    "text": FormFieldType.TEXT,
    "search": FormFieldType.TEXT,
    "tel": FormFieldType.TEXT,
    "url": FormFieldType.TEXT,
    "email": FormFieldType.EMAIL,
    "password": FormFieldType.PASSWORD,
    "number": FormFieldType.NUMBER,
    "range": FormFieldType.NUMBER,
    "date": FormFieldType.DATE,
    "month": FormFieldType.DATE,
    "week": FormFieldType.DATE,
    "datetime": FormFieldType.DATETIME,
    "datetime-local": FormFieldType.DATETIME,
    "daterange": FormFieldType.DATE,
    "time": FormFieldType.TIME,
    "checkbox": FormFieldType.CHECKBOX,
    "radio": FormFieldType.RADIO,
    "file": FormFieldType.FILE,
    "hidden": FormFieldType.HIDDEN,
    "textarea": FormFieldType.TEXTAREA,
}

NON_FIELD_INPUT_TYPES = frozenset({"submit", "button", "reset", "image"})

BINDING_ATTRIBUTES = frozenset({"v-model", "x-model", "ng-model", "[(ngmodel)]", "bind:value", "wire:model"})
SUBMIT_ATTRIBUTES = frozenset({"@submit", "v-on:submit", "on:submit", "onsubmit", "(ngsubmit)", "hx-post", "x-on:submit"})

# Compared after ``compact()``: case and separators are ignored
UI_ONLY_FIELDS = frozenset({
    "confirmpassword",
    "passwordconfirm",
    "passwordconfirmation",
    "rememberme",
    "remember",
    "agreetoterms",
    "acceptterms",
    "terms",
    "consent",
    "captcha",
    "recaptcha",
    "grecaptcharesponse",
    "csrftoken",
    "csrf",
    "token",
    "authenticitytoken",
    "csrfmiddlewaretoken",
})

FORM_PREFIXES = ("create", "edit", "update", "new", "add")
FORM_SUFFIXES = ("form", "page", "view", "component")

COMPATIBLE_TYPES: list[frozenset[FormFieldType]] = [
    frozenset({FormFieldType.TEXT, FormFieldType.EMAIL, FormFieldType.PASSWORD, FormFieldType.NUMBER}),
    frozenset({FormFieldType.SELECT, FormFieldType.RADIO}),
    frozenset({FormFieldType.DATE, FormFieldType.DATETIME}),
]

_IDENTIFIER = re.compile(r"[A-Za-z_$][\w$]*")


# ============================================================================
# Extraction
# ============================================================================


def _is_form_tag(tag: Tag) -> bool:
    return tag.name == "form" or tag.name.endswith("-form")


def _is_control_tag(tag: Tag) -> bool:
    return tag.name in NATIVE_CONTROLS or tag.name in LIBRARY_CONTROLS


def _attr(tag: Tag, name: str) -> str | None:
    value = tag.attrs.get(name)
    if value is None:
        return None
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def _binding_name(expression: str) -> str | None:
    identifiers = _IDENTIFIER.findall(expression.strip("{} "))
    return identifiers[-1] if identifiers else None


def _field_name(tag: Tag) -> str | None:
    name = _attr(tag, "name")
    if name and "{" not in name:
        # user[email] -> email
        parts = re.findall(r"\w+", name)
        if parts:
            return parts[-1]
    for attribute, value in tag.attrs.items():
        if attribute.split(".")[0] in BINDING_ATTRIBUTES and isinstance(value, str):
            bound = _binding_name(value)
            if bound:
                return bound
    return None


def _field_type(tag: Tag) -> FormFieldType | None:
    declared = (_attr(tag, "type") or "").strip().lower()
    if tag.name == "input":
        if declared in NON_FIELD_INPUT_TYPES:
            return None
        return INPUT_TYPES.get(declared, FormFieldType.TEXT)
    if tag.name == "textarea":
        return FormFieldType.TEXTAREA
    if tag.name == "select":
        return FormFieldType.MULTISELECT if "multiple" in tag.attrs else FormFieldType.SELECT

    fixed = LIBRARY_CONTROLS[tag.name]
    if fixed is FormFieldType.SELECT and "multiple" in tag.attrs:
        return FormFieldType.MULTISELECT
    if fixed is FormFieldType.DATE and declared in ("datetime", "datetimerange"):
        return FormFieldType.DATETIME
    if fixed is not None:
        return fixed
    return INPUT_TYPES.get(declared, FormFieldType.TEXT)


def _is_required(tag: Tag) -> bool:
    if "required" in tag.attrs:
        return (_attr(tag, "required") or "").strip().lower() != "false"
    for attribute in (":required", "v-bind:required", "aria-required"):
        value = _attr(tag, attribute)
        if value is not None:
            return value.strip().lower() in ("", "true", "required")
    return False


def _number(tag: Tag, *names: str) -> float | None:
    for name in names:
        raw = _attr(tag, name)
        if raw is None:
            continue
        try:
            return float(raw.strip())
        except ValueError:
            continue
    return None


def _validation(tag: Tag) -> FieldValidation | None:
    min_length = _number(tag, "minlength", ":minlength")
    max_len = _number(tag, "maxlength", ":maxlength")
    validation = FieldValidation(
        min=_number(tag, "min", ":min"),
        max=_number(tag, "max", ":max"),
        min_length=int(min_length) if min_length is not None else None,
        max_length=int(max_len) if max_len is not None else None,
        pattern=_attr(tag, "pattern"),
    )
    if validation == FieldValidation():
        return None
    return validation


def _submit_action(form: Tag) -> str:
    action = _attr(form, "action")
    if action:
        return action
    for attribute, value in form.attrs.items():
        if attribute.split(".")[0] in SUBMIT_ATTRIBUTES and isinstance(value, str) and value:
            return value
    return "submit"


class FormExtractor:
    """Recovers ``FormSchema`` values from UI templates.

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

    def extract_file(self, path: Path) -> list[FormSchema]:
        markup = path.read_text(encoding="utf-8")
        return self.extract_markup(markup, self._display(path), default_name=path.stem)

    def extract_markup(
        self,
        markup: str,
        source_ref: str = "<string>",
        default_name: str = "form",
    ) -> list[FormSchema]:
        """Extract forms from template markup.

        Every outermost form element becomes one ``FormSchema`` named by its
        ``id``/``name``.  Markup with controls but no form element becomes
        a single form named ``default_name``.
        """
        soup = BeautifulSoup(markup, "html.parser")
        forms = [f for f in soup.find_all(_is_form_tag) if f.find_parent(_is_form_tag) is None]

        if not forms:
            fields = self._fields(soup)
            if not fields:
                return []
            return [FormSchema(name=default_name, source=source_ref, fields=fields)]

        schemas = []
        for position, form in enumerate(forms, start=1):
            name = _attr(form, "id") or _attr(form, "name")
            if not name:
                name = default_name if len(forms) == 1 else f"{default_name}-{position}"
            schemas.append(
                FormSchema(
                    name=name,
                    source=source_ref,
                    fields=self._fields(form),
                    submit_action=_submit_action(form),
                )
            )
        return schemas

    @staticmethod
    def _fields(container: Tag) -> list[FormField]:
        fields: list[FormField] = []
        seen: set[str] = set()
        for tag in container.find_all(_is_control_tag):
            name = _field_name(tag)
            kind = _field_type(tag)
            # Radio buttons sharing a name are one field
            if not name or kind is None or name in seen:
                continue
            seen.add(name)
            fields.append(
                FormField(name=name, type=kind, required=_is_required(tag), validation=_validation(tag))
            )
        return fields


# ============================================================================
# Validation
# ============================================================================


def types_compatible(actual: FormFieldType, expected: FormFieldType) -> bool:
    """Whether a field kind is acceptable for a column's expected kind."""
    if actual == expected:
        return True
    return any(actual in group and expected in group for group in COMPATIBLE_TYPES)


def expected_field_type(column: Column) -> FormFieldType:
    """Field kind a column's type (or, failing that, its name) calls for.

    Example:
        >>> expected_field_type(Column(name="email", type="varchar(255)"))
        <FormFieldType.EMAIL: 'email'>
    """
    t = column.type.lower()
    name = column.name.lower()
    if "bool" in t:
        return FormFieldType.CHECKBOX
    if "text" in t or "clob" in t:
        return FormFieldType.TEXTAREA
    if "timestamp" in t or "datetime" in t or ("date" in t and "time" in t):
        return FormFieldType.DATETIME
    if "date" in t:
        return FormFieldType.DATE
    if "time" in t:
        return FormFieldType.TIME
    if any(k in t for k in ("int", "numeric", "decimal", "float", "double", "real")):
        return FormFieldType.NUMBER
    if "email" in name:
        return FormFieldType.EMAIL
    if "password" in name:
        return FormFieldType.PASSWORD
    return FormFieldType.TEXT


def is_ui_only(field_name: str) -> bool:
    return compact(field_name) in UI_ONLY_FIELDS


def _strip_affixes(name: str) -> str:
    parts = [p for p in name.split("_") if p]
    while parts and parts[0] in FORM_PREFIXES:
        parts.pop(0)
    while parts and parts[-1] in FORM_SUFFIXES:
        parts.pop()
    return "_".join(parts)


def match_table(form_name: str, schema: DatabaseSchema) -> Table | None:
    """Find the table a form edits.

    Tries, in order: the exact name, its singular, its plural, then the
    name with create/edit/new/add prefixes and form/page/view suffixes
    removed.
    """
    by_name = {t.name.lower(): t for t in schema.tables}
    by_compact = {compact(t.name): t for t in schema.tables}

    def lookup(candidates: Iterable[str]) -> Table | None:
        for candidate in candidates:
            table = by_name.get(candidate) or by_compact.get(compact(candidate))
            if table is not None:
                return table
        return None

    name = snake_case(form_name)
    table = lookup((name, singularize(name), pluralize(name)))
    if table is not None:
        return table

    stripped = _strip_affixes(name)
    if stripped and stripped != name:
        return lookup((stripped, singularize(stripped), pluralize(stripped)))
    return None


def _column_for(table: Table, field_name: str) -> Column | None:
    return table.column(field_name) or table.column(snake_case(field_name))


def validate_form(form: FormSchema, schema: DatabaseSchema) -> FormValidationResult:
    """Check one form against its matching table.  Pure."""
    table = match_table(form.name, schema)
    if table is None:
        return FormValidationResult(form=form)

    result = FormValidationResult(form=form, table=table.name)
    covered: set[str] = set()

    for form_field in form.fields:
        column = _column_for(table, form_field.name)
        if column is None:
            if not is_ui_only(form_field.name):
                result.extra_fields.append(form_field.name)
            continue
        covered.add(column.name)

        expected = expected_field_type(column)
        if not types_compatible(form_field.type, expected):
            result.type_mismatches.append(
                TypeMismatch(
                    field=form_field.name,
                    column=column.name,
                    expected=expected,
                    actual=form_field.type,
                    column_type=column.type,
                )
            )

        if form_field.required and column.nullable:
            result.validation_mismatches.append(
                ValidationMismatch(
                    field=form_field.name,
                    column=column.name,
                    expected="NULL",
                    actual="required",
                    message="Field is required but column allows NULL",
                )
            )
        elif (
            not form_field.required
            and not column.nullable
            and column.default is None
            and not column.auto_increment
        ):
            result.validation_mismatches.append(
                ValidationMismatch(
                    field=form_field.name,
                    column=column.name,
                    expected="NOT NULL",
                    actual="optional",
                    message="Field is optional but column requires a value",
                )
            )

        limit = max_length(column)
        declared = form_field.validation.max_length if form_field.validation else None
        if limit is not None and declared is not None and declared > limit:
            result.validation_mismatches.append(
                ValidationMismatch(
                    field=form_field.name,
                    column=column.name,
                    expected=f"max_length<={limit}",
                    actual=f"max_length={declared}",
                    message=f"Field max length {declared} exceeds column limit {limit}",
                )
            )

    result.missing_columns = [
        c.name
        for c in table.columns
        if not c.nullable and not c.auto_increment and c.default is None and c.name not in covered
    ]
    return result


# ------------------------------------------------------------------
# Migration suggestions
# ------------------------------------------------------------------


def suggested_column_type(form_field: FormField) -> str:
    """Canonical column type for a form field.

    Example:
        >>> suggested_column_type(FormField(name="age", type="number",
        ...     validation=FieldValidation(max=120)))
        'SMALLINT'
    """
    validation = form_field.validation or FieldValidation()
    match form_field.type:
        case FormFieldType.TEXT:
            return f"VARCHAR({validation.max_length})" if validation.max_length else "TEXT"
        case FormFieldType.EMAIL | FormFieldType.PASSWORD:
            return "VARCHAR(255)"
        case FormFieldType.NUMBER:
            bounded = validation.max is not None and validation.max < 32768
            if bounded and (validation.min is None or validation.min >= -32768):
                return "SMALLINT"
            return "INTEGER"
        case FormFieldType.DATE:
            return "DATE"
        case FormFieldType.DATETIME:
            return "TIMESTAMP"
        case FormFieldType.TIME:
            return "TIME"
        case FormFieldType.CHECKBOX:
            return "BOOLEAN"
        case FormFieldType.TEXTAREA:
            return "TEXT"
        case FormFieldType.FILE:
            return "VARCHAR(500)"
        case _:
            return "VARCHAR(255)"


def generate_migration_suggestions(results: list[FormValidationResult]) -> list[str]:
    """``ALTER TABLE`` statements for extra fields and type mismatches.

    Suggestions only; nothing here is ever executed.
    """
    statements = []
    for result in results:
        if result.table is None:
            continue
        for name in result.extra_fields:
            form_field = result.form.get_field(name)
            if form_field is None:
                continue
            nullability = "NOT NULL" if form_field.required else "NULL"
            statements.append(
                f'ALTER TABLE "{result.table}" ADD COLUMN "{snake_case(name)}" '
                f"{suggested_column_type(form_field)} {nullability};"
            )
        for mismatch in result.type_mismatches:
            form_field = result.form.get_field(mismatch.field)
            if form_field is None:
                continue
            statements.append(
                f'ALTER TABLE "{result.table}" ALTER COLUMN "{mismatch.column}" '
                f"TYPE {suggested_column_type(form_field)};"
            )
    return statements


class FormValidator:
    """Scans UI templates and validates their forms against a schema.

    Args:
        settings: ``[validation.forms]`` settings.
        project_root: Root the glob patterns are evaluated against.
        extractor: Optional extractor (defaults to one rooted at
            ``project_root``).
    """

    def __init__(
        self,
        settings: FormValidationSettings,
        project_root: Path,
        extractor: FormExtractor | None = None,
    ) -> None:
        self._settings = settings
        self._root = project_root
        self._extractor = extractor or FormExtractor(project_root)

    @property
    def enabled(self) -> bool:
        return self._settings.enabled

    async def extract_forms(self) -> tuple[list[FormSchema], list[str]]:
        """Discover and parse UI files; forms are keyed uniquely by name."""
        files = discover_files(
            self._root, self._settings.patterns, self._settings.directories, UI_EXTENSIONS
        )
        found, warnings = await scan_files(files, self._extractor.extract_file)

        merged: dict[str, FormSchema] = {}
        for form in found:
            merged[form.name] = form
        logger.info(f"Extracted {len(merged)} forms from {len(files)} files")
        return list(merged.values()), warnings

    async def validate(self, schema: DatabaseSchema) -> IntegrityResult[list[FormValidationResult]]:
        """Extract forms and validate each against its matching table."""
        try:
            forms, warnings = await self.extract_forms()
            results = [validate_form(form, schema) for form in forms]
        except Exception as e:
            logger.error(f"Form scan failed: {e}")
            return IntegrityResult.fail(
                ErrorCode.FORM_SCAN_FAILED, "Failed to scan forms", details=str(e)
            )

        for result in results:
            if result.table is None:
                warnings.append(f"Form '{result.form.name}' does not match any table")
        return IntegrityResult.ok(results, warnings=warnings)
