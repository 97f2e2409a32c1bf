"""Tests for form extraction, validation and migration suggestions.

Markup is parsed from inline strings; the validator test writes a
template into a temporary project tree.
"""

import pathlib

import pytest

from schema_integrity.config.models import FormValidationSettings
from schema_integrity.schema.models import Column, DatabaseSchema, Table
from schema_integrity.validation.forms import (
    FormExtractor,
    FormValidator,
    generate_migration_suggestions,
    match_table,
    suggested_column_type,
    types_compatible,
    validate_form,
)
from schema_integrity.validation.models import (
    FieldValidation,
    FormField,
    FormFieldType,
    FormSchema,
)

USERS = Table(
    name="users",
    columns=[
        Column(name="id", type="integer", nullable=False, auto_increment=True),
        Column(name="email", type="varchar(255)", nullable=False, unique=True),
        Column(name="full_name", type="varchar(100)"),
        Column(name="status", type="varchar(20)", nullable=False),
        Column(name="plan", type="varchar(10)"),
        Column(name="created_at", type="timestamp", nullable=False, default="CURRENT_TIMESTAMP"),
    ],
    primary_key=["id"],
)
SCHEMA = DatabaseSchema(version="v1", tables=[USERS])

SIGNUP_HTML = """
<form id="create-user-form" action="/api/users" method="post">
  <input type="email" name="user[email]" required maxlength="300">
  <input type="text" name="full_name">
  <input type="password" name="confirm_password">
  <input type="checkbox" name="newsletter">
  <input type="number" name="age" min="0" max="120">
  <input type="radio" name="plan" value="free">
  <input type="radio" name="plan" value="pro">
  <input type="submit" value="Save">
</form>
"""

ORDER_VUE = """
<template>
  <el-form :model="form" @submit.prevent="saveOrder">
    <el-input v-model="form.title" />
    <el-input-number v-model="form.quantity" :min="1" />
    <el-select v-model="form.tags" multiple></el-select>
    <el-date-picker v-model="form.dueAt" type="datetime" />
  </el-form>
</template>
<script>
export default { data() { return { form: {} } } }
</script>
"""

LOGIN_SVELTE = """
<script>
  let email = "";
  let password = "";
</script>

<form>
  <input type="email" bind:value={email} required />
  <input type="password" bind:value={password} />
  <button type="submit">Log in</button>
</form>
"""


def _signup_form() -> FormSchema:
    (form,) = FormExtractor().extract_markup(SIGNUP_HTML)
    return form


# ============================================================================
# Test: Extraction
# ============================================================================


class TestFormExtractor:
    """Verify controls, bindings and form naming."""

    def test_html_form(self) -> None:
        """Native inputs become fields; radios are merged and buttons skipped."""
        form = _signup_form()

        assert form.name == "create-user-form"
        assert form.submit_action == "/api/users"
        assert [f.name for f in form.fields] == [
            "email",
            "full_name",
            "confirm_password",
            "newsletter",
            "age",
            "plan",
        ]

        email = form.get_field("email")
        assert email.type is FormFieldType.EMAIL
        assert email.required is True
        assert email.validation.max_length == 300

        age = form.get_field("age")
        assert age.type is FormFieldType.NUMBER
        assert (age.validation.min, age.validation.max) == (0.0, 120.0)

        assert form.get_field("plan").type is FormFieldType.RADIO
        assert form.get_field("full_name").validation is None

    def test_vue_component_library(self) -> None:
        """v-model bindings name library controls; the control decides the kind."""
        (form,) = FormExtractor().extract_markup(ORDER_VUE, "OrderForm.vue", default_name="OrderForm")

        assert form.name == "OrderForm"
        assert form.source == "OrderForm.vue"
        assert form.submit_action == "saveOrder"

        kinds = {f.name: f.type for f in form.fields}
        assert kinds == {
            "title": FormFieldType.TEXT,
            "quantity": FormFieldType.NUMBER,
            "tags": FormFieldType.MULTISELECT,
            "dueAt": FormFieldType.DATETIME,
        }
        assert form.get_field("quantity").validation.min == 1.0

    def test_svelte_bindings(self) -> None:
        """bind:value={name} supplies the field name."""
        (form,) = FormExtractor().extract_markup(LOGIN_SVELTE, default_name="login")

        assert form.name == "login"
        assert [(f.name, f.type) for f in form.fields] == [
            ("email", FormFieldType.EMAIL),
            ("password", FormFieldType.PASSWORD),
        ]
        assert form.get_field("email").required is True

    def test_loose_controls_form_one_schema(self) -> None:
        """Controls outside any form element still produce a form."""
        markup = '<div><textarea name="bio"></textarea><select name="role"></select></div>'
        (form,) = FormExtractor().extract_markup(markup, default_name="profile")

        assert form.name == "profile"
        assert [(f.name, f.type) for f in form.fields] == [
            ("bio", FormFieldType.TEXTAREA),
            ("role", FormFieldType.SELECT),
        ]

    def test_markup_without_controls(self) -> None:
        assert FormExtractor().extract_markup("<div><p>Hello</p></div>") == []


# ============================================================================
# Test: Validation
# ============================================================================


class TestValidateForm:
    """Verify matching, field checks and required-column coverage."""

    def test_match_table_strips_affixes(self) -> None:
        assert match_table("user-form", SCHEMA) is USERS
        assert match_table("create-user-form", SCHEMA) is USERS
        assert match_table("UserPage", SCHEMA) is USERS
        assert match_table("invoice", SCHEMA) is None

    def test_types_compatible(self) -> None:
        assert types_compatible(FormFieldType.EMAIL, FormFieldType.TEXT)
        assert types_compatible(FormFieldType.RADIO, FormFieldType.SELECT)
        assert not types_compatible(FormFieldType.CHECKBOX, FormFieldType.NUMBER)

    def test_signup_form_against_users(self) -> None:
        result = validate_form(_signup_form(), SCHEMA)

        assert result.table == "users"
        assert result.missing_columns == ["status"]
        assert result.extra_fields == ["newsletter", "age"]

        (mismatch,) = result.type_mismatches
        assert mismatch.field == "plan"
        assert mismatch.expected is FormFieldType.TEXT
        assert mismatch.actual is FormFieldType.RADIO

        (limit,) = result.validation_mismatches
        assert limit.message == "Field max length 300 exceeds column limit 255"
        assert (limit.column, limit.expected, limit.actual) == (
            "email",
            "max_length<=255",
            "max_length=300",
        )
        assert result.valid is False

    def test_required_flags_compared_with_nullability(self) -> None:
        form = FormSchema(
            name="users",
            fields=[
                FormField(name="email", required=True),
                FormField(name="status"),
                FormField(name="plan", required=True),
            ],
        )
        result = validate_form(form, SCHEMA)

        messages = {m.field: m.message for m in result.validation_mismatches}
        assert messages == {
            "status": "Field is optional but column requires a value",
            "plan": "Field is required but column allows NULL",
        }
        sides = {m.field: (m.expected, m.actual) for m in result.validation_mismatches}
        assert sides == {"status": ("NOT NULL", "optional"), "plan": ("NULL", "required")}
        assert result.missing_columns == []

    def test_unmatched_form_has_no_findings(self) -> None:
        form = FormSchema(name="newsletter", fields=[FormField(name="email")])
        result = validate_form(form, SCHEMA)

        assert result.table is None
        assert result.valid is True


# ============================================================================
# Test: Migration suggestions
# ============================================================================


class TestMigrationSuggestions:
    """Verify suggested column types and ALTER statements."""

    def test_suggested_column_types(self) -> None:
        small = FormField(name="age", type=FormFieldType.NUMBER, validation=FieldValidation(max=120))
        large = FormField(name="views", type=FormFieldType.NUMBER, validation=FieldValidation(max=100000))
        bounded = FormField(name="title", validation=FieldValidation(max_length=80))

        assert suggested_column_type(small) == "SMALLINT"
        assert suggested_column_type(large) == "INTEGER"
        assert suggested_column_type(bounded) == "VARCHAR(80)"
        assert suggested_column_type(FormField(name="notes")) == "TEXT"
        assert suggested_column_type(FormField(name="ok", type=FormFieldType.CHECKBOX)) == "BOOLEAN"

    def test_statements_for_extras_and_mismatches(self) -> None:
        result = validate_form(_signup_form(), SCHEMA)

        assert generate_migration_suggestions([result]) == [
            'ALTER TABLE "users" ADD COLUMN "newsletter" BOOLEAN NULL;',
            'ALTER TABLE "users" ADD COLUMN "age" SMALLINT NULL;',
            'ALTER TABLE "users" ALTER COLUMN "plan" TYPE VARCHAR(255);',
        ]

    def test_required_extra_field_is_not_null(self) -> None:
        form = FormSchema(
            name="users",
            fields=[
                FormField(name="email", required=True),
                FormField(name="status", required=True),
                FormField(name="referralCode", required=True),
            ],
        )
        result = validate_form(form, SCHEMA)

        assert generate_migration_suggestions([result]) == [
            'ALTER TABLE "users" ADD COLUMN "referral_code" TEXT NOT NULL;'
        ]


# ============================================================================
# Test: FormValidator
# ============================================================================


class TestFormValidator:
    """Verify scanning a project tree."""

    @pytest.mark.asyncio
    async def test_scan_and_validate(self, tmp_path: pathlib.Path) -> None:
        templates = tmp_path / "templates"
        templates.mkdir()
        (templates / "signup.html").write_text(SIGNUP_HTML)
        (templates / "newsletter.html").write_text(
            '<form id="newsletter-signup"><input type="email" name="email"></form>'
        )

        result = await FormValidator(FormValidationSettings(), tmp_path).validate(SCHEMA)

        assert result.success
        tables = {r.form.name: r.table for r in result.data}
        assert tables == {"newsletter-signup": None, "create-user-form": "users"}
        assert "Form 'newsletter-signup' does not match any table" in result.warnings

        signup = next(r for r in result.data if r.table == "users")
        assert signup.form.source == "templates/signup.html"
