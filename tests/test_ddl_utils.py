# ============================================================================
# DDL UTILS TESTS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Tests - Identifier allow-list and statement builders
# PURPOSE: Verify names are validated and DDL renders as expected
# CREATED: 19 OCT 2026
# ============================================================================
"""
DDL Utils Tests

Covers:
1. Schema name and identifier allow-lists
2. Catalog type normalisation and the type allow-list
3. Index / column / constraint / table builders

Run with:
    pytest tests/test_ddl_utils.py -v
"""

import pytest

from core.contracts import OnDeleteAction
from core.errors import IdentifierValidationError
from core.schema.ddl_utils import (
    ColumnBuilder,
    ConstraintBuilder,
    IndexBuilder,
    TableBuilder,
    base_type,
    get_postgres_type,
    normalize_pg_type,
    tenant_id_from_schema,
    validate_identifier,
    validate_schema_name,
)


# ============================================================================
# HELPERS
# ============================================================================

SCHEMA = "tenant_3f0e2a1c"


def _render(statement) -> str:
    return statement.as_string(None)


# ============================================================================
# IDENTIFIERS
# ============================================================================

class TestSchemaNames:
    """Tenant schema naming convention."""

    @pytest.mark.parametrize("name", [
        "tenant_3f0e2a1c",
        "tenant_3f0e2a1c_9b7d_4e5f_8a6b_1c2d3e4f5a6b",
        "tenant_0",
    ])
    def test_valid_names_pass(self, name):
        assert validate_schema_name(name) == name

    @pytest.mark.parametrize("name", [
        "public",
        "tenant_",
        "tenant_ABC",
        "tenant_xyz",
        "tenant_ab; DROP SCHEMA public",
        'tenant_ab"',
        "tenant_ab-cd",
        "tenant_ab\n",
        "\ntenant_ab",
        "",
    ])
    def test_invalid_names_rejected(self, name):
        with pytest.raises(IdentifierValidationError) as exc:
            validate_schema_name(name)
        assert exc.value.kind == "schema"

    def test_tenant_id_suffix(self):
        assert tenant_id_from_schema("tenant_ab12_cd") == "ab12_cd"

    def test_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_schema_name("nope")


class TestIdentifiers:
    """Table / column / index names."""

    def test_camel_case_allowed(self):
        assert validate_identifier("firstName", "column") == "firstName"

    @pytest.mark.parametrize("name", ["1abc", "a b", "a;b", 'a"b', "", "x" * 64, "customers\n"])
    def test_rejected(self, name):
        with pytest.raises(IdentifierValidationError):
            validate_identifier(name, "column")

    def test_max_length_allowed(self):
        assert validate_identifier("x" * 63, "index") == "x" * 63


# ============================================================================
# TYPES
# ============================================================================

class TestTypes:
    """Type normalisation and allow-list."""

    @pytest.mark.parametrize("raw,expected", [
        ("character varying(50)", "varchar(50)"),
        ("character varying", "varchar"),
        ("timestamp with time zone", "timestamptz"),
        ("timestamp(3) without time zone", "timestamp"),
        ("integer", "integer"),
        ("int4", "integer"),
        ("numeric(10, 2)", "numeric(10,2)"),
        ("UUID", "uuid"),
        ("JSONB", "jsonb"),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_pg_type(raw) == expected

    def test_base_type_strips_modifier(self):
        assert base_type("character varying(36)") == "varchar"

    def test_allowed_type_renders(self):
        assert _render(get_postgres_type("varchar(255)")) == "VARCHAR(255)"
        assert _render(get_postgres_type("numeric(10,2)")) == "NUMERIC(10,2)"

    @pytest.mark.parametrize("type_str", ["uuid; DROP TABLE x", "money", "int[]", "USER-DEFINED"])
    def test_disallowed_type_rejected(self, type_str):
        with pytest.raises(IdentifierValidationError):
            get_postgres_type(type_str)


# ============================================================================
# BUILDERS
# ============================================================================

class TestBuilders:
    """Rendered DDL."""

    def test_btree_index(self):
        sql_text = _render(IndexBuilder.btree(SCHEMA, "tickets", ["tenant_id", "status"]))
        assert sql_text == (
            'CREATE INDEX "idx_tickets_tenant_id_status" ON '
            '"tenant_3f0e2a1c"."tickets" ("tenant_id", "status")'
        )
        assert "IF NOT EXISTS" not in sql_text

    def test_unique_index_with_name(self):
        sql_text = _render(IndexBuilder.unique(SCHEMA, "customers", "email", name="uq_customers_email"))
        assert sql_text.startswith('CREATE UNIQUE INDEX "uq_customers_email"')

    def test_generated_index_name_truncated(self):
        sql_text = _render(IndexBuilder.btree(SCHEMA, "t" * 40, ["c" * 40]))
        name = sql_text.split('"')[1]
        assert len(name) == 63

    def test_add_column_with_default(self):
        sql_text = _render(ColumnBuilder.add(SCHEMA, "customers", "kind", "text", default="fisica"))
        assert 'ADD COLUMN "kind" TEXT DEFAULT' in sql_text
        assert "'fisica'::TEXT" in sql_text
        assert "NOT NULL" not in sql_text

    def test_add_column_not_null_needs_default(self):
        without_default = _render(ColumnBuilder.add(SCHEMA, "t", "c", "uuid", not_null=True))
        assert "NOT NULL" not in without_default
        with_default = _render(ColumnBuilder.add(SCHEMA, "t", "c", "boolean", default=False, not_null=True))
        assert with_default.endswith("NOT NULL")

    def test_jsonb_default_is_json_encoded(self):
        sql_text = _render(ColumnBuilder.set_default(SCHEMA, "tickets", "metadata", {}, "jsonb"))
        assert "'{}'::JSONB" in sql_text

    def test_drop_column_never_cascades(self):
        sql_text = _render(ColumnBuilder.drop(SCHEMA, "tickets", "solicitante_id"))
        assert "CASCADE" not in sql_text

    def test_drop_table_never_cascades(self):
        assert _render(TableBuilder.drop(SCHEMA, "solicitantes")) == 'DROP TABLE "tenant_3f0e2a1c"."solicitantes"'

    def test_foreign_key(self):
        sql_text = _render(ConstraintBuilder.foreign_key(
            SCHEMA, "tickets", "customer_id", "customers", on_delete=OnDeleteAction.SET_NULL,
        ))
        assert 'ADD CONSTRAINT "fk_tickets_customer_id" FOREIGN KEY ("customer_id")' in sql_text
        assert 'REFERENCES "tenant_3f0e2a1c"."customers" ("id") ON DELETE SET NULL' in sql_text

    def test_builders_reject_bad_schema(self):
        with pytest.raises(IdentifierValidationError):
            TableBuilder.drop("public", "customers")

    def test_builders_reject_bad_column(self):
        with pytest.raises(IdentifierValidationError):
            ColumnBuilder.drop(SCHEMA, "customers", 'id"; --')
