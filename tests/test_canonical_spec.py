# ============================================================================
# CANONICAL SPEC TESTS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Tests - Declarative target structure
# PURPOSE: Verify built-in rules, YAML loading and cross-rule validation
# CREATED: 19 OCT 2026
# ============================================================================
"""
Canonical Spec Tests

Covers:
1. Built-in rules (duplicate pair, FKs, indexes, JSONB columns)
2. from_dict / from_yaml loading and error wrapping
3. Cross-rule consistency checks
4. Lookups used by the detector and transformer

Run with:
    pytest tests/test_canonical_spec.py -v
"""

import pytest
import yaml

from core.contracts import OnDeleteAction, Severity
from core.errors import CanonicalSpecError
from core.schema.canonical import CanonicalSpec, default_canonical_spec
from fake_db import make_test_spec_dict


# ============================================================================
# BUILT-IN RULES
# ============================================================================

class TestDefaultSpec:
    """The built-in canonical structure."""

    def test_structure_is_consistent(self):
        assert default_canonical_spec().validate_structure() == []

    def test_tenant_column_rule(self):
        spec = default_canonical_spec()
        assert spec.tenant_column.column == "tenant_id"
        assert spec.tenant_column.type == "uuid"
        assert spec.tenant_column.nullable is False

    def test_solicitantes_merge_into_customers(self):
        rule = default_canonical_spec().duplicate_rule("solicitantes", "customers")
        assert rule is not None
        assert rule.key == "id"
        assert rule.column_mapping["firstName"] == "first_name"
        assert rule.references[0].legacy_column == "solicitante_id"
        assert rule.references[0].canonical_column == "customer_id"

    def test_ticket_customer_fk_sets_null(self):
        rule = default_canonical_spec().foreign_key("tickets", "customer_id")
        assert rule.on_delete == OnDeleteAction.SET_NULL
        assert rule.constraint_name == "fk_tickets_customer_id"

    def test_other_fks_cascade(self):
        spec = default_canonical_spec()
        others = [fk for fk in spec.foreign_keys if (fk.table, fk.column) != ("tickets", "customer_id")]
        assert len(others) == 7
        assert all(fk.on_delete == OnDeleteAction.CASCADE for fk in others)

    def test_rule_counts(self):
        spec = default_canonical_spec()
        assert len(spec.indexes) == 12
        assert len(spec.jsonb_columns) == 11
        assert len(spec.required_tables) == 14

    def test_required_columns_are_advisory(self):
        spec = default_canonical_spec()
        assert all(r.severity == Severity.ADVISORY for r in spec.required_columns)
        assert spec.required_column("favorecidos", "pode_interagir").default is False

    def test_fresh_instance_each_call(self):
        assert default_canonical_spec() is not default_canonical_spec()


# ============================================================================
# LOADING
# ============================================================================

class TestLoading:
    """from_dict / from_yaml."""

    def test_from_dict(self):
        spec = CanonicalSpec.from_dict(make_test_spec_dict())
        assert spec.version == "test-1"
        assert spec.index("idx_tickets_customer_id").columns == ["customer_id"]

    def test_types_normalised(self):
        data = make_test_spec_dict()
        data["required_columns"][0]["type"] = "character varying(20)"
        spec = CanonicalSpec.from_dict(data)
        assert spec.required_columns[0].type == "varchar(20)"

    def test_unknown_type_rejected(self):
        data = make_test_spec_dict()
        data["required_columns"][0]["type"] = "text; DROP TABLE customers"
        with pytest.raises(CanonicalSpecError):
            CanonicalSpec.from_dict(data)

    def test_bad_identifier_rejected(self):
        data = make_test_spec_dict()
        data["indexes"][0]["columns"] = ['customer_id"']
        with pytest.raises(CanonicalSpecError):
            CanonicalSpec.from_dict(data)

    def test_non_mapping_rejected(self):
        with pytest.raises(CanonicalSpecError):
            CanonicalSpec.from_dict(["not", "a", "mapping"])

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "canonical.yaml"
        path.write_text(yaml.safe_dump(make_test_spec_dict()))
        spec = CanonicalSpec.from_yaml(path)
        assert spec.duplicate_rule("solicitantes", "customers") is not None

    def test_missing_yaml_file(self, tmp_path):
        with pytest.raises(CanonicalSpecError):
            CanonicalSpec.from_yaml(tmp_path / "missing.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("indexes: [unclosed")
        with pytest.raises(CanonicalSpecError):
            CanonicalSpec.from_yaml(path)


# ============================================================================
# CROSS-RULE CHECKS
# ============================================================================

class TestStructureValidation:
    """validate_structure() via from_dict."""

    def test_duplicate_index_names(self):
        data = make_test_spec_dict()
        data["indexes"].append({"name": "idx_tickets_customer_id", "table": "tickets", "columns": ["id"]})
        with pytest.raises(CanonicalSpecError, match="Duplicate index names"):
            CanonicalSpec.from_dict(data)

    def test_key_must_be_mapped(self):
        data = make_test_spec_dict()
        del data["duplicate_tables"][0]["column_mapping"]["id"]
        with pytest.raises(CanonicalSpecError, match="does not map key column"):
            CanonicalSpec.from_dict(data)

    def test_legacy_table_cannot_be_required(self):
        data = make_test_spec_dict()
        data["required_tables"].append("solicitantes")
        with pytest.raises(CanonicalSpecError, match="both required and legacy"):
            CanonicalSpec.from_dict(data)


# ============================================================================
# LOOKUPS
# ============================================================================

class TestLookups:

    def test_reference_rule_matches_both_columns(self):
        spec = CanonicalSpec.from_dict(make_test_spec_dict())
        assert spec.reference_rule("tickets", "solicitante_id") is spec.reference_rule("tickets", "customer_id")
        assert spec.reference_rule("tickets", "metadata") is None

    def test_missing_lookups_return_none(self):
        spec = CanonicalSpec.from_dict(make_test_spec_dict())
        assert spec.duplicate_rule("customers", "solicitantes") is None
        assert spec.required_column("tickets", "kind") is None
        assert spec.foreign_key("tickets", "tenant_id") is None
        assert spec.index("idx_nope") is None
