# ============================================================================
# CLAUDE CONTEXT - SCHEMA MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Canonical structure and safe DDL composition
# PURPOSE: Identifier allow-list, DDL builders, canonical structural spec
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================

from core.schema.ddl_utils import (
    IndexBuilder,
    ColumnBuilder,
    ConstraintBuilder,
    TableBuilder,
    TYPE_MAP,
    get_postgres_type,
    normalize_pg_type,
    base_type,
    validate_schema_name,
    validate_identifier,
    tenant_id_from_schema,
)
from core.schema.canonical import CanonicalSpec, default_canonical_spec

__all__ = [
    # Canonical spec
    "CanonicalSpec",
    "default_canonical_spec",
    # Identifier safety
    "validate_schema_name",
    "validate_identifier",
    "tenant_id_from_schema",
    # Builders
    "IndexBuilder",
    "ColumnBuilder",
    "ConstraintBuilder",
    "TableBuilder",
    "TYPE_MAP",
    "get_postgres_type",
    "normalize_pg_type",
    "base_type",
]
