# ============================================================================
# CLAUDE CONTEXT - CANONICAL STRUCTURAL SPEC
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Declarative target structure for tenant schemas
# PURPOSE: Versioned rules every tenant schema converges toward
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: CanonicalSpec, DuplicateTableRule, ReferenceRepointRule,
#          RequiredColumnRule, ForeignKeyRule, IndexRule, JsonbColumnRule,
#          TenantColumnRule, default_canonical_spec
# DEPENDENCIES: pydantic, PyYAML
# ============================================================================
"""
Canonical Structural Spec

The canonical spec is the TEMPLATE; TenantSchemaDescriptor is the INSTANCE.
IssueDetector diffs one against the other.

Every table, column, index and constraint name and every column type is
validated when a CanonicalSpec is constructed, so nothing unchecked ever reaches a
DDL builder.

Usage:
    from core.schema.canonical import CanonicalSpec, default_canonical_spec

    spec = default_canonical_spec()
    spec = CanonicalSpec.from_yaml("canonical.yaml")   # full override
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from core.contracts import OnDeleteAction, Severity
from core.errors import CanonicalSpecError, IdentifierValidationError
from core.schema.ddl_utils import get_postgres_type, normalize_pg_type, validate_identifier


def _check_identifier(value: str, kind: str) -> str:
    try:
        return validate_identifier(value, kind)
    except IdentifierValidationError as e:
        raise ValueError(e.message) from e


def _check_type(value: str) -> str:
    try:
        get_postgres_type(value)
    except IdentifierValidationError as e:
        raise ValueError(e.message) from e
    return normalize_pg_type(value)


# ============================================================================
# RULE MODELS
# ============================================================================

class TenantColumnRule(BaseModel):
    """Every table carrying this column must have it typed and non-null."""
    column: str = "tenant_id"
    type: str = "uuid"
    nullable: bool = False

    @field_validator("column")
    @classmethod
    def check_column(cls, v):
        return _check_identifier(v, "column")

    @field_validator("type")
    @classmethod
    def check_type(cls, v):
        return _check_type(v)


class ReferenceRepointRule(BaseModel):
    """
    A child column pointing at a legacy table, and its canonical replacement.

    Example: tickets.solicitante_id -> tickets.customer_id
    """
    table: str
    legacy_column: str
    canonical_column: str
    canonical_type: str = "uuid"

    @field_validator("table", "legacy_column", "canonical_column")
    @classmethod
    def check_names(cls, v):
        return _check_identifier(v, "identifier")

    @field_validator("canonical_type")
    @classmethod
    def check_type(cls, v):
        return _check_type(v)


class DuplicateTableRule(BaseModel):
    """
    A legacy table whose rows belong in a canonical table.

    column_mapping maps legacy column -> canonical column. Key collisions keep
    the canonical row.
    """
    legacy_table: str
    canonical_table: str
    key: str = "id"
    column_mapping: Dict[str, str] = Field(default_factory=dict)
    references: List[ReferenceRepointRule] = Field(default_factory=list)

    @field_validator("legacy_table", "canonical_table", "key")
    @classmethod
    def check_names(cls, v):
        return _check_identifier(v, "identifier")

    @field_validator("column_mapping")
    @classmethod
    def check_mapping(cls, v):
        for legacy, canonical in v.items():
            _check_identifier(legacy, "column")
            _check_identifier(canonical, "column")
        return v

    @property
    def pair_key(self) -> str:
        return f"{self.legacy_table}->{self.canonical_table}"


class RequiredColumnRule(BaseModel):
    """A column an existing table must carry (added with its default if absent)."""
    table: str
    column: str
    type: str
    default: Optional[Any] = None
    severity: Severity = Severity.ADVISORY

    @field_validator("table", "column")
    @classmethod
    def check_names(cls, v):
        return _check_identifier(v, "identifier")

    @field_validator("type")
    @classmethod
    def check_type(cls, v):
        return _check_type(v)


class ForeignKeyRule(BaseModel):
    """Expected (table, column) -> referenced_table(referenced_column)."""
    table: str
    column: str
    referenced_table: str
    referenced_column: str = "id"
    on_delete: OnDeleteAction = OnDeleteAction.CASCADE
    name: Optional[str] = None

    @field_validator("table", "column", "referenced_table", "referenced_column")
    @classmethod
    def check_names(cls, v):
        return _check_identifier(v, "identifier")

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        if v is None:
            return v
        return _check_identifier(v, "constraint")

    @property
    def constraint_name(self) -> str:
        return self.name or f"fk_{self.table}_{self.column}"[:63]


class IndexRule(BaseModel):
    """Expected index, matched against the catalog by ordered column list."""
    name: str
    table: str
    columns: List[str] = Field(min_length=1)
    unique: bool = False

    @field_validator("name", "table")
    @classmethod
    def check_names(cls, v):
        return _check_identifier(v, "identifier")

    @field_validator("columns", mode="before")
    @classmethod
    def check_columns(cls, v):
        if isinstance(v, str):
            v = [v]
        return [_check_identifier(c, "column") for c in v]


class JsonbColumnRule(BaseModel):
    """A column expected to hold structured data as jsonb."""
    table: str
    column: str

    @field_validator("table", "column")
    @classmethod
    def check_names(cls, v):
        return _check_identifier(v, "identifier")


# ============================================================================
# CANONICAL SPEC
# ============================================================================

class CanonicalSpec(BaseModel):
    """
    Declarative, versioned description of the target tenant schema structure.
    """
    version: str = Field(default="1", min_length=1)
    tenant_column: TenantColumnRule = Field(default_factory=TenantColumnRule)
    duplicate_tables: List[DuplicateTableRule] = Field(default_factory=list)
    required_columns: List[RequiredColumnRule] = Field(default_factory=list)
    foreign_keys: List[ForeignKeyRule] = Field(default_factory=list)
    indexes: List[IndexRule] = Field(default_factory=list)
    jsonb_columns: List[JsonbColumnRule] = Field(default_factory=list)
    required_tables: List[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @field_validator("required_tables")
    @classmethod
    def check_tables(cls, v):
        return [_check_identifier(t, "table") for t in v]

    def validate_structure(self) -> List[str]:
        """
        Cross-rule consistency checks.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        names = [i.name for i in self.indexes]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            errors.append(f"Duplicate index names: {duplicates}")

        fk_names = [fk.constraint_name for fk in self.foreign_keys]
        duplicates = sorted({n for n in fk_names if fk_names.count(n) > 1})
        if duplicates:
            errors.append(f"Duplicate foreign key names: {duplicates}")

        for rule in self.duplicate_tables:
            if rule.legacy_table == rule.canonical_table:
                errors.append(f"Duplicate-table rule maps {rule.legacy_table} onto itself")
            if rule.key not in rule.column_mapping.values():
                errors.append(
                    f"Duplicate-table rule {rule.pair_key} does not map key column {rule.key}"
                )
            for ref in rule.references:
                if ref.legacy_column == ref.canonical_column:
                    errors.append(
                        f"Reference rule {ref.table}.{ref.legacy_column} repoints onto itself"
                    )

        legacy = {r.legacy_table for r in self.duplicate_tables}
        for table in self.required_tables:
            if table in legacy:
                errors.append(f"Table {table} is both required and legacy")

        return errors

    # ------------------------------------------------------------------
    # Lookups used by the detector and transformer
    # ------------------------------------------------------------------

    def duplicate_rule(self, legacy_table: str, canonical_table: str) -> Optional[DuplicateTableRule]:
        for rule in self.duplicate_tables:
            if rule.legacy_table == legacy_table and rule.canonical_table == canonical_table:
                return rule
        return None

    def reference_rule(self, table: str, column: str) -> Optional[ReferenceRepointRule]:
        """Find the repoint rule whose legacy or canonical column is table.column."""
        for rule in self.duplicate_tables:
            for ref in rule.references:
                if ref.table == table and column in (ref.legacy_column, ref.canonical_column):
                    return ref
        return None

    def required_column(self, table: str, column: str) -> Optional[RequiredColumnRule]:
        for rule in self.required_columns:
            if rule.table == table and rule.column == column:
                return rule
        return None

    def foreign_key(self, table: str, column: str) -> Optional[ForeignKeyRule]:
        for rule in self.foreign_keys:
            if rule.table == table and rule.column == column:
                return rule
        return None

    def index(self, name: str) -> Optional[IndexRule]:
        for rule in self.indexes:
            if rule.name == name:
                return rule
        return None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<dict>") -> "CanonicalSpec":
        """
        Build and validate a spec from plain data.

        Raises:
            CanonicalSpecError: On schema or cross-rule validation failure
        """
        if not isinstance(data, dict):
            raise CanonicalSpecError(f"Canonical spec in {source} must be a mapping")
        try:
            spec = cls(**data)
        except ValidationError as e:
            raise CanonicalSpecError(f"Invalid canonical spec in {source}: {e}") from e

        errors = spec.validate_structure()
        if errors:
            raise CanonicalSpecError(f"Invalid canonical spec in {source}: {errors}")
        return spec

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "CanonicalSpec":
        """
        Load a spec from a YAML file.

        Args:
            path: YAML file path

        Raises:
            CanonicalSpecError: If the file is unreadable or invalid
        """
        path = Path(path)
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise CanonicalSpecError(f"Cannot read canonical spec {path}: {e}", cause=e) from e
        return cls.from_dict(data, source=str(path))


# ============================================================================
# BUILT-IN RULES
# ============================================================================

_CUSTOMER_MAPPING = {
    "id": "id",
    "tenant_id": "tenant_id",
    "firstName": "first_name",
    "lastName": "last_name",
    "email": "email",
    "phone": "phone",
    "documento": "documento",
    "tipoPessoa": "tipo_pessoa",
    "preferenciaContato": "preferencia_contato",
    "idioma": "idioma",
    "timezone": "timezone",
    "observacoes": "observacoes",
    "verified": "verified",
    "active": "active",
    "suspended": "suspended",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}

_REQUIRED_COLUMNS = [
    ("customers", "documento", "varchar(50)", None),
    ("customers", "tipo_pessoa", "varchar(20)", "fisica"),
    ("customers", "preferencia_contato", "varchar(20)", "email"),
    ("customers", "idioma", "varchar(10)", "pt-BR"),
    ("customers", "timezone", "varchar(50)", "America/Sao_Paulo"),
    ("customers", "observacoes", "text", None),
    ("favorecidos", "nome", "varchar(200)", None),
    ("favorecidos", "email", "varchar(255)", None),
    ("favorecidos", "telefone", "varchar(20)", None),
    ("favorecidos", "documento", "varchar(50)", None),
    ("favorecidos", "endereco", "text", None),
    ("favorecidos", "tipo_vinculo", "varchar(50)", "outro"),
    ("favorecidos", "pode_interagir", "boolean", False),
    ("favorecidos", "observacoes", "text", None),
    ("favorecidos", "ativo", "boolean", True),
    ("favorecidos", "metadata", "jsonb", {}),
]

_FOREIGN_KEYS = [
    ("tickets", "customer_id", "customers", OnDeleteAction.SET_NULL),
    ("ticket_messages", "ticket_id", "tickets", OnDeleteAction.CASCADE),
    ("customer_company_memberships", "customer_id", "customers", OnDeleteAction.CASCADE),
    ("customer_company_memberships", "company_id", "customer_companies", OnDeleteAction.CASCADE),
    ("favorecido_locations", "favorecido_id", "favorecidos", OnDeleteAction.CASCADE),
    ("favorecido_locations", "location_id", "locations", OnDeleteAction.CASCADE),
    ("user_skills", "skill_id", "skills", OnDeleteAction.CASCADE),
    ("project_actions", "project_id", "projects", OnDeleteAction.CASCADE),
]

_INDEXES = [
    ("idx_customers_tenant_email", "customers", ["tenant_id", "email"]),
    ("idx_customers_tenant_active", "customers", ["tenant_id", "active"]),
    ("idx_customers_documento", "customers", ["documento"]),
    ("idx_tickets_tenant_status", "tickets", ["tenant_id", "status"]),
    ("idx_tickets_customer_id", "tickets", ["customer_id"]),
    ("idx_tickets_assigned_to", "tickets", ["assigned_to_id"]),
    ("idx_ticket_messages_ticket_id", "ticket_messages", ["ticket_id"]),
    ("idx_activity_logs_entity", "activity_logs", ["tenant_id", "entity_type", "entity_id"]),
    ("idx_favorecidos_tenant_ativo", "favorecidos", ["tenant_id", "ativo"]),
    ("idx_locations_tenant_id", "locations", ["tenant_id"]),
    ("idx_projects_tenant_status", "projects", ["tenant_id", "status"]),
    ("idx_user_skills_user_id", "user_skills", ["user_id"]),
]

_JSONB_COLUMNS = [
    ("customers", "metadata"),
    ("customers", "tags"),
    ("tickets", "metadata"),
    ("ticket_messages", "attachments"),
    ("ticket_messages", "metadata"),
    ("favorecidos", "metadata"),
    ("locations", "metadata"),
    ("activity_logs", "details"),
    ("activity_logs", "metadata"),
    ("projects", "metadata"),
    ("project_actions", "metadata"),
]

_REQUIRED_TABLES = [
    "customers",
    "tickets",
    "ticket_messages",
    "activity_logs",
    "locations",
    "customer_companies",
    "customer_company_memberships",
    "favorecidos",
    "favorecido_locations",
    "skills",
    "certifications",
    "user_skills",
    "projects",
    "project_actions",
]


def default_canonical_spec() -> CanonicalSpec:
    """
    Built-in canonical rules for the ticketing tenant schemas.

    Returns a fresh instance on every call.
    """
    return CanonicalSpec(
        version="2024.1",
        tenant_column=TenantColumnRule(),
        duplicate_tables=[
            DuplicateTableRule(
                legacy_table="solicitantes",
                canonical_table="customers",
                key="id",
                column_mapping=dict(_CUSTOMER_MAPPING),
                references=[
                    ReferenceRepointRule(
                        table="tickets",
                        legacy_column="solicitante_id",
                        canonical_column="customer_id",
                    ),
                ],
            ),
        ],
        required_columns=[
            RequiredColumnRule(table=t, column=c, type=ty, default=d)
            for t, c, ty, d in _REQUIRED_COLUMNS
        ],
        foreign_keys=[
            ForeignKeyRule(table=t, column=c, referenced_table=r, on_delete=a)
            for t, c, r, a in _FOREIGN_KEYS
        ],
        indexes=[IndexRule(name=n, table=t, columns=cols) for n, t, cols in _INDEXES],
        jsonb_columns=[JsonbColumnRule(table=t, column=c) for t, c in _JSONB_COLUMNS],
        required_tables=list(_REQUIRED_TABLES),
    )


__all__ = [
    "CanonicalSpec",
    "TenantColumnRule",
    "DuplicateTableRule",
    "ReferenceRepointRule",
    "RequiredColumnRule",
    "ForeignKeyRule",
    "IndexRule",
    "JsonbColumnRule",
    "default_canonical_spec",
]
