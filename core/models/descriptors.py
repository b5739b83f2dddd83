# ============================================================================
# CLAUDE CONTEXT - SCHEMA DESCRIPTOR MODELS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core model - Inspected structure of one tenant schema
# PURPOSE: Snapshot of tables, columns, foreign keys and indexes
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: TenantSchemaDescriptor, TableDescriptor, ColumnDescriptor,
#          ForeignKeyDescriptor, IndexDescriptor
# DEPENDENCIES: pydantic
# ============================================================================
"""
Schema Descriptor Models

Produced by SchemaInspector on every inspection pass; never persisted.

Key concept:
- CanonicalSpec = TEMPLATE (what every tenant schema should look like)
- TenantSchemaDescriptor = INSTANCE (what one schema looks like right now)
"""

from typing import List, Optional

from pydantic import BaseModel, Field, computed_field, field_validator

from core.contracts import OnDeleteAction
from core.schema.ddl_utils import base_type, normalize_pg_type, validate_schema_name


class ColumnDescriptor(BaseModel):
    """One column as reported by pg_attribute / format_type."""
    table: str
    name: str
    data_type: str = Field(..., description="Normalised type, e.g. 'uuid', 'varchar(50)'")
    nullable: bool = True
    default: Optional[str] = None

    @field_validator("data_type")
    @classmethod
    def normalise_type(cls, v):
        return normalize_pg_type(v)

    @property
    def base_type(self) -> str:
        """Type without modifier: 'varchar(50)' -> 'varchar'."""
        return base_type(self.data_type)


class ForeignKeyDescriptor(BaseModel):
    """Single-column foreign key (multi-column FKs produce one row per column)."""
    name: str
    table: str
    column: str
    referenced_table: str
    referenced_column: str
    on_delete: OnDeleteAction = OnDeleteAction.NO_ACTION


class IndexDescriptor(BaseModel):
    """Index with its ordered key columns (expression keys are omitted)."""
    name: str
    table: str
    columns: List[str] = Field(default_factory=list)
    unique: bool = False
    primary: bool = False


class TableDescriptor(BaseModel):
    """One ordinary table in a tenant schema."""
    name: str
    columns: List[ColumnDescriptor] = Field(default_factory=list)
    foreign_keys: List[ForeignKeyDescriptor] = Field(default_factory=list)
    indexes: List[IndexDescriptor] = Field(default_factory=list)

    def get_column(self, name: str) -> Optional[ColumnDescriptor]:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None

    def has_foreign_key(self, column: str, referenced_table: str) -> bool:
        return any(
            fk.column == column and fk.referenced_table == referenced_table
            for fk in self.foreign_keys
        )

    def has_index_on(self, columns: List[str]) -> bool:
        """Match by ordered column list, not by name."""
        return any(index.columns == list(columns) for index in self.indexes)


class TenantSchemaDescriptor(BaseModel):
    """
    Inspected structure of one tenant schema.

    schema_name is validated against the tenant naming convention on
    construction; tenant_id is derived from it when not supplied.
    """
    schema_name: str
    tenant_id: str = ""
    tables: List[TableDescriptor] = Field(default_factory=list)

    @field_validator("schema_name")
    @classmethod
    def check_schema_name(cls, v):
        return validate_schema_name(v)

    def model_post_init(self, __context) -> None:
        if not self.tenant_id:
            self.tenant_id = self.schema_name[len("tenant_"):]

    def get_table(self, name: str) -> Optional[TableDescriptor]:
        for table in self.tables:
            if table.name == name:
                return table
        return None

    def has_table(self, name: str) -> bool:
        return self.get_table(name) is not None

    def get_column(self, table: str, column: str) -> Optional[ColumnDescriptor]:
        descriptor = self.get_table(table)
        if descriptor is None:
            return None
        return descriptor.get_column(column)

    @computed_field
    @property
    def foreign_key_count(self) -> int:
        """Distinct FK constraints across all tables."""
        return len({(t.name, fk.name) for t in self.tables for fk in t.foreign_keys})

    @computed_field
    @property
    def index_count(self) -> int:
        return sum(len(t.indexes) for t in self.tables)


__all__ = [
    "ColumnDescriptor",
    "ForeignKeyDescriptor",
    "IndexDescriptor",
    "TableDescriptor",
    "TenantSchemaDescriptor",
]
