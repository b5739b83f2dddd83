# ============================================================================
# SCHEMA INSPECTOR
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Catalog introspection
# PURPOSE: Build a TenantSchemaDescriptor from pg_catalog, read-only
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Schema Inspector

Turns catalog rows into a TenantSchemaDescriptor. The schema name is checked
against the tenant allow-list before the catalog is touched, so a rejected
name performs no database access at all.

Non-retryable within a run: failures surface to the orchestrator as a
per-schema failure.
"""

import logging
from typing import Dict

from core.contracts import OnDeleteAction
from core.errors import IntrospectionError
from core.models import (
    ColumnDescriptor,
    ForeignKeyDescriptor,
    IndexDescriptor,
    TableDescriptor,
    TenantSchemaDescriptor,
)
from core.schema.ddl_utils import tenant_id_from_schema, validate_schema_name
from repositories.catalog_repo import CatalogReader

logger = logging.getLogger(__name__)


class SchemaInspector:
    """Read-only introspection of one tenant schema."""

    def __init__(self, catalog: CatalogReader):
        self.catalog = catalog

    async def inspect(self, schema_name: str) -> TenantSchemaDescriptor:
        """
        Introspect a tenant schema.

        Args:
            schema_name: Schema to inspect (must match ^tenant_[0-9a-f_]+$)

        Returns:
            TenantSchemaDescriptor with every ordinary table

        Raises:
            IdentifierValidationError: Name rejected (no database access made)
            IntrospectionError: Schema missing or catalog query failed
            DatabaseConnectionError: Connection lost
        """
        validate_schema_name(schema_name)

        if not await self.catalog.schema_exists(schema_name):
            raise IntrospectionError("Schema does not exist", schema_name=schema_name)

        table_names = await self.catalog.list_tables(schema_name)
        column_rows = await self.catalog.list_columns(schema_name)
        fk_rows = await self.catalog.list_foreign_keys(schema_name)
        index_rows = await self.catalog.list_indexes(schema_name)

        tables: Dict[str, TableDescriptor] = {
            name: TableDescriptor(name=name) for name in table_names
        }

        for row in column_rows:
            table = tables.setdefault(row["table_name"], TableDescriptor(name=row["table_name"]))
            table.columns.append(ColumnDescriptor(
                table=row["table_name"],
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=bool(row["nullable"]),
                default=row.get("column_default"),
            ))

        for row in fk_rows:
            table = tables.get(row["table_name"])
            if table is None:
                continue
            table.foreign_keys.append(ForeignKeyDescriptor(
                name=row["constraint_name"],
                table=row["table_name"],
                column=row["column_name"],
                referenced_table=row["referenced_table"],
                referenced_column=row["referenced_column"],
                on_delete=OnDeleteAction.from_catalog(row["on_delete"]),
            ))

        for row in index_rows:
            table = tables.get(row["table_name"])
            if table is None:
                continue
            table.indexes.append(IndexDescriptor(
                name=row["index_name"],
                table=row["table_name"],
                columns=list(row["columns"] or []),
                unique=bool(row["is_unique"]),
                primary=bool(row["is_primary"]),
            ))

        descriptor = TenantSchemaDescriptor(
            schema_name=schema_name,
            tenant_id=tenant_id_from_schema(schema_name),
            tables=sorted(tables.values(), key=lambda t: t.name),
        )
        logger.debug(
            f"Inspected {schema_name}: {len(descriptor.tables)} tables, "
            f"{descriptor.foreign_key_count} FKs, {descriptor.index_count} indexes"
        )
        return descriptor


__all__ = ["SchemaInspector"]
