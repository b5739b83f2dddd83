# ============================================================================
# CATALOG REPOSITORY
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Read-only catalog access
# PURPOSE: pg_catalog queries for tenant schema structure and discovery
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Catalog Repository

Read-only queries against pg_namespace, pg_class, pg_attribute, pg_attrdef,
pg_constraint and pg_index. Schema names are always bound parameters here;
nothing is interpolated.

Each method takes its own pooled connection, so concurrent dry-run workers
never share one.
"""

from typing import Any, Dict, List, Protocol

from psycopg_pool import AsyncConnectionPool

from core.errors import IntrospectionError
from infrastructure.base_repository import AsyncBaseRepository


# ============================================================================
# CONTRACT
# ============================================================================

class CatalogReader(Protocol):
    """
    Read-only catalog contract consumed by SchemaInspector and discovery.

    Row dicts use the column aliases of the queries below.
    """

    async def list_schemas(self, prefix: str) -> List[str]: ...

    async def schema_exists(self, schema_name: str) -> bool: ...

    async def list_tables(self, schema_name: str) -> List[str]: ...

    async def list_columns(self, schema_name: str) -> List[Dict[str, Any]]: ...

    async def list_foreign_keys(self, schema_name: str) -> List[Dict[str, Any]]: ...

    async def list_indexes(self, schema_name: str) -> List[Dict[str, Any]]: ...


# ============================================================================
# QUERIES
# ============================================================================

_LIST_SCHEMAS = """
    SELECT nspname AS schema_name
    FROM pg_catalog.pg_namespace
    WHERE nspname LIKE %s
    ORDER BY nspname
"""

_SCHEMA_EXISTS = """
    SELECT EXISTS (
        SELECT 1 FROM pg_catalog.pg_namespace WHERE nspname = %s
    ) AS present
"""

_LIST_TABLES = """
    SELECT c.relname AS table_name
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = %s
      AND c.relkind IN ('r', 'p')
    ORDER BY c.relname
"""

_LIST_COLUMNS = """
    SELECT c.relname AS table_name,
           a.attname AS column_name,
           pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
           NOT a.attnotnull AS nullable,
           pg_catalog.pg_get_expr(d.adbin, d.adrelid) AS column_default
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    JOIN pg_catalog.pg_attribute a
      ON a.attrelid = c.oid AND a.attnum > 0 AND NOT a.attisdropped
    LEFT JOIN pg_catalog.pg_attrdef d
      ON d.adrelid = c.oid AND d.adnum = a.attnum
    WHERE n.nspname = %s
      AND c.relkind IN ('r', 'p')
    ORDER BY c.relname, a.attnum
"""

# Multi-column FKs are unnested into one row per column pair
_LIST_FOREIGN_KEYS = """
    SELECT con.conname AS constraint_name,
           src.relname AS table_name,
           sa.attname AS column_name,
           ref.relname AS referenced_table,
           ra.attname AS referenced_column,
           con.confdeltype AS on_delete
    FROM pg_catalog.pg_constraint con
    JOIN pg_catalog.pg_namespace n ON n.oid = con.connamespace
    JOIN pg_catalog.pg_class src ON src.oid = con.conrelid
    JOIN pg_catalog.pg_class ref ON ref.oid = con.confrelid
    CROSS JOIN LATERAL unnest(con.conkey, con.confkey) AS k(src_attnum, ref_attnum)
    JOIN pg_catalog.pg_attribute sa
      ON sa.attrelid = con.conrelid AND sa.attnum = k.src_attnum
    JOIN pg_catalog.pg_attribute ra
      ON ra.attrelid = con.confrelid AND ra.attnum = k.ref_attnum
    WHERE n.nspname = %s
      AND con.contype = 'f'
    ORDER BY src.relname, con.conname, sa.attnum
"""

# Key columns only (INCLUDE columns excluded); expression keys drop out
_LIST_INDEXES = """
    SELECT i.relname AS index_name,
           t.relname AS table_name,
           ix.indisunique AS is_unique,
           ix.indisprimary AS is_primary,
           array_remove(array_agg(a.attname::text ORDER BY k.ord), NULL) AS columns
    FROM pg_catalog.pg_index ix
    JOIN pg_catalog.pg_class i ON i.oid = ix.indexrelid
    JOIN pg_catalog.pg_class t ON t.oid = ix.indrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
    CROSS JOIN LATERAL unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
    LEFT JOIN pg_catalog.pg_attribute a
      ON a.attrelid = t.oid AND a.attnum = k.attnum AND k.attnum > 0
    WHERE n.nspname = %s
      AND k.ord <= ix.indnkeyatts
    GROUP BY i.relname, t.relname, ix.indisunique, ix.indisprimary
    ORDER BY t.relname, i.relname
"""


class CatalogRepository(AsyncBaseRepository):
    """Repository for read-only catalog introspection."""

    def __init__(self, pool: AsyncConnectionPool):
        super().__init__(pool)

    async def _fetch_all(self, query: str, params: tuple) -> List[Dict[str, Any]]:
        async with self.pool.connection() as conn:
            result = await conn.execute(query, params)
            return await result.fetchall()

    async def list_schemas(self, prefix: str) -> List[str]:
        """
        List schema names starting with prefix (LIKE wildcards escaped).

        Args:
            prefix: Literal name prefix, e.g. 'tenant_'

        Returns:
            Schema names in catalog order
        """
        pattern = prefix.replace("\\", "\\\\").replace("_", "\\_").replace("%", "\\%") + "%"
        async with self._error_context("schema discovery", error_cls=IntrospectionError):
            rows = await self._fetch_all(_LIST_SCHEMAS, (pattern,))
        return [row["schema_name"] for row in rows]

    async def schema_exists(self, schema_name: str) -> bool:
        async with self._error_context("schema lookup", schema_name, IntrospectionError):
            rows = await self._fetch_all(_SCHEMA_EXISTS, (schema_name,))
        return bool(rows and rows[0]["present"])

    async def list_tables(self, schema_name: str) -> List[str]:
        async with self._error_context("table listing", schema_name, IntrospectionError):
            rows = await self._fetch_all(_LIST_TABLES, (schema_name,))
        return [row["table_name"] for row in rows]

    async def list_columns(self, schema_name: str) -> List[Dict[str, Any]]:
        async with self._error_context("column listing", schema_name, IntrospectionError):
            return await self._fetch_all(_LIST_COLUMNS, (schema_name,))

    async def list_foreign_keys(self, schema_name: str) -> List[Dict[str, Any]]:
        async with self._error_context("foreign key listing", schema_name, IntrospectionError):
            return await self._fetch_all(_LIST_FOREIGN_KEYS, (schema_name,))

    async def list_indexes(self, schema_name: str) -> List[Dict[str, Any]]:
        async with self._error_context("index listing", schema_name, IntrospectionError):
            return await self._fetch_all(_LIST_INDEXES, (schema_name,))


__all__ = ["CatalogReader", "CatalogRepository"]
