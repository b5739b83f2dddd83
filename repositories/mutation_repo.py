# ============================================================================
# SCHEMA MUTATION REPOSITORY
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - DDL/DML execution for one tenant schema
# PURPOSE: Pre-check queries and mutations used by the Transformer
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Schema Mutation Repository

Executes the statements the Transformer needs, against ONE tenant schema,
on ONE held connection:

    repo = MutationRepository(pool)
    async with repo.transaction("tenant_ab12"):      # BEGIN + advisory lock
        async with repo.savepoint():                # SAVEPOINT per operation
            await repo.add_column(...)

Every statement is composed with the ddl_utils builders or psycopg.sql;
identifiers are validated before they are quoted. Pre-check methods
(table_exists, get_columns, foreign_key_exists, index_exists) make every
operation idempotent without relying on duplicate-object errors.

Errors are NOT translated here: the Transformer classifies them per operation.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Sequence, Tuple

from psycopg import AsyncConnection, sql
from psycopg_pool import AsyncConnectionPool

from core.contracts import OnDeleteAction
from core.errors import SchemaLockError
from core.models import ColumnDescriptor
from core.schema.ddl_utils import (
    ColumnBuilder,
    ConstraintBuilder,
    IndexBuilder,
    TableBuilder,
    get_postgres_type,
    validate_identifier,
    validate_schema_name,
)
from infrastructure.base_repository import AsyncBaseRepository
from infrastructure.locking import LockService


@dataclass
class ColumnDependent:
    """
    An index or constraint that must be recreated after a column swap.

    definition is server-generated (pg_get_indexdef / pg_get_constraintdef).
    """
    kind: str            # 'index' or 'constraint'
    name: str
    table: str           # owning table (FKs may live on another table)
    definition: str
    contype: Optional[str] = None


# ============================================================================
# CONTRACT
# ============================================================================

class SchemaMutator(Protocol):
    """
    Mutation contract consumed by the Transformer.

    transaction() binds the mutator to one connection and schema; all other
    methods must be called inside it.
    """

    def transaction(self, schema_name: str, atomic: bool = True) -> Any: ...

    def savepoint(self) -> Any: ...

    async def table_exists(self, schema: str, table: str) -> bool: ...

    async def get_columns(self, schema: str, table: str) -> Dict[str, ColumnDescriptor]: ...

    async def add_column(
        self, schema: str, table: str, column: str, type_str: str,
        default: Any = None, not_null: bool = False,
    ) -> None: ...

    async def backfill_cast(
        self, schema: str, table: str, source: str, target: str, type_str: str
    ) -> int: ...

    async def count_unconverted(self, schema: str, table: str, source: str, target: str) -> int: ...

    async def capture_column_dependents(
        self, schema: str, table: str, column: str
    ) -> List[ColumnDependent]: ...

    async def drop_constraint(self, schema: str, table: str, name: str) -> None: ...

    async def drop_column(self, schema: str, table: str, column: str) -> None: ...

    async def rename_column(self, schema: str, table: str, column: str, new_name: str) -> None: ...

    async def set_not_null(self, schema: str, table: str, column: str) -> None: ...

    async def restore_dependents(self, schema: str, dependents: List[ColumnDependent]) -> None: ...

    async def count_rows(self, schema: str, table: str) -> int: ...

    async def count_distinct_keys(
        self, schema: str, sources: Sequence[Tuple[str, str]]
    ) -> int: ...

    async def copy_rows(
        self, schema: str, legacy_table: str, canonical_table: str, key: str,
        column_mapping: Dict[str, str], canonical_types: Dict[str, str],
    ) -> int: ...

    async def repoint_reference(
        self, schema: str, table: str, legacy_column: str, canonical_column: str,
        canonical_table: str, canonical_key: str, canonical_type: str,
    ) -> Tuple[int, int]: ...

    async def drop_table(self, schema: str, table: str) -> None: ...

    async def foreign_key_exists(
        self, schema: str, table: str, column: str, referenced_table: str
    ) -> bool: ...

    async def add_foreign_key(
        self, schema: str, table: str, column: str, referenced_table: str,
        referenced_column: str, on_delete: OnDeleteAction, name: str,
    ) -> None: ...

    async def index_exists(self, schema: str, table: str, columns: Sequence[str]) -> bool: ...

    async def create_index(
        self, schema: str, table: str, columns: Sequence[str], name: str, unique: bool = False
    ) -> None: ...

    async def convert_to_jsonb(self, schema: str, table: str, column: str) -> None: ...


# ============================================================================
# QUERIES
# ============================================================================

_TABLE_EXISTS = """
    SELECT EXISTS (
        SELECT 1
        FROM pg_catalog.pg_class c
        JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
        WHERE n.nspname = %s AND c.relname = %s AND c.relkind IN ('r', 'p')
    ) AS present
"""

_TABLE_COLUMNS = """
    SELECT a.attname AS column_name,
           pg_catalog.format_type(a.atttypid, a.atttypmod) AS data_type,
           NOT a.attnotnull AS nullable,
           pg_catalog.pg_get_expr(d.adbin, d.adrelid) AS column_default
    FROM pg_catalog.pg_class c
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    JOIN pg_catalog.pg_attribute a
      ON a.attrelid = c.oid AND a.attnum > 0 AND NOT a.attisdropped
    LEFT JOIN pg_catalog.pg_attrdef d
      ON d.adrelid = c.oid AND d.adnum = a.attnum
    WHERE n.nspname = %s AND c.relname = %s
    ORDER BY a.attnum
"""

# Standalone indexes on the column (constraint-backed indexes come back
# with their constraint)
_COLUMN_INDEXES = """
    SELECT i.relname AS name,
           t.relname AS table_name,
           pg_catalog.pg_get_indexdef(ix.indexrelid) AS definition
    FROM pg_catalog.pg_index ix
    JOIN pg_catalog.pg_class i ON i.oid = ix.indexrelid
    JOIN pg_catalog.pg_class t ON t.oid = ix.indrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
    JOIN pg_catalog.pg_attribute a ON a.attrelid = t.oid AND a.attname = %s
    WHERE n.nspname = %s AND t.relname = %s
      AND a.attnum = ANY (ix.indkey::int2[])
      AND NOT EXISTS (
          SELECT 1 FROM pg_catalog.pg_constraint c
          WHERE c.conindid = ix.indexrelid
            AND c.conrelid = t.oid
            AND c.contype IN ('p', 'u', 'x')
      )
    ORDER BY i.relname
"""

# Constraints on the column, plus FKs elsewhere that reference it.
# NOT NULL constraints are re-applied by the caller, not recreated.
_COLUMN_CONSTRAINTS = """
    SELECT con.conname AS name,
           src.relname AS table_name,
           con.contype AS contype,
           pg_catalog.pg_get_constraintdef(con.oid) AS definition
    FROM pg_catalog.pg_constraint con
    JOIN pg_catalog.pg_class t ON t.relname = %s
    JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace AND n.nspname = %s
    JOIN pg_catalog.pg_attribute a ON a.attrelid = t.oid AND a.attname = %s
    JOIN pg_catalog.pg_class src ON src.oid = con.conrelid
    WHERE con.contype IN ('p', 'u', 'x', 'c', 'f')
      AND (
          (con.conrelid = t.oid AND a.attnum = ANY (con.conkey))
          OR (con.contype = 'f' AND con.confrelid = t.oid AND a.attnum = ANY (con.confkey))
      )
    ORDER BY con.conname
"""

_FOREIGN_KEY_EXISTS = """
    SELECT EXISTS (
        SELECT 1
        FROM pg_catalog.pg_constraint con
        JOIN pg_catalog.pg_namespace n ON n.oid = con.connamespace
        JOIN pg_catalog.pg_class src ON src.oid = con.conrelid
        JOIN pg_catalog.pg_class ref ON ref.oid = con.confrelid
        JOIN pg_catalog.pg_attribute a
          ON a.attrelid = con.conrelid AND a.attnum = ANY (con.conkey)
        WHERE n.nspname = %s AND con.contype = 'f'
          AND src.relname = %s AND a.attname = %s AND ref.relname = %s
    ) AS present
"""

_INDEX_EXISTS = """
    SELECT EXISTS (
        SELECT 1
        FROM pg_catalog.pg_index ix
        JOIN pg_catalog.pg_class t ON t.oid = ix.indrelid
        JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
        WHERE n.nspname = %s AND t.relname = %s
          AND ix.indnkeyatts = cardinality(%s::text[])
          AND ARRAY(
              SELECT a.attname::text
              FROM unnest(ix.indkey::int2[]) WITH ORDINALITY AS k(attnum, ord)
              JOIN pg_catalog.pg_attribute a
                ON a.attrelid = t.oid AND a.attnum = k.attnum
              WHERE k.ord <= ix.indnkeyatts
              ORDER BY k.ord
          ) = %s::text[]
    ) AS present
"""

# Recreate order: keys before the FKs that depend on them
_CONTYPE_ORDER = {"p": 0, "u": 1, "x": 2, "c": 3, "f": 4}


class MutationRepository(AsyncBaseRepository):
    """
    Repository for DDL/DML against one tenant schema.

    One instance per schema run; not shared between schemas.
    """

    def __init__(self, pool: AsyncConnectionPool):
        super().__init__(pool)
        self._conn: Optional[AsyncConnection] = None

    # =========================================================================
    # CONNECTION / TRANSACTION SCOPE
    # =========================================================================

    @property
    def conn(self) -> AsyncConnection:
        if self._conn is None:
            raise RuntimeError("MutationRepository used outside transaction()")
        return self._conn

    @asynccontextmanager
    async def transaction(self, schema_name: str, atomic: bool = True) -> AsyncIterator[None]:
        """
        Hold one connection and the schema's advisory lock.

        atomic=True: one transaction (xact lock, released on commit/rollback).
        atomic=False: autocommit with a session lock; each savepoint() is then
        its own short transaction.

        Raises:
            SchemaLockError: If another run holds the schema lock
        """
        validate_schema_name(schema_name)
        async with self.pool.connection() as conn:
            self._conn = conn
            try:
                if atomic:
                    async with conn.transaction():
                        if not await LockService.try_acquire_xact(conn, schema_name):
                            raise SchemaLockError(
                                "Schema is locked by another consolidation run",
                                schema_name=schema_name,
                            )
                        yield
                else:
                    if not await LockService.try_acquire_session(conn, schema_name):
                        raise SchemaLockError(
                            "Schema is locked by another consolidation run",
                            schema_name=schema_name,
                        )
                    try:
                        yield
                    finally:
                        await LockService.release_session(conn, schema_name)
            finally:
                self._conn = None

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        """Nested transaction: rolls back to the savepoint if the block raises."""
        async with self.conn.transaction():
            yield

    async def _execute(self, statement, params: Optional[Sequence[Any]] = None) -> int:
        cur = await self.conn.execute(statement, params)
        return cur.rowcount

    async def _fetch_value(self, query, params: Sequence[Any], key: str) -> Any:
        cur = await self.conn.execute(query, params)
        row = await cur.fetchone()
        return row[key] if row else None

    # =========================================================================
    # PRE-CHECKS
    # =========================================================================

    async def table_exists(self, schema: str, table: str) -> bool:
        return bool(await self._fetch_value(_TABLE_EXISTS, (schema, table), "present"))

    async def get_columns(self, schema: str, table: str) -> Dict[str, ColumnDescriptor]:
        """Current columns of one table, keyed by name (empty if table absent)."""
        cur = await self.conn.execute(_TABLE_COLUMNS, (schema, table))
        rows = await cur.fetchall()
        return {
            row["column_name"]: ColumnDescriptor(
                table=table,
                name=row["column_name"],
                data_type=row["data_type"],
                nullable=row["nullable"],
                default=row["column_default"],
            )
            for row in rows
        }

    async def foreign_key_exists(
        self, schema: str, table: str, column: str, referenced_table: str
    ) -> bool:
        return bool(await self._fetch_value(
            _FOREIGN_KEY_EXISTS, (schema, table, column, referenced_table), "present"
        ))

    async def index_exists(self, schema: str, table: str, columns: Sequence[str]) -> bool:
        """Any index whose ordered key columns equal columns, whatever its name."""
        cols = list(columns)
        return bool(await self._fetch_value(
            _INDEX_EXISTS, (schema, table, cols, cols), "present"
        ))

    async def count_rows(self, schema: str, table: str) -> int:
        query = sql.SQL("SELECT count(*) AS n FROM {}").format(TableBuilder.qualified(schema, table))
        return int(await self._fetch_value(query, (), "n"))

    async def count_distinct_keys(self, schema: str, sources: Sequence[Tuple[str, str]]) -> int:
        """Distinct non-null key values across (table, key_column) sources, compared as text."""
        selects = [
            sql.SQL("SELECT CAST({key} AS text) AS k FROM {table} WHERE {key} IS NOT NULL").format(
                key=sql.Identifier(validate_identifier(key, "column")),
                table=TableBuilder.qualified(schema, table),
            )
            for table, key in sources
        ]
        query = sql.SQL("SELECT count(*) AS n FROM ({}) AS keys").format(
            sql.SQL(" UNION ").join(selects)
        )
        return int(await self._fetch_value(query, (), "n"))

    # =========================================================================
    # COLUMN OPERATIONS
    # =========================================================================

    async def add_column(
        self, schema: str, table: str, column: str, type_str: str,
        default: Any = None, not_null: bool = False,
    ) -> None:
        await self._execute(ColumnBuilder.add(schema, table, column, type_str, default, not_null))

    async def backfill_cast(
        self, schema: str, table: str, source: str, target: str, type_str: str
    ) -> int:
        """
        target = NULLIF(btrim(source::text), '')::type for every non-null source.

        Returns:
            Number of rows updated
        """
        query = sql.SQL(
            "UPDATE {table} SET {target} = CAST(NULLIF(btrim(CAST({source} AS text)), '') AS {type}) "
            "WHERE {source} IS NOT NULL"
        ).format(
            table=TableBuilder.qualified(schema, table),
            target=sql.Identifier(validate_identifier(target, "column")),
            source=sql.Identifier(validate_identifier(source, "column")),
            type=get_postgres_type(type_str),
        )
        return await self._execute(query)

    async def count_unconverted(self, schema: str, table: str, source: str, target: str) -> int:
        """Rows whose source held a non-blank value but whose target is NULL."""
        query = sql.SQL(
            "SELECT count(*) AS n FROM {table} "
            "WHERE {source} IS NOT NULL AND btrim(CAST({source} AS text)) <> '' "
            "AND {target} IS NULL"
        ).format(
            table=TableBuilder.qualified(schema, table),
            source=sql.Identifier(validate_identifier(source, "column")),
            target=sql.Identifier(validate_identifier(target, "column")),
        )
        return int(await self._fetch_value(query, (), "n"))

    async def capture_column_dependents(
        self, schema: str, table: str, column: str
    ) -> List[ColumnDependent]:
        """
        Indexes and constraints that a DROP COLUMN would remove or block.

        Returned in recreate order: standalone indexes, then keys, then
        checks, then foreign keys.
        """
        cur = await self.conn.execute(_COLUMN_INDEXES, (column, schema, table))
        indexes = [
            ColumnDependent(kind="index", name=r["name"], table=r["table_name"], definition=r["definition"])
            for r in await cur.fetchall()
        ]
        cur = await self.conn.execute(_COLUMN_CONSTRAINTS, (table, schema, column))
        constraints = [
            ColumnDependent(
                kind="constraint", name=r["name"], table=r["table_name"],
                definition=r["definition"], contype=r["contype"],
            )
            for r in await cur.fetchall()
        ]
        constraints.sort(key=lambda d: _CONTYPE_ORDER.get(d.contype, 9))
        return indexes + constraints

    async def drop_constraint(self, schema: str, table: str, name: str) -> None:
        await self._execute(sql.SQL("ALTER TABLE {table} DROP CONSTRAINT {name}").format(
            table=TableBuilder.qualified(schema, table),
            name=sql.Identifier(validate_identifier(name, "constraint")),
        ))

    async def drop_column(self, schema: str, table: str, column: str) -> None:
        await self._execute(ColumnBuilder.drop(schema, table, column))

    async def rename_column(self, schema: str, table: str, column: str, new_name: str) -> None:
        await self._execute(ColumnBuilder.rename(schema, table, column, new_name))

    async def set_not_null(self, schema: str, table: str, column: str) -> None:
        await self._execute(ColumnBuilder.set_not_null(schema, table, column))

    async def restore_dependents(self, schema: str, dependents: List[ColumnDependent]) -> None:
        """
        Recreate captured indexes/constraints from their catalog definitions.

        Index definitions are schema-qualified by pg_get_indexdef; constraint
        definitions are re-attached with ALTER TABLE ... ADD CONSTRAINT.
        Anything already recreated (same name) is left alone.
        """
        for dep in dependents:
            if dep.kind == "index":
                exists = await self._fetch_value(
                    "SELECT to_regclass(%s) IS NOT NULL AS present",
                    (f'"{schema}"."{dep.name}"',),
                    "present",
                )
                if not exists:
                    await self._execute(sql.SQL(dep.definition))
            else:
                await self._execute(
                    sql.SQL("ALTER TABLE {table} ADD CONSTRAINT {name} ").format(
                        table=TableBuilder.qualified(schema, dep.table),
                        name=sql.Identifier(validate_identifier(dep.name, "constraint")),
                    ) + sql.SQL(dep.definition)
                )

    async def convert_to_jsonb(self, schema: str, table: str, column: str) -> None:
        """ALTER TYPE jsonb USING CASE ... then SET DEFAULT '{}'::jsonb."""
        col = sql.Identifier(validate_identifier(column, "column"))
        using = sql.SQL(
            "CASE WHEN {col} IS NULL OR btrim(CAST({col} AS text)) = '' THEN '{{}}'::jsonb "
            "ELSE CAST(CAST({col} AS text) AS jsonb) END"
        ).format(col=col)
        await self._execute(ColumnBuilder.alter_type_using(schema, table, column, "jsonb", using))
        await self._execute(ColumnBuilder.set_default(schema, table, column, {}, "jsonb"))

    # =========================================================================
    # TABLE MERGE / REFERENCE REPOINT
    # =========================================================================

    async def copy_rows(
        self, schema: str, legacy_table: str, canonical_table: str, key: str,
        column_mapping: Dict[str, str], canonical_types: Dict[str, str],
    ) -> int:
        """
        INSERT INTO canonical (...) SELECT CAST(legacy_col AS canonical_type) ...
        ON CONFLICT (key) DO NOTHING.

        Casts go through text so legacy varchar/timestamp values land in the
        canonical column types. Canonical rows win on key collision.

        Returns:
            Number of rows inserted
        """
        targets = []
        selects = []
        for legacy_col, canonical_col in column_mapping.items():
            targets.append(sql.Identifier(validate_identifier(canonical_col, "column")))
            selects.append(sql.SQL("CAST(CAST({} AS text) AS {})").format(
                sql.Identifier(validate_identifier(legacy_col, "column")),
                get_postgres_type(canonical_types[canonical_col]),
            ))
        query = sql.SQL(
            "INSERT INTO {canonical} ({targets}) SELECT {selects} FROM {legacy} "
            "ON CONFLICT ({key}) DO NOTHING"
        ).format(
            canonical=TableBuilder.qualified(schema, canonical_table),
            targets=sql.SQL(", ").join(targets),
            selects=sql.SQL(", ").join(selects),
            legacy=TableBuilder.qualified(schema, legacy_table),
            key=sql.Identifier(validate_identifier(key, "column")),
        )
        inserted = await self._execute(query)
        self._log_operation("copy_rows", schema, {
            "from": legacy_table, "into": canonical_table, "inserted": inserted,
        })
        return inserted

    async def repoint_reference(
        self, schema: str, table: str, legacy_column: str, canonical_column: str,
        canonical_table: str, canonical_key: str, canonical_type: str,
    ) -> Tuple[int, int]:
        """
        Fill canonical_column from legacy_column where it is still NULL and
        the legacy value exists as a key in the canonical table.

        Returns:
            (rows updated, orphan rows whose legacy value matched no canonical key)
        """
        target = TableBuilder.qualified(schema, table)
        legacy = sql.Identifier(validate_identifier(legacy_column, "column"))
        canonical = sql.Identifier(validate_identifier(canonical_column, "column"))
        key = sql.Identifier(validate_identifier(canonical_key, "column"))

        update = sql.SQL(
            "UPDATE {target} AS t SET {canonical} = CAST(CAST(t.{legacy} AS text) AS {type}) "
            "WHERE t.{canonical} IS NULL AND t.{legacy} IS NOT NULL "
            "AND EXISTS (SELECT 1 FROM {ref} AS r WHERE CAST(r.{key} AS text) = CAST(t.{legacy} AS text))"
        ).format(
            target=target,
            canonical=canonical,
            legacy=legacy,
            type=get_postgres_type(canonical_type),
            ref=TableBuilder.qualified(schema, canonical_table),
            key=key,
        )
        updated = await self._execute(update)

        orphans_query = sql.SQL(
            "SELECT count(*) AS n FROM {target} AS t "
            "WHERE t.{canonical} IS NULL AND t.{legacy} IS NOT NULL"
        ).format(target=target, canonical=canonical, legacy=legacy)
        orphans = int(await self._fetch_value(orphans_query, (), "n"))
        self._log_operation("repoint_reference", schema, {
            "column": f"{table}.{canonical_column}", "updated": updated, "orphans": orphans,
        })
        return updated, orphans

    async def drop_table(self, schema: str, table: str) -> None:
        await self._execute(TableBuilder.drop(schema, table))
        self._log_operation("drop_table", schema, {"table": table})

    # =========================================================================
    # CONSTRAINTS / INDEXES
    # =========================================================================

    async def add_foreign_key(
        self, schema: str, table: str, column: str, referenced_table: str,
        referenced_column: str, on_delete: OnDeleteAction, name: str,
    ) -> None:
        await self._execute(ConstraintBuilder.foreign_key(
            schema, table, column, referenced_table, referenced_column, on_delete, name
        ))

    async def create_index(
        self, schema: str, table: str, columns: Sequence[str], name: str, unique: bool = False
    ) -> None:
        builder = IndexBuilder.unique if unique else IndexBuilder.btree
        await self._execute(builder(schema, table, list(columns), name=name))


__all__ = ["ColumnDependent", "SchemaMutator", "MutationRepository"]
