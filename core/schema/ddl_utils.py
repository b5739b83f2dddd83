# ============================================================================
# CLAUDE CONTEXT - DDL UTILITIES
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Identifier allow-list and DDL builders
# PURPOSE: Validate identifiers and compose DDL with psycopg.sql
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: validate_schema_name, validate_identifier, normalize_pg_type,
#          base_type, TYPE_MAP, get_postgres_type, default_expression,
#          IndexBuilder, ColumnBuilder, ConstraintBuilder, TableBuilder
# DEPENDENCIES: psycopg
# ============================================================================
"""
DDL Utilities - Identifier Safety and SQL Composition.

Every schema, table, column, index and constraint name that reaches a
statement passes through the allow-list below first, and is then quoted via
sql.Identifier. Builders return psycopg.sql.Composed objects; nothing is
built with string concatenation.

Usage:
    from core.schema.ddl_utils import ColumnBuilder, IndexBuilder

    stmt = ColumnBuilder.add('tenant_ab12', 'customers', 'idioma', 'varchar(10)',
                             default='pt-BR')
    await cur.execute(stmt)

    idx = IndexBuilder.btree('tenant_ab12', 'customers', ['tenant_id', 'email'],
                             name='idx_customers_tenant_email')
"""

import json
import re
from typing import Any, List, Optional, Sequence, Union

from psycopg import sql

from core.contracts import OnDeleteAction
from core.errors import IdentifierValidationError


# ============================================================================
# IDENTIFIER ALLOW-LIST
# ============================================================================

SCHEMA_NAME_PATTERN = re.compile(r"tenant_[0-9a-f_]+")

# Legacy camelCase columns ("firstName", "createdAt") are real data, so case
# is allowed. 63 bytes is the PostgreSQL NAMEDATALEN limit.
IDENTIFIER_PATTERN = re.compile(r"[A-Za-z_][A-Za-z0-9_]{0,62}")


def validate_schema_name(name: str) -> str:
    """
    Check a tenant schema name against the naming convention.

    Args:
        name: Candidate schema name

    Returns:
        The name, unchanged

    Raises:
        IdentifierValidationError: If the name does not match ^tenant_[0-9a-f_]+$
    """
    if not isinstance(name, str) or not SCHEMA_NAME_PATTERN.fullmatch(name):
        raise IdentifierValidationError(
            f"Invalid tenant schema name: {name!r}",
            identifier=str(name),
            kind="schema",
            schema_name=name if isinstance(name, str) else None,
        )
    return name


def validate_identifier(name: str, kind: str = "identifier") -> str:
    """
    Check a table/column/index/constraint name against the allow-list.

    Args:
        name: Candidate identifier
        kind: What the identifier names (used in the error message)

    Returns:
        The name, unchanged

    Raises:
        IdentifierValidationError: If the name is not a plain identifier
    """
    if not isinstance(name, str) or not IDENTIFIER_PATTERN.fullmatch(name):
        raise IdentifierValidationError(
            f"Invalid {kind} name: {name!r}",
            identifier=str(name),
            kind=kind,
        )
    return name


def tenant_id_from_schema(schema_name: str) -> str:
    """Return the tenant id suffix of a validated schema name."""
    return validate_schema_name(schema_name)[len("tenant_"):]


# ============================================================================
# TYPE MAPPING
# ============================================================================

# Canonical (normalised) base type -> SQL type keyword
TYPE_MAP = {
    "uuid": "UUID",
    "varchar": "VARCHAR",
    "char": "CHAR",
    "text": "TEXT",
    "jsonb": "JSONB",
    "json": "JSON",
    "boolean": "BOOLEAN",
    "smallint": "SMALLINT",
    "integer": "INTEGER",
    "bigint": "BIGINT",
    "numeric": "NUMERIC",
    "real": "REAL",
    "double precision": "DOUBLE PRECISION",
    "date": "DATE",
    "time": "TIME",
    "timestamp": "TIMESTAMP",
    "timestamptz": "TIMESTAMPTZ",
    "bytea": "BYTEA",
}

# format_type() spelling -> canonical spelling
_CATALOG_ALIASES = {
    "character varying": "varchar",
    "character": "char",
    "bpchar": "char",
    "timestamp without time zone": "timestamp",
    "timestamp with time zone": "timestamptz",
    "time without time zone": "time",
    "int": "integer",
    "int4": "integer",
    "int8": "bigint",
    "int2": "smallint",
    "bool": "boolean",
    "float8": "double precision",
    "float4": "real",
    "decimal": "numeric",
}

_TYPE_PATTERN = re.compile(r"([a-z][a-z ]*?)\s*(\((\d+)(\s*,\s*(\d+))?\))?")

# Modifiers appear mid-string for time types: "timestamp(3) with time zone"
_INNER_MODIFIER = re.compile(r"\(\d+\)")


def normalize_pg_type(type_str: str) -> str:
    """
    Normalise a PostgreSQL type string to the canonical spelling.

    Examples:
        'character varying(50)'       -> 'varchar(50)'
        'timestamp with time zone'    -> 'timestamptz'
        'numeric(10,2)'               -> 'numeric(10,2)'
        'USER-DEFINED'                -> 'user-defined'

    Unrecognised types are lower-cased and returned as-is.
    """
    text = " ".join(type_str.strip().lower().split())
    if text.startswith(("timestamp", "time")) and _INNER_MODIFIER.search(text):
        text = _INNER_MODIFIER.sub("", text).replace("  ", " ").strip()
    match = _TYPE_PATTERN.fullmatch(text)
    if not match:
        return text
    base = _CATALOG_ALIASES.get(match.group(1), match.group(1))
    if match.group(3) is None:
        return base
    if match.group(5) is not None:
        return f"{base}({match.group(3)},{match.group(5)})"
    return f"{base}({match.group(3)})"


def base_type(type_str: str) -> str:
    """Strip the modifier from a normalised type: 'varchar(50)' -> 'varchar'."""
    return normalize_pg_type(type_str).split("(", 1)[0]


def get_postgres_type(type_str: str) -> sql.SQL:
    """
    Map an allow-listed canonical type to a SQL type fragment.

    Args:
        type_str: Canonical type such as 'uuid', 'varchar(50)', 'numeric(10,2)'

    Returns:
        sql.SQL fragment safe to embed in DDL

    Raises:
        IdentifierValidationError: If the base type is not allow-listed
    """
    normalised = normalize_pg_type(type_str)
    match = _TYPE_PATTERN.fullmatch(normalised)
    if not match or match.group(1) not in TYPE_MAP:
        raise IdentifierValidationError(
            f"Type not allowed: {type_str!r}", identifier=type_str, kind="type"
        )
    keyword = TYPE_MAP[match.group(1)]
    if match.group(3) is None:
        return sql.SQL(keyword)
    if match.group(5) is not None:
        return sql.SQL(f"{keyword}({int(match.group(3))},{int(match.group(5))})")
    return sql.SQL(f"{keyword}({int(match.group(3))})")


def default_expression(value: Any, type_str: str) -> sql.Composed:
    """
    Render a column default as a literal cast to the column type.

    dict/list values are JSON-encoded (for jsonb/json columns).
    """
    if isinstance(value, (dict, list)):
        value = json.dumps(value)
    return sql.SQL("{}::{}").format(sql.Literal(value), get_postgres_type(type_str))


def _table(schema: str, table: str) -> sql.Composed:
    return sql.SQL("{}.{}").format(
        sql.Identifier(validate_schema_name(schema)),
        sql.Identifier(validate_identifier(table, "table")),
    )


# ============================================================================
# INDEX BUILDER
# ============================================================================

class IndexBuilder:
    """
    Builder for PostgreSQL index DDL statements.

    All methods are static and return sql.Composed objects. No IF NOT EXISTS:
    callers check for an index on the same ordered columns first, so a name
    collision with a different definition fails loudly.
    """

    @staticmethod
    def _normalize_columns(columns: Union[str, Sequence[str]]) -> List[str]:
        """Convert single column or sequence to list."""
        if isinstance(columns, str):
            return [columns]
        return list(columns)

    @staticmethod
    def _generate_index_name(
        table: str,
        columns: List[str],
        prefix: str = 'idx',
    ) -> str:
        """Generate conventional index name, truncated to 63 characters."""
        return f"{prefix}_{table}_{'_'.join(columns)}"[:63]

    @staticmethod
    def btree(
        schema: str,
        table: str,
        columns: Union[str, Sequence[str]],
        name: Optional[str] = None,
    ) -> sql.Composed:
        """
        Create B-tree index.

        Args:
            schema: Tenant schema name
            table: Table name
            columns: Column name(s) to index, in order
            name: Optional custom index name

        Returns:
            sql.Composed CREATE INDEX statement
        """
        cols = [validate_identifier(c, "column") for c in IndexBuilder._normalize_columns(columns)]
        idx_name = validate_identifier(
            name or IndexBuilder._generate_index_name(table, cols), "index"
        )

        return sql.SQL("CREATE INDEX {name} ON {table} ({columns})").format(
            name=sql.Identifier(idx_name),
            table=_table(schema, table),
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in cols),
        )

    @staticmethod
    def unique(
        schema: str,
        table: str,
        columns: Union[str, Sequence[str]],
        name: Optional[str] = None,
    ) -> sql.Composed:
        """Create unique index."""
        cols = [validate_identifier(c, "column") for c in IndexBuilder._normalize_columns(columns)]
        idx_name = validate_identifier(
            name or IndexBuilder._generate_index_name(table, cols, prefix='idx_unique'), "index"
        )

        return sql.SQL("CREATE UNIQUE INDEX {name} ON {table} ({columns})").format(
            name=sql.Identifier(idx_name),
            table=_table(schema, table),
            columns=sql.SQL(", ").join(sql.Identifier(c) for c in cols),
        )


# ============================================================================
# COLUMN BUILDER
# ============================================================================

class ColumnBuilder:
    """
    Builder for ALTER TABLE ... COLUMN statements.
    """

    @staticmethod
    def add(
        schema: str,
        table: str,
        column: str,
        type_str: str,
        default: Any = None,
        not_null: bool = False,
    ) -> sql.Composed:
        """
        ALTER TABLE ... ADD COLUMN.

        NOT NULL is only emitted together with a default, otherwise the
        statement would fail on a non-empty table.
        """
        parts = [
            sql.SQL("ALTER TABLE {table} ADD COLUMN {column} {type}").format(
                table=_table(schema, table),
                column=sql.Identifier(validate_identifier(column, "column")),
                type=get_postgres_type(type_str),
            )
        ]
        if default is not None:
            parts.append(sql.SQL("DEFAULT {}").format(default_expression(default, type_str)))
            if not_null:
                parts.append(sql.SQL("NOT NULL"))
        return sql.SQL(" ").join(parts)

    @staticmethod
    def drop(schema: str, table: str, column: str) -> sql.Composed:
        """ALTER TABLE ... DROP COLUMN (never CASCADE)."""
        return sql.SQL("ALTER TABLE {table} DROP COLUMN {column}").format(
            table=_table(schema, table),
            column=sql.Identifier(validate_identifier(column, "column")),
        )

    @staticmethod
    def rename(schema: str, table: str, column: str, new_name: str) -> sql.Composed:
        """ALTER TABLE ... RENAME COLUMN."""
        return sql.SQL("ALTER TABLE {table} RENAME COLUMN {old} TO {new}").format(
            table=_table(schema, table),
            old=sql.Identifier(validate_identifier(column, "column")),
            new=sql.Identifier(validate_identifier(new_name, "column")),
        )

    @staticmethod
    def set_not_null(schema: str, table: str, column: str) -> sql.Composed:
        """ALTER TABLE ... ALTER COLUMN ... SET NOT NULL."""
        return sql.SQL("ALTER TABLE {table} ALTER COLUMN {column} SET NOT NULL").format(
            table=_table(schema, table),
            column=sql.Identifier(validate_identifier(column, "column")),
        )

    @staticmethod
    def set_default(
        schema: str, table: str, column: str, value: Any, type_str: str
    ) -> sql.Composed:
        """ALTER TABLE ... ALTER COLUMN ... SET DEFAULT <literal>::<type>."""
        return sql.SQL("ALTER TABLE {table} ALTER COLUMN {column} SET DEFAULT {default}").format(
            table=_table(schema, table),
            column=sql.Identifier(validate_identifier(column, "column")),
            default=default_expression(value, type_str),
        )

    @staticmethod
    def alter_type_using(
        schema: str,
        table: str,
        column: str,
        type_str: str,
        using: sql.Composable,
    ) -> sql.Composed:
        """ALTER TABLE ... ALTER COLUMN ... TYPE <type> USING <expr>."""
        return sql.SQL(
            "ALTER TABLE {table} ALTER COLUMN {column} TYPE {type} USING {using}"
        ).format(
            table=_table(schema, table),
            column=sql.Identifier(validate_identifier(column, "column")),
            type=get_postgres_type(type_str),
            using=using,
        )


# ============================================================================
# CONSTRAINT BUILDER
# ============================================================================

class ConstraintBuilder:
    """
    Builder for table constraints.
    """

    @staticmethod
    def foreign_key_name(table: str, column: str) -> str:
        """Conventional FK constraint name: fk_<table>_<column>."""
        return f"fk_{table}_{column}"[:63]

    @staticmethod
    def foreign_key(
        schema: str,
        table: str,
        column: str,
        referenced_table: str,
        referenced_column: str = "id",
        on_delete: OnDeleteAction = OnDeleteAction.NO_ACTION,
        name: Optional[str] = None,
    ) -> sql.Composed:
        """
        ALTER TABLE ... ADD CONSTRAINT ... FOREIGN KEY.

        The referenced table is always in the same tenant schema.
        """
        constraint = validate_identifier(
            name or ConstraintBuilder.foreign_key_name(table, column), "constraint"
        )
        return sql.SQL(
            "ALTER TABLE {table} ADD CONSTRAINT {name} FOREIGN KEY ({column}) "
            "REFERENCES {ref_table} ({ref_column}) ON DELETE {action}"
        ).format(
            table=_table(schema, table),
            name=sql.Identifier(constraint),
            column=sql.Identifier(validate_identifier(column, "column")),
            ref_table=_table(schema, referenced_table),
            ref_column=sql.Identifier(validate_identifier(referenced_column, "column")),
            action=sql.SQL(OnDeleteAction(on_delete).sql_keyword),
        )


# ============================================================================
# TABLE BUILDER
# ============================================================================

class TableBuilder:
    """
    Builder for table-level statements.
    """

    @staticmethod
    def drop(schema: str, table: str) -> sql.Composed:
        """DROP TABLE without CASCADE: remaining dependants make it fail."""
        return sql.SQL("DROP TABLE {table}").format(table=_table(schema, table))

    @staticmethod
    def qualified(schema: str, table: str) -> sql.Composed:
        """Validated, quoted schema.table reference."""
        return _table(schema, table)


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    'SCHEMA_NAME_PATTERN',
    'IDENTIFIER_PATTERN',
    'validate_schema_name',
    'validate_identifier',
    'tenant_id_from_schema',
    'TYPE_MAP',
    'normalize_pg_type',
    'base_type',
    'get_postgres_type',
    'default_expression',
    'IndexBuilder',
    'ColumnBuilder',
    'ConstraintBuilder',
    'TableBuilder',
]
