# ============================================================================
# CLAUDE CONTEXT - ERROR TAXONOMY
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Foundation - Exception hierarchy for the consolidation pipeline
# PURPOSE: Carry schema/operation context on every failure
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: ConsolidationError, DatabaseConnectionError, IntrospectionError,
#          TransformationError, IdentifierValidationError, CanonicalSpecError,
#          SchemaLockError, StatementTimeoutError, classify_db_error
# DEPENDENCIES: psycopg
# ============================================================================
"""
Consolidation error taxonomy.

Propagation policy:
- Errors local to one operation are caught by the Transformer and recorded.
- Errors local to one schema abort that schema's pipeline only; the
  orchestrator records them in the batch summary.
- Only connectivity failures during discovery abort the whole run.

Post-transform validation failure is NOT an exception - it is reported as
validation_passed=False on the ConsolidationReport.
"""

from typing import List, Optional

import psycopg
from psycopg import errors as pg_errors


class ConsolidationError(Exception):
    """Base exception for consolidation failures."""

    def __init__(
        self,
        message: str,
        schema_name: Optional[str] = None,
        operation_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.schema_name = schema_name
        self.operation_id = operation_id
        self.cause = cause
        super().__init__(message)

    @property
    def error_type(self) -> str:
        """Short category name used in reports and CLI output."""
        return type(self).__name__

    @property
    def db_message(self) -> Optional[str]:
        """Underlying driver message, if the cause was a database error."""
        if self.cause is None:
            return None
        return str(self.cause).strip() or type(self.cause).__name__

    def to_failure(self, schema_name: Optional[str] = None):
        """Render as a SchemaFailure entry for the batch summary."""
        from core.models.reports import SchemaFailure

        return SchemaFailure(
            schema_name=schema_name or self.schema_name or "",
            error_type=self.error_type,
            message=self.message,
            operation_id=self.operation_id,
            db_message=self.db_message,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.schema_name:
            parts.append(f"schema={self.schema_name}")
        if self.operation_id:
            parts.append(f"operation={self.operation_id}")
        return " | ".join(parts)


class DatabaseConnectionError(ConsolidationError, ConnectionError):
    """
    Connection to PostgreSQL lost or unavailable.

    Fatal to the whole run during discovery, fatal to one schema otherwise.
    """


class IntrospectionError(ConsolidationError):
    """Catalog introspection failed (schema missing, catalog query error)."""


class TransformationError(ConsolidationError):
    """
    One transformer operation (or a schema's apply phase) failed.

    A schema-level rollback raises one of these; the per-operation failures
    that caused it are kept in operation_errors.
    """

    def __init__(
        self,
        message: str,
        operation_errors: Optional[List[ConsolidationError]] = None,
        **kwargs,
    ):
        self.operation_errors = list(operation_errors or [])
        super().__init__(message, **kwargs)


class StatementTimeoutError(TransformationError):
    """A statement exceeded statement_timeout; never retried automatically."""


class IdentifierValidationError(ConsolidationError, ValueError):
    """
    A schema/table/column name failed the allow-list check.

    Always fatal for the schema: it is either a naming-convention violation
    or an injection attempt.
    """

    def __init__(self, message: str, identifier: str = "", kind: str = "identifier", **kwargs):
        self.identifier = identifier
        self.kind = kind
        super().__init__(message, **kwargs)


class CanonicalSpecError(ConsolidationError, ValueError):
    """The canonical structural spec is malformed."""


class SchemaLockError(ConsolidationError):
    """Another consolidation run holds the schema's advisory lock."""


def classify_db_error(
    exc: BaseException,
    message: str,
    schema_name: Optional[str] = None,
    operation_id: Optional[str] = None,
) -> ConsolidationError:
    """
    Wrap a psycopg error in the matching taxonomy class.

    QueryCanceled is an OperationalError subclass, so it is checked first.

    Args:
        exc: The original exception
        message: Human-readable context for the failure
        schema_name: Schema being processed
        operation_id: Operation being executed, if any

    Returns:
        ConsolidationError subclass instance (not raised)
    """
    if isinstance(exc, ConsolidationError):
        return exc

    context = dict(schema_name=schema_name, operation_id=operation_id, cause=exc)

    if isinstance(exc, pg_errors.QueryCanceled):
        return StatementTimeoutError(f"{message}: statement timeout", **context)
    if isinstance(exc, (psycopg.OperationalError, psycopg.InterfaceError)):
        return DatabaseConnectionError(f"{message}: connection lost ({exc})", **context)
    return TransformationError(f"{message}: {exc}", **context)


__all__ = [
    "ConsolidationError",
    "DatabaseConnectionError",
    "IntrospectionError",
    "TransformationError",
    "StatementTimeoutError",
    "IdentifierValidationError",
    "CanonicalSpecError",
    "SchemaLockError",
    "classify_db_error",
]
