# ============================================================================
# BASE REPOSITORY - ERROR HANDLING PATTERNS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Infrastructure - Base repository patterns
# PURPOSE: Common error translation and logging for catalog/mutation repos
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Base Repository Patterns

Base class for the PostgreSQL repositories:
- Error context manager translating psycopg errors into the consolidation
  taxonomy (connection loss, timeout, everything else)
- Standardized operation logging
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional, Type

import psycopg
from psycopg_pool import AsyncConnectionPool

from core.errors import (
    ConsolidationError,
    DatabaseConnectionError,
    classify_db_error,
)


class AsyncBaseRepository:
    """
    Base repository bound to a connection pool.

    Subclasses implement catalog reads or schema mutations.
    """

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool
        self.logger = logging.getLogger(self.__class__.__name__)

    @asynccontextmanager
    async def _error_context(
        self,
        operation: str,
        schema_name: Optional[str] = None,
        error_cls: Optional[Type[ConsolidationError]] = None,
    ):
        """
        Context manager for consistent error handling.

        Connection failures always become DatabaseConnectionError. Other
        driver errors become error_cls when given, otherwise they are
        classified by classify_db_error().

        Example:
            async with self._error_context("column listing", schema, IntrospectionError):
                rows = await self._fetch_all(query, params)
        """
        try:
            yield
        except ConsolidationError:
            # Already has context, just re-raise
            raise
        except psycopg.Error as e:
            error_msg = f"{operation} failed"
            if schema_name:
                error_msg += f" for {schema_name}"
            error = classify_db_error(e, error_msg, schema_name=schema_name)
            if error_cls is not None and not isinstance(error, DatabaseConnectionError):
                error = error_cls(f"{error_msg}: {e}", schema_name=schema_name, cause=e)
            self.logger.error(str(error))
            raise error from e

    def _log_operation(
        self,
        operation: str,
        schema_name: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log operation result with consistent formatting.

        Format:
            "operation: schema | details"
        """
        msg = f"{operation}: {schema_name}"
        if details:
            msg += f" | {details}"
        self.logger.info(msg)


__all__ = ["AsyncBaseRepository"]
