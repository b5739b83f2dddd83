# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Provide connection pooling for psycopg3 async
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Database Connection Pool

Manages async PostgreSQL connections using psycopg3 and psycopg_pool.
The pool is owned by a DatabasePool context manager and injected into the
orchestrator; there is no module-level pool.

Every pooled connection:
- runs in autocommit (transactions are explicit via conn.transaction())
- returns dict rows
- carries session statement_timeout and lock_timeout

Connection string priority:
1. Explicit argument (CLI --dsn)
2. DATABASE_URL environment variable
3. Individual POSTGRES_* components

Usage:
    from repositories.database import DatabasePool

    async with DatabasePool(statement_timeout_ms=60_000) as pool:
        async with pool.connection() as conn:
            await conn.execute("SELECT 1")
"""

import os
import logging
from typing import Optional

from psycopg import AsyncConnection
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from core.errors import DatabaseConnectionError, classify_db_error

logger = logging.getLogger(__name__)


def get_connection_string() -> str:
    """
    Get database connection string from environment.

    Returns:
        PostgreSQL connection string
    """
    if url := os.environ.get("DATABASE_URL"):
        return url

    host = os.environ.get("POSTGRES_HOST", "localhost")
    port = os.environ.get("POSTGRES_PORT", "5432")
    name = os.environ.get("POSTGRES_DB", "postgres")
    user = os.environ.get("POSTGRES_USER", "postgres")
    password = os.environ.get("POSTGRES_PASSWORD", "")
    sslmode = os.environ.get("POSTGRES_SSLMODE", "prefer")

    return f"postgresql://{user}:{password}@{host}:{port}/{name}?sslmode={sslmode}"


def mask_conninfo(conninfo: str) -> str:
    """Strip credentials from a connection string for logging."""
    if "@" in conninfo:
        return conninfo.split("@")[-1]
    if "password=" in conninfo:
        head, _, tail = conninfo.partition("password=")
        rest = tail.split(" ", 1)
        return head + "password=***" + (" " + rest[1] if len(rest) > 1 else "")
    return conninfo


class DatabasePool:
    """
    Context manager for pool lifecycle.

    Usage:
        async with DatabasePool(min_size=1, max_size=4) as pool:
            orchestrator = ConsolidationOrchestrator(pool)
    """

    def __init__(
        self,
        connection_string: Optional[str] = None,
        min_size: int = 1,
        max_size: int = 5,
        statement_timeout_ms: int = 300_000,
        lock_timeout_ms: int = 10_000,
        connect_timeout_seconds: float = 30.0,
    ):
        self.connection_string = connection_string
        self.min_size = min_size
        self.max_size = max_size
        self.statement_timeout_ms = statement_timeout_ms
        self.lock_timeout_ms = lock_timeout_ms
        self.connect_timeout_seconds = connect_timeout_seconds
        self._pool: Optional[AsyncConnectionPool] = None

    async def _configure(self, conn: AsyncConnection) -> None:
        """Apply per-session limits to a new pooled connection."""
        await conn.execute(
            "SELECT set_config('statement_timeout', %s, false), "
            "set_config('lock_timeout', %s, false)",
            (f"{self.statement_timeout_ms}ms", f"{self.lock_timeout_ms}ms"),
        )

    async def __aenter__(self) -> AsyncConnectionPool:
        conninfo = self.connection_string or get_connection_string()
        logger.info(f"Initializing connection pool: {mask_conninfo(conninfo)}")

        self._pool = AsyncConnectionPool(
            conninfo=conninfo,
            min_size=self.min_size,
            max_size=self.max_size,
            kwargs={"autocommit": True, "row_factory": dict_row},
            configure=self._configure,
            timeout=self.connect_timeout_seconds,
            open=False,  # We'll open it explicitly
        )

        try:
            await self._pool.open(wait=True, timeout=self.connect_timeout_seconds)
        except Exception as e:
            await self._pool.close()
            self._pool = None
            error = classify_db_error(e, "Cannot open connection pool")
            if isinstance(error, DatabaseConnectionError):
                raise error from e
            raise DatabaseConnectionError(f"Cannot open connection pool: {e}", cause=e) from e

        logger.info(
            f"Connection pool opened (min={self.min_size}, max={self.max_size}, "
            f"statement_timeout={self.statement_timeout_ms}ms, lock_timeout={self.lock_timeout_ms}ms)"
        )
        return self._pool

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("Connection pool closed")


__all__ = [
    "get_connection_string",
    "mask_conninfo",
    "DatabasePool",
]
