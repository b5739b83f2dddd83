# ============================================================================
# SCHEMA LOCKING SERVICE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Infrastructure - Concurrency control
# PURPOSE: PostgreSQL advisory locks so one schema is consolidated by one run
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Schema Locking Service

Uses PostgreSQL advisory locks keyed by schema name:
- Transaction-level lock when the apply phase runs in one transaction
  (released on commit/rollback)
- Session-level lock when it does not (released explicitly)

Advisory locks are:
- Fast (in-memory, no disk I/O)
- Auto-release on disconnect (crash-safe)
- Support non-blocking try_lock semantics
- 64-bit key space

Usage:
    from infrastructure.locking import LockService

    async with conn.transaction():
        if not await LockService.try_acquire_xact(conn, "tenant_ab12"):
            raise SchemaLockError(...)
"""

import hashlib
import logging

from psycopg import AsyncConnection

logger = logging.getLogger(__name__)


class LockService:
    """
    PostgreSQL advisory locks for tenant schemas.

    All methods are non-blocking: a held lock means another consolidation
    run is working on the schema, and this run should move on.
    """

    # Lock namespace prefix (hashed to int8 for pg_advisory_lock)
    SCHEMA_LOCK_PREFIX = "consolidation:schema:"

    @staticmethod
    def _hash_to_lock_id(key: str) -> int:
        """
        Convert string key to int64 for PostgreSQL advisory lock.

        Args:
            key: String key to hash

        Returns:
            Signed int64 suitable for pg_advisory_lock
        """
        # Use first 8 bytes of SHA256, interpret as signed int64
        h = hashlib.sha256(key.encode()).digest()[:8]
        return int.from_bytes(h, byteorder='big', signed=True)

    @classmethod
    def lock_id_for(cls, schema_name: str) -> int:
        return cls._hash_to_lock_id(f"{cls.SCHEMA_LOCK_PREFIX}{schema_name}")

    @staticmethod
    async def _fetch_acquired(conn: AsyncConnection, query: str, lock_id: int) -> bool:
        result = await conn.execute(query, (lock_id,))
        row = await result.fetchone()
        # Handle both dict_row and tuple row factories
        if not row:
            return False
        return bool(row["acquired"] if hasattr(row, 'keys') else row[0])

    @classmethod
    async def try_acquire_xact(cls, conn: AsyncConnection, schema_name: str) -> bool:
        """
        Try the transaction-level lock. Must be called inside a transaction.

        Returns:
            True if acquired, False if another session holds it
        """
        lock_id = cls.lock_id_for(schema_name)
        acquired = await cls._fetch_acquired(
            conn, "SELECT pg_try_advisory_xact_lock(%s) AS acquired", lock_id
        )
        if acquired:
            logger.debug(f"Acquired schema lock for {schema_name} (lock_id={lock_id})")
        else:
            logger.warning(f"Schema {schema_name} is locked by another consolidation run")
        return acquired

    @classmethod
    async def try_acquire_session(cls, conn: AsyncConnection, schema_name: str) -> bool:
        """Try the session-level lock; pair with release_session()."""
        lock_id = cls.lock_id_for(schema_name)
        acquired = await cls._fetch_acquired(
            conn, "SELECT pg_try_advisory_lock(%s) AS acquired", lock_id
        )
        if not acquired:
            logger.warning(f"Schema {schema_name} is locked by another consolidation run")
        return acquired

    @classmethod
    async def release_session(cls, conn: AsyncConnection, schema_name: str) -> None:
        """Release the session-level lock taken by try_acquire_session()."""
        lock_id = cls.lock_id_for(schema_name)
        await conn.execute("SELECT pg_advisory_unlock(%s)", (lock_id,))
        logger.debug(f"Released schema lock for {schema_name} (lock_id={lock_id})")


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = ['LockService']
