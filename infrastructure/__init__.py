# ============================================================================
# INFRASTRUCTURE MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Infrastructure - Shared database plumbing
# PURPOSE: Repository base class and per-schema advisory locks
# CREATED: 19 OCT 2026
# ============================================================================
"""
Infrastructure module.

Provides:
- AsyncBaseRepository: pool holder with psycopg error classification
- LockService: per-schema advisory locks
"""

from infrastructure.base_repository import AsyncBaseRepository
from infrastructure.locking import LockService

__all__ = [
    "AsyncBaseRepository",
    "LockService",
]
