# ============================================================================
# REPOSITORIES MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Database access layer
# PURPOSE: Catalog reads and schema mutations against tenant schemas
# CREATED: 19 OCT 2026
# ============================================================================
"""
Repositories Module

Database access for the consolidation pipeline.
Uses psycopg3 async with connection pooling.

Usage:
    from repositories import DatabasePool, CatalogRepository

    async with DatabasePool() as pool:
        catalog = CatalogRepository(pool)
        schemas = await catalog.list_schemas("tenant_")
"""

from .database import DatabasePool, get_connection_string, mask_conninfo
from .catalog_repo import CatalogReader, CatalogRepository
from .mutation_repo import ColumnDependent, MutationRepository, SchemaMutator

__all__ = [
    "DatabasePool",
    "get_connection_string",
    "mask_conninfo",
    "CatalogReader",
    "CatalogRepository",
    "ColumnDependent",
    "MutationRepository",
    "SchemaMutator",
]
