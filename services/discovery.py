# ============================================================================
# TENANT SCHEMA DISCOVERY
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Batch scope
# PURPOSE: Enumerate tenant schemas that match the naming convention
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Tenant schema discovery.

Schemas starting with 'tenant_' but failing ^tenant_[0-9a-f_]+$ are logged
and excluded rather than processed.
"""

import logging
from typing import List

from core.schema.ddl_utils import SCHEMA_NAME_PATTERN
from repositories.catalog_repo import CatalogReader

logger = logging.getLogger(__name__)

TENANT_SCHEMA_PREFIX = "tenant_"


class TenantSchemaDiscovery:

    def __init__(self, catalog: CatalogReader):
        self.catalog = catalog

    async def list_tenant_schemas(self) -> List[str]:
        """
        Returns:
            Sorted conforming tenant schema names

        Raises:
            DatabaseConnectionError / IntrospectionError from the catalog
        """
        names = await self.catalog.list_schemas(TENANT_SCHEMA_PREFIX)
        valid = []
        for name in names:
            if SCHEMA_NAME_PATTERN.fullmatch(name):
                valid.append(name)
            else:
                logger.warning(f"Skipping non-conforming schema name: {name!r}")
        valid.sort()
        logger.info(f"Discovered {len(valid)} tenant schemas")
        return valid


__all__ = ["TenantSchemaDiscovery", "TENANT_SCHEMA_PREFIX"]
