# ============================================================================
# ORCHESTRATOR MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Run coordination
# PURPOSE: Discover tenant schemas and drive the per-schema pipeline
# CREATED: 19 OCT 2026
# ============================================================================
"""
Orchestrator Module

Usage:
    from orchestrator import ConsolidationOrchestrator

    async with DatabasePool() as pool:
        orchestrator = ConsolidationOrchestrator(pool)
        summary = await orchestrator.run_all(RunMode.APPLY)
"""

from .consolidation import ConsolidationOrchestrator, schema_name_for_tenant

__all__ = ["ConsolidationOrchestrator", "schema_name_for_tenant"]
