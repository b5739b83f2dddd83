# ============================================================================
# SERVICES MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Pipeline stages
# PURPOSE: Inspect, detect, transform, validate, report
# CREATED: 19 OCT 2026
# ============================================================================
"""
Services Module

One class per pipeline stage. Services depend on the CatalogReader and
SchemaMutator contracts, never on a pool directly.

Usage:
    from services import SchemaInspector, IssueDetector

    descriptor = await SchemaInspector(catalog).inspect("tenant_ab12")
    issues = IssueDetector().detect(descriptor, spec)
"""

from .inspector import SchemaInspector
from .detector import IssueDetector, missing_tables, types_match
from .transformer import Transformer, TransformResult
from .validator import ConsistencyValidator, ValidationResult
from .report_builder import ReportBuilder
from .discovery import TenantSchemaDiscovery

__all__ = [
    "SchemaInspector",
    "IssueDetector",
    "missing_tables",
    "types_match",
    "Transformer",
    "TransformResult",
    "ConsistencyValidator",
    "ValidationResult",
    "ReportBuilder",
    "TenantSchemaDiscovery",
]
