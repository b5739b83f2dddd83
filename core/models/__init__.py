# ============================================================================
# CLAUDE CONTEXT - MODELS MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Model exports
# PURPOSE: Central export point for all Pydantic models
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Models Module - Central Export Point

All models are transient value objects owned by one orchestration run.
"""

from core.models.descriptors import (
    ColumnDescriptor,
    ForeignKeyDescriptor,
    IndexDescriptor,
    TableDescriptor,
    TenantSchemaDescriptor,
)
from core.models.issues import ConsolidationIssue, PlannedOperation, OperationRecord
from core.models.reports import (
    TableSummary,
    ConsolidationReport,
    PreviewReport,
    SchemaFailure,
    BatchSummary,
)

__all__ = [
    # Descriptors
    "ColumnDescriptor",
    "ForeignKeyDescriptor",
    "IndexDescriptor",
    "TableDescriptor",
    "TenantSchemaDescriptor",
    # Issues / operations
    "ConsolidationIssue",
    "PlannedOperation",
    "OperationRecord",
    # Reports
    "TableSummary",
    "ConsolidationReport",
    "PreviewReport",
    "SchemaFailure",
    "BatchSummary",
]
