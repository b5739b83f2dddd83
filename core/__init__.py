# ============================================================================
# CLAUDE CONTEXT - CORE MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core module initialization
# PURPOSE: Export core contracts and the error taxonomy
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================

from core.contracts import (
    IssueKind,
    Severity,
    OnDeleteAction,
    RunMode,
    OperationKind,
    OperationStatus,
    RunPhase,
    SchemaStage,
)
from core.errors import (
    ConsolidationError,
    DatabaseConnectionError,
    IntrospectionError,
    TransformationError,
    IdentifierValidationError,
    CanonicalSpecError,
    SchemaLockError,
)

__all__ = [
    # Enums
    "IssueKind",
    "Severity",
    "OnDeleteAction",
    "RunMode",
    "OperationKind",
    "OperationStatus",
    "RunPhase",
    "SchemaStage",
    # Errors
    "ConsolidationError",
    "DatabaseConnectionError",
    "IntrospectionError",
    "TransformationError",
    "IdentifierValidationError",
    "CanonicalSpecError",
    "SchemaLockError",
]
