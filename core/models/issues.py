# ============================================================================
# CLAUDE CONTEXT - ISSUE AND OPERATION MODELS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core model - Detected drift and the operations that repair it
# PURPOSE: ConsolidationIssue, PlannedOperation, OperationRecord
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: ConsolidationIssue, PlannedOperation, OperationRecord
# DEPENDENCIES: pydantic
# ============================================================================
"""
Issue and Operation Models

ConsolidationIssue is produced by IssueDetector. The Transformer plans one or
more PlannedOperations per issue and records one OperationRecord for each
executed (or skipped) operation.

issue_key is the stable join key between the three.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from core.contracts import IssueKind, OperationKind, OperationStatus, Severity


class ConsolidationIssue(BaseModel):
    """
    One structural inconsistency in one tenant schema.

    detail disambiguates issues sharing (kind, table, column): the canonical
    table of a duplicate pair, the referenced table of a foreign key, or the
    name of an expected index.
    """
    kind: IssueKind
    table: str
    column: Optional[str] = None
    description: str
    severity: Severity
    detail: Optional[str] = None

    @computed_field
    @property
    def issue_key(self) -> str:
        key = f"{self.kind.value}:{self.table}"
        if self.column:
            key = f"{key}.{self.column}"
        if self.detail:
            key = f"{key}:{self.detail}"
        return key

    @property
    def is_blocking(self) -> bool:
        return self.severity == Severity.BLOCKING


class PlannedOperation(BaseModel):
    """
    One DDL/DML step, in execution order.

    targets are 'table' or 'table.column'; a table target overlaps every
    column of that table when dependencies are computed.
    """
    operation_id: str
    kind: OperationKind
    table: str
    column: Optional[str] = None
    description: str
    blocking: bool = False
    issue_keys: List[str] = Field(default_factory=list)
    targets: List[str] = Field(default_factory=list)
    depends_on: List[str] = Field(default_factory=list)
    params: Dict[str, Any] = Field(default_factory=dict)


class OperationRecord(BaseModel):
    """Execution outcome of one PlannedOperation."""
    operation_id: str
    kind: OperationKind
    status: OperationStatus = OperationStatus.PENDING
    blocking: bool = False
    issue_keys: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    skipped_due_to: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "ConsolidationIssue",
    "PlannedOperation",
    "OperationRecord",
]
