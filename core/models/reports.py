# ============================================================================
# CLAUDE CONTEXT - REPORT MODELS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core model - Per-schema reports and the batch summary
# PURPOSE: Serializable run output (JSON on stdout)
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: TableSummary, ConsolidationReport, PreviewReport, SchemaFailure,
#          BatchSummary
# DEPENDENCIES: pydantic
# ============================================================================
"""
Report Models

Output artifacts of one orchestration run. Not persisted by this package;
callers serialize them with model_dump(mode="json").
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, computed_field

from core.contracts import OperationStatus, RunMode
from core.models.issues import ConsolidationIssue, OperationRecord, PlannedOperation


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TableSummary(BaseModel):
    column_count: int = 0


class ConsolidationReport(BaseModel):
    """
    Apply-mode result for one schema.

    validation_passed is the outcome of the post-transform re-inspection:
    True iff no blocking issue remains.
    """
    schema_name: str
    tenant_id: str
    mode: RunMode = RunMode.APPLY
    generated_at: datetime = Field(default_factory=_utcnow)
    table_summaries: Dict[str, TableSummary] = Field(default_factory=dict)
    foreign_key_count: int = 0
    index_count: int = 0
    resolved_issues: List[str] = Field(default_factory=list)
    validation_passed: bool = False

    applied_operations: List[str] = Field(default_factory=list)
    operations: List[OperationRecord] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    remaining_issues: List[ConsolidationIssue] = Field(default_factory=list)
    missing_tables: List[str] = Field(default_factory=list)
    rolled_back: bool = False

    @computed_field
    @property
    def already_applied_count(self) -> int:
        return sum(1 for op in self.operations if op.status == OperationStatus.ALREADY_APPLIED)


class PreviewReport(BaseModel):
    """Dry-run result for one schema: detected issues and the plan, nothing executed."""
    schema_name: str
    tenant_id: str
    mode: RunMode = RunMode.DRY_RUN
    generated_at: datetime = Field(default_factory=_utcnow)
    issues: List[ConsolidationIssue] = Field(default_factory=list)
    planned_operations: List[PlannedOperation] = Field(default_factory=list)
    table_summaries: Dict[str, TableSummary] = Field(default_factory=dict)
    foreign_key_count: int = 0
    index_count: int = 0
    blocking_issue_count: int = 0
    advisory_issue_count: int = 0
    missing_tables: List[str] = Field(default_factory=list)


class SchemaFailure(BaseModel):
    """A schema whose pipeline aborted."""
    schema_name: str
    error_type: str
    message: str
    operation_id: Optional[str] = None
    db_message: Optional[str] = None


class BatchSummary(BaseModel):
    """Aggregate of one run across all processed schemas."""
    run_id: str
    mode: RunMode
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None
    schemas_total: int = 0
    reports: List[ConsolidationReport] = Field(default_factory=list)
    previews: List[PreviewReport] = Field(default_factory=list)
    failed: List[SchemaFailure] = Field(default_factory=list)
    not_started: List[str] = Field(default_factory=list)
    cancelled: bool = False

    @computed_field
    @property
    def all_passed(self) -> bool:
        """
        True when every schema finished without failure.

        Apply mode additionally requires every report to have validated.
        """
        if self.failed or self.not_started or self.cancelled:
            return False
        if self.mode == RunMode.APPLY:
            return all(r.validation_passed for r in self.reports)
        return True


__all__ = [
    "TableSummary",
    "ConsolidationReport",
    "PreviewReport",
    "SchemaFailure",
    "BatchSummary",
]
