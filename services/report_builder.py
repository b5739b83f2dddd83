# ============================================================================
# REPORT BUILDER
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Per-schema report assembly
# PURPOSE: ConsolidationReport (apply) and PreviewReport (dry-run)
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Report Builder

Counts in a report (tables, columns, FKs, indexes) always come from the
post-transform inspection, never from the plan.
"""

from typing import Dict, List

from core.contracts import Severity
from core.models import (
    ConsolidationIssue,
    ConsolidationReport,
    PlannedOperation,
    PreviewReport,
    TableSummary,
    TenantSchemaDescriptor,
)
from core.schema.ddl_utils import tenant_id_from_schema
from services.transformer import TransformResult
from services.validator import ValidationResult


def table_summaries(descriptor: TenantSchemaDescriptor) -> Dict[str, TableSummary]:
    return {t.name: TableSummary(column_count=len(t.columns)) for t in descriptor.tables}


class ReportBuilder:
    """Builds per-schema reports."""

    def build(
        self,
        schema_name: str,
        transform_result: TransformResult,
        validation: ValidationResult,
        detected_issues: List[ConsolidationIssue],
    ) -> ConsolidationReport:
        """
        Build the apply-mode report.

        An issue counts as resolved when every operation planned for it
        succeeded and it no longer appears after re-inspection.
        """
        descriptor = validation.descriptor
        remaining_keys = {i.issue_key for i in validation.remaining_issues}

        ops_by_issue: Dict[str, List[str]] = {}
        for rec in transform_result.records:
            for key in rec.issue_keys:
                ops_by_issue.setdefault(key, []).append(rec.operation_id)
        status = {rec.operation_id: rec.status for rec in transform_result.records}

        resolved = []
        for issue in detected_issues:
            op_ids = ops_by_issue.get(issue.issue_key)
            if not op_ids or issue.issue_key in remaining_keys:
                continue
            if all(status[op_id].is_successful() for op_id in op_ids):
                resolved.append(issue.description)

        return ConsolidationReport(
            schema_name=schema_name,
            tenant_id=tenant_id_from_schema(schema_name),
            table_summaries=table_summaries(descriptor) if descriptor else {},
            foreign_key_count=descriptor.foreign_key_count if descriptor else 0,
            index_count=descriptor.index_count if descriptor else 0,
            resolved_issues=resolved,
            validation_passed=validation.passed,
            applied_operations=list(transform_result.applied_operation_ids),
            operations=list(transform_result.records),
            errors=transform_result.error_messages,
            remaining_issues=list(validation.remaining_issues),
            missing_tables=list(validation.missing_tables),
            rolled_back=transform_result.rolled_back,
        )

    def build_preview(
        self,
        descriptor: TenantSchemaDescriptor,
        issues: List[ConsolidationIssue],
        plan: List[PlannedOperation],
        missing_tables: List[str],
    ) -> PreviewReport:
        blocking = sum(1 for i in issues if i.severity == Severity.BLOCKING)
        return PreviewReport(
            schema_name=descriptor.schema_name,
            tenant_id=descriptor.tenant_id,
            issues=list(issues),
            planned_operations=list(plan),
            table_summaries=table_summaries(descriptor),
            foreign_key_count=descriptor.foreign_key_count,
            index_count=descriptor.index_count,
            blocking_issue_count=blocking,
            advisory_issue_count=len(issues) - blocking,
            missing_tables=list(missing_tables),
        )


__all__ = ["ReportBuilder", "table_summaries"]
