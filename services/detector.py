# ============================================================================
# ISSUE DETECTOR
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Structural drift detection
# PURPOSE: Diff a TenantSchemaDescriptor against the canonical spec
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Issue Detector

Pure function of (descriptor, canonical spec): no I/O, no state.

Rules:
    1. tenant column must be uuid and non-null            -> blocking TypeMismatch
    2. legacy + canonical table both present              -> blocking DuplicateTableConflict
    3. child column still pointing at the legacy table    -> blocking MissingForeignKey
       (canonical reference column with wrong type        -> blocking TypeMismatch)
    4. declared FKs / indexes absent                      -> advisory MissingForeignKey / MissingIndex
    5. declared structured columns typed text             -> advisory SuboptimalColumnType
    6. declared required columns absent                   -> MissingColumn (rule severity)

Only what the canonical spec declares is checked. Tables and columns it does not
mention are never flagged, so tenant-specific extensions stay untouched.
"""

import logging
from typing import List, Set, Tuple

from core.contracts import IssueKind, Severity
from core.models import ConsolidationIssue, TenantSchemaDescriptor
from core.schema.canonical import CanonicalSpec
from core.schema.ddl_utils import base_type, normalize_pg_type

logger = logging.getLogger(__name__)


def types_match(actual: str, expected: str) -> bool:
    """
    Compare normalised types.

    An expected type without modifier matches any modifier:
    'varchar' matches 'varchar(50)', 'varchar(50)' does not match 'varchar(20)'.
    """
    actual = normalize_pg_type(actual)
    expected = normalize_pg_type(expected)
    if actual == expected:
        return True
    return "(" not in expected and base_type(actual) == expected


def missing_tables(descriptor: TenantSchemaDescriptor, spec: CanonicalSpec) -> List[str]:
    """Required tables absent from the schema (informational)."""
    return [t for t in spec.required_tables if not descriptor.has_table(t)]


class IssueDetector:
    """Compares an inspected schema with the canonical spec."""

    def detect(
        self,
        descriptor: TenantSchemaDescriptor,
        canonical_spec: CanonicalSpec,
    ) -> List[ConsolidationIssue]:
        """
        Detect structural drift.

        Args:
            descriptor: Freshly inspected schema
            canonical_spec: Target structure

        Returns:
            Issues, grouped by rule
        """
        issues: List[ConsolidationIssue] = []
        issues.extend(self._tenant_column_issues(descriptor, canonical_spec))
        issues.extend(self._duplicate_table_issues(descriptor, canonical_spec))
        issues.extend(self._legacy_reference_issues(descriptor, canonical_spec))
        issues.extend(self._missing_column_issues(descriptor, canonical_spec))

        planned = self._columns_to_be_created(descriptor, canonical_spec)
        issues.extend(self._missing_foreign_key_issues(descriptor, canonical_spec, planned))
        issues.extend(self._missing_index_issues(descriptor, canonical_spec, planned))
        issues.extend(self._suboptimal_type_issues(descriptor, canonical_spec))

        blocking = sum(1 for i in issues if i.is_blocking)
        logger.debug(
            f"Detected {len(issues)} issues in {descriptor.schema_name} "
            f"({blocking} blocking, {len(issues) - blocking} advisory)"
        )
        return issues

    # =========================================================================
    # RULE 1: TENANT COLUMN TYPE
    # =========================================================================

    def _tenant_column_issues(self, descriptor, spec) -> List[ConsolidationIssue]:
        rule = spec.tenant_column
        issues = []
        for table in descriptor.tables:
            column = table.get_column(rule.column)
            if column is None:
                continue

            problems = []
            if not types_match(column.data_type, rule.type):
                problems.append(f"typed {column.data_type}, expected {rule.type}")
            if column.nullable and not rule.nullable:
                problems.append("nullable, expected NOT NULL")
            if not problems:
                continue

            issues.append(ConsolidationIssue(
                kind=IssueKind.TYPE_MISMATCH,
                table=table.name,
                column=rule.column,
                description=f"{table.name}.{rule.column} is {' and '.join(problems)}",
                severity=Severity.BLOCKING,
            ))
        return issues

    # =========================================================================
    # RULE 2: DUPLICATE TABLES
    # =========================================================================

    def _duplicate_table_issues(self, descriptor, spec) -> List[ConsolidationIssue]:
        issues = []
        for rule in spec.duplicate_tables:
            if descriptor.has_table(rule.legacy_table) and descriptor.has_table(rule.canonical_table):
                issues.append(ConsolidationIssue(
                    kind=IssueKind.DUPLICATE_TABLE_CONFLICT,
                    table=rule.legacy_table,
                    description=(
                        f"Legacy table {rule.legacy_table} coexists with canonical "
                        f"table {rule.canonical_table}"
                    ),
                    severity=Severity.BLOCKING,
                    detail=rule.canonical_table,
                ))
        return issues

    # =========================================================================
    # RULE 3: REFERENCES TO LEGACY TABLES
    # =========================================================================

    def _legacy_reference_issues(self, descriptor, spec) -> List[ConsolidationIssue]:
        issues = []
        for rule in spec.duplicate_tables:
            if not descriptor.has_table(rule.canonical_table):
                continue
            for ref in rule.references:
                child = descriptor.get_table(ref.table)
                if child is None:
                    continue

                if child.has_column(ref.legacy_column):
                    issues.append(ConsolidationIssue(
                        kind=IssueKind.MISSING_FOREIGN_KEY,
                        table=ref.table,
                        column=ref.legacy_column,
                        description=(
                            f"{ref.table}.{ref.legacy_column} references legacy table "
                            f"{rule.legacy_table}; expected {ref.table}.{ref.canonical_column} "
                            f"referencing {rule.canonical_table}"
                        ),
                        severity=Severity.BLOCKING,
                        detail=rule.canonical_table,
                    ))

                canonical = child.get_column(ref.canonical_column)
                if canonical is not None and not types_match(canonical.data_type, ref.canonical_type):
                    issues.append(ConsolidationIssue(
                        kind=IssueKind.TYPE_MISMATCH,
                        table=ref.table,
                        column=ref.canonical_column,
                        description=(
                            f"{ref.table}.{ref.canonical_column} is typed {canonical.data_type}, "
                            f"expected {ref.canonical_type}"
                        ),
                        severity=Severity.BLOCKING,
                    ))
        return issues

    # =========================================================================
    # RULE 6: REQUIRED COLUMNS
    # =========================================================================

    def _missing_column_issues(self, descriptor, spec) -> List[ConsolidationIssue]:
        issues = []
        for rule in spec.required_columns:
            table = descriptor.get_table(rule.table)
            if table is None or table.has_column(rule.column):
                continue
            issues.append(ConsolidationIssue(
                kind=IssueKind.MISSING_COLUMN,
                table=rule.table,
                column=rule.column,
                description=f"{rule.table}.{rule.column} ({rule.type}) is missing",
                severity=rule.severity,
            ))
        return issues

    def _columns_to_be_created(self, descriptor, spec) -> Set[Tuple[str, str]]:
        """(table, column) pairs an earlier planned operation will add."""
        planned = set()
        for rule in spec.required_columns:
            table = descriptor.get_table(rule.table)
            if table is not None and not table.has_column(rule.column):
                planned.add((rule.table, rule.column))
        for rule in spec.duplicate_tables:
            if not descriptor.has_table(rule.canonical_table):
                continue
            for ref in rule.references:
                child = descriptor.get_table(ref.table)
                if child is not None and child.has_column(ref.legacy_column):
                    planned.add((ref.table, ref.canonical_column))
        return planned

    def _column_available(self, descriptor, planned, table_name: str, column: str) -> bool:
        table = descriptor.get_table(table_name)
        if table is None:
            return False
        return table.has_column(column) or (table_name, column) in planned

    # =========================================================================
    # RULE 4: FOREIGN KEYS AND INDEXES
    # =========================================================================

    def _missing_foreign_key_issues(self, descriptor, spec, planned) -> List[ConsolidationIssue]:
        issues = []
        for rule in spec.foreign_keys:
            if not self._column_available(descriptor, planned, rule.table, rule.column):
                continue
            if not descriptor.has_table(rule.referenced_table):
                continue
            if descriptor.get_table(rule.table).has_foreign_key(rule.column, rule.referenced_table):
                continue
            issues.append(ConsolidationIssue(
                kind=IssueKind.MISSING_FOREIGN_KEY,
                table=rule.table,
                column=rule.column,
                description=(
                    f"Foreign key {rule.table}.{rule.column} -> "
                    f"{rule.referenced_table}.{rule.referenced_column} is missing"
                ),
                severity=Severity.ADVISORY,
                detail=rule.referenced_table,
            ))
        return issues

    def _missing_index_issues(self, descriptor, spec, planned) -> List[ConsolidationIssue]:
        issues = []
        for rule in spec.indexes:
            if not all(self._column_available(descriptor, planned, rule.table, c) for c in rule.columns):
                continue
            if descriptor.get_table(rule.table).has_index_on(rule.columns):
                continue
            issues.append(ConsolidationIssue(
                kind=IssueKind.MISSING_INDEX,
                table=rule.table,
                description=f"Index on {rule.table} ({', '.join(rule.columns)}) is missing",
                severity=Severity.ADVISORY,
                detail=rule.name,
            ))
        return issues

    # =========================================================================
    # RULE 5: STRUCTURED DATA IN TEXT COLUMNS
    # =========================================================================

    def _suboptimal_type_issues(self, descriptor, spec) -> List[ConsolidationIssue]:
        issues = []
        for rule in spec.jsonb_columns:
            column = descriptor.get_column(rule.table, rule.column)
            if column is None or column.base_type != "text":
                continue
            issues.append(ConsolidationIssue(
                kind=IssueKind.SUBOPTIMAL_COLUMN_TYPE,
                table=rule.table,
                column=rule.column,
                description=f"{rule.table}.{rule.column} holds structured data as text, expected jsonb",
                severity=Severity.ADVISORY,
            ))
        return issues


__all__ = ["IssueDetector", "types_match", "missing_tables"]
