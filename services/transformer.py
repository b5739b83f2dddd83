# ============================================================================
# TRANSFORMER
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Plans and executes repair operations for one schema
# PURPOSE: Ordered, idempotent, data-preserving DDL/DML per detected issue
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Transformer

Two halves:

    plan(schema_name, issues)      -> [PlannedOperation]   (pure, used by dry-run)
    transform(schema_name, issues) -> TransformResult      (executes the plan)

Phase order (OperationKind declaration order):
    type fixes -> missing columns -> table merges -> reference repoints
    -> legacy drops -> FK constraints -> indexes -> JSONB conversions

Dependencies:
    An operation depends on every earlier operation whose targets overlap
    its own ('customers' overlaps 'customers.email'). Explicit edges on top:
    repoint -> merge, drop legacy -> merge + every repoint of that pair.

Execution:
    One transaction per schema holding the schema advisory lock, one
    savepoint per operation. A failed operation is recorded and its
    dependants are skipped. A statement timeout skips everything after it.
    If any blocking operation failed or was skipped, or the run was
    cancelled, the whole transaction is rolled back and reported as one
    TransformationError carrying the per-operation failures.

A repoint never drops a legacy reference value it could not carry over:
an orphaned value fails the operation instead.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import psycopg

from core.contracts import IssueKind, OnDeleteAction, OperationKind, OperationStatus
from core.errors import (
    ConsolidationError,
    DatabaseConnectionError,
    IdentifierValidationError,
    StatementTimeoutError,
    TransformationError,
    classify_db_error,
)
from core.logging import get_logger, log_checkpoint, log_context
from core.models import ConsolidationIssue, OperationRecord, PlannedOperation
from core.schema.canonical import CanonicalSpec
from core.schema.ddl_utils import base_type, validate_schema_name
from repositories.mutation_repo import SchemaMutator
from services.detector import types_match

logger = get_logger(__name__, component="transformer")

SKIPPED_CANCELLED = "cancelled"


@dataclass
class TransformResult:
    """Outcome of one schema's apply phase."""
    schema_name: str
    plan: List[PlannedOperation] = field(default_factory=list)
    records: List[OperationRecord] = field(default_factory=list)
    applied_operation_ids: List[str] = field(default_factory=list)
    errors: List[ConsolidationError] = field(default_factory=list)
    rolled_back: bool = False
    cancelled: bool = False
    timed_out: bool = False

    @property
    def error_messages(self) -> List[str]:
        messages = []
        for error in self.errors:
            messages.append(str(error))
            if isinstance(error, TransformationError):
                messages.extend(f"  {e}" for e in error.operation_errors)
        return messages

    def record(self, operation_id: str) -> Optional[OperationRecord]:
        for rec in self.records:
            if rec.operation_id == operation_id:
                return rec
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_name": self.schema_name,
            "applied_operation_ids": self.applied_operation_ids,
            "errors": self.error_messages,
            "rolled_back": self.rolled_back,
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
            "records": [r.model_dump(mode="json") for r in self.records],
        }


class _RollbackRequested(Exception):
    """Raised inside the schema transaction to roll it back."""

    def __init__(self, reason: str, operation_id: Optional[str] = None):
        self.reason = reason
        self.operation_id = operation_id
        super().__init__(reason)


def targets_overlap(a: str, b: str) -> bool:
    """'t' overlaps 't' and 't.c'; 't.c' overlaps only 't.c' and 't'."""
    if a == b:
        return True
    return b.startswith(f"{a}.") or a.startswith(f"{b}.")


class Transformer:
    """
    Plans and applies the operations resolving one schema's issues.

    One instance per schema run; the mutator is bound to that run.
    """

    def __init__(
        self,
        mutator: Optional[SchemaMutator],
        canonical_spec: CanonicalSpec,
        use_transaction: bool = True,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.mutator = mutator
        self.spec = canonical_spec
        self.use_transaction = use_transaction
        self.cancel_event = cancel_event

    # =========================================================================
    # PLANNING
    # =========================================================================

    def plan(self, schema_name: str, issues: List[ConsolidationIssue]) -> List[PlannedOperation]:
        """
        Build the ordered operation list for a set of issues.

        Pure: no database access. Issues with no matching canonical rule
        are logged and left unplanned.
        """
        validate_schema_name(schema_name)
        operations: Dict[str, PlannedOperation] = {}

        def add(op: PlannedOperation) -> None:
            existing = operations.get(op.operation_id)
            if existing is None:
                operations[op.operation_id] = op
                return
            for key in op.issue_keys:
                if key not in existing.issue_keys:
                    existing.issue_keys.append(key)
            existing.blocking = existing.blocking or op.blocking

        for issue in issues:
            planned = self._operations_for(issue)
            if not planned:
                logger.warning(f"No canonical rule resolves issue {issue.issue_key} in {schema_name}")
            for op in planned:
                add(op)

        ordered = sorted(operations.values(), key=lambda op: op.kind.phase)
        self._link_dependencies(ordered)
        return ordered

    def _operations_for(self, issue: ConsolidationIssue) -> List[PlannedOperation]:
        blocking = issue.is_blocking
        keys = [issue.issue_key]
        table, column = issue.table, issue.column

        if issue.kind == IssueKind.TYPE_MISMATCH:
            if column == self.spec.tenant_column.column:
                target, not_null = self.spec.tenant_column.type, not self.spec.tenant_column.nullable
            else:
                ref = self.spec.reference_rule(table, column)
                if ref is None or ref.canonical_column != column:
                    return []
                target, not_null = ref.canonical_type, False
            return [PlannedOperation(
                operation_id=f"{OperationKind.TYPE_FIX.value}:{table}.{column}",
                kind=OperationKind.TYPE_FIX,
                table=table,
                column=column,
                description=f"Convert {table}.{column} to {target}" + (" NOT NULL" if not_null else ""),
                blocking=blocking,
                issue_keys=keys,
                targets=[f"{table}.{column}"],
                params={"target_type": target, "not_null": not_null},
            )]

        if issue.kind == IssueKind.MISSING_COLUMN:
            rule = self.spec.required_column(table, column)
            if rule is None:
                return []
            return [PlannedOperation(
                operation_id=f"{OperationKind.ADD_COLUMN.value}:{table}.{column}",
                kind=OperationKind.ADD_COLUMN,
                table=table,
                column=column,
                description=f"Add {table}.{column} {rule.type}",
                blocking=blocking,
                issue_keys=keys,
                targets=[f"{table}.{column}"],
                params={"type": rule.type, "default": rule.default},
            )]

        if issue.kind == IssueKind.DUPLICATE_TABLE_CONFLICT:
            rule = self.spec.duplicate_rule(table, issue.detail)
            if rule is None:
                return []
            merge_id = f"{OperationKind.MERGE_TABLE.value}:{rule.legacy_table}:{rule.canonical_table}"
            repoint_ids = [
                f"{OperationKind.REPOINT_REFERENCE.value}:{ref.table}.{ref.legacy_column}"
                for ref in rule.references
            ]
            return [
                PlannedOperation(
                    operation_id=merge_id,
                    kind=OperationKind.MERGE_TABLE,
                    table=rule.canonical_table,
                    description=f"Merge {rule.legacy_table} rows into {rule.canonical_table}",
                    blocking=blocking,
                    issue_keys=keys,
                    targets=[rule.legacy_table, rule.canonical_table],
                    params={
                        "legacy_table": rule.legacy_table,
                        "canonical_table": rule.canonical_table,
                        "key": rule.key,
                        "column_mapping": dict(rule.column_mapping),
                    },
                ),
                PlannedOperation(
                    operation_id=f"{OperationKind.DROP_LEGACY_TABLE.value}:{rule.legacy_table}",
                    kind=OperationKind.DROP_LEGACY_TABLE,
                    table=rule.legacy_table,
                    description=f"Drop legacy table {rule.legacy_table}",
                    blocking=blocking,
                    issue_keys=keys,
                    targets=[rule.legacy_table],
                    params={"explicit_depends_on": [merge_id] + repoint_ids},
                ),
            ]

        if issue.kind == IssueKind.MISSING_FOREIGN_KEY:
            ref = self.spec.reference_rule(table, column)
            if ref is not None and ref.legacy_column == column:
                dup = next(
                    r for r in self.spec.duplicate_tables if ref in r.references
                )
                merge_id = f"{OperationKind.MERGE_TABLE.value}:{dup.legacy_table}:{dup.canonical_table}"
                return [PlannedOperation(
                    operation_id=f"{OperationKind.REPOINT_REFERENCE.value}:{table}.{column}",
                    kind=OperationKind.REPOINT_REFERENCE,
                    table=table,
                    column=column,
                    description=(
                        f"Repoint {table}.{ref.legacy_column} to "
                        f"{table}.{ref.canonical_column} -> {dup.canonical_table}"
                    ),
                    blocking=blocking,
                    issue_keys=keys,
                    targets=[f"{table}.{ref.legacy_column}", f"{table}.{ref.canonical_column}"],
                    params={
                        "legacy_column": ref.legacy_column,
                        "canonical_column": ref.canonical_column,
                        "canonical_type": ref.canonical_type,
                        "canonical_table": dup.canonical_table,
                        "canonical_key": dup.key,
                        "explicit_depends_on": [merge_id],
                    },
                )]

            rule = self.spec.foreign_key(table, column)
            if rule is None:
                return []
            return [PlannedOperation(
                operation_id=f"{OperationKind.ADD_FOREIGN_KEY.value}:{table}.{column}:{rule.referenced_table}",
                kind=OperationKind.ADD_FOREIGN_KEY,
                table=table,
                column=column,
                description=(
                    f"Add {rule.constraint_name}: {table}.{column} -> "
                    f"{rule.referenced_table}.{rule.referenced_column} ON DELETE {rule.on_delete.sql_keyword}"
                ),
                blocking=blocking,
                issue_keys=keys,
                targets=[f"{table}.{column}", f"{rule.referenced_table}.{rule.referenced_column}"],
                params={
                    "referenced_table": rule.referenced_table,
                    "referenced_column": rule.referenced_column,
                    "on_delete": rule.on_delete.value,
                    "name": rule.constraint_name,
                },
            )]

        if issue.kind == IssueKind.MISSING_INDEX:
            rule = self.spec.index(issue.detail)
            if rule is None:
                return []
            return [PlannedOperation(
                operation_id=f"{OperationKind.CREATE_INDEX.value}:{table}:{rule.name}",
                kind=OperationKind.CREATE_INDEX,
                table=table,
                description=f"Create index {rule.name} on {table} ({', '.join(rule.columns)})",
                blocking=blocking,
                issue_keys=keys,
                targets=[f"{table}.{c}" for c in rule.columns],
                params={"name": rule.name, "columns": list(rule.columns), "unique": rule.unique},
            )]

        if issue.kind == IssueKind.SUBOPTIMAL_COLUMN_TYPE:
            return [PlannedOperation(
                operation_id=f"{OperationKind.CONVERT_JSONB.value}:{table}.{column}",
                kind=OperationKind.CONVERT_JSONB,
                table=table,
                column=column,
                description=f"Convert {table}.{column} from text to jsonb",
                blocking=blocking,
                issue_keys=keys,
                targets=[f"{table}.{column}"],
            )]

        return []

    @staticmethod
    def _link_dependencies(ordered: List[PlannedOperation]) -> None:
        """Fill depends_on from target overlap plus explicit edges."""
        known = {op.operation_id for op in ordered}
        for index, op in enumerate(ordered):
            depends: List[str] = []
            for earlier in ordered[:index]:
                if any(targets_overlap(a, b) for a in op.targets for b in earlier.targets):
                    depends.append(earlier.operation_id)
            for dep_id in op.params.pop("explicit_depends_on", []):
                if dep_id in known and dep_id != op.operation_id and dep_id not in depends:
                    depends.append(dep_id)
            op.depends_on = depends

    # =========================================================================
    # EXECUTION
    # =========================================================================

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    async def transform(
        self,
        schema_name: str,
        issues: List[ConsolidationIssue],
        plan: Optional[List[PlannedOperation]] = None,
    ) -> TransformResult:
        """
        Apply the operations resolving issues.

        Returns:
            TransformResult (per-operation records, applied ids, errors)

        Raises:
            IdentifierValidationError: Invalid schema name
            SchemaLockError: Another run holds the schema lock
            DatabaseConnectionError: Connection lost (terminal for the schema)
        """
        validate_schema_name(schema_name)
        if plan is None:
            plan = self.plan(schema_name, issues)

        result = TransformResult(
            schema_name=schema_name,
            plan=plan,
            records=[
                OperationRecord(
                    operation_id=op.operation_id,
                    kind=op.kind,
                    blocking=op.blocking,
                    issue_keys=list(op.issue_keys),
                )
                for op in plan
            ],
        )
        if not plan:
            return result

        records = {rec.operation_id: rec for rec in result.records}
        try:
            async with self.mutator.transaction(schema_name, atomic=self.use_transaction):
                await self._execute_plan(schema_name, plan, records, result)
                if self.use_transaction:
                    reason = self._rollback_reason(plan, records, result)
                    if reason is not None:
                        raise _RollbackRequested(*reason)
            if self.use_transaction:
                log_checkpoint("transaction_committed", {
                    "schema_name": schema_name,
                    "applied": len(result.applied_operation_ids),
                })
        except _RollbackRequested as rb:
            for rec in result.records:
                if rec.status == OperationStatus.APPLIED:
                    rec.status = OperationStatus.ROLLED_BACK
            result.applied_operation_ids = []
            result.rolled_back = True
            trigger = next((e for e in result.errors if e.operation_id == rb.operation_id), None)
            result.errors = [TransformationError(
                f"Rolled back: {rb.reason}",
                schema_name=schema_name,
                operation_id=rb.operation_id,
                cause=trigger.cause if trigger is not None else None,
                operation_errors=result.errors,
            )]
            logger.warning(f"Rolled back {schema_name}: {rb.reason}")
        except ConsolidationError:
            raise
        except psycopg.Error as e:
            raise classify_db_error(e, "Schema transaction failed", schema_name=schema_name) from e

        return result

    async def _execute_plan(
        self,
        schema_name: str,
        plan: List[PlannedOperation],
        records: Dict[str, OperationRecord],
        result: TransformResult,
    ) -> None:
        timed_out_by: Optional[str] = None

        for op in plan:
            rec = records[op.operation_id]

            if self._cancelled():
                rec.status = OperationStatus.SKIPPED
                rec.skipped_due_to = SKIPPED_CANCELLED
                result.cancelled = True
                continue

            if timed_out_by is not None:
                rec.status = OperationStatus.SKIPPED
                rec.skipped_due_to = timed_out_by
                continue

            blocker = next(
                (d for d in op.depends_on if not records[d].status.is_successful()), None
            )
            if blocker is not None:
                rec.status = OperationStatus.SKIPPED
                rec.skipped_due_to = blocker
                logger.info(f"Skipping {op.operation_id}: depends on {blocker}")
                continue

            with log_context(operation_id=op.operation_id):
                try:
                    async with self.mutator.savepoint():
                        status, details = await self._apply(schema_name, op)
                except (psycopg.Error, ConsolidationError) as e:
                    error = classify_db_error(
                        e, f"Operation {op.operation_id} failed",
                        schema_name=schema_name, operation_id=op.operation_id,
                    )
                    if error.operation_id is None:
                        error.operation_id = op.operation_id
                    if error.schema_name is None:
                        error.schema_name = schema_name
                    if isinstance(error, (DatabaseConnectionError, IdentifierValidationError)):
                        raise error from e

                    rec.status = OperationStatus.FAILED
                    rec.error = error.db_message or error.message
                    result.errors.append(error)
                    logger.error(f"Operation {op.operation_id} failed: {rec.error}")

                    if isinstance(error, StatementTimeoutError):
                        timed_out_by = op.operation_id
                        result.timed_out = True
                    continue

                rec.status = status
                rec.details = details
                if status == OperationStatus.APPLIED:
                    result.applied_operation_ids.append(op.operation_id)
                    logger.info(f"Applied {op.operation_id}" + (f" {details}" if details else ""))
                else:
                    logger.info(f"Already applied: {op.operation_id}")

    @staticmethod
    def _rollback_reason(
        plan: List[PlannedOperation],
        records: Dict[str, OperationRecord],
        result: TransformResult,
    ) -> Optional[Tuple[str, Optional[str]]]:
        if result.cancelled:
            return "run cancelled", None
        for op in plan:
            rec = records[op.operation_id]
            if op.blocking and rec.status == OperationStatus.FAILED:
                return f"blocking operation {op.operation_id} failed", op.operation_id
        for op in plan:
            rec = records[op.operation_id]
            if op.blocking and rec.status == OperationStatus.SKIPPED:
                return f"blocking operation {op.operation_id} skipped", op.operation_id
        return None

    async def _apply(self, schema: str, op: PlannedOperation) -> Tuple[OperationStatus, Dict[str, Any]]:
        handlers = {
            OperationKind.TYPE_FIX: self._apply_type_fix,
            OperationKind.ADD_COLUMN: self._apply_add_column,
            OperationKind.MERGE_TABLE: self._apply_merge,
            OperationKind.REPOINT_REFERENCE: self._apply_repoint,
            OperationKind.DROP_LEGACY_TABLE: self._apply_drop_legacy,
            OperationKind.ADD_FOREIGN_KEY: self._apply_foreign_key,
            OperationKind.CREATE_INDEX: self._apply_index,
            OperationKind.CONVERT_JSONB: self._apply_jsonb,
        }
        return await handlers[op.kind](schema, op)

    # =========================================================================
    # OPERATION HANDLERS
    # =========================================================================

    async def _columns_or_fail(self, schema: str, table: str):
        columns = await self.mutator.get_columns(schema, table)
        if not columns:
            raise TransformationError(f"Table {table} does not exist", schema_name=schema)
        return columns

    async def _apply_type_fix(self, schema: str, op: PlannedOperation):
        """
        Data-preserving type change:
        add temp -> backfill cast -> verify -> drop old -> rename -> NOT NULL
        -> recreate dependent indexes/constraints.
        """
        m = self.mutator
        table, column = op.table, op.column
        target = op.params["target_type"]
        not_null = op.params["not_null"]

        columns = await m.get_columns(schema, table)
        if not columns and any(r.legacy_table == table for r in self.spec.duplicate_tables):
            # Legacy table already merged and dropped
            return OperationStatus.ALREADY_APPLIED, {}
        if not columns:
            raise TransformationError(f"Table {table} does not exist", schema_name=schema)
        current = columns.get(column)
        if current is None:
            raise TransformationError(f"Column {table}.{column} does not exist", schema_name=schema)

        type_ok = types_match(current.data_type, target)
        if type_ok and (not not_null or not current.nullable):
            return OperationStatus.ALREADY_APPLIED, {}

        details: Dict[str, Any] = {}
        dependents = []
        if not type_ok:
            temp = f"{column}_{base_type(target)}_tmp"[:63]
            if temp in columns:
                raise TransformationError(
                    f"Temporary column {table}.{temp} already exists", schema_name=schema
                )
            await m.add_column(schema, table, temp, target)
            converted = await m.backfill_cast(schema, table, column, temp, target)
            lost = await m.count_unconverted(schema, table, column, temp)
            if lost:
                raise TransformationError(
                    f"{lost} rows of {table}.{column} did not convert to {target}",
                    schema_name=schema,
                )

            dependents = await m.capture_column_dependents(schema, table, column)
            for dep in dependents:
                if dep.kind == "constraint" and dep.table != table:
                    await m.drop_constraint(schema, dep.table, dep.name)
            await m.drop_column(schema, table, column)
            await m.rename_column(schema, table, temp, column)
            details.update({
                "from_type": current.data_type,
                "to_type": target,
                "rows_converted": converted,
            })

        if not_null:
            await m.set_not_null(schema, table, column)
            details["not_null"] = True

        if dependents:
            await m.restore_dependents(schema, dependents)
            details["dependents_restored"] = [d.name for d in dependents]

        return OperationStatus.APPLIED, details

    async def _apply_add_column(self, schema: str, op: PlannedOperation):
        columns = await self._columns_or_fail(schema, op.table)
        if op.column in columns:
            return OperationStatus.ALREADY_APPLIED, {}
        await self.mutator.add_column(
            schema, op.table, op.column, op.params["type"], default=op.params.get("default")
        )
        return OperationStatus.APPLIED, {}

    async def _apply_merge(self, schema: str, op: PlannedOperation):
        """
        Copy legacy rows into the canonical table; canonical rows win on key
        collision. Verifies canonical row count == distinct keys across both.
        """
        m = self.mutator
        legacy = op.params["legacy_table"]
        canonical = op.params["canonical_table"]
        key = op.params["key"]
        mapping: Dict[str, str] = op.params["column_mapping"]

        if not await m.table_exists(schema, legacy):
            return OperationStatus.ALREADY_APPLIED, {}

        canonical_cols = await self._columns_or_fail(schema, canonical)
        legacy_cols = await m.get_columns(schema, legacy)

        # Mapping entries whose legacy source is absent do not apply
        applicable = {src: dst for src, dst in mapping.items() if src in legacy_cols}
        legacy_key = next((src for src, dst in applicable.items() if dst == key), None)
        if legacy_key is None:
            raise TransformationError(
                f"Legacy table {legacy} has no column mapped to key {key}", schema_name=schema
            )
        missing = sorted(dst for dst in applicable.values() if dst not in canonical_cols)
        if missing:
            raise TransformationError(
                f"Canonical table {canonical} lacks mapped columns: {missing}", schema_name=schema
            )

        legacy_rows = await m.count_rows(schema, legacy)
        canonical_before = await m.count_rows(schema, canonical)
        expected = await m.count_distinct_keys(schema, [(canonical, key), (legacy, legacy_key)])

        inserted = await m.copy_rows(
            schema, legacy, canonical, key, applicable,
            {dst: canonical_cols[dst].data_type for dst in applicable.values()},
        )

        canonical_after = await m.count_rows(schema, canonical)
        if canonical_after != expected:
            raise TransformationError(
                f"Merge conservation failed: {canonical} has {canonical_after} rows, "
                f"expected {expected} distinct keys",
                schema_name=schema,
            )

        details = {
            "legacy_rows": legacy_rows,
            "canonical_rows_before": canonical_before,
            "rows_inserted": inserted,
            "key_collisions": legacy_rows - inserted,
            "canonical_rows_after": canonical_after,
        }
        if legacy_rows - inserted:
            logger.warning(
                f"{legacy_rows - inserted} {legacy} rows collided with existing {canonical} "
                f"keys; canonical rows kept"
            )
        return OperationStatus.APPLIED, details

    async def _apply_repoint(self, schema: str, op: PlannedOperation):
        """
        Fill the canonical reference column from the legacy one, then drop the
        legacy column. A legacy value matching no canonical key (an orphan)
        fails the operation; the savepoint restores the column untouched.
        """
        m = self.mutator
        table = op.table
        legacy_col = op.params["legacy_column"]
        canonical_col = op.params["canonical_column"]
        canonical_type = op.params["canonical_type"]

        columns = await self._columns_or_fail(schema, table)
        if legacy_col not in columns:
            return OperationStatus.ALREADY_APPLIED, {}

        existing = columns.get(canonical_col)
        if existing is None:
            await m.add_column(schema, table, canonical_col, canonical_type)
        elif not types_match(existing.data_type, canonical_type):
            raise TransformationError(
                f"{table}.{canonical_col} is {existing.data_type}, expected {canonical_type}",
                schema_name=schema,
            )

        updated, orphans = await m.repoint_reference(
            schema, table, legacy_col, canonical_col,
            op.params["canonical_table"], op.params["canonical_key"], canonical_type,
        )
        if orphans:
            raise TransformationError(
                f"{orphans} {table} rows reference {legacy_col} values with no "
                f"{op.params['canonical_table']} row; {legacy_col} kept",
                schema_name=schema,
                operation_id=op.operation_id,
            )

        await m.drop_column(schema, table, legacy_col)
        return OperationStatus.APPLIED, {"rows_repointed": updated, "orphans": orphans}

    async def _apply_drop_legacy(self, schema: str, op: PlannedOperation):
        if not await self.mutator.table_exists(schema, op.table):
            return OperationStatus.ALREADY_APPLIED, {}
        await self.mutator.drop_table(schema, op.table)
        return OperationStatus.APPLIED, {}

    async def _apply_foreign_key(self, schema: str, op: PlannedOperation):
        m = self.mutator
        ref_table = op.params["referenced_table"]
        columns = await self._columns_or_fail(schema, op.table)
        if op.column not in columns:
            raise TransformationError(f"Column {op.table}.{op.column} does not exist", schema_name=schema)
        if not await m.table_exists(schema, ref_table):
            raise TransformationError(f"Referenced table {ref_table} does not exist", schema_name=schema)
        if await m.foreign_key_exists(schema, op.table, op.column, ref_table):
            return OperationStatus.ALREADY_APPLIED, {}
        await m.add_foreign_key(
            schema, op.table, op.column, ref_table, op.params["referenced_column"],
            OnDeleteAction(op.params["on_delete"]), op.params["name"],
        )
        return OperationStatus.APPLIED, {}

    async def _apply_index(self, schema: str, op: PlannedOperation):
        columns = op.params["columns"]
        if await self.mutator.index_exists(schema, op.table, columns):
            return OperationStatus.ALREADY_APPLIED, {}
        await self.mutator.create_index(
            schema, op.table, columns, op.params["name"], unique=op.params.get("unique", False)
        )
        return OperationStatus.APPLIED, {}

    async def _apply_jsonb(self, schema: str, op: PlannedOperation):
        columns = await self._columns_or_fail(schema, op.table)
        current = columns.get(op.column)
        if current is None:
            raise TransformationError(f"Column {op.table}.{op.column} does not exist", schema_name=schema)
        if current.base_type == "jsonb":
            return OperationStatus.ALREADY_APPLIED, {}
        await self.mutator.convert_to_jsonb(schema, op.table, op.column)
        return OperationStatus.APPLIED, {"from_type": current.data_type}


__all__ = ["Transformer", "TransformResult", "targets_overlap"]
