# ============================================================================
# CLAUDE CONTEXT - BASE CONTRACTS & ENUMS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Foundation - Core enums for the consolidation pipeline
# PURPOSE: Issue kinds, severities, run modes, operation and run states
# LAST_REVIEWED: 19 OCT 2026
# EXPORTS: IssueKind, Severity, RunMode, OnDeleteAction, OperationKind,
#          OperationStatus, RunPhase, SchemaStage, *_TRANSITIONS
# DEPENDENCIES: enum
# ============================================================================
"""
Base contracts for the schema consolidation engine.

These enums cross every boundary of the pipeline:
- SQL (catalog values such as pg_constraint.confdeltype)
- Python (detector, transformer, orchestrator)
- JSON (CLI output)

Enum .value is what gets serialized, never str().
"""

from enum import Enum
from typing import Dict, Set


# ============================================================================
# ISSUE ENUMS
# ============================================================================

class IssueKind(str, Enum):
    """Categories of structural drift the detector can report."""
    TYPE_MISMATCH = "TypeMismatch"
    DUPLICATE_TABLE_CONFLICT = "DuplicateTableConflict"
    MISSING_COLUMN = "MissingColumn"
    MISSING_FOREIGN_KEY = "MissingForeignKey"
    MISSING_INDEX = "MissingIndex"
    SUBOPTIMAL_COLUMN_TYPE = "SuboptimalColumnType"


class Severity(str, Enum):
    """
    Issue severity.

    BLOCKING issues fail validation. ADVISORY issues are reported but a
    schema carrying only advisory issues still validates.
    """
    BLOCKING = "blocking"
    ADVISORY = "advisory"


class OnDeleteAction(str, Enum):
    """Foreign key ON DELETE behaviour."""
    CASCADE = "cascade"
    SET_NULL = "set_null"
    RESTRICT = "restrict"
    NO_ACTION = "no_action"
    SET_DEFAULT = "set_default"

    @classmethod
    def from_catalog(cls, code: str) -> "OnDeleteAction":
        """Map pg_constraint.confdeltype to an action."""
        return _CONFDELTYPE_MAP.get(code, cls.NO_ACTION)

    @property
    def sql_keyword(self) -> str:
        """Keyword sequence used in ON DELETE clauses."""
        return self.value.replace("_", " ").upper()


_CONFDELTYPE_MAP = {
    "a": OnDeleteAction.NO_ACTION,
    "r": OnDeleteAction.RESTRICT,
    "c": OnDeleteAction.CASCADE,
    "n": OnDeleteAction.SET_NULL,
    "d": OnDeleteAction.SET_DEFAULT,
}


# ============================================================================
# RUN ENUMS
# ============================================================================

class RunMode(str, Enum):
    """Orchestrator run mode."""
    DRY_RUN = "dry_run"    # Inspect + detect + plan, never mutates
    APPLY = "apply"        # Full pipeline with transformation


class OperationKind(str, Enum):
    """
    Transformer operation kinds.

    Declaration order is the execution phase order within one schema.
    """
    TYPE_FIX = "type_fix"
    ADD_COLUMN = "add_column"
    MERGE_TABLE = "merge_table"
    REPOINT_REFERENCE = "repoint_reference"
    DROP_LEGACY_TABLE = "drop_legacy_table"
    ADD_FOREIGN_KEY = "add_foreign_key"
    CREATE_INDEX = "create_index"
    CONVERT_JSONB = "convert_jsonb"

    @property
    def phase(self) -> int:
        """Zero-based execution phase."""
        return list(OperationKind).index(self)


class OperationStatus(str, Enum):
    """
    Outcome of one transformer operation.

    State transitions:
        PENDING -> APPLIED
                -> ALREADY_APPLIED (pre-check found nothing to do)
                -> FAILED
                -> SKIPPED (dependency failed, timeout, or cancellation)
                -> ROLLED_BACK (applied, then undone by schema rollback)
    """
    PENDING = "pending"
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    FAILED = "failed"
    SKIPPED = "skipped"
    ROLLED_BACK = "rolled_back"

    def is_successful(self) -> bool:
        """Check if the operation left the schema in the desired state."""
        return self in (OperationStatus.APPLIED, OperationStatus.ALREADY_APPLIED)


class RunPhase(str, Enum):
    """
    Orchestrator run state machine (one per run).

    State transitions:
        IDLE -> DISCOVERING -> PROCESSING -> SUMMARIZING -> DONE
        IDLE -> PROCESSING (single tenant, no discovery)
    """
    IDLE = "idle"
    DISCOVERING = "discovering"
    PROCESSING = "processing"
    SUMMARIZING = "summarizing"
    DONE = "done"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self == RunPhase.DONE


class SchemaStage(str, Enum):
    """
    Per-schema pipeline state machine.

    State transitions:
        PENDING -> INSPECTING -> DETECTING -> DRY_RUN_STOP
                                           -> TRANSFORMING -> VALIDATING -> REPORTING -> COMPLETED
        any non-terminal stage -> FAILED
        PENDING / TRANSFORMING -> CANCELLED
    """
    PENDING = "pending"
    INSPECTING = "inspecting"
    DETECTING = "detecting"
    DRY_RUN_STOP = "dry_run_stop"
    TRANSFORMING = "transforming"
    VALIDATING = "validating"
    REPORTING = "reporting"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def is_terminal(self) -> bool:
        """Check if this is a terminal state."""
        return self in (
            SchemaStage.DRY_RUN_STOP,
            SchemaStage.COMPLETED,
            SchemaStage.FAILED,
            SchemaStage.CANCELLED,
        )


RUN_PHASE_TRANSITIONS: Dict[RunPhase, Set[RunPhase]] = {
    RunPhase.IDLE: {RunPhase.DISCOVERING, RunPhase.PROCESSING},
    RunPhase.DISCOVERING: {RunPhase.PROCESSING, RunPhase.SUMMARIZING},
    RunPhase.PROCESSING: {RunPhase.SUMMARIZING},
    RunPhase.SUMMARIZING: {RunPhase.DONE},
    RunPhase.DONE: set(),  # Terminal
}

SCHEMA_STAGE_TRANSITIONS: Dict[SchemaStage, Set[SchemaStage]] = {
    SchemaStage.PENDING: {SchemaStage.INSPECTING, SchemaStage.FAILED, SchemaStage.CANCELLED},
    SchemaStage.INSPECTING: {SchemaStage.DETECTING, SchemaStage.FAILED},
    SchemaStage.DETECTING: {SchemaStage.DRY_RUN_STOP, SchemaStage.TRANSFORMING, SchemaStage.FAILED},
    SchemaStage.TRANSFORMING: {SchemaStage.VALIDATING, SchemaStage.FAILED, SchemaStage.CANCELLED},
    SchemaStage.VALIDATING: {SchemaStage.REPORTING, SchemaStage.FAILED},
    SchemaStage.REPORTING: {SchemaStage.COMPLETED, SchemaStage.FAILED},
    SchemaStage.DRY_RUN_STOP: set(),  # Terminal
    SchemaStage.COMPLETED: set(),     # Terminal
    SchemaStage.FAILED: set(),        # Terminal
    SchemaStage.CANCELLED: set(),     # Terminal
}


__all__ = [
    "IssueKind",
    "Severity",
    "OnDeleteAction",
    "RunMode",
    "OperationKind",
    "OperationStatus",
    "RunPhase",
    "SchemaStage",
    "RUN_PHASE_TRANSITIONS",
    "SCHEMA_STAGE_TRANSITIONS",
]
