# ============================================================================
# TRANSFORMER TESTS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Tests - Planning and execution of repair operations
# PURPOSE: Verify ordering, idempotence, data preservation and rollback
# CREATED: 19 OCT 2026
# ============================================================================
"""
Transformer Tests

Covers:
1. Plan order and dependency edges (pure, no database access)
2. Full consolidation of a drifted schema
3. Idempotence (second run applies nothing)
4. Merge conservation (disjoint and overlapping keys)
5. Reference repointing (including orphans)
6. Dependency skipping, rollback on blocking failure
7. Statement timeout, connection loss, schema lock, cancellation
8. Non-transactional mode

Run with:
    pytest tests/test_transformer.py -v
"""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock

import psycopg
import pytest
from psycopg import errors as pg_errors

from core.contracts import IssueKind, OperationStatus, Severity
from core.errors import (
    DatabaseConnectionError,
    IdentifierValidationError,
    SchemaLockError,
    TransformationError,
)
from core.models import ConsolidationIssue
from core.schema.canonical import CanonicalSpec
from fake_db import (
    TENANT_A,
    TENANT_UUID,
    FakeColumn,
    FakeTenantDatabase,
    make_test_spec_dict,
    seed_legacy_tenant,
)
from services.detector import IssueDetector
from services.inspector import SchemaInspector
from services.transformer import Transformer, targets_overlap


# ============================================================================
# HELPERS
# ============================================================================

MERGE_ID = "merge_table:solicitantes:customers"
REPOINT_ID = "repoint_reference:tickets.solicitante_id"
DROP_ID = "drop_legacy_table:solicitantes"
CUSTOMER_TYPE_FIX_ID = "type_fix:customers.tenant_id"

CUSTOMER_B = "00000000-0000-0000-0000-00000000000b"
CUSTOMER_C = "00000000-0000-0000-0000-00000000000c"

EXPECTED_ORDER = [
    CUSTOMER_TYPE_FIX_ID,
    "type_fix:solicitantes.tenant_id",
    "add_column:customers.kind",
    MERGE_ID,
    REPOINT_ID,
    DROP_ID,
    "add_foreign_key:tickets.customer_id:customers",
    "create_index:tickets:idx_tickets_customer_id",
    "convert_jsonb:tickets.metadata",
]


def _uid(n):
    return f"00000000-0000-0000-0000-{n:012d}"


def _make_spec():
    return CanonicalSpec.from_dict(make_test_spec_dict())


def _make_legacy_db():
    db = FakeTenantDatabase()
    seed_legacy_tenant(db, TENANT_A)
    return db


def _detect(db, spec, schema=TENANT_A):
    descriptor = asyncio.run(SchemaInspector(db).inspect(schema))
    return IssueDetector().detect(descriptor, spec)


def _transform(db, spec, issues, **kwargs):
    return asyncio.run(Transformer(db, spec, **kwargs).transform(TENANT_A, issues))


def _statuses(result):
    return {rec.operation_id: rec.status for rec in result.records}


def _seed_merge_only(db, canonical_ids, legacy_ids):
    db.seed_table(
        TENANT_A, "customers",
        [("id", "uuid"), ("tenant_id", "uuid", False), ("name", "text"), ("email", "text"), ("kind", "text")],
        rows=[{"id": _uid(i), "tenant_id": TENANT_UUID, "name": f"customer {i}", "kind": "fisica"}
              for i in canonical_ids],
    )
    db.seed_table(
        TENANT_A, "solicitantes",
        [("id", "uuid"), ("tenant_id", "uuid", False), ("nome", "text"), ("email", "text")],
        rows=[{"id": _uid(i), "tenant_id": TENANT_UUID, "nome": f"legacy {i}"} for i in legacy_ids],
    )


# ============================================================================
# PLANNING
# ============================================================================

class TestPlanning:
    """plan() is pure and deterministic."""

    def test_phase_order(self):
        db, spec = _make_legacy_db(), _make_spec()
        plan = Transformer(db, spec).plan(TENANT_A, _detect(db, spec))
        assert [op.operation_id for op in plan] == EXPECTED_ORDER
        phases = [op.kind.phase for op in plan]
        assert phases == sorted(phases)

    def test_dependency_edges(self):
        db, spec = _make_legacy_db(), _make_spec()
        plan = {op.operation_id: op for op in Transformer(db, spec).plan(TENANT_A, _detect(db, spec))}

        assert plan[MERGE_ID].depends_on == [
            CUSTOMER_TYPE_FIX_ID, "type_fix:solicitantes.tenant_id", "add_column:customers.kind",
        ]
        assert plan[REPOINT_ID].depends_on == [MERGE_ID]
        assert set(plan[DROP_ID].depends_on) == {"type_fix:solicitantes.tenant_id", MERGE_ID, REPOINT_ID}
        assert set(plan["add_foreign_key:tickets.customer_id:customers"].depends_on) == {MERGE_ID, REPOINT_ID}
        assert plan["convert_jsonb:tickets.metadata"].depends_on == []

    def test_blocking_flags_follow_issues(self):
        db, spec = _make_legacy_db(), _make_spec()
        plan = {op.operation_id: op for op in Transformer(db, spec).plan(TENANT_A, _detect(db, spec))}
        assert plan[MERGE_ID].blocking and plan[DROP_ID].blocking and plan[REPOINT_ID].blocking
        assert not plan["create_index:tickets:idx_tickets_customer_id"].blocking

    def test_plan_touches_no_database(self):
        db, spec = _make_legacy_db(), _make_spec()
        issues = _detect(db, spec)
        mutator = MagicMock()
        Transformer(mutator, spec).plan(TENANT_A, issues)
        assert mutator.method_calls == []

    def test_issue_without_rule_is_not_planned(self):
        issue = ConsolidationIssue(
            kind=IssueKind.MISSING_COLUMN, table="invoices", column="total",
            description="invoices.total is missing", severity=Severity.ADVISORY,
        )
        assert Transformer(None, _make_spec()).plan(TENANT_A, [issue]) == []

    def test_plan_rejects_bad_schema_name(self):
        with pytest.raises(IdentifierValidationError):
            Transformer(None, _make_spec()).plan("public", [])

    def test_targets_overlap(self):
        assert targets_overlap("customers", "customers.email")
        assert targets_overlap("customers.email", "customers")
        assert not targets_overlap("customers.email", "customers.name")
        assert not targets_overlap("customers", "customers_archive")


# ============================================================================
# HAPPY PATH
# ============================================================================

class TestConsolidation:
    """Full apply on the drifted scenario."""

    def test_all_operations_applied(self):
        db, spec = _make_legacy_db(), _make_spec()
        result = _transform(db, spec, _detect(db, spec))

        assert result.applied_operation_ids == EXPECTED_ORDER
        assert result.errors == []
        assert result.rolled_back is False
        assert db.commits == [TENANT_A]

    def test_operation_logs_carry_component(self, caplog):
        caplog.set_level(logging.INFO, logger="services.transformer")
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))

        applied = [r for r in caplog.records if r.getMessage().startswith(f"Applied {MERGE_ID}")]
        assert applied
        assert applied[0].extra["component"] == "transformer"

    def test_resulting_schema_is_canonical(self):
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))

        assert db.table(TENANT_A, "solicitantes") is None
        assert _detect(db, spec) == []

    def test_tenant_id_is_uuid_not_null_everywhere(self):
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))

        descriptor = asyncio.run(SchemaInspector(db).inspect(TENANT_A))
        for table in descriptor.tables:
            column = table.get_column("tenant_id")
            assert column.data_type == "uuid"
            assert column.nullable is False

    def test_blank_padded_tenant_ids_converted(self):
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))
        assert {row["tenant_id"] for row in db.rows(TENANT_A, "customers")} == {TENANT_UUID}

    def test_dependent_index_survives_type_fix(self):
        db, spec = _make_legacy_db(), _make_spec()
        db.seed_index(TENANT_A, "customers", "idx_customers_tenant_email", ["tenant_id", "email"])
        result = _transform(db, spec, _detect(db, spec))

        indexes = {i.name: i.columns for i in db.table(TENANT_A, "customers").indexes}
        assert indexes["idx_customers_tenant_email"] == ["tenant_id", "email"]
        assert result.record(CUSTOMER_TYPE_FIX_ID).details["dependents_restored"] == [
            "idx_customers_tenant_email"
        ]

    def test_jsonb_conversion(self):
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))

        metadata = [row["metadata"] for row in db.rows(TENANT_A, "tickets")]
        assert metadata == [{"priority": 1}, {}, {}]
        assert db.table(TENANT_A, "tickets").columns["metadata"].default == {}

    def test_required_column_backfilled_with_default(self):
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))
        assert {row["kind"] for row in db.rows(TENANT_A, "customers")} == {"fisica"}


class TestIdempotence:
    """Second run applies nothing."""

    def test_same_issues_twice(self):
        db, spec = _make_legacy_db(), _make_spec()
        issues = _detect(db, spec)
        _transform(db, spec, issues)
        after_first = db.snapshot()

        second = _transform(db, spec, issues)

        assert second.applied_operation_ids == []
        assert set(_statuses(second).values()) == {OperationStatus.ALREADY_APPLIED}
        assert db.schemas == after_first

    def test_rerun_after_redetection_is_empty(self):
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))

        second = _transform(db, spec, _detect(db, spec))
        assert second.records == []
        assert second.applied_operation_ids == []


# ============================================================================
# MERGE / REPOINT
# ============================================================================

class TestMergeConservation:
    """Canonical row count equals distinct keys across both tables."""

    def test_disjoint_keys(self):
        db, spec = FakeTenantDatabase(), _make_spec()
        _seed_merge_only(db, canonical_ids=[1, 2], legacy_ids=[3, 4, 5])
        result = _transform(db, spec, _detect(db, spec))

        assert len(db.rows(TENANT_A, "customers")) == 5
        details = result.record(MERGE_ID).details
        assert details["rows_inserted"] == 3
        assert details["key_collisions"] == 0
        assert db.table(TENANT_A, "solicitantes") is None

    def test_overlapping_keys_keep_canonical_row(self):
        db, spec = FakeTenantDatabase(), _make_spec()
        _seed_merge_only(db, canonical_ids=[1, 2, 3], legacy_ids=[2, 3, 4])
        result = _transform(db, spec, _detect(db, spec))

        rows = {row["id"]: row for row in db.rows(TENANT_A, "customers")}
        assert len(rows) == 4
        assert rows[_uid(2)]["name"] == "customer 2"
        assert rows[_uid(4)]["name"] == "legacy 4"
        assert result.record(MERGE_ID).details["key_collisions"] == 2

    def test_conservation_failure_rolls_back(self):
        db, spec = FakeTenantDatabase(), _make_spec()
        _seed_merge_only(db, canonical_ids=[1], legacy_ids=[2])
        before = db.snapshot()
        db.copy_rows = AsyncMock(return_value=0)

        result = _transform(db, spec, _detect(db, spec))

        assert result.record(MERGE_ID).status == OperationStatus.FAILED
        assert "conservation" in result.record(MERGE_ID).error
        assert result.record(DROP_ID).status == OperationStatus.SKIPPED
        assert result.rolled_back is True
        assert db.schemas == before


class TestReferenceRepoint:
    """tickets.solicitante_id -> tickets.customer_id."""

    def test_references_preserved(self):
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))

        tickets = {row["id"]: row for row in db.rows(TENANT_A, "tickets")}
        assert tickets[_uid(101)]["customer_id"] == CUSTOMER_C
        assert tickets[_uid(102)]["customer_id"] == CUSTOMER_B
        assert tickets[_uid(103)]["customer_id"] is None
        assert "solicitante_id" not in db.table(TENANT_A, "tickets").columns

    def test_new_fk_targets_customers(self):
        db, spec = _make_legacy_db(), _make_spec()
        _transform(db, spec, _detect(db, spec))

        fks = db.table(TENANT_A, "tickets").foreign_keys
        assert [(fk.name, fk.referenced_table, fk.on_delete) for fk in fks] == [
            ("fk_tickets_customer_id", "customers", "n")
        ]

    def test_repointed_counts(self):
        db, spec = _make_legacy_db(), _make_spec()
        result = _transform(db, spec, _detect(db, spec))

        assert result.record(REPOINT_ID).details == {"rows_repointed": 2, "orphans": 0}

    def test_orphan_reference_keeps_legacy_column(self):
        db, spec = _make_legacy_db(), _make_spec()
        db.rows(TENANT_A, "tickets").append({
            "id": _uid(104), "tenant_id": TENANT_UUID, "solicitante_id": _uid(999), "metadata": None,
        })
        before = db.snapshot()
        result = _transform(db, spec, _detect(db, spec))

        repoint = result.record(REPOINT_ID)
        assert repoint.status == OperationStatus.FAILED
        assert "1 tickets rows reference solicitante_id" in repoint.error
        assert result.record(DROP_ID).skipped_due_to == REPOINT_ID
        assert result.rolled_back is True
        assert result.errors[0].operation_id == REPOINT_ID

        tickets = {row["id"]: row for row in db.rows(TENANT_A, "tickets")}
        assert tickets[_uid(104)]["solicitante_id"] == _uid(999)
        assert db.schemas == before


# ============================================================================
# FAILURE SEMANTICS
# ============================================================================

class TestFailureSemantics:
    """Skipping, rollback, timeouts."""

    def _make_bad_tenant_db(self):
        db = _make_legacy_db()
        db.rows(TENANT_A, "customers")[0]["tenant_id"] = "not-a-uuid"
        return db

    def test_dependants_skipped(self):
        db, spec = self._make_bad_tenant_db(), _make_spec()
        result = _transform(db, spec, _detect(db, spec))

        assert result.record(CUSTOMER_TYPE_FIX_ID).status == OperationStatus.FAILED
        merge = result.record(MERGE_ID)
        assert merge.status == OperationStatus.SKIPPED
        assert merge.skipped_due_to == CUSTOMER_TYPE_FIX_ID
        assert result.record(REPOINT_ID).skipped_due_to == MERGE_ID
        assert result.record(DROP_ID).skipped_due_to == MERGE_ID

    def test_blocking_failure_rolls_back_everything(self):
        db, spec = self._make_bad_tenant_db(), _make_spec()
        before = db.snapshot()
        result = _transform(db, spec, _detect(db, spec))

        assert result.rolled_back is True
        assert result.applied_operation_ids == []
        statuses = _statuses(result)
        assert statuses["convert_jsonb:tickets.metadata"] == OperationStatus.ROLLED_BACK
        assert statuses["add_column:customers.kind"] == OperationStatus.ROLLED_BACK
        assert db.schemas == before
        assert db.rollbacks == [TENANT_A]

    def test_rollback_reported_as_schema_error(self):
        db, spec = self._make_bad_tenant_db(), _make_spec()
        result = _transform(db, spec, _detect(db, spec))

        assert len(result.errors) == 1
        error = result.errors[0]
        assert isinstance(error, TransformationError)
        assert error.message.startswith("Rolled back: blocking operation")
        assert error.operation_id == CUSTOMER_TYPE_FIX_ID
        assert "invalid input syntax" in error.db_message

        assert error.operation_errors[0].operation_id == CUSTOMER_TYPE_FIX_ID
        messages = result.error_messages
        assert messages[0].startswith("Rolled back")
        assert "invalid input syntax" in messages[1]

    def test_advisory_failure_still_commits(self):
        db, spec = _make_legacy_db(), _make_spec()
        db.faults[(TENANT_A, "convert_to_jsonb")] = pg_errors.InvalidTextRepresentation(
            "invalid input syntax for type json"
        )
        result = _transform(db, spec, _detect(db, spec))

        assert result.record("convert_jsonb:tickets.metadata").status == OperationStatus.FAILED
        assert result.rolled_back is False
        assert MERGE_ID in result.applied_operation_ids
        assert db.commits == [TENANT_A]
        assert len(result.errors) == 1

    def test_statement_timeout_skips_remaining(self):
        db, spec = _make_legacy_db(), _make_spec()
        db.faults[(TENANT_A, "copy_rows")] = pg_errors.QueryCanceled(
            "canceling statement due to statement timeout"
        )
        result = _transform(db, spec, _detect(db, spec))

        assert result.timed_out is True
        assert result.record(MERGE_ID).status == OperationStatus.FAILED
        after_merge = EXPECTED_ORDER[EXPECTED_ORDER.index(MERGE_ID) + 1:]
        for op_id in after_merge:
            assert result.record(op_id).status == OperationStatus.SKIPPED
            assert result.record(op_id).skipped_due_to == MERGE_ID
        assert len(result.errors) == 1
        assert result.errors[0].operation_errors[0].error_type == "StatementTimeoutError"
        assert result.rolled_back is True

    def test_connection_loss_is_terminal(self):
        db, spec = _make_legacy_db(), _make_spec()
        before = db.snapshot()
        db.faults[(TENANT_A, "add_column")] = psycopg.OperationalError(
            "server closed the connection unexpectedly"
        )
        with pytest.raises(DatabaseConnectionError) as exc:
            _transform(db, spec, _detect(db, spec))

        assert exc.value.operation_id == CUSTOMER_TYPE_FIX_ID
        assert exc.value.schema_name == TENANT_A
        assert db.schemas == before

    def test_locked_schema(self):
        db, spec = _make_legacy_db(), _make_spec()
        db.locked.add(TENANT_A)
        with pytest.raises(SchemaLockError):
            _transform(db, spec, _detect(db, spec))

    def test_cancelled_before_first_operation(self):
        db, spec = _make_legacy_db(), _make_spec()
        before = db.snapshot()
        event = asyncio.Event()
        event.set()

        result = _transform(db, spec, _detect(db, spec), cancel_event=event)

        assert result.cancelled is True
        assert result.rolled_back is True
        assert {rec.skipped_due_to for rec in result.records} == {"cancelled"}
        assert db.schemas == before

    def test_non_transactional_keeps_independent_work(self):
        db, spec = self._make_bad_tenant_db(), _make_spec()
        result = _transform(db, spec, _detect(db, spec), use_transaction=False)

        assert result.rolled_back is False
        assert "convert_jsonb:tickets.metadata" in result.applied_operation_ids
        assert result.record(MERGE_ID).status == OperationStatus.SKIPPED
        assert db.table(TENANT_A, "tickets").columns["metadata"].data_type == "jsonb"
        assert db.commits == []

    def test_temp_column_collision_fails_operation(self):
        db, spec = _make_legacy_db(), _make_spec()
        db.table(TENANT_A, "customers").columns["tenant_id_uuid_tmp"] = FakeColumn(
            name="tenant_id_uuid_tmp", data_type="uuid",
        )
        result = _transform(db, spec, _detect(db, spec))

        record = result.record(CUSTOMER_TYPE_FIX_ID)
        assert record.status == OperationStatus.FAILED
        assert "already exists" in record.error
