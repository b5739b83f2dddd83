# ============================================================================
# ORCHESTRATOR TESTS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Tests - Run coordination over the in-memory backend
# PURPOSE: Verify dry-run purity, fault isolation and cancellation
# CREATED: 19 OCT 2026
# ============================================================================
"""
Orchestrator Tests

Covers:
1. Tenant id -> schema name normalisation
2. Dry-run: no mutation, previews for every schema
3. Apply batch: sequential, one failure does not stop the others
4. Cancellation between operations
5. Discovery filtering and discovery failure
6. Single-tenant runs, identifier rejection before database access

Run with:
    pytest tests/test_orchestrator.py -v
"""

import asyncio
from unittest.mock import MagicMock

import psycopg
import pytest

from core.config import ConsolidationDefaults
from core.contracts import RunPhase, SchemaStage
from core.errors import (
    DatabaseConnectionError,
    IdentifierValidationError,
    IntrospectionError,
    SchemaLockError,
)
from core.models import BatchSummary, ConsolidationReport, PreviewReport
from core.schema.canonical import CanonicalSpec
from fake_db import (
    TENANT_A,
    TENANT_B,
    TENANT_C,
    FakeTenantDatabase,
    make_test_spec_dict,
    seed_canonical_tenant,
    seed_legacy_tenant,
)
from orchestrator import ConsolidationOrchestrator, schema_name_for_tenant
from services.inspector import SchemaInspector


# ============================================================================
# HELPERS
# ============================================================================

CATALOG_METHODS = {
    "list_schemas", "schema_exists", "list_tables", "list_columns",
    "list_foreign_keys", "list_indexes",
}


def _make_db():
    """A legacy, B already canonical, C legacy."""
    db = FakeTenantDatabase()
    seed_legacy_tenant(db, TENANT_A)
    seed_canonical_tenant(db, TENANT_B)
    seed_legacy_tenant(db, TENANT_C)
    return db


def _make_orchestrator(db, mutator_factory=None, config=None):
    return ConsolidationOrchestrator(
        canonical_spec=CanonicalSpec.from_dict(make_test_spec_dict()),
        config=config or ConsolidationDefaults(),
        catalog=db,
        mutator_factory=mutator_factory or (lambda: db),
    )


def _run(coro):
    return asyncio.run(coro)


# ============================================================================
# NAMING
# ============================================================================

class TestSchemaNameForTenant:
    """Tenant id normalisation."""

    def test_uuid_is_lowercased_and_prefixed(self):
        assert schema_name_for_tenant("3F0E2A1C-9B7D") == "tenant_3f0e2a1c_9b7d"

    def test_schema_name_passes_through(self):
        assert schema_name_for_tenant("tenant_aaaa0001") == "tenant_aaaa0001"

    def test_whitespace_stripped(self):
        assert schema_name_for_tenant("  aaaa0001 ") == "tenant_aaaa0001"

    @pytest.mark.parametrize("bad", ["aaaa; drop schema public", "../etc", "xyz", ""])
    def test_rejected(self, bad):
        with pytest.raises(IdentifierValidationError):
            schema_name_for_tenant(bad)


class TestConstruction:

    def test_requires_pool_or_backends(self):
        with pytest.raises(ValueError):
            ConsolidationOrchestrator(catalog=FakeTenantDatabase())


# ============================================================================
# DRY RUN
# ============================================================================

class TestDryRun:
    """Dry-run reads the catalog only."""

    def test_batch_changes_nothing(self):
        db = _make_db()
        before = db.snapshot()
        factory = MagicMock()
        orchestrator = _make_orchestrator(db, mutator_factory=factory)

        summary = _run(orchestrator.dry_run())

        assert isinstance(summary, BatchSummary)
        assert [p.schema_name for p in summary.previews] == [TENANT_A, TENANT_B, TENANT_C]
        assert db.schemas == before
        factory.assert_not_called()
        assert {method for _, method in db.calls} <= CATALOG_METHODS
        assert db.commits == [] and db.rollbacks == []

    def test_batch_summary(self):
        summary = _run(_make_orchestrator(_make_db()).dry_run())

        assert summary.schemas_total == 3
        assert summary.failed == []
        assert summary.all_passed is True
        previews = {p.schema_name: p for p in summary.previews}
        assert previews[TENANT_B].issues == []
        assert previews[TENANT_B].planned_operations == []
        assert len(previews[TENANT_A].planned_operations) == 9

    def test_single_tenant_preview(self):
        preview = _run(_make_orchestrator(_make_db()).dry_run("aaaa0001"))

        assert isinstance(preview, PreviewReport)
        assert preview.schema_name == TENANT_A
        assert preview.tenant_id == "aaaa0001"
        assert preview.blocking_issue_count == 4
        assert preview.advisory_issue_count == 4
        assert preview.missing_tables == []
        assert set(preview.table_summaries) == {"customers", "solicitantes", "tickets"}

    def test_failure_is_isolated(self):
        db = _make_db()
        db.faults[(TENANT_B, "list_columns")] = DatabaseConnectionError(
            "Catalog query failed: connection lost", schema_name=TENANT_B
        )
        summary = _run(_make_orchestrator(db).dry_run())

        assert [p.schema_name for p in summary.previews] == [TENANT_A, TENANT_C]
        assert [(f.schema_name, f.error_type) for f in summary.failed] == [
            (TENANT_B, "DatabaseConnectionError")
        ]
        assert summary.all_passed is False

    def test_single_worker(self):
        config = ConsolidationDefaults().with_overrides(dry_run_concurrency=1)
        summary = _run(_make_orchestrator(_make_db(), config=config).dry_run())
        assert len(summary.previews) == 3

    def test_cancelled_before_start(self):
        orchestrator = _make_orchestrator(_make_db())
        orchestrator.cancel()
        summary = _run(orchestrator.dry_run())

        assert summary.previews == []
        assert summary.not_started == [TENANT_A, TENANT_B, TENANT_C]
        assert summary.cancelled is True


# ============================================================================
# APPLY BATCH
# ============================================================================

class TestApplyBatch:
    """run_all in apply mode."""

    def test_all_schemas_consolidated(self):
        db = _make_db()
        orchestrator = _make_orchestrator(db)
        summary = _run(orchestrator.run_all())

        assert summary.all_passed is True
        assert [r.schema_name for r in summary.reports] == [TENANT_A, TENANT_B, TENANT_C]
        assert all(r.validation_passed for r in summary.reports)
        assert orchestrator.phase == RunPhase.DONE
        assert set(orchestrator.stages.values()) == {SchemaStage.COMPLETED}

    def test_canonical_schema_untouched(self):
        db = _make_db()
        before = db.snapshot()
        summary = _run(_make_orchestrator(db).run_all())

        report_b = summary.reports[1]
        assert report_b.applied_operations == []
        assert report_b.operations == []
        assert db.schemas[TENANT_B] == before[TENANT_B]

    def test_failed_schema_does_not_stop_others(self):
        db = _make_db()
        before = db.snapshot()
        seed_legacy_tenant(db, TENANT_B)
        before_b = db.snapshot()[TENANT_B]
        db.faults[(TENANT_B, "copy_rows")] = psycopg.OperationalError(
            "server closed the connection unexpectedly"
        )
        orchestrator = _make_orchestrator(db)

        summary = _run(orchestrator.run_all())

        assert [r.schema_name for r in summary.reports] == [TENANT_A, TENANT_C]
        assert all(r.validation_passed for r in summary.reports)
        failure = summary.failed[0]
        assert failure.schema_name == TENANT_B
        assert failure.error_type == "DatabaseConnectionError"
        assert failure.operation_id == "merge_table:solicitantes:customers"
        assert "server closed" in failure.db_message
        assert db.schemas[TENANT_B] == before_b
        assert db.schemas[TENANT_A] != before[TENANT_A]
        assert orchestrator.stages[TENANT_B] == SchemaStage.FAILED
        assert summary.all_passed is False

    def test_locked_schema_reported(self):
        db = _make_db()
        db.locked.add(TENANT_C)
        summary = _run(_make_orchestrator(db).run_all())

        assert [f.error_type for f in summary.failed] == ["SchemaLockError"]
        assert len(summary.reports) == 2

    def test_report_counts_come_from_reinspection(self):
        summary = _run(_make_orchestrator(_make_db()).run_all())
        report = summary.reports[0]

        assert set(report.table_summaries) == {"customers", "tickets"}
        assert report.table_summaries["customers"].column_count == 5
        assert report.foreign_key_count == 1
        assert report.index_count == 3
        assert len(report.resolved_issues) == 8
        assert report.remaining_issues == []


class TestCancellation:
    """cancel() lets the in-flight operation finish, then stops."""

    def test_cancel_during_first_schema(self):
        db = _make_db()
        before = db.snapshot()
        orchestrator = _make_orchestrator(db)
        db.hooks[(TENANT_A, "add_column")] = orchestrator.cancel

        summary = _run(orchestrator.run_all())

        assert summary.cancelled is True
        assert summary.not_started == [TENANT_B, TENANT_C]
        report = summary.reports[0]
        assert report.schema_name == TENANT_A
        assert report.rolled_back is True
        assert report.validation_passed is False
        assert db.schemas == before
        assert orchestrator.stages[TENANT_B] == SchemaStage.CANCELLED
        assert summary.all_passed is False

    def test_no_transaction_opened_after_cancel(self):
        db = _make_db()
        orchestrator = _make_orchestrator(db)
        db.hooks[(TENANT_A, "add_column")] = orchestrator.cancel

        _run(orchestrator.run_all())

        assert (TENANT_B, "transaction") not in db.calls
        assert (TENANT_C, "transaction") not in db.calls


# ============================================================================
# DISCOVERY
# ============================================================================

class TestDiscovery:

    def test_non_conforming_schemas_skipped(self):
        db = FakeTenantDatabase()
        seed_legacy_tenant(db, TENANT_A)
        seed_canonical_tenant(db, "tenant_XYZ")
        seed_canonical_tenant(db, "tenant_zz")
        seed_canonical_tenant(db, "public")
        seed_canonical_tenant(db, "tenant_ab\n")

        summary = _run(_make_orchestrator(db).run_all())

        assert summary.schemas_total == 1
        assert [r.schema_name for r in summary.reports] == [TENANT_A]

    def test_discovery_failure_aborts_run(self):
        db = _make_db()
        db.faults[("*", "list_schemas")] = DatabaseConnectionError("Schema discovery failed: connection lost")
        orchestrator = _make_orchestrator(db)

        with pytest.raises(DatabaseConnectionError):
            _run(orchestrator.run_all())

        assert db.calls == [("*", "list_schemas")]
        assert orchestrator.phase == RunPhase.DISCOVERING

    def test_no_tenants(self):
        summary = _run(_make_orchestrator(FakeTenantDatabase()).run_all())
        assert summary.schemas_total == 0
        assert summary.reports == []
        assert summary.all_passed is True


# ============================================================================
# SINGLE TENANT
# ============================================================================

class TestRunOne:

    def test_apply_returns_report(self):
        db = _make_db()
        report = _run(_make_orchestrator(db).run_one("AAAA0001"))

        assert isinstance(report, ConsolidationReport)
        assert report.schema_name == TENANT_A
        assert report.validation_passed is True
        assert db.table(TENANT_A, "solicitantes") is None
        assert db.table(TENANT_C, "solicitantes") is not None

    def test_second_run_is_noop(self):
        db = _make_db()
        orchestrator = _make_orchestrator(db)
        _run(orchestrator.run_one(TENANT_A))
        report = _run(orchestrator.run_one(TENANT_A))

        assert report.applied_operations == []
        assert report.validation_passed is True

    def test_invalid_identifier_never_reaches_database(self):
        catalog = MagicMock()
        factory = MagicMock()
        orchestrator = _make_orchestrator(catalog, mutator_factory=factory)

        with pytest.raises(IdentifierValidationError):
            _run(orchestrator.run_one("x; DROP SCHEMA public CASCADE"))

        assert catalog.method_calls == []
        factory.assert_not_called()

    def test_trailing_newline_rejected_before_catalog(self):
        catalog = MagicMock()

        with pytest.raises(IdentifierValidationError):
            _run(SchemaInspector(catalog).inspect("tenant_ab\n"))

        assert catalog.method_calls == []

    def test_missing_schema(self):
        with pytest.raises(IntrospectionError):
            _run(_make_orchestrator(_make_db()).run_one("dddd0004"))

    def test_failure_propagates(self):
        db = _make_db()
        db.locked.add(TENANT_A)
        orchestrator = _make_orchestrator(db)

        with pytest.raises(SchemaLockError):
            _run(orchestrator.run_one(TENANT_A))
        assert orchestrator.stages[TENANT_A] == SchemaStage.FAILED
