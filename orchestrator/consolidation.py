# ============================================================================
# CONSOLIDATION ORCHESTRATOR
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Run coordination
# PURPOSE: Drive discovery and the per-schema pipeline, aggregate results
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Consolidation Orchestrator

Run state machine:

    idle -> discovering -> processing -> summarizing -> done
    (single-tenant runs skip discovering)

Per-schema pipeline:

    pending -> inspecting -> detecting -> dry_run_stop
                                       -> transforming -> validating -> reporting -> completed
    any non-terminal stage -> failed

Both are validated against the transition maps in core.contracts.

Scheduling:
    apply   - strictly sequential, one schema at a time
    dry-run - bounded concurrency (asyncio.Semaphore), read-only

Fault isolation:
    Any per-schema ConsolidationError is recorded in BatchSummary.failed and
    the run moves on. Only a discovery failure aborts the run.

Cancellation:
    cancel() sets an asyncio.Event. The in-flight operation finishes, the
    in-flight schema is rolled back and reported, no further schema starts.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

from psycopg_pool import AsyncConnectionPool

from core.config import ConsolidationDefaults
from core.contracts import (
    RUN_PHASE_TRANSITIONS,
    SCHEMA_STAGE_TRANSITIONS,
    RunMode,
    RunPhase,
    SchemaStage,
)
from core.errors import ConsolidationError
from core.logging import get_logger, log_checkpoint, log_context
from core.models import BatchSummary, ConsolidationReport, PreviewReport
from core.schema.canonical import CanonicalSpec, default_canonical_spec
from core.schema.ddl_utils import tenant_id_from_schema, validate_schema_name
from repositories.catalog_repo import CatalogReader, CatalogRepository
from repositories.mutation_repo import MutationRepository, SchemaMutator
from services import (
    ConsistencyValidator,
    IssueDetector,
    ReportBuilder,
    SchemaInspector,
    TenantSchemaDiscovery,
    Transformer,
    missing_tables,
)
from services.discovery import TENANT_SCHEMA_PREFIX

logger = get_logger(__name__, component="orchestrator")


def schema_name_for_tenant(tenant_id: str) -> str:
    """
    Normalise a tenant id (or schema name) to its schema name.

    '3F0E-AB12' -> 'tenant_3f0e_ab12'; 'tenant_3f0e' is returned unchanged.

    Raises:
        IdentifierValidationError: If the result breaks the naming convention
    """
    name = tenant_id.strip().lower().replace("-", "_")
    if not name.startswith(TENANT_SCHEMA_PREFIX):
        name = f"{TENANT_SCHEMA_PREFIX}{name}"
    return validate_schema_name(name)


def _check_transition(current, new, allowed) -> None:
    if current == new:
        return
    if new not in allowed.get(current, set()):
        raise ValueError(
            f"Invalid transition: {current.value} -> {new.value}. "
            f"Allowed from {current.value}: {sorted(s.value for s in allowed.get(current, set()))}"
        )


class ConsolidationOrchestrator:
    """
    Coordinates consolidation runs.

    Either pass a pool (production) or both catalog and mutator_factory
    (tests, alternative backends). The canonical spec and configuration are
    injected; nothing is cached between runs.
    """

    def __init__(
        self,
        pool: Optional[AsyncConnectionPool] = None,
        canonical_spec: Optional[CanonicalSpec] = None,
        config: Optional[ConsolidationDefaults] = None,
        catalog: Optional[CatalogReader] = None,
        mutator_factory: Optional[Callable[[], SchemaMutator]] = None,
    ):
        if pool is None and (catalog is None or mutator_factory is None):
            raise ValueError("Either pool or both catalog and mutator_factory are required")

        self.spec = canonical_spec or default_canonical_spec()
        self.config = config or ConsolidationDefaults()
        self.catalog = catalog if catalog is not None else CatalogRepository(pool)
        self._mutator_factory = mutator_factory or (lambda: MutationRepository(pool))

        self.inspector = SchemaInspector(self.catalog)
        self.detector = IssueDetector()
        self.validator = ConsistencyValidator(self.inspector, self.detector, self.spec)
        self.report_builder = ReportBuilder()
        self.discovery = TenantSchemaDiscovery(self.catalog)

        self._cancel_event = asyncio.Event()
        self.phase = RunPhase.IDLE
        self.stages: Dict[str, SchemaStage] = {}

    # =========================================================================
    # STATE
    # =========================================================================

    def cancel(self) -> None:
        """Request cancellation; safe to call from a signal handler."""
        if not self._cancel_event.is_set():
            logger.warning("Cancellation requested: no further schemas will start")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _advance_phase(self, new_phase: RunPhase) -> None:
        _check_transition(self.phase, new_phase, RUN_PHASE_TRANSITIONS)
        logger.debug(f"Run phase {self.phase.value} -> {new_phase.value}")
        self.phase = new_phase

    def _advance_stage(self, schema_name: str, new_stage: SchemaStage) -> None:
        current = self.stages.get(schema_name, SchemaStage.PENDING)
        _check_transition(current, new_stage, SCHEMA_STAGE_TRANSITIONS)
        self.stages[schema_name] = new_stage

    def _start_run(self, mode: RunMode) -> BatchSummary:
        self.phase = RunPhase.IDLE
        self.stages = {}
        return BatchSummary(run_id=uuid.uuid4().hex, mode=mode)

    def _finish_run(self, summary: BatchSummary) -> BatchSummary:
        self._advance_phase(RunPhase.SUMMARIZING)
        summary.cancelled = summary.cancelled or self.cancelled
        summary.finished_at = datetime.now(timezone.utc)
        log_checkpoint("run_summary", {
            "schemas_total": summary.schemas_total,
            "reports": len(summary.reports),
            "previews": len(summary.previews),
            "failed": len(summary.failed),
            "not_started": len(summary.not_started),
            "cancelled": summary.cancelled,
            "all_passed": summary.all_passed,
        })
        self._advance_phase(RunPhase.DONE)
        return summary

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def run_all(self, mode: RunMode = RunMode.APPLY) -> BatchSummary:
        """
        Process every conforming tenant schema.

        Raises:
            DatabaseConnectionError / IntrospectionError: Discovery failed
            (the run is aborted, nothing was processed)
        """
        summary = self._start_run(mode)
        with log_context(run_id=summary.run_id, mode=mode.value):
            self._advance_phase(RunPhase.DISCOVERING)
            try:
                schemas = await self.discovery.list_tenant_schemas()
            except ConsolidationError as e:
                logger.error(f"Discovery failed, aborting run: {e}")
                raise

            summary.schemas_total = len(schemas)
            self._advance_phase(RunPhase.PROCESSING)
            if mode == RunMode.DRY_RUN:
                await self._dry_run_batch(schemas, summary)
            else:
                await self._apply_batch(schemas, summary)
            return self._finish_run(summary)

    async def run_one(
        self, tenant_id: str, mode: RunMode = RunMode.APPLY
    ) -> Union[ConsolidationReport, PreviewReport]:
        """
        Process a single tenant.

        Args:
            tenant_id: Tenant UUID (any case, '-' or '_') or schema name

        Raises:
            IdentifierValidationError: Before any database access
            ConsolidationError: Any failure of the schema pipeline
        """
        schema_name = schema_name_for_tenant(tenant_id)
        summary = self._start_run(mode)
        with log_context(run_id=summary.run_id, mode=mode.value):
            self._advance_phase(RunPhase.PROCESSING)
            if mode == RunMode.DRY_RUN:
                result = await self._preview_schema(schema_name)
                summary.previews.append(result)
            else:
                result = await self._apply_schema(schema_name)
                summary.reports.append(result)
            summary.schemas_total = 1
            self._finish_run(summary)
        return result

    async def dry_run(
        self, tenant_id: Optional[str] = None
    ) -> Union[BatchSummary, PreviewReport]:
        """Preview one tenant (PreviewReport) or every tenant (BatchSummary)."""
        if tenant_id is not None:
            return await self.run_one(tenant_id, RunMode.DRY_RUN)
        return await self.run_all(RunMode.DRY_RUN)

    # =========================================================================
    # BATCH SCHEDULING
    # =========================================================================

    async def _apply_batch(self, schemas: List[str], summary: BatchSummary) -> None:
        for index, schema_name in enumerate(schemas):
            if self.cancelled:
                pending = schemas[index:]
                summary.not_started.extend(pending)
                for name in pending:
                    self._advance_stage(name, SchemaStage.CANCELLED)
                logger.warning(f"Run cancelled: {len(pending)} schemas not started")
                break

            try:
                summary.reports.append(await self._apply_schema(schema_name))
            except ConsolidationError as e:
                summary.failed.append(e.to_failure(schema_name))
                logger.error(f"Schema {schema_name} failed: {e}")

    async def _dry_run_batch(self, schemas: List[str], summary: BatchSummary) -> None:
        semaphore = asyncio.Semaphore(self.config.dry_run_concurrency)

        async def worker(schema_name: str):
            async with semaphore:
                if self.cancelled:
                    self._advance_stage(schema_name, SchemaStage.CANCELLED)
                    return schema_name
                try:
                    return await self._preview_schema(schema_name)
                except ConsolidationError as e:
                    logger.error(f"Schema {schema_name} failed: {e}")
                    return e.to_failure(schema_name)

        results = await asyncio.gather(*(worker(name) for name in schemas))
        for result in results:
            if isinstance(result, PreviewReport):
                summary.previews.append(result)
            elif isinstance(result, str):
                summary.not_started.append(result)
            else:
                summary.failed.append(result)

    # =========================================================================
    # PER-SCHEMA PIPELINE
    # =========================================================================

    async def _preview_schema(self, schema_name: str) -> PreviewReport:
        with log_context(schema_name=schema_name, tenant_id=tenant_id_from_schema(schema_name)):
            try:
                self._advance_stage(schema_name, SchemaStage.INSPECTING)
                descriptor = await self.inspector.inspect(schema_name)

                self._advance_stage(schema_name, SchemaStage.DETECTING)
                issues = self.detector.detect(descriptor, self.spec)
                plan = Transformer(None, self.spec).plan(schema_name, issues)
            except ConsolidationError:
                self._advance_stage(schema_name, SchemaStage.FAILED)
                raise

            self._advance_stage(schema_name, SchemaStage.DRY_RUN_STOP)
            preview = self.report_builder.build_preview(
                descriptor, issues, plan, missing_tables(descriptor, self.spec)
            )
            logger.info(
                f"Preview: {preview.blocking_issue_count} blocking, "
                f"{preview.advisory_issue_count} advisory, {len(plan)} operations planned"
            )
            return preview

    async def _apply_schema(self, schema_name: str) -> ConsolidationReport:
        with log_context(schema_name=schema_name, tenant_id=tenant_id_from_schema(schema_name)):
            try:
                self._advance_stage(schema_name, SchemaStage.INSPECTING)
                descriptor = await self.inspector.inspect(schema_name)
                log_checkpoint("schema_inspected", {"tables": len(descriptor.tables)})

                self._advance_stage(schema_name, SchemaStage.DETECTING)
                issues = self.detector.detect(descriptor, self.spec)

                self._advance_stage(schema_name, SchemaStage.TRANSFORMING)
                transformer = Transformer(
                    self._mutator_factory(),
                    self.spec,
                    use_transaction=self.config.use_transaction,
                    cancel_event=self._cancel_event,
                )
                result = await transformer.transform(schema_name, issues)

                self._advance_stage(schema_name, SchemaStage.VALIDATING)
                validation = await self.validator.validate(schema_name)

                self._advance_stage(schema_name, SchemaStage.REPORTING)
                report = self.report_builder.build(schema_name, result, validation, issues)
            except ConsolidationError:
                self._advance_stage(schema_name, SchemaStage.FAILED)
                raise

            self._advance_stage(schema_name, SchemaStage.COMPLETED)
            log_checkpoint("schema_completed", {
                "applied": len(report.applied_operations),
                "already_applied": report.already_applied_count,
                "validation_passed": report.validation_passed,
                "rolled_back": report.rolled_back,
            })
            return report


__all__ = ["ConsolidationOrchestrator", "schema_name_for_tenant"]
