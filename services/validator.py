# ============================================================================
# CONSISTENCY VALIDATOR
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Post-transform verification
# PURPOSE: Re-inspect a schema and re-run detection after apply
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Consistency Validator

Validation is detection run again on a fresh inspection. A schema passes when
no blocking issue remains; advisory issues are reported but do not fail it.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.models import ConsolidationIssue, TenantSchemaDescriptor
from core.schema.canonical import CanonicalSpec
from services.detector import IssueDetector, missing_tables
from services.inspector import SchemaInspector

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    passed: bool
    remaining_issues: List[ConsolidationIssue] = field(default_factory=list)
    descriptor: Optional[TenantSchemaDescriptor] = None
    missing_tables: List[str] = field(default_factory=list)

    @property
    def blocking_issues(self) -> List[ConsolidationIssue]:
        return [i for i in self.remaining_issues if i.is_blocking]


class ConsistencyValidator:
    """Re-inspects a schema and checks it against the canonical spec."""

    def __init__(
        self,
        inspector: SchemaInspector,
        detector: IssueDetector,
        canonical_spec: CanonicalSpec,
    ):
        self.inspector = inspector
        self.detector = detector
        self.spec = canonical_spec

    async def validate(self, schema_name: str) -> ValidationResult:
        """
        Validate one schema.

        Raises:
            IntrospectionError / DatabaseConnectionError from re-inspection
        """
        descriptor = await self.inspector.inspect(schema_name)
        remaining = self.detector.detect(descriptor, self.spec)
        passed = not any(i.is_blocking for i in remaining)

        if not passed:
            keys = [i.issue_key for i in remaining if i.is_blocking]
            logger.warning(f"Validation failed for {schema_name}: {keys}")
        else:
            logger.info(
                f"Validation passed for {schema_name} "
                f"({len(remaining)} advisory issues remain)"
            )

        return ValidationResult(
            passed=passed,
            remaining_issues=remaining,
            descriptor=descriptor,
            missing_tables=missing_tables(descriptor, self.spec),
        )


__all__ = ["ConsistencyValidator", "ValidationResult"]
