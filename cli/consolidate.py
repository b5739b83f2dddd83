#!/usr/bin/env python3
# ============================================================================
# CONSOLIDATE CLI
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Entry point - Operator command line
# PURPOSE: Dry-run, single-tenant and batch consolidation runs
# CREATED: 19 OCT 2026
# ============================================================================
"""
Consolidate tenant schemas to the canonical structure.

Usage:
    # Preview every tenant schema (read-only)
    consolidate dry-run

    # Preview one tenant
    consolidate dry-run 3f0e2a1c-9b7d-4e5f-8a6b-1c2d3e4f5a6b

    # Apply to one tenant
    consolidate tenant 3f0e2a1c-9b7d-4e5f-8a6b-1c2d3e4f5a6b

    # Apply to every tenant, JSON logs
    consolidate --log-format json run-all

Exit codes:
    0   success (run-all: every schema validated; dry-run: always,
        failed previews are listed in the JSON)
    1   validation failure, blocking issue or schema failure (tenant, run-all)
    2   database unreachable

JSON results go to stdout, logs go to stderr.

Requires:
    --dsn, DATABASE_URL, or POSTGRES_HOST / POSTGRES_DB / POSTGRES_USER / POSTGRES_PASSWORD
"""

import argparse
import asyncio
import json
import signal
import sys
from typing import Any, Dict, List, Optional

from __version__ import __version__
from core.config import ConsolidationDefaults, DatabaseDefaults, LoggingDefaults
from core.errors import ConsolidationError, DatabaseConnectionError
from core.logging import configure_logging, get_logger
from core.models import BatchSummary
from core.schema.canonical import CanonicalSpec, default_canonical_spec
from orchestrator import ConsolidationOrchestrator
from repositories.database import DatabasePool

logger = get_logger(__name__, component="cli")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONNECTION = 2


# ============================================================================
# ARGUMENTS
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="consolidate",
        description="Bring tenant schemas in line with the canonical structure",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Exit codes: 0 success, 1 validation/schema failure, 2 database unreachable",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--dsn",
        help="PostgreSQL connection string (default: DATABASE_URL or POSTGRES_* variables)",
    )
    parser.add_argument(
        "--canonical-spec",
        metavar="FILE",
        help="YAML canonical spec replacing the built-in rules",
    )
    parser.add_argument(
        "--statement-timeout-ms",
        type=int,
        help="Per-statement timeout (default: 300000)",
    )
    parser.add_argument(
        "--lock-timeout-ms",
        type=int,
        help="Lock wait timeout (default: 10000)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        help="Dry-run workers, clamped to 1..4 (default: 3)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Debug logging",
    )
    parser.add_argument(
        "--log-format",
        choices=["human", "json"],
        help="Log format on stderr (default: human, or LOG_FORMAT)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    dry_run = commands.add_parser("dry-run", help="Detect and plan, change nothing")
    dry_run.add_argument("tenant_id", nargs="?", help="Single tenant (default: all tenants)")

    tenant = commands.add_parser("tenant", help="Apply to one tenant")
    tenant.add_argument("tenant_id", help="Tenant UUID or schema name")

    commands.add_parser("run-all", help="Apply to every tenant schema")
    return parser


def build_config(args: argparse.Namespace) -> ConsolidationDefaults:
    """Environment defaults with CLI overrides on top."""
    return ConsolidationDefaults.from_env().with_overrides(
        statement_timeout_ms=args.statement_timeout_ms,
        lock_timeout_ms=args.lock_timeout_ms,
        dry_run_concurrency=args.concurrency,
        canonical_spec_path=args.canonical_spec,
    )


def load_canonical_spec(config: ConsolidationDefaults) -> CanonicalSpec:
    if config.canonical_spec_path:
        logger.info(f"Loading canonical spec from {config.canonical_spec_path}")
        return CanonicalSpec.from_yaml(config.canonical_spec_path)
    return default_canonical_spec()


# ============================================================================
# OUTPUT
# ============================================================================

def _emit(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, default=str))
    sys.stdout.flush()


def _emit_failure(error: ConsolidationError) -> None:
    _emit({"error": error.to_failure().model_dump(mode="json")})


def _has_connection_failure(summary: BatchSummary) -> bool:
    return any(f.error_type == DatabaseConnectionError.__name__ for f in summary.failed)


# ============================================================================
# COMMANDS
# ============================================================================

def _install_signal_handlers(orchestrator: ConsolidationOrchestrator) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.cancel)
        except (NotImplementedError, RuntimeError):
            # Windows event loops, or not on the main thread
            logger.debug(f"Signal handler for {sig.name} not installed")


async def _dispatch(args: argparse.Namespace, orchestrator: ConsolidationOrchestrator) -> int:
    if args.command == "dry-run":
        # Previews never fail the command; only an unreachable database does.
        try:
            result = await orchestrator.dry_run(args.tenant_id)
        except DatabaseConnectionError:
            raise
        except ConsolidationError as e:
            logger.error(f"Dry-run failed: {e.error_type}: {e}")
            _emit_failure(e)
            return EXIT_OK
        _emit(result.model_dump(mode="json"))
        if isinstance(result, BatchSummary) and _has_connection_failure(result):
            return EXIT_CONNECTION
        return EXIT_OK

    if args.command == "tenant":
        report = await orchestrator.run_one(args.tenant_id)
        _emit(report.model_dump(mode="json"))
        return EXIT_OK if report.validation_passed else EXIT_FAILURE

    summary = await orchestrator.run_all()
    _emit(summary.model_dump(mode="json"))
    return EXIT_OK if summary.all_passed else EXIT_FAILURE


async def run(args: argparse.Namespace) -> int:
    """Execute one parsed command and return its exit code."""
    config = build_config(args)
    db = DatabaseDefaults.from_env()

    try:
        spec = load_canonical_spec(config)
        async with DatabasePool(
            connection_string=args.dsn,
            min_size=db.pool_min_size,
            max_size=max(db.pool_max_size, config.dry_run_concurrency + 1),
            statement_timeout_ms=config.statement_timeout_ms,
            lock_timeout_ms=config.lock_timeout_ms,
            connect_timeout_seconds=db.connect_timeout_seconds,
        ) as pool:
            orchestrator = ConsolidationOrchestrator(pool, canonical_spec=spec, config=config)
            _install_signal_handlers(orchestrator)
            return await _dispatch(args, orchestrator)
    except DatabaseConnectionError as e:
        logger.error(f"Database unreachable: {e}")
        _emit_failure(e)
        return EXIT_CONNECTION
    except ConsolidationError as e:
        logger.error(f"{e.error_type}: {e}")
        _emit_failure(e)
        return EXIT_FAILURE


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    log_defaults = LoggingDefaults.from_env()
    configure_logging(
        level="DEBUG" if args.verbose else log_defaults.level,
        json_output=args.log_format == "json" or (args.log_format is None and log_defaults.json_output),
    )

    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
