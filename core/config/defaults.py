# ============================================================================
# CONFIGURATION DEFAULTS
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Default configuration values
# PURPOSE: Centralized defaults for timeouts, concurrency and pool sizing
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Configuration Defaults

Provides sensible defaults for consolidation runs. These can be overridden
via environment variables or CLI options.

Design:
- Immutable dataclasses for defaults
- Environment variable overrides
- Type-safe access
"""

import os
from dataclasses import dataclass, field, replace
from typing import Optional


MIN_DRY_RUN_CONCURRENCY = 1
MAX_DRY_RUN_CONCURRENCY = 4


def clamp_concurrency(value: int) -> int:
    """Dry-run workers are bounded to 1..4."""
    return max(MIN_DRY_RUN_CONCURRENCY, min(MAX_DRY_RUN_CONCURRENCY, int(value)))


@dataclass(frozen=True)
class ConsolidationDefaults:
    """
    Defaults for consolidation runs.

    Timeouts are applied per session on every pooled connection.
    """
    # Per-statement limits (milliseconds)
    statement_timeout_ms: int = 300_000  # 5 min - large backfills
    lock_timeout_ms: int = 10_000        # 10 s - give up on busy tables

    # Dry-run workers (read-only phases only)
    dry_run_concurrency: int = 3

    # Wrap each schema's apply phase in one transaction
    use_transaction: bool = True

    # Optional YAML override for the built-in canonical spec
    canonical_spec_path: Optional[str] = None

    def with_overrides(self, **overrides) -> "ConsolidationDefaults":
        """Copy with non-None overrides applied (CLI options)."""
        values = {k: v for k, v in overrides.items() if v is not None}
        if "dry_run_concurrency" in values:
            values["dry_run_concurrency"] = clamp_concurrency(values["dry_run_concurrency"])
        return replace(self, **values)

    @classmethod
    def from_env(cls) -> "ConsolidationDefaults":
        """Create from environment variables."""
        return cls(
            statement_timeout_ms=int(os.getenv("CONSOLIDATION_STATEMENT_TIMEOUT_MS", 300_000)),
            lock_timeout_ms=int(os.getenv("CONSOLIDATION_LOCK_TIMEOUT_MS", 10_000)),
            dry_run_concurrency=clamp_concurrency(
                os.getenv("CONSOLIDATION_DRY_RUN_CONCURRENCY", 3)
            ),
            canonical_spec_path=os.getenv("CONSOLIDATION_CANONICAL_SPEC") or None,
        )


@dataclass(frozen=True)
class DatabaseDefaults:
    """
    Defaults for the connection pool.
    """
    pool_min_size: int = 1
    pool_max_size: int = 5
    connect_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "DatabaseDefaults":
        """Create from environment variables."""
        return cls(
            pool_min_size=int(os.getenv("DB_POOL_MIN_SIZE", 1)),
            pool_max_size=int(os.getenv("DB_POOL_MAX_SIZE", 5)),
            connect_timeout_seconds=float(os.getenv("DB_CONNECT_TIMEOUT_SECONDS", 30.0)),
        )


@dataclass(frozen=True)
class LoggingDefaults:
    """Defaults for log output (stderr)."""
    level: str = "INFO"
    json_output: bool = False

    @classmethod
    def from_env(cls) -> "LoggingDefaults":
        """Create from environment variables."""
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO"),
            json_output=os.getenv("LOG_FORMAT", "").lower() == "json",
        )


# ============================================================================
# GLOBAL DEFAULTS INSTANCE
# ============================================================================

@dataclass
class Defaults:
    """Container for all default configurations."""
    consolidation: ConsolidationDefaults = field(default_factory=ConsolidationDefaults)
    database: DatabaseDefaults = field(default_factory=DatabaseDefaults)
    logging: LoggingDefaults = field(default_factory=LoggingDefaults)

    @classmethod
    def from_env(cls) -> "Defaults":
        """Create all defaults from environment variables."""
        return cls(
            consolidation=ConsolidationDefaults.from_env(),
            database=DatabaseDefaults.from_env(),
            logging=LoggingDefaults.from_env(),
        )


_defaults: Optional[Defaults] = None


def get_defaults() -> Defaults:
    """Get defaults instance (read once from the environment)."""
    global _defaults
    if _defaults is None:
        _defaults = Defaults.from_env()
    return _defaults


def reset_defaults() -> None:
    """Reset defaults (for testing)."""
    global _defaults
    _defaults = None


# ============================================================================
# EXPORTS
# ============================================================================

__all__ = [
    "MIN_DRY_RUN_CONCURRENCY",
    "MAX_DRY_RUN_CONCURRENCY",
    "clamp_concurrency",
    "ConsolidationDefaults",
    "DatabaseDefaults",
    "LoggingDefaults",
    "Defaults",
    "get_defaults",
    "reset_defaults",
]
