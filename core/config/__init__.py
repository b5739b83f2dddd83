# ============================================================================
# CONFIGURATION MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Core - Configuration and defaults
# PURPOSE: Centralized configuration management
# LAST_REVIEWED: 19 OCT 2026
# ============================================================================
"""
Configuration Module

Provides centralized configuration and defaults for consolidation runs.
"""

from core.config.defaults import (
    ConsolidationDefaults,
    DatabaseDefaults,
    LoggingDefaults,
    clamp_concurrency,
    get_defaults,
    reset_defaults,
)

__all__ = [
    "ConsolidationDefaults",
    "DatabaseDefaults",
    "LoggingDefaults",
    "clamp_concurrency",
    "get_defaults",
    "reset_defaults",
]
