# ============================================================================
# CLI MODULE
# ============================================================================
# EPOCH: 1 - TENANT SCHEMA CONSOLIDATION
# STATUS: Entry point
# PURPOSE: `consolidate` command line interface
# CREATED: 19 OCT 2026
# ============================================================================
"""Command line entry points."""

from .consolidate import main

__all__ = ["main"]
