"""Stable constants shared across orchestrator planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1
ARCHIVE_MANIFEST_SCHEMA_VERSION: Final[int] = 1

# Archive layout under the results directory.
REVISIONS_SUBDIR: Final[str] = "revisions"

# Pipeline bounds.
DEFAULT_MAX_REVISIONS: Final[int] = 3
DEFAULT_MAX_PROGRAM_CYCLES: Final[int] = 20
DEFAULT_MAX_PHASE_ATTEMPTS: Final[int] = 2

# Proof-tree directories that never hold project proof artifacts.
PROOF_TREE_EXCLUDED_DIRS: Final[tuple[str, ...]] = (".lake", "lake-packages", ".git", ".elan")

__all__ = [
    "ARCHIVE_MANIFEST_SCHEMA_VERSION",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_MAX_PHASE_ATTEMPTS",
    "DEFAULT_MAX_PROGRAM_CYCLES",
    "DEFAULT_MAX_REVISIONS",
    "PROOF_TREE_EXCLUDED_DIRS",
    "REVISIONS_SUBDIR",
    "STATE_DB_SCHEMA_VERSION",
]
