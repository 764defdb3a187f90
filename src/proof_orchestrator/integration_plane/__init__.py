"""
proof-orchestrator — integration plane

File: src/proof_orchestrator/integration_plane/__init__.py
Last updated: 2026-02-14

Purpose
- Integration plane: the file artifacts the orchestrator shares with operators and agents.
  The construction queue table, the revision file, the archival sink, and the executor that
  applies allowed actions.

Functional requirements
- Only orchestrator code writes the queue and the results tree.
"""

from proof_orchestrator.integration_plane.archive import (
    MANIFEST_FILENAME,
    ArchiveResult,
    ResultsArchive,
)
from proof_orchestrator.integration_plane.executor import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ActionExecutor,
    ActionOutcome,
)
from proof_orchestrator.integration_plane.queue_file import (
    ConstructionQueue,
    QueueEntry,
    parse_queue_text,
    rewrite_status_text,
)
from proof_orchestrator.integration_plane.revision_file import (
    DEFAULT_RESTART_PHASE,
    ParsedRevision,
    RevisionFile,
    parse_revision_text,
    render_revision_text,
)

__all__ = [
    "ActionExecutor",
    "ActionOutcome",
    "ArchiveResult",
    "ConstructionQueue",
    "DEFAULT_COMMAND_TIMEOUT_SECONDS",
    "DEFAULT_RESTART_PHASE",
    "MANIFEST_FILENAME",
    "ParsedRevision",
    "QueueEntry",
    "ResultsArchive",
    "RevisionFile",
    "parse_queue_text",
    "parse_revision_text",
    "render_revision_text",
    "rewrite_status_text",
]
