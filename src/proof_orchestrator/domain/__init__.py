"""
proof-orchestrator — domain layer

File: src/proof_orchestrator/domain/__init__.py
Last updated: 2026-02-11

Purpose
- Domain types shared across planes: Construction, ActionRequest, PolicyDecision,
  RevisionRecord, LockState, and the pipeline error taxonomy.

What should be included in this file
- Re-export of core domain entities for convenience.
- Keep domain layer free of IO side effects.
"""

from proof_orchestrator.domain.errors import (
    AgentProtocolError,
    ConstructionBlocked,
    ConstructionNotFound,
    LockConflict,
    MissingArtifact,
    PipelineError,
    PolicyViolation,
    RevisionExhausted,
    RevisionRejected,
    VerificationFailure,
)
from proof_orchestrator.domain.models import (
    PHASE_ORDER,
    STATUS_AFTER_PHASE,
    ActionCategory,
    ActionRequest,
    Construction,
    ConstructionStatus,
    LockMode,
    LockState,
    PhaseName,
    PhaseOutcome,
    PolicyDecision,
    RevisionRecord,
    ViolationKind,
    construction_id_for,
    parse_priority,
)

__all__ = [
    "PHASE_ORDER",
    "STATUS_AFTER_PHASE",
    "ActionCategory",
    "ActionRequest",
    "AgentProtocolError",
    "Construction",
    "ConstructionBlocked",
    "ConstructionNotFound",
    "ConstructionStatus",
    "LockConflict",
    "LockMode",
    "LockState",
    "MissingArtifact",
    "PhaseName",
    "PhaseOutcome",
    "PipelineError",
    "PolicyDecision",
    "PolicyViolation",
    "RevisionExhausted",
    "RevisionRecord",
    "RevisionRejected",
    "VerificationFailure",
    "ViolationKind",
    "construction_id_for",
    "parse_priority",
]
