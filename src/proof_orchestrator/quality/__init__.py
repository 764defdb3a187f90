"""Quality utilities for Lean proof audits."""

from proof_orchestrator.quality.proof_audit import (
    UNSOUND_TOKENS,
    ProofAuditResult,
    ProofFinding,
    audit_text,
    count_placeholders,
    count_unsound,
    format_text,
    run_proof_audit,
    theorem_signatures,
)

__all__ = [
    "ProofAuditResult",
    "ProofFinding",
    "UNSOUND_TOKENS",
    "audit_text",
    "count_placeholders",
    "count_unsound",
    "format_text",
    "run_proof_audit",
    "theorem_signatures",
]
