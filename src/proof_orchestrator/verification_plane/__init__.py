"""
proof-orchestrator — verification plane public API.

File: src/proof_orchestrator/verification_plane/__init__.py
Last updated: 2026-02-13

Purpose
- Export the verification oracle: the Lean build plus the placeholder/unsound audit.

Non-functional requirements
- Keep import-time behavior deterministic and lightweight.
"""

from proof_orchestrator.verification_plane.oracle import (
    CommandResult,
    CommandRunner,
    OracleReport,
    VerificationOracle,
    run_command,
)

__all__ = [
    "CommandResult",
    "CommandRunner",
    "OracleReport",
    "VerificationOracle",
    "run_command",
]
