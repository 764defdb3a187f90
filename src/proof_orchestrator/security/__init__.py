"""
proof-orchestrator — public security utilities

File: src/proof_orchestrator/security/__init__.py
Last updated: 2026-02-14

Purpose
- Safety boundaries around the reasoning agent: forbidden-content scanning, the per-phase
  policy engine, and prompt hygiene for project content.

Non-functional requirements
- Must fail closed: an unknown phase or unclassifiable request is denied.
"""

from proof_orchestrator.security.forbidden import (
    ForbiddenContentScanner,
    ForbiddenMatch,
    dequote_command,
    normalize_text,
)
from proof_orchestrator.security.policy_engine import (
    CommandScanMode,
    PolicyEngine,
    mutated_paths,
    split_segments,
)
from proof_orchestrator.security.prompt_hygiene import (
    HygienePolicyMode,
    SanitizationResult,
    detect_instruction_like_content,
    fence,
    sanitize_context,
)

__all__ = [
    "CommandScanMode",
    "ForbiddenContentScanner",
    "ForbiddenMatch",
    "HygienePolicyMode",
    "PolicyEngine",
    "SanitizationResult",
    "dequote_command",
    "detect_instruction_like_content",
    "fence",
    "mutated_paths",
    "normalize_text",
    "sanitize_context",
    "split_segments",
]
