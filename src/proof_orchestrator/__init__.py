"""
proof-orchestrator — package root

File: src/proof_orchestrator/__init__.py
Last updated: 2026-02-11

Purpose
- Package root for the phase-gated proof orchestrator: a state machine that drives
  constructions from an informal claim to a machine-checked proof while an external
  reasoning agent does the content work.

What should be included in this file
- Version export and minimal public API surface (keep small).
- Import boundary rules: avoid importing heavy submodules at import time.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
