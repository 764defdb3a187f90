"""
proof-orchestrator — synthesis plane

File: src/proof_orchestrator/synthesis_plane/__init__.py
Last updated: 2026-02-14

Purpose
- Synthesis plane: the reasoning-agent boundary and phase prompt assembly.

Functional requirements
- Must be agent-agnostic through the ``ReasoningAgent`` protocol.

Non-functional requirements
- Must enforce prompt/context hygiene on project content.
"""

from proof_orchestrator.synthesis_plane.agent import (
    AgentOutcome,
    CommandAgent,
    PhaseCompletion,
    PhaseContext,
    PhaseContextBuilder,
    ReasoningAgent,
    RequestRevision,
    ScriptedAgent,
)
from proof_orchestrator.synthesis_plane.prompt_templates import (
    PromptTemplateEngine,
    PromptTemplateError,
    RenderedPrompt,
)

__all__ = [
    "AgentOutcome",
    "CommandAgent",
    "PhaseCompletion",
    "PhaseContext",
    "PhaseContextBuilder",
    "PromptTemplateEngine",
    "PromptTemplateError",
    "ReasoningAgent",
    "RenderedPrompt",
    "RequestRevision",
    "ScriptedAgent",
]
