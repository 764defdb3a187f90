"""Control-plane public API: the phase registry, durable locks, and budgets.

The controller, scheduler, and pipeline builder are imported from their own modules; they
depend on the security and synthesis planes, which import the registry from here.
"""

from proof_orchestrator.control_plane.budgets import (
    BudgetAction,
    BudgetDecision,
    PhaseAttemptBudget,
    RevisionBudget,
)
from proof_orchestrator.control_plane.lock_manager import ResourceLockManager
from proof_orchestrator.control_plane.phases import (
    PHASE_RULES,
    PhaseRules,
    ResourceClass,
    ResourceLayout,
    iter_rules,
    rules_for,
)

__all__ = [
    "BudgetAction",
    "BudgetDecision",
    "PHASE_RULES",
    "PhaseAttemptBudget",
    "PhaseRules",
    "ResourceClass",
    "ResourceLayout",
    "ResourceLockManager",
    "RevisionBudget",
    "iter_rules",
    "rules_for",
]
