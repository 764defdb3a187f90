"""
Budget tracking and deterministic control-plane decisions.

This module enforces the two retry envelopes of a construction:
- the revision budget (processed revision records before the construction is blocked)
- the phase attempt budget (in-phase retries after a failed verification or attempt)

Every decision is logged through `structlog` as a machine-parseable event.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import structlog

from proof_orchestrator.constants import DEFAULT_MAX_PHASE_ATTEMPTS, DEFAULT_MAX_REVISIONS
from proof_orchestrator.domain.errors import RevisionExhausted
from proof_orchestrator.domain.models import RevisionRecord


class BudgetAction(StrEnum):
    """Deterministic control action after consuming one unit of budget."""

    CONTINUE = "continue"
    STOP = "stop"


@dataclass(frozen=True, slots=True)
class BudgetDecision:
    action: BudgetAction
    reason_codes: tuple[str, ...]
    construction_id: str
    used: int
    limit: int

    @property
    def should_stop(self) -> bool:
        return self.action is BudgetAction.STOP

    @property
    def remaining(self) -> int:
        return max(self.limit - self.used, 0)

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action.value,
            "reason_codes": list(self.reason_codes),
            "construction_id": self.construction_id,
            "used": self.used,
            "limit": self.limit,
        }


class RevisionBudget:
    """
    Bound the number of processed revision records per construction.

    `decide(revision_count)` is evaluated after the count was incremented for the record
    being processed: reaching `max_revisions` stops automatic progress.
    """

    def __init__(
        self,
        max_revisions: int = DEFAULT_MAX_REVISIONS,
        *,
        logger: Any | None = None,
    ) -> None:
        if max_revisions < 1:
            raise ValueError("max_revisions must be >= 1")
        self._max_revisions = max_revisions
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def max_revisions(self) -> int:
        return self._max_revisions

    def decide(self, *, construction_id: str, revision_count: int) -> BudgetDecision:
        if revision_count < 0:
            raise ValueError("revision_count must be >= 0")
        if revision_count >= self._max_revisions:
            action = BudgetAction.STOP
            reasons: tuple[str, ...] = ("max_revisions_reached",)
        else:
            action = BudgetAction.CONTINUE
            reasons = ("within_budget",)
        decision = BudgetDecision(
            action=action,
            reason_codes=reasons,
            construction_id=construction_id,
            used=revision_count,
            limit=self._max_revisions,
        )
        self._logger.info("revision_budget_decision", **decision.to_dict())
        return decision

    def enforce(self, *, record: RevisionRecord, revision_count: int) -> BudgetDecision:
        """Like `decide`, but raise `RevisionExhausted` when the budget is spent."""

        decision = self.decide(
            construction_id=record.construction_id, revision_count=revision_count
        )
        if decision.should_stop:
            raise RevisionExhausted(
                f"revision budget exhausted ({revision_count}/{self._max_revisions}); "
                f"last problem: {record.problem}",
                construction_id=record.construction_id,
                record=record,
            )
        return decision


class PhaseAttemptBudget:
    """Bound in-phase retries; the first attempt counts against the budget."""

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_PHASE_ATTEMPTS,
        *,
        logger: Any | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._max_attempts = max_attempts
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def decide(self, *, construction_id: str, attempts_used: int, failure: str) -> BudgetDecision:
        if attempts_used >= self._max_attempts:
            action = BudgetAction.STOP
            reasons: tuple[str, ...] = ("max_phase_attempts_reached",)
        else:
            action = BudgetAction.CONTINUE
            reasons = ("retry_within_phase",)
        decision = BudgetDecision(
            action=action,
            reason_codes=reasons,
            construction_id=construction_id,
            used=attempts_used,
            limit=self._max_attempts,
        )
        self._logger.info("phase_attempt_budget_decision", failure=failure, **decision.to_dict())
        return decision


__all__ = [
    "BudgetAction",
    "BudgetDecision",
    "PhaseAttemptBudget",
    "RevisionBudget",
]
