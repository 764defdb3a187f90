"""
proof-orchestrator — phase session

File: src/proof_orchestrator/control_plane/session.py
Last updated: 2026-02-14

Purpose
- The only channel through which the reasoning agent changes the project during a phase.

Functional requirements
- Every request is evaluated by the policy engine, then checked against durable locks,
  before the executor sees it. A denied request never reaches storage.
- Denials are returned to the agent with their reason verbatim and recorded for the phase
  event log.
- A revision request is captured, not applied; the controller decides what happens to it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from proof_orchestrator.domain.errors import LockConflict, PolicyViolation
from proof_orchestrator.domain.models import (
    ActionCategory,
    ActionRequest,
    PhaseName,
    PolicyDecision,
    RevisionRecord,
    ViolationKind,
)
from proof_orchestrator.security.policy_engine import mutated_paths

if TYPE_CHECKING:
    from proof_orchestrator.control_plane.lock_manager import ResourceLockManager
    from proof_orchestrator.integration_plane.executor import ActionExecutor, ActionOutcome
    from proof_orchestrator.security.policy_engine import PolicyEngine


@dataclass(frozen=True, slots=True)
class SubmissionResult:
    request: ActionRequest
    decision: PolicyDecision
    outcome: ActionOutcome | None = None

    @property
    def allowed(self) -> bool:
        return self.decision.allowed

    @property
    def output(self) -> str:
        if not self.decision.allowed:
            return self.decision.reason
        return self.outcome.output if self.outcome is not None else ""

    def raise_for_denial(self, *, construction_id: str | None = None) -> None:
        if self.decision.allowed:
            return
        if self.decision.is_lock_conflict:
            raise LockConflict(self.decision, construction_id=construction_id)
        raise PolicyViolation(self.decision, construction_id=construction_id)


class PhaseSession:
    """Policy-gated action channel for one attempt of one phase."""

    def __init__(
        self,
        *,
        construction_id: str,
        phase: PhaseName,
        policy: PolicyEngine,
        locks: ResourceLockManager,
        executor: ActionExecutor,
        logger: Any | None = None,
    ) -> None:
        self._construction_id = construction_id
        self._phase = phase
        self._policy = policy
        self._locks = locks
        self._executor = executor
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._history: list[SubmissionResult] = []
        self._revision: RevisionRecord | None = None

    @property
    def construction_id(self) -> str:
        return self._construction_id

    @property
    def phase(self) -> PhaseName:
        return self._phase

    @property
    def history(self) -> tuple[SubmissionResult, ...]:
        return tuple(self._history)

    @property
    def denials(self) -> tuple[SubmissionResult, ...]:
        return tuple(item for item in self._history if not item.allowed)

    @property
    def revision(self) -> RevisionRecord | None:
        return self._revision

    def evaluate(self, request: ActionRequest) -> PolicyDecision:
        """Decide without executing: policy first, then durable lock state."""

        decision = self._policy.evaluate(self._phase, request)
        if not decision.allowed:
            return decision
        for resource in self._write_targets(request):
            if not self._locks.is_writable(resource):
                return PolicyDecision.deny(
                    f"{self._locks.key(resource)} is locked read-only",
                    rule_id="durable_lock",
                    violation=ViolationKind.LOCK_CONFLICT,
                )
        return decision

    def submit(self, request: ActionRequest) -> SubmissionResult:
        decision = self.evaluate(request)
        if not decision.allowed:
            result = SubmissionResult(request=request, decision=decision)
            self._history.append(result)
            self._logger.warning(
                "policy_denied",
                construction_id=self._construction_id,
                phase=self._phase.value,
                category=request.category.value,
                targets=list(request.targets),
                rule_id=decision.rule_id,
                violation=decision.violation.value if decision.violation else None,
                reason=decision.reason,
            )
            return result

        outcome = self._executor.apply(request)
        result = SubmissionResult(request=request, decision=decision, outcome=outcome)
        self._history.append(result)
        self._logger.info(
            "action_applied",
            construction_id=self._construction_id,
            phase=self._phase.value,
            category=request.category.value,
            targets=list(outcome.written or request.targets),
            error=outcome.error,
        )
        return result

    def request_revision(
        self,
        problem: str,
        *,
        restart_from: PhaseName | str,
        evidence: str = "",
    ) -> RevisionRecord:
        record = RevisionRecord(
            construction_id=self._construction_id,
            problem=problem,
            evidence=evidence,
            restart_from=PhaseName.parse(restart_from),
            issued_at=self._phase,
        )
        self._revision = record
        self._logger.info(
            "revision_requested",
            construction_id=self._construction_id,
            phase=self._phase.value,
            restart_from=record.restart_from.value,
        )
        return record

    def _write_targets(self, request: ActionRequest) -> tuple[str, ...]:
        if request.category is ActionCategory.EXECUTE_COMMAND:
            return mutated_paths(request.payload)
        return request.targets


__all__ = ["PhaseSession", "SubmissionResult"]
