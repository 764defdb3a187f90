"""
proof-orchestrator — revision/retry controller

File: src/proof_orchestrator/control_plane/controller.py
Last updated: 2026-02-17

Purpose
- Drive one construction through the ordered phases: check requirements, hold the phase's
  locks, run the agent through a policy-gated session, verify, and record the outcome.

What should be included in this file
- ``RevisionController.run_phase`` / ``run_full`` and construction registration.
- Revision intake: archive, count, regress or block.
- In-phase retries for verification failures, rejected revisions, and agent protocol errors.

Functional requirements
- Phases advance strictly forward; only an accepted revision record moves a construction
  backwards, and never past the phase that issued it.
- At most one phase of a construction runs at a time, to completion.
- Status and next phase are persisted (database + queue table) at every phase boundary.
- A Done construction is immutable; a Blocked one does not run until an operator steps in.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from proof_orchestrator.control_plane.budgets import PhaseAttemptBudget, RevisionBudget
from proof_orchestrator.control_plane.lock_manager import ResourceLockManager
from proof_orchestrator.control_plane.phases import (
    PhaseRules,
    ResourceClass,
    ResourceLayout,
    rules_for,
)
from proof_orchestrator.control_plane.session import PhaseSession
from proof_orchestrator.domain.errors import (
    AgentProtocolError,
    ConstructionBlocked,
    ConstructionNotFound,
    MissingArtifact,
    PipelineError,
    RevisionExhausted,
    RevisionRejected,
    VerificationFailure,
)
from proof_orchestrator.domain.models import (
    STATUS_AFTER_PHASE,
    Construction,
    ConstructionStatus,
    PhaseName,
    PhaseOutcome,
    RevisionRecord,
    construction_id_for,
    utc_now,
)
from proof_orchestrator.integration_plane.archive import ResultsArchive
from proof_orchestrator.integration_plane.executor import ActionExecutor
from proof_orchestrator.integration_plane.queue_file import ConstructionQueue
from proof_orchestrator.integration_plane.revision_file import RevisionFile
from proof_orchestrator.observability.logging import correlation_scope
from proof_orchestrator.persistence.repositories import (
    ConstructionRepo,
    PhaseEventRepo,
    RevisionRepo,
)
from proof_orchestrator.security.policy_engine import PolicyEngine
from proof_orchestrator.synthesis_plane.agent import (
    PhaseContextBuilder,
    ReasoningAgent,
)
from proof_orchestrator.synthesis_plane.prompt_templates import PromptTemplateError
from proof_orchestrator.verification_plane.oracle import OracleReport, VerificationOracle

# Failures retried inside a phase until the attempt budget runs out.
_RETRYABLE: tuple[type[PipelineError], ...] = (
    VerificationFailure,
    RevisionRejected,
    AgentProtocolError,
    PromptTemplateError,
)


@dataclass(frozen=True, slots=True)
class PhaseReport:
    """What happened when one phase ran for one construction."""

    construction_id: str
    phase: PhaseName
    outcome: PhaseOutcome
    status: ConstructionStatus
    next_phase: PhaseName
    attempts: int = 0
    reason: str | None = None
    denials: int = 0
    revision: RevisionRecord | None = None
    oracle: OracleReport | None = None
    archive_path: Path | None = None

    @property
    def failed(self) -> bool:
        return self.outcome in {PhaseOutcome.FAILED, PhaseOutcome.BLOCKED}

    @property
    def halts_construction(self) -> bool:
        return self.outcome in {PhaseOutcome.FAILED, PhaseOutcome.BLOCKED, PhaseOutcome.DONE}

    def to_dict(self) -> dict[str, object]:
        return {
            "construction_id": self.construction_id,
            "phase": self.phase.value,
            "outcome": self.outcome.value,
            "status": self.status.value,
            "next_phase": self.next_phase.value,
            "attempts": self.attempts,
            "reason": self.reason,
            "denials": self.denials,
            "revision_sequence": self.revision.sequence if self.revision is not None else None,
            "oracle_passed": self.oracle.passed if self.oracle is not None else None,
            "archive_path": self.archive_path.as_posix() if self.archive_path else None,
        }


class RevisionController:
    """Per-construction phase state machine with bounded revisions and retries."""

    def __init__(
        self,
        *,
        layout: ResourceLayout,
        constructions: ConstructionRepo,
        revisions: RevisionRepo,
        events: PhaseEventRepo,
        locks: ResourceLockManager,
        policy: PolicyEngine,
        executor: ActionExecutor,
        oracle: VerificationOracle,
        agent: ReasoningAgent,
        context_builder: PhaseContextBuilder,
        queue: ConstructionQueue,
        archive: ResultsArchive,
        revision_budget: RevisionBudget,
        attempt_budget: PhaseAttemptBudget,
        logger: Any | None = None,
    ) -> None:
        self._layout = layout
        self._constructions = constructions
        self._revisions = revisions
        self._events = events
        self._locks = locks
        self._policy = policy
        self._executor = executor
        self._oracle = oracle
        self._agent = agent
        self._context_builder = context_builder
        self._queue = queue
        self._archive = archive
        self._revision_budget = revision_budget
        self._attempt_budget = attempt_budget
        self._revision_file = RevisionFile(layout.revision_file, root=layout.root)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def constructions(self) -> ConstructionRepo:
        return self._constructions

    @property
    def locks(self) -> ResourceLockManager:
        return self._locks

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def resolve(self, reference: str) -> Construction:
        """Find a construction by id or spec reference, registering it from the queue."""

        existing = self._constructions.find(reference)
        if existing is not None:
            return existing
        entry = self._queue.find(reference)
        if entry is not None:
            return self.register(
                entry.spec_ref,
                name=entry.name,
                priority=entry.priority,
                position=entry.position,
                status=entry.status,
            )
        candidate = reference.strip().strip("`")
        if candidate and self._layout.spec_path(candidate).is_file():
            return self.register(self._layout.key(self._layout.spec_path(candidate)))
        raise ConstructionNotFound(f"no construction or specification matches {reference!r}")

    def register(
        self,
        spec_ref: str,
        *,
        name: str = "",
        priority: int = 0,
        position: int = 0,
        status: ConstructionStatus | None = None,
    ) -> Construction:
        construction_id = construction_id_for(spec_ref)
        existing = self._constructions.get(construction_id)
        if existing is not None:
            return existing
        initial = status if status is not None else ConstructionStatus.NOT_STARTED
        construction = Construction(
            id=construction_id,
            spec_ref=spec_ref,
            status=initial,
            priority=priority,
            position=position,
            name=name,
            next_phase=_resume_phase(initial),
            blocked_reason="imported as blocked" if initial is ConstructionStatus.BLOCKED else None,
        )
        stored = self._constructions.add(construction)
        self._logger.info(
            "construction_registered",
            construction_id=stored.id,
            spec_ref=stored.spec_ref,
            status=ConstructionStatus(stored.status).value,
            next_phase=PhaseName.parse(stored.next_phase).value,
        )
        return stored

    # ------------------------------------------------------------------
    # Phase execution
    # ------------------------------------------------------------------

    def run_full(self, reference: str, *, max_phases: int | None = None) -> tuple[PhaseReport, ...]:
        """Run phases from the construction's next phase until it halts or the cap is hit."""

        reports: list[PhaseReport] = []
        construction = self.resolve(reference)
        while max_phases is None or len(reports) < max_phases:
            if ConstructionStatus(construction.status).is_terminal:
                break
            report = self.run_phase(construction.id)
            reports.append(report)
            if report.halts_construction:
                break
            refreshed = self._constructions.get(construction.id)
            if refreshed is None:  # pragma: no cover - rows are never deleted.
                break
            construction = refreshed
        return tuple(reports)

    def run_phase(self, reference: str, phase: PhaseName | str | None = None) -> PhaseReport:
        construction = self.resolve(reference)
        status = ConstructionStatus(construction.status)
        if status is ConstructionStatus.DONE:
            raise PipelineError("construction is already Done", construction_id=construction.id)
        if status is ConstructionStatus.BLOCKED:
            raise ConstructionBlocked(
                f"construction is Blocked: {construction.blocked_reason}",
                construction_id=construction.id,
            )

        current = PhaseName.parse(construction.next_phase)
        target = PhaseName.parse(phase) if phase is not None else current
        if target.ordinal > current.ordinal:
            raise PipelineError(
                f"cannot run {target.label} before {current.label}; phases run in order",
                construction_id=construction.id,
            )

        with correlation_scope(construction_id=construction.id, phase=target.value):
            self._logger.info(
                "phase_started",
                construction_id=construction.id,
                phase=target.value,
                revision_count=construction.revision_count,
            )
            rules = rules_for(target)
            try:
                self._check_requirements(construction, rules)
            except MissingArtifact as exc:
                return self._block(construction, target, exc.reason, attempts=0)

            resources = self._layout.resources_for(
                rules.lockable, construction_id=construction.id, spec_ref=construction.spec_ref
            )
            with self._locks.phase_scope(construction.id, resources, target):
                report = self._attempt_loop(construction, rules)
            if report.outcome is PhaseOutcome.DONE:
                self._locks.unlock_all(construction.id)
            return report

    def _attempt_loop(self, construction: Construction, rules: PhaseRules) -> PhaseReport:
        phase = rules.phase
        last_error: str | None = None
        denials = 0
        attempt = 0
        while True:
            attempt += 1
            session = PhaseSession(
                construction_id=construction.id,
                phase=phase,
                policy=self._policy,
                locks=self._locks,
                executor=self._executor,
            )
            try:
                context = self._context_builder.build(
                    construction, phase, attempt=attempt, last_error=last_error
                )
                outcome = self._agent.run_phase(context, session)
                denials += len(session.denials)
                record = outcome if isinstance(outcome, RevisionRecord) else session.revision
                if record is None and ResourceClass.REVISION in rules.writable:
                    record = self._revision_file.read(
                        construction_id=construction.id, issued_at=phase
                    )
                if record is not None:
                    return self._process_revision(
                        construction, phase, record, attempts=attempt, denials=denials
                    )
                oracle_report: OracleReport | None = None
                if rules.requires_oracle_pass:
                    oracle_report = self._oracle.verify()
                    if not oracle_report.passed:
                        raise VerificationFailure(
                            oracle_report.describe(),
                            construction_id=construction.id,
                            errors=oracle_report.errors,
                        )
            except _RETRYABLE as exc:
                last_error = exc.reason
                self._logger.warning(
                    "phase_attempt_failed",
                    construction_id=construction.id,
                    phase=phase.value,
                    attempt=attempt,
                    error_type=type(exc).__name__,
                    reason=exc.reason,
                )
                decision = self._attempt_budget.decide(
                    construction_id=construction.id,
                    attempts_used=attempt,
                    failure=type(exc).__name__,
                )
                if decision.should_stop:
                    return self._fail(
                        construction, phase, exc.reason, attempts=attempt, denials=denials
                    )
                continue
            return self._succeed(
                construction, phase, attempts=attempt, denials=denials, oracle=oracle_report
            )

    def _check_requirements(self, construction: Construction, rules: PhaseRules) -> None:
        missing: list[str] = []
        for resource_class in sorted(rules.requires, key=lambda item: item.value):
            if resource_class is ResourceClass.SPECIFICATION:
                if not self._layout.spec_path(construction.spec_ref).is_file():
                    missing.append(construction.spec_ref)
            elif resource_class is ResourceClass.PROOF:
                if not self._layout.proof_files():
                    missing.append(f"{self._layout.key(self._layout.lean_dir)}/**/*.lean")
            else:  # pragma: no cover - the registry only requires the two classes above.
                missing.append(resource_class.value)
        if missing:
            raise MissingArtifact(
                f"{rules.phase.label} requires missing artifacts: {', '.join(missing)}",
                construction_id=construction.id,
                missing=tuple(missing),
            )

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _succeed(
        self,
        construction: Construction,
        phase: PhaseName,
        *,
        attempts: int,
        denials: int,
        oracle: OracleReport | None,
    ) -> PhaseReport:
        construction.last_error = None
        archive_path: Path | None = None
        if phase is PhaseName.LOG:
            result = self._archive.archive_construction(
                construction, verification=self._oracle.audit().summary()
            )
            archive_path = result.path
            construction.status = ConstructionStatus.DONE
            construction.archived_at = utc_now()
            outcome = PhaseOutcome.DONE
        else:
            # Re-running a phase behind the frontier never moves status or next_phase back.
            if phase.ordinal >= PhaseName.parse(construction.next_phase).ordinal:
                new_status = STATUS_AFTER_PHASE[phase]
                if new_status is not None:
                    construction.status = new_status
                successor = phase.successor()
                if successor is not None:
                    construction.next_phase = successor
            outcome = PhaseOutcome.COMPLETED
        self._persist(construction)
        self._events.append(
            construction.id,
            phase,
            outcome.value,
            payload={
                "attempts": attempts,
                "denials": denials,
                "oracle_passed": oracle.passed if oracle is not None else None,
            },
        )
        self._logger.info(
            "phase_completed",
            construction_id=construction.id,
            phase=phase.value,
            outcome=outcome.value,
            status=ConstructionStatus(construction.status).value,
            next_phase=PhaseName.parse(construction.next_phase).value,
            attempts=attempts,
        )
        return self._report(
            construction,
            phase,
            outcome,
            attempts=attempts,
            denials=denials,
            oracle=oracle,
            archive_path=archive_path,
        )

    def _process_revision(
        self,
        construction: Construction,
        phase: PhaseName,
        record: RevisionRecord,
        *,
        attempts: int,
        denials: int,
    ) -> PhaseReport:
        if not record.is_regression:
            self._revision_file.remove()
            raise RevisionRejected(
                f"revision asks to restart from {record.restart_from.label}, after "
                f"{record.issued_at.label}; revisions may only move backwards",
                construction_id=construction.id,
            )

        stored = self._revisions.append(record)
        archived = self._archive.archive_revision(stored)
        self._revision_file.remove()
        construction.revision_count += 1
        self._logger.info(
            "revision_recorded",
            construction_id=construction.id,
            phase=phase.value,
            sequence=stored.sequence,
            restart_from=stored.restart_from.value,
            revision_count=construction.revision_count,
            archived=archived.as_posix(),
        )
        construction.next_phase = stored.restart_from
        try:
            self._revision_budget.enforce(
                record=stored, revision_count=construction.revision_count
            )
        except RevisionExhausted as exc:
            return self._block(
                construction,
                phase,
                exc.reason,
                attempts=attempts,
                denials=denials,
                revision=stored,
            )

        construction.status = ConstructionStatus.REVISION
        self._persist(construction)
        self._events.append(
            construction.id,
            phase,
            PhaseOutcome.REVISION.value,
            detail=stored.problem,
            payload={
                "sequence": stored.sequence,
                "restart_from": stored.restart_from.value,
                "revision_count": construction.revision_count,
            },
        )
        return self._report(
            construction,
            phase,
            PhaseOutcome.REVISION,
            attempts=attempts,
            denials=denials,
            reason=stored.problem,
            revision=stored,
        )

    def _block(
        self,
        construction: Construction,
        phase: PhaseName,
        reason: str,
        *,
        attempts: int,
        denials: int = 0,
        revision: RevisionRecord | None = None,
    ) -> PhaseReport:
        construction.status = ConstructionStatus.BLOCKED
        construction.blocked_reason = reason
        construction.blocked_acknowledged = False
        construction.last_error = reason
        self._persist(construction)
        self._events.append(
            construction.id,
            phase,
            PhaseOutcome.BLOCKED.value,
            detail=reason,
            payload={"sequence": revision.sequence if revision is not None else None},
        )
        self._logger.error(
            "construction_blocked",
            construction_id=construction.id,
            phase=phase.value,
            reason=reason,
        )
        return self._report(
            construction,
            phase,
            PhaseOutcome.BLOCKED,
            attempts=attempts,
            denials=denials,
            reason=reason,
            revision=revision,
        )

    def _fail(
        self,
        construction: Construction,
        phase: PhaseName,
        reason: str,
        *,
        attempts: int,
        denials: int,
    ) -> PhaseReport:
        construction.last_error = reason
        self._persist(construction)
        self._events.append(
            construction.id,
            phase,
            PhaseOutcome.FAILED.value,
            detail=reason,
            payload={"attempts": attempts, "denials": denials},
        )
        self._logger.error(
            "phase_failed",
            construction_id=construction.id,
            phase=phase.value,
            attempts=attempts,
            reason=reason,
        )
        return self._report(
            construction,
            phase,
            PhaseOutcome.FAILED,
            attempts=attempts,
            denials=denials,
            reason=reason,
        )

    def _persist(self, construction: Construction) -> None:
        construction.updated_at = utc_now()
        self._constructions.save(construction)
        self._queue.update_status(construction.spec_ref, ConstructionStatus(construction.status))

    def _report(
        self,
        construction: Construction,
        phase: PhaseName,
        outcome: PhaseOutcome,
        **fields: Any,
    ) -> PhaseReport:
        return PhaseReport(
            construction_id=construction.id,
            phase=phase,
            outcome=outcome,
            status=ConstructionStatus(construction.status),
            next_phase=PhaseName.parse(construction.next_phase),
            **fields,
        )


def _resume_phase(status: ConstructionStatus) -> PhaseName:
    """Phase to run next for a construction imported with ``status``."""

    resume: Mapping[ConstructionStatus, PhaseName] = {
        ConstructionStatus.NOT_STARTED: PhaseName.SURVEY,
        ConstructionStatus.SPECIFIED: PhaseName.CONSTRUCT,
        ConstructionStatus.CONSTRUCTED: PhaseName.FORMALIZE,
        ConstructionStatus.FORMALIZED: PhaseName.PROVE,
        ConstructionStatus.PROVED: PhaseName.AUDIT,
        ConstructionStatus.AUDITED: PhaseName.LOG,
        ConstructionStatus.REVISION: PhaseName.CONSTRUCT,
        ConstructionStatus.BLOCKED: PhaseName.CONSTRUCT,
        ConstructionStatus.DONE: PhaseName.LOG,
    }
    return resume[status]


__all__ = ["PhaseReport", "RevisionController"]
