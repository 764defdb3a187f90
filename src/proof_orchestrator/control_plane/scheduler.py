"""Deterministic work-queue scheduler that advances constructions across program cycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import structlog

from proof_orchestrator.domain.errors import PipelineError
from proof_orchestrator.domain.models import (
    Construction,
    ConstructionStatus,
    PhaseOutcome,
    utc_now,
)
from proof_orchestrator.observability.logging import correlation_scope

if TYPE_CHECKING:
    from proof_orchestrator.control_plane.controller import PhaseReport, RevisionController
    from proof_orchestrator.integration_plane.queue_file import ConstructionQueue


@dataclass(frozen=True, slots=True)
class SyncResult:
    registered: tuple[str, ...]
    rewritten: bool


@dataclass(frozen=True, slots=True)
class CycleResult:
    """One scheduler cycle: the construction it picked and the phases it ran."""

    cycle: int
    construction_id: str | None
    reports: tuple[PhaseReport, ...] = ()
    blocked_unacknowledged: tuple[str, ...] = ()

    @property
    def idle(self) -> bool:
        return self.construction_id is None

    @property
    def failed(self) -> bool:
        return any(report.outcome is PhaseOutcome.FAILED for report in self.reports)

    @property
    def newly_blocked(self) -> bool:
        return any(report.outcome is PhaseOutcome.BLOCKED for report in self.reports)


@dataclass(slots=True)
class ProgramResult:
    cycles: list[CycleResult] = field(default_factory=list)
    failed: set[str] = field(default_factory=set)
    exhausted: bool = False

    @property
    def blocked_unacknowledged(self) -> tuple[str, ...]:
        if not self.cycles:
            return ()
        return self.cycles[-1].blocked_unacknowledged

    @property
    def reports(self) -> tuple[PhaseReport, ...]:
        return tuple(report for cycle in self.cycles for report in cycle.reports)

    @property
    def succeeded(self) -> bool:
        return not self.failed and not self.blocked_unacknowledged


class WorkQueueScheduler:
    """Priority-first construction selection with per-run failure isolation."""

    def __init__(
        self,
        controller: RevisionController,
        queue: ConstructionQueue,
        *,
        phases_per_cycle: int = 7,
        logger: Any | None = None,
    ) -> None:
        if phases_per_cycle <= 0:
            raise ValueError("phases_per_cycle must be > 0")
        self._controller = controller
        self._queue = queue
        self._phases_per_cycle = phases_per_cycle
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def phases_per_cycle(self) -> int:
        return self._phases_per_cycle

    def sync(self) -> SyncResult:
        """Register queue rows the database does not know and refresh the status column."""

        repo = self._controller.constructions
        registered: list[str] = []
        updates: dict[str, ConstructionStatus] = {}
        for entry in self._queue.entries():
            known = repo.find(entry.construction_id) or repo.find(entry.spec_ref)
            if known is None:
                known = self._controller.register(
                    entry.spec_ref,
                    name=entry.name,
                    priority=entry.priority,
                    position=entry.position,
                    status=entry.status,
                )
                registered.append(known.id)
            updates[entry.spec_ref] = ConstructionStatus(known.status)
        rewritten = self._queue.update_many(updates) > 0
        if registered or rewritten:
            self._logger.info(
                "queue_synced", registered=registered, status_column_rewritten=rewritten
            )
        return SyncResult(registered=tuple(registered), rewritten=rewritten)

    def next(self, *, exclude: frozenset[str] | set[str] = frozenset()) -> Construction | None:
        """Highest-priority construction that is neither Done nor Blocked."""

        if not exclude:
            return self._controller.constructions.next_eligible()
        for candidate in self._eligible():
            if candidate.id not in exclude:
                return candidate
        return None

    def blocked_unacknowledged(self) -> tuple[str, ...]:
        blocked = self._controller.constructions.list(statuses=[ConstructionStatus.BLOCKED])
        return tuple(item.id for item in blocked if not item.blocked_acknowledged)

    def run_cycle(
        self,
        *,
        cycle: int = 1,
        exclude: frozenset[str] | set[str] = frozenset(),
    ) -> CycleResult:
        construction = self.next(exclude=exclude)
        reports: tuple[PhaseReport, ...] = ()
        if construction is not None:
            with correlation_scope(cycle=cycle, construction_id=construction.id):
                self._logger.info(
                    "cycle_started",
                    cycle=cycle,
                    construction_id=construction.id,
                    priority=construction.priority_label,
                    status=ConstructionStatus(construction.status).value,
                )
                reports = self._controller.run_full(
                    construction.id, max_phases=self._phases_per_cycle
                )
        blocked = self.blocked_unacknowledged()
        for construction_id in blocked:
            self._logger.warning(
                "blocked_unacknowledged", cycle=cycle, construction_id=construction_id
            )
        return CycleResult(
            cycle=cycle,
            construction_id=construction.id if construction is not None else None,
            reports=reports,
            blocked_unacknowledged=blocked,
        )

    def run_program(self, *, max_cycles: int = 20) -> ProgramResult:
        """Loop cycles until the queue is idle or ``max_cycles`` is spent."""

        if max_cycles <= 0:
            raise ValueError("max_cycles must be > 0")
        self.sync()
        result = ProgramResult()
        for cycle in range(1, max_cycles + 1):
            cycle_result = self.run_cycle(cycle=cycle, exclude=result.failed)
            result.cycles.append(cycle_result)
            if cycle_result.idle:
                break
            if cycle_result.failed and cycle_result.construction_id is not None:
                result.failed.add(cycle_result.construction_id)
        else:
            result.exhausted = self.next(exclude=result.failed) is not None
        self._logger.info(
            "program_finished",
            cycles=len(result.cycles),
            failed=sorted(result.failed),
            blocked_unacknowledged=list(result.blocked_unacknowledged),
            exhausted=result.exhausted,
        )
        return result

    def acknowledge(self, reference: str) -> Construction:
        construction = self._require_blocked(reference)
        construction.blocked_acknowledged = True
        construction.updated_at = utc_now()
        self._controller.constructions.save(construction)
        self._logger.info("blocked_acknowledged", construction_id=construction.id)
        return construction

    def unblock(self, reference: str) -> Construction:
        """Return a Blocked construction to Revision with a fresh revision budget."""

        construction = self._require_blocked(reference)
        construction.status = ConstructionStatus.REVISION
        construction.revision_count = 0
        construction.blocked_reason = None
        construction.blocked_acknowledged = False
        construction.last_error = None
        construction.updated_at = utc_now()
        self._controller.constructions.save(construction)
        self._queue.update_status(construction.spec_ref, ConstructionStatus.REVISION)
        self._logger.info(
            "construction_unblocked",
            construction_id=construction.id,
            next_phase=str(construction.next_phase),
        )
        return construction

    def _require_blocked(self, reference: str) -> Construction:
        construction = self._controller.resolve(reference)
        if construction.status is not ConstructionStatus.BLOCKED:
            raise PipelineError(
                f"construction is {ConstructionStatus(construction.status).display_name}, "
                "not Blocked",
                construction_id=construction.id,
            )
        return construction

    def _eligible(self) -> list[Construction]:
        eligible = [
            ConstructionStatus.NOT_STARTED,
            ConstructionStatus.SPECIFIED,
            ConstructionStatus.CONSTRUCTED,
            ConstructionStatus.FORMALIZED,
            ConstructionStatus.PROVED,
            ConstructionStatus.AUDITED,
            ConstructionStatus.REVISION,
        ]
        return self._controller.constructions.list(statuses=eligible)


__all__ = ["CycleResult", "ProgramResult", "SyncResult", "WorkQueueScheduler"]
