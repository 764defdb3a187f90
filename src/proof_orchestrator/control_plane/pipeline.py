"""
proof-orchestrator — pipeline assembly

File: src/proof_orchestrator/control_plane/pipeline.py
Last updated: 2026-02-17

Purpose
- Wire the effective config into one set of collaborators (state database, lock manager,
  policy engine, oracle, agent, controller, scheduler) shared by the CLI and the smoke tests.
- Side-effect-free status introspection over the same collaborators; a read-only build
  never creates the state file.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from proof_orchestrator.config.loader import ConfigLoadError
from proof_orchestrator.control_plane.budgets import PhaseAttemptBudget, RevisionBudget
from proof_orchestrator.control_plane.controller import RevisionController
from proof_orchestrator.control_plane.lock_manager import ResourceLockManager
from proof_orchestrator.control_plane.phases import ResourceLayout
from proof_orchestrator.control_plane.scheduler import WorkQueueScheduler
from proof_orchestrator.domain.models import Construction, LockState, RevisionRecord
from proof_orchestrator.integration_plane.archive import ResultsArchive
from proof_orchestrator.integration_plane.executor import ActionExecutor
from proof_orchestrator.integration_plane.queue_file import ConstructionQueue, QueueEntry
from proof_orchestrator.integration_plane.revision_file import RevisionFile
from proof_orchestrator.persistence.repositories import (
    ConstructionRepo,
    PhaseEventRepo,
    RevisionRepo,
)
from proof_orchestrator.persistence.state_db import StateDB
from proof_orchestrator.quality.proof_audit import ProofAuditResult, theorem_signatures
from proof_orchestrator.security.forbidden import ForbiddenContentScanner
from proof_orchestrator.security.policy_engine import PolicyEngine
from proof_orchestrator.synthesis_plane.agent import (
    CommandAgent,
    PhaseContext,
    PhaseContextBuilder,
    ReasoningAgent,
)
from proof_orchestrator.synthesis_plane.prompt_templates import PromptTemplateEngine
from proof_orchestrator.verification_plane.oracle import (
    CommandRunner,
    OracleReport,
    VerificationOracle,
)


class _UnconfiguredAgent:
    """Stands in until ``agent.command`` is set; any phase attempt is a config error."""

    def run_phase(self, context: PhaseContext, session: object) -> Any:
        raise ConfigLoadError(
            f"cannot run {context.phase.label} for {context.construction_id}: no reasoning "
            "agent configured; set agent.command in orchestrator.toml or PROOF_AGENT_COMMAND"
        )


@dataclass(frozen=True, slots=True)
class StatusSnapshot:
    placeholder_count: int
    unsound_count: int
    theorems: tuple[tuple[str, tuple[str, ...]], ...]
    locks: tuple[LockState, ...]
    queue: tuple[QueueEntry, ...]
    constructions: tuple[Construction, ...]
    pending_revision: RevisionRecord | None
    revision_file_present: bool
    state_db_issues: tuple[str, ...] = ()
    oracle: OracleReport | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "placeholder_count": self.placeholder_count,
            "unsound_count": self.unsound_count,
            "theorems": {path: list(names) for path, names in self.theorems},
            "locks": [lock.to_dict() for lock in self.locks],
            "queue": [
                {
                    "priority": f"P{entry.priority}",
                    "name": entry.name,
                    "spec_ref": entry.spec_ref,
                    "status": entry.status_text,
                }
                for entry in self.queue
            ],
            "constructions": [item.to_dict() for item in self.constructions],
            "revision_file_present": self.revision_file_present,
            "state_db_issues": list(self.state_db_issues),
            "pending_revision": (
                self.pending_revision.to_dict() if self.pending_revision is not None else None
            ),
            "oracle": (
                None
                if self.oracle is None
                else {
                    "passed": self.oracle.passed,
                    "build_passed": self.oracle.build_passed,
                    "errors": list(self.oracle.errors),
                }
            ),
        }


@dataclass(frozen=True, slots=True)
class Pipeline:
    config: Mapping[str, Any]
    layout: ResourceLayout
    db: StateDB
    constructions: ConstructionRepo
    revisions: RevisionRepo
    events: PhaseEventRepo
    locks: ResourceLockManager
    queue: ConstructionQueue
    oracle: VerificationOracle
    controller: RevisionController
    scheduler: WorkQueueScheduler

    def status(self, *, build: bool = False) -> StatusSnapshot:
        """Introspect proofs, locks, and queue without changing project state."""

        audit: ProofAuditResult = self.oracle.audit()
        theorems: list[tuple[str, tuple[str, ...]]] = []
        for path in self.layout.proof_files():
            names = theorem_signatures(path.read_text(encoding="utf-8", errors="replace"))
            if names:
                theorems.append((self.layout.key(path), names))
        revision_file = RevisionFile(self.layout.revision_file, root=self.layout.root)
        pending: RevisionRecord | None = None
        if revision_file.exists():
            owner = self._revision_owner()
            if owner is not None:
                pending = revision_file.read(construction_id=owner.id, issued_at=owner.next_phase)
        return StatusSnapshot(
            placeholder_count=audit.placeholder_count,
            unsound_count=audit.unsound_count,
            theorems=tuple(theorems),
            locks=self.locks.lock_states(),
            queue=self.queue.entries(),
            constructions=tuple(self.constructions.list()),
            pending_revision=pending,
            revision_file_present=revision_file.exists(),
            state_db_issues=self.db.integrity_check(),
            oracle=self.oracle.verify(build=True) if build else None,
        )

    def close(self) -> None:
        self.db.close()

    def _revision_owner(self) -> Construction | None:
        for item in self.constructions.list():
            if not item.is_eligible:
                continue
            return item
        return None


def build_pipeline(
    config: Mapping[str, Any],
    *,
    root: Path | None = None,
    agent: ReasoningAgent | None = None,
    runner: CommandRunner | None = None,
    logger: Any | None = None,
    read_only: bool = False,
) -> Pipeline:
    """Assemble the collaborators for one orchestrator run from the effective config.

    ``read_only`` opens the state file without creating or migrating it, for ``status``.
    """

    project_root = (root if root is not None else Path.cwd()).resolve()
    log = logger if logger is not None else structlog.get_logger(__name__)
    layout = ResourceLayout.from_config(config, root=project_root)
    paths = config["paths"]
    pipeline_cfg = config["pipeline"]
    verification = config["verification"]
    agent_cfg = config["agent"]
    policy_cfg = config["policy"]

    db = StateDB(layout.resolve(paths["state_db"]), read_only=read_only)
    db.ensure_schema()
    constructions = ConstructionRepo(db)
    revisions = RevisionRepo(db)
    events = PhaseEventRepo(db)
    locks = ResourceLockManager(
        db, layout=layout, mirror_file_modes=bool(config["locks"]["mirror_file_modes"])
    )
    policy = PolicyEngine(
        layout,
        scanner=ForbiddenContentScanner(policy_cfg["extra_forbidden_patterns"]),
        command_scan_mode=policy_cfg["command_scan_mode"],
    )
    oracle = VerificationOracle(
        lean_dir=layout.lean_dir,
        proof_files=layout.proof_files,
        build_command=verification["build_command"],
        timeout_seconds=float(verification["timeout_seconds"]),
        runner=runner,
    )
    if agent is None:
        command = str(agent_cfg["command"]).strip()
        agent = CommandAgent(command, cwd=layout.root) if command else _UnconfiguredAgent()
    templates = PromptTemplateEngine(
        layout.resolve(paths["prompt_dir"]), hygiene_mode=agent_cfg["prompt_hygiene"]
    )
    queue = ConstructionQueue(layout.constructions_file)
    controller = RevisionController(
        layout=layout,
        constructions=constructions,
        revisions=revisions,
        events=events,
        locks=locks,
        policy=policy,
        executor=ActionExecutor(layout),
        oracle=oracle,
        agent=agent,
        context_builder=PhaseContextBuilder(layout, templates=templates),
        queue=queue,
        archive=ResultsArchive(layout),
        revision_budget=RevisionBudget(int(pipeline_cfg["max_revisions"])),
        attempt_budget=PhaseAttemptBudget(int(pipeline_cfg["max_phase_attempts"])),
    )
    scheduler = WorkQueueScheduler(
        controller, queue, phases_per_cycle=int(pipeline_cfg["phases_per_cycle"])
    )
    log.debug(
        "pipeline_built",
        root=layout.root.as_posix(),
        state_db=db.path.as_posix(),
        agent=type(agent).__name__,
        read_only=read_only,
    )
    return Pipeline(
        config=config,
        layout=layout,
        db=db,
        constructions=constructions,
        revisions=revisions,
        events=events,
        locks=locks,
        queue=queue,
        oracle=oracle,
        controller=controller,
        scheduler=scheduler,
    )


__all__ = ["Pipeline", "StatusSnapshot", "build_pipeline"]
