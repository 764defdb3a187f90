"""
proof-orchestrator — end-to-end smoke scenarios

File: tests/smoke/test_end_to_end.py
Last updated: 2026-02-16

Purpose
- Drive whole constructions through the assembled pipeline with a scripted agent and a fake
  build: the happy path, policy denials mid-phase, revision regression, and revision budget
  exhaustion surfacing to the program loop.
"""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from proof_orchestrator.control_plane.session import PhaseSession
from proof_orchestrator.domain.models import (
    ActionCategory,
    ActionRequest,
    ConstructionStatus,
    PhaseName,
    PhaseOutcome,
)
from proof_orchestrator.synthesis_plane.agent import (
    PhaseCompletion,
    PhaseContext,
    RequestRevision,
    ScriptedAgent,
)
from tests.conftest import PLACEHOLDER_PROOF, REAL_PROOF, SPEC_TEXT

_PROOF = "Proofs/X.lean"


def _write(category: ActionCategory, target: str, payload: str) -> ActionRequest:
    return ActionRequest(actor="agent", category=category, targets=(target,), payload=payload)


def _create(target: str, payload: str) -> ActionRequest:
    return _write(ActionCategory.CREATE_RESOURCE, target, payload)


def _modify(target: str, payload: str) -> ActionRequest:
    return _write(ActionCategory.MODIFY_RESOURCE, target, payload)


@pytest.mark.smoke
def test_construction_reaches_done_and_is_archived(make_pipeline, project_root: Path) -> None:
    agent = ScriptedAgent(
        {
            PhaseName.CONSTRUCT: [[_create("specs/construction-X.md", "# Plan\nsimp.\n")]],
            PhaseName.FORMALIZE: [[_create(_PROOF, PLACEHOLDER_PROOF)]],
            PhaseName.PROVE: [[_modify(_PROOF, REAL_PROOF)]],
        }
    )
    pipeline = make_pipeline(agent)

    result = pipeline.scheduler.run_program(max_cycles=3)

    assert result.succeeded
    assert result.cycles[0].construction_id == "X"
    assert result.cycles[-1].idle
    assert agent.phases_run() == list(PhaseName)
    construction = pipeline.constructions.get("X")
    assert construction is not None
    assert construction.status is ConstructionStatus.DONE
    assert construction.archived_at is not None

    archive = project_root / "results" / "X"
    manifest = json.loads((archive / "manifest.json").read_text(encoding="utf-8"))
    assert sorted(manifest["files"]) == [
        "construction/construction-X.md",
        "lean/Proofs/X.lean",
        "spec.md",
    ]
    assert manifest["verification"]["placeholder_count"] == 0
    queue_text = (project_root / "CONSTRUCTIONS.md").read_text(encoding="utf-8")
    assert "| P1 | **Lemma X** | `specs/X.md` | Done |" in queue_text
    assert pipeline.locks.lock_states() == ()
    assert (project_root / "specs" / "X.md").read_text(encoding="utf-8") == SPEC_TEXT


@pytest.mark.smoke
def test_formalize_denies_real_proofs_without_failing_the_phase(make_pipeline) -> None:
    observed: list[object] = []

    def check_still_formalizing(context: PhaseContext, session: PhaseSession) -> None:
        construction = pipeline.constructions.get(context.construction_id)
        assert construction is not None
        observed.append(construction.next_phase)
        observed.append(session.denials[-1].decision.rule_id)
        return None

    agent = ScriptedAgent(
        {
            PhaseName.FORMALIZE: [
                [
                    _create(_PROOF, REAL_PROOF),
                    check_still_formalizing,
                    _create(_PROOF, PLACEHOLDER_PROOF),
                ]
            ],
        }
    )
    pipeline = make_pipeline(agent)

    reports = pipeline.controller.run_full("specs/X.md", max_phases=4)

    formalize = reports[-1]
    assert formalize.phase is PhaseName.FORMALIZE
    assert formalize.outcome is PhaseOutcome.COMPLETED
    assert formalize.denials == 1
    assert observed == [PhaseName.FORMALIZE, "placeholder_only_proofs"]
    assert [item.allowed for item in agent.results] == [False, True]


@pytest.mark.smoke
def test_prove_cannot_touch_the_locked_specification(
    make_pipeline, project_root: Path, build_runner
) -> None:
    seen_locks: list[tuple[str, ...]] = []

    def record_locks(context: PhaseContext, session: PhaseSession) -> PhaseCompletion:
        seen_locks.append(
            tuple(lock.resource for lock in pipeline.locks.lock_states(holder="X"))
        )
        return PhaseCompletion(summary="proved")

    agent = ScriptedAgent(
        {
            PhaseName.FORMALIZE: [[_create(_PROOF, PLACEHOLDER_PROOF)]],
            PhaseName.PROVE: [
                [
                    _modify("specs/X.md", SPEC_TEXT + "\nExtra hypothesis.\n"),
                    _modify(_PROOF, REAL_PROOF),
                    record_locks,
                ]
            ],
        }
    )
    pipeline = make_pipeline(agent)

    reports = pipeline.controller.run_full("specs/X.md")

    denied = agent.results[1]
    assert not denied.allowed
    assert denied.decision.is_lock_conflict
    assert "specs/X.md" in seen_locks[0]
    assert (project_root / "specs" / "X.md").read_text(encoding="utf-8") == SPEC_TEXT
    audit = next(report for report in reports if report.phase is PhaseName.AUDIT)
    assert audit.oracle is not None and audit.oracle.passed
    assert build_runner.calls
    assert reports[-1].outcome is PhaseOutcome.DONE


@pytest.mark.smoke
def test_revision_regresses_and_the_construction_still_finishes(
    make_pipeline, project_root: Path
) -> None:
    agent = ScriptedAgent(
        {
            PhaseName.FORMALIZE: [[_create(_PROOF, PLACEHOLDER_PROOF)], []],
            PhaseName.PROVE: [
                [RequestRevision(problem="statement needs n : Nat", restart_from="formalize")],
                [_modify(_PROOF, REAL_PROOF)],
            ],
        }
    )
    pipeline = make_pipeline(agent)

    reports = pipeline.controller.run_full("specs/X.md")

    assert [report.phase for report in reports][4:] == [
        PhaseName.PROVE,
        PhaseName.FORMALIZE,
        PhaseName.PROVE,
        PhaseName.AUDIT,
        PhaseName.LOG,
    ]
    assert reports[4].outcome is PhaseOutcome.REVISION
    assert reports[-1].outcome is PhaseOutcome.DONE
    finished = pipeline.constructions.get("X")
    assert finished is not None
    assert finished.revision_count == 1
    assert (project_root / "results" / "revisions" / "revision-1.yaml").is_file()
    [record] = pipeline.revisions.list_for("X")
    assert record.restart_from is PhaseName.FORMALIZE
    assert record.issued_at is PhaseName.PROVE


@pytest.mark.smoke
def test_exhausted_revision_budget_blocks_until_acknowledged(make_pipeline) -> None:
    regress = RequestRevision(problem="still wrong", restart_from="construct")
    agent = ScriptedAgent(
        {
            PhaseName.FORMALIZE: [[_create(_PROOF, PLACEHOLDER_PROOF)]],
            PhaseName.PROVE: [[regress]],
        }
    )
    pipeline = make_pipeline(agent, overrides={"pipeline": {"max_revisions": 1}})

    result = pipeline.scheduler.run_program(max_cycles=4)

    assert not result.succeeded
    assert result.blocked_unacknowledged == ("X",)
    construction = pipeline.constructions.get("X")
    assert construction is not None
    assert construction.status is ConstructionStatus.BLOCKED
    assert "revision budget exhausted" in (construction.blocked_reason or "")

    pipeline.scheduler.acknowledge("X")
    assert pipeline.scheduler.blocked_unacknowledged() == ()
    reopened = pipeline.scheduler.unblock("X")
    assert reopened.status is ConstructionStatus.REVISION
    assert reopened.revision_count == 0
