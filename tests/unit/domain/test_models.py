"""Unit tests for core domain models."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone

import pytest

from proof_orchestrator.domain import models
from proof_orchestrator.domain.errors import (
    LockConflict,
    PipelineError,
    PolicyViolation,
    RevisionExhausted,
)
from proof_orchestrator.domain.models import (
    PHASE_ORDER,
    STATUS_AFTER_PHASE,
    ActionCategory,
    ActionRequest,
    Construction,
    ConstructionStatus,
    LockMode,
    LockState,
    PhaseName,
    PolicyDecision,
    RevisionRecord,
    ViolationKind,
)


def _utc_dt() -> datetime:
    return datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def test_phase_order_and_successor_chain() -> None:
    assert [phase.value for phase in PHASE_ORDER] == [
        "survey",
        "specify",
        "construct",
        "formalize",
        "prove",
        "audit",
        "log",
    ]
    assert PhaseName.SURVEY.successor() is PhaseName.SPECIFY
    assert PhaseName.AUDIT.successor() is PhaseName.LOG
    assert PhaseName.LOG.successor() is None
    assert PhaseName.PROVE.ordinal == 4
    assert PhaseName.FORMALIZE.label == "Formalize"


def test_phase_parse_accepts_names_and_indices() -> None:
    assert PhaseName.parse(" Prove ") is PhaseName.PROVE
    assert PhaseName.parse(0) is PhaseName.SURVEY
    assert PhaseName.parse(PhaseName.LOG) is PhaseName.LOG

    with pytest.raises(ValueError, match="unknown phase"):
        PhaseName.parse("verify")
    with pytest.raises(ValueError, match="out of range"):
        PhaseName.parse(7)
    with pytest.raises(ValueError, match="unknown phase"):
        PhaseName.parse(True)


def test_status_display_names_round_trip() -> None:
    assert ConstructionStatus.NOT_STARTED.display_name == "Not started"
    for status in ConstructionStatus:
        assert ConstructionStatus.from_display(status.display_name) is status
    assert ConstructionStatus.from_display("**Proved**") is ConstructionStatus.PROVED
    assert ConstructionStatus.from_display("not-started") is ConstructionStatus.NOT_STARTED
    assert ConstructionStatus.from_display("in flight") is None


def test_terminal_statuses_and_phase_status_table() -> None:
    terminal = {status for status in ConstructionStatus if status.is_terminal}
    assert terminal == {ConstructionStatus.DONE, ConstructionStatus.BLOCKED}
    assert STATUS_AFTER_PHASE[PhaseName.SURVEY] is None
    assert STATUS_AFTER_PHASE[PhaseName.LOG] is ConstructionStatus.DONE
    assert set(STATUS_AFTER_PHASE) == set(PHASE_ORDER)


@pytest.mark.parametrize(
    ("spec_ref", "expected"),
    [
        ("specs/X.md", "X"),
        ("`specs/nested/Lemma_2.md`", "Lemma_2"),
        ("specs\\windows\\Y.md", "Y"),
        ("specs/odd name!.md", "odd-name"),
    ],
)
def test_construction_id_for(spec_ref: str, expected: str) -> None:
    assert models.construction_id_for(spec_ref) == expected


def test_construction_id_for_rejects_empty_stem() -> None:
    with pytest.raises(ValueError, match="invalid construction id"):
        models.construction_id_for("specs/.md")


def test_parse_priority() -> None:
    assert models.parse_priority("P1") == 1
    assert models.parse_priority(" p12 ") == 12
    assert models.parse_priority("high") is None


def test_action_request_validation() -> None:
    command = ActionRequest(actor="agent", category=ActionCategory.EXECUTE_COMMAND, payload="ls")
    assert command.targets == ()
    assert not command.category.is_write

    write = ActionRequest(
        actor=" agent ", category="modify_resource", targets=["specs/X.md"], payload="x"
    )
    assert write.actor == "agent"
    assert write.category is ActionCategory.MODIFY_RESOURCE
    assert write.targets == ("specs/X.md",)

    with pytest.raises(ValueError, match="at least one target"):
        ActionRequest(actor="agent", category=ActionCategory.CREATE_RESOURCE)
    with pytest.raises(ValueError, match="got a string"):
        ActionRequest(
            actor="agent", category=ActionCategory.CREATE_RESOURCE, targets="specs/X.md"
        )
    with pytest.raises(ValueError, match="invalid value 'delete_resource'"):
        ActionRequest(actor="agent", category="delete_resource", targets=("a",))


def test_policy_decision_invariants() -> None:
    allowed = PolicyDecision.allow()
    assert allowed.allowed and allowed.reason == "" and not allowed.is_lock_conflict

    denied = PolicyDecision.deny(
        "read-only", rule_id="read_only.proof", violation=ViolationKind.LOCK_CONFLICT
    )
    assert denied.is_lock_conflict
    assert denied.to_dict() == {
        "allowed": False,
        "reason": "read-only",
        "rule_id": "read_only.proof",
        "violation": "lock_conflict",
    }

    with pytest.raises(ValueError, match="must carry a reason"):
        PolicyDecision(allowed=False, reason="  ")
    with pytest.raises(ValueError, match="carries no reason"):
        PolicyDecision(allowed=True, reason="why")


def test_revision_record_regression_and_sequence() -> None:
    record = RevisionRecord(
        construction_id="X",
        problem="hypothesis too weak",
        evidence="counterexample n = 0",
        restart_from="construct",
        issued_at=PhaseName.AUDIT,
        created_at=_utc_dt(),
    )
    assert record.restart_from is PhaseName.CONSTRUCT
    assert record.is_regression
    assert record.sequence is None

    numbered = record.with_sequence(3)
    assert numbered.sequence == 3
    assert numbered.created_at == record.created_at

    skip = RevisionRecord(
        construction_id="X", problem="p", evidence="", restart_from="log", issued_at="audit"
    )
    assert not skip.is_regression

    with pytest.raises(ValueError, match="must be >= 1"):
        record.with_sequence(0)


def test_revision_record_from_dict_round_trip() -> None:
    record = RevisionRecord(
        construction_id="X",
        problem="gap",
        evidence="",
        restart_from=PhaseName.SPECIFY,
        issued_at=PhaseName.AUDIT,
        sequence=2,
        created_at=_utc_dt(),
    )
    payload = json.loads(record.to_json())
    assert payload["created_at"] == "2026-02-01T12:00:00.000000Z"
    assert RevisionRecord.from_dict(payload) == record


def test_construction_defaults_and_normalization() -> None:
    construction = Construction(id="X", spec_ref="specs/X.md", priority=1, status="proved")
    assert construction.name == "X"
    assert construction.status is ConstructionStatus.PROVED
    assert construction.next_phase is PhaseName.SURVEY
    assert construction.priority_label == "P1"
    assert construction.is_eligible

    shifted = datetime(2026, 2, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    construction = Construction(id="X", spec_ref="specs/X.md", created_at=shifted)
    assert construction.created_at == _utc_dt()
    assert construction.created_at.tzinfo is UTC


def test_construction_rejects_invalid_state() -> None:
    with pytest.raises(ValueError, match="must record a reason"):
        Construction(id="X", spec_ref="specs/X.md", status=ConstructionStatus.BLOCKED)
    with pytest.raises(ValueError, match="invalid construction id"):
        Construction(id="../X", spec_ref="specs/X.md")
    with pytest.raises(ValueError, match="timezone-aware"):
        Construction(id="X", spec_ref="specs/X.md", created_at=datetime(2026, 1, 1))
    with pytest.raises(ValueError, match="must be >= 0"):
        Construction(id="X", spec_ref="specs/X.md", revision_count=-1)

    blocked = Construction(
        id="X", spec_ref="specs/X.md", status="blocked", blocked_reason="budget"
    )
    assert not blocked.is_eligible


def test_lock_state_requires_phase_when_read_only() -> None:
    state = LockState(resource="specs/X.md", mode="read_only", entered_phase="construct")
    assert state.mode is LockMode.READ_ONLY
    assert state.entered_phase is PhaseName.CONSTRUCT
    assert LockState(resource="specs/X.md", mode=LockMode.WRITABLE).entered_phase is None

    with pytest.raises(ValueError, match="record the phase"):
        LockState(resource="specs/X.md", mode=LockMode.READ_ONLY)


def test_error_taxonomy_messages_and_payloads() -> None:
    decision = PolicyDecision.deny(
        "specs/X.md is read-only in Prove",
        rule_id="read_only.specification",
        violation=ViolationKind.LOCK_CONFLICT,
    )
    conflict = LockConflict(decision, construction_id="X")
    assert isinstance(conflict, PolicyViolation)
    assert isinstance(conflict, PipelineError)
    assert conflict.reason == "specs/X.md is read-only in Prove"
    assert str(conflict) == "[X] specs/X.md is read-only in Prove"
    assert conflict.decision is decision

    exhausted = RevisionExhausted("budget spent")
    assert str(exhausted) == "budget spent"
    assert exhausted.record is None
