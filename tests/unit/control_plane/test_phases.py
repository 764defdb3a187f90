from __future__ import annotations

from pathlib import Path

import pytest

from proof_orchestrator.config.schema import default_config
from proof_orchestrator.control_plane.phases import (
    LOCKABLE_CLASSES,
    PhaseRules,
    ResourceClass,
    ResourceLayout,
    is_posix_path_like,
    iter_rules,
    rules_for,
)
from proof_orchestrator.domain.models import PHASE_ORDER, ActionCategory, PhaseName

RC = ResourceClass


@pytest.fixture
def layout(tmp_path: Path) -> ResourceLayout:
    return ResourceLayout.from_config(default_config(), root=tmp_path)


def test_registry_covers_phases_in_order() -> None:
    assert tuple(rules.phase for rules in iter_rules()) == PHASE_ORDER
    assert rules_for("prove") is rules_for(PhaseName.PROVE)
    with pytest.raises(ValueError, match="unknown phase"):
        rules_for("review")


def test_survey_and_log_are_execute_only_and_fully_read_only() -> None:
    for phase in (PhaseName.SURVEY, PhaseName.LOG):
        rules = rules_for(phase)
        assert rules.allows(ActionCategory.EXECUTE_COMMAND)
        assert not rules.allows(ActionCategory.CREATE_RESOURCE)
        assert not rules.allows(ActionCategory.MODIFY_RESOURCE)
        assert rules.writable == {RC.OTHER}
        assert rules.requires == {RC.SPECIFICATION}


@pytest.mark.parametrize(
    ("phase", "writable"),
    [
        (PhaseName.SPECIFY, {RC.SPECIFICATION, RC.DOMAIN_CONTEXT, RC.OTHER}),
        (PhaseName.CONSTRUCT, {RC.CONSTRUCTION_DOC, RC.DOMAIN_CONTEXT, RC.OTHER}),
        (PhaseName.FORMALIZE, {RC.PROOF, RC.OTHER}),
        (PhaseName.PROVE, {RC.PROOF, RC.OTHER}),
        (PhaseName.AUDIT, {RC.AUDIT_LOG, RC.REVISION, RC.OTHER}),
    ],
)
def test_writable_classes_per_phase(phase: PhaseName, writable: set[ResourceClass]) -> None:
    assert rules_for(phase).writable == writable


def test_phase_content_constraints_and_requirements() -> None:
    assert rules_for(PhaseName.FORMALIZE).placeholder_only_proofs
    assert not rules_for(PhaseName.PROVE).placeholder_only_proofs
    assert rules_for(PhaseName.AUDIT).requires_oracle_pass
    assert rules_for(PhaseName.SPECIFY).requires == frozenset()
    assert rules_for(PhaseName.PROVE).requires == {RC.SPECIFICATION, RC.PROOF}
    assert rules_for(PhaseName.PROVE).lockable == {
        RC.SPECIFICATION,
        RC.CONSTRUCTION_DOC,
        RC.DOMAIN_CONTEXT,
    }
    for rules in iter_rules():
        assert rules.lockable <= LOCKABLE_CLASSES
        assert rules.is_read_only(RC.QUEUE)
        assert rules.is_read_only(RC.RESULTS)


def test_rules_reject_writable_orchestrator_resources() -> None:
    with pytest.raises(ValueError, match="queue and results must stay read-only"):
        PhaseRules(
            phase=PhaseName.PROVE,
            allowed_categories=frozenset(ActionCategory),
            read_only=frozenset({RC.RESULTS}),
        )


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("specs/X.md", RC.SPECIFICATION),
        ("specs/construction-X.md", RC.CONSTRUCTION_DOC),
        ("DOMAIN_CONTEXT.md", RC.DOMAIN_CONTEXT),
        ("CONSTRUCTIONS.md", RC.QUEUE),
        ("REVISION.md", RC.REVISION),
        ("CONSTRUCTION_LOG.md", RC.AUDIT_LOG),
        ("Proofs/X.lean", RC.PROOF),
        ("results/X/lean/X.lean", RC.RESULTS),
        (".lake/packages/mathlib/Mathlib.lean", RC.OTHER),
        ("notes/scratch.txt", RC.OTHER),
        ("specs", RC.OTHER),
    ],
)
def test_classify_paths(layout: ResourceLayout, path: str, expected: ResourceClass) -> None:
    assert layout.classify(path) is expected


def test_classify_absolute_and_dotted_paths(layout: ResourceLayout, tmp_path: Path) -> None:
    assert layout.classify(tmp_path / "specs" / "X.md") is RC.SPECIFICATION
    assert layout.classify("specs/../specs/X.md") is RC.SPECIFICATION
    assert layout.key(tmp_path / "specs" / "X.md") == "specs/X.md"
    assert layout.key("/elsewhere/file.txt") == "/elsewhere/file.txt"


@pytest.mark.parametrize(
    ("pattern", "expected"),
    [
        ("*.lean", RC.PROOF),
        ("Proofs/**/*.lean", RC.PROOF),
        ("specs/*.md", RC.SPECIFICATION),
        ("specs/construction-*", RC.CONSTRUCTION_DOC),
        ("results/*", RC.RESULTS),
        ("build*", RC.OTHER),
        ("specs/X.md", RC.SPECIFICATION),
    ],
)
def test_classify_patterns(layout: ResourceLayout, pattern: str, expected: ResourceClass) -> None:
    assert layout.classify_pattern(pattern) is expected


def test_resources_for_lists_existing_artifacts(layout: ResourceLayout, tmp_path: Path) -> None:
    (tmp_path / "specs").mkdir()
    (tmp_path / "specs" / "X.md").write_text("claim\n", encoding="utf-8")
    (tmp_path / "specs" / "construction-X.md").write_text("doc\n", encoding="utf-8")
    (tmp_path / "specs" / "construction-Y.md").write_text("doc\n", encoding="utf-8")
    (tmp_path / "Proofs").mkdir()
    (tmp_path / "Proofs" / "X.lean").write_text("theorem x : True := sorry\n", encoding="utf-8")
    (tmp_path / ".lake").mkdir()
    (tmp_path / ".lake" / "Dep.lean").write_text("", encoding="utf-8")
    (tmp_path / "results" / "X").mkdir(parents=True)
    (tmp_path / "results" / "X" / "Old.lean").write_text("", encoding="utf-8")

    keys = layout.resources_for(
        {RC.SPECIFICATION, RC.CONSTRUCTION_DOC, RC.DOMAIN_CONTEXT, RC.PROOF},
        construction_id="X",
        spec_ref="specs/X.md",
    )
    assert keys == ("Proofs/X.lean", "specs/X.md", "specs/construction-X.md")
    assert layout.proof_files() == (tmp_path / "Proofs" / "X.lean",)


def test_from_config_requires_paths_section(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="missing the paths section"):
        ResourceLayout.from_config({}, root=tmp_path)


def test_is_posix_path_like() -> None:
    assert is_posix_path_like("specs/X.md")
    assert is_posix_path_like("X.lean")
    assert not is_posix_path_like("--force")
    assert not is_posix_path_like("echo")
