"""Revision file parsing and the on-disk request lifecycle."""

from __future__ import annotations

from pathlib import Path

import pytest

from proof_orchestrator.domain.models import PhaseName, RevisionRecord
from proof_orchestrator.integration_plane.revision_file import (
    DEFAULT_RESTART_PHASE,
    RevisionFile,
    parse_revision_text,
    render_revision_text,
)

_REVISION = """\
# Revision request

## restart_from: `SPECIFY`

## Problem
The statement quantifies over Int but the proof needs Nat.

## Evidence
Proofs/X.lean:4:2: error: failed to synthesize OfNat Int
"""


def test_sections_and_restart_phase_are_parsed() -> None:
    parsed = parse_revision_text(_REVISION)

    assert parsed.restart_from is PhaseName.SPECIFY
    assert parsed.restart_from_recognized
    assert parsed.problem == "The statement quantifies over Int but the proof needs Nat."
    assert parsed.evidence.startswith("Proofs/X.lean:4:2: error")


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        ("restart_from: construct", PhaseName.CONSTRUCT),
        ("Restart from: Formalize", PhaseName.FORMALIZE),
        ("### restart-from: `survey`", PhaseName.SURVEY),
    ],
)
def test_restart_line_spellings(line: str, expected: PhaseName) -> None:
    assert parse_revision_text(f"{line}\n\n## problem\nx\n").restart_from is expected


def test_unknown_or_missing_restart_falls_back_to_construct() -> None:
    unknown = parse_revision_text("restart_from: polish\n\n## problem\nx\n")
    missing = parse_revision_text("## problem\nx\n")

    assert unknown.restart_from is DEFAULT_RESTART_PHASE is PhaseName.CONSTRUCT
    assert not unknown.restart_from_recognized
    assert missing.restart_from is PhaseName.CONSTRUCT


def test_body_without_problem_section_becomes_the_problem() -> None:
    parsed = parse_revision_text("restart_from: PROVE\n\nThe induction hypothesis is too weak.\n")

    assert parsed.problem == "The induction hypothesis is too weak."
    assert parsed.evidence == ""
    assert parse_revision_text("   ").problem == (
        "revision requested without a problem description"
    )


def test_render_then_parse_keeps_the_request() -> None:
    record = RevisionRecord(
        construction_id="X",
        problem="Needs a stronger lemma.",
        evidence="goal n + 0 = n unsolved",
        restart_from=PhaseName.FORMALIZE,
        issued_at=PhaseName.AUDIT,
    )

    parsed = parse_revision_text(render_revision_text(record))

    assert (parsed.problem, parsed.evidence, parsed.restart_from) == (
        record.problem,
        record.evidence,
        record.restart_from,
    )


def test_revision_file_read_and_remove(tmp_path: Path) -> None:
    revision = RevisionFile(tmp_path / "REVISION.md", root=tmp_path)

    assert revision.read(construction_id="X", issued_at=PhaseName.AUDIT) is None
    assert revision.remove() is False

    revision.path.write_text(_REVISION, encoding="utf-8")
    record = revision.read(construction_id="X", issued_at=PhaseName.AUDIT)

    assert record is not None
    assert record.construction_id == "X"
    assert record.issued_at is PhaseName.AUDIT
    assert record.is_regression
    assert record.sequence is None
    assert revision.remove() is True
    assert not revision.exists()


def test_revision_file_outside_root_is_not_removed(tmp_path: Path) -> None:
    outside = tmp_path / "elsewhere" / "REVISION.md"
    outside.parent.mkdir()
    outside.write_text("## problem\nx\n", encoding="utf-8")
    root = tmp_path / "project"
    root.mkdir()

    with pytest.raises(ValueError, match="outside project root"):
        RevisionFile(outside, root=root).remove()
    assert outside.exists()
