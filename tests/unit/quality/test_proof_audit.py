"""
proof-orchestrator — unit tests for the Lean proof-artifact audit

File: tests/unit/quality/test_proof_audit.py
Last updated: 2026-02-13

Purpose
- Pin comment stripping, identifier-bounded placeholder and unsound counting, signature
  extraction, the real-proof classifier used by Formalize, and the status text format.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from proof_orchestrator.quality.proof_audit import (
    UNSOUND_TOKENS,
    audit_text,
    contains_real_proof,
    count_placeholders,
    count_unsound,
    format_text,
    run_proof_audit,
    strip_lean_comments,
    theorem_signatures,
)

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st

    HYPOTHESIS_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - fallback path
    HYPOTHESIS_AVAILABLE = False

_LEAN = """\
import Mathlib

/- Module doc mentioning sorry and axiom.
   /- nested block with sorry -/ still a comment -/
namespace X

-- sorry in a line comment does not count
theorem x_add_zero (n : Nat) : n + 0 = n := by
  sorry

@[simp] private lemma helper : True := trivial

theorem uses_sorry_lemma : True := sorry_lemma

axiom choice_like : False

end X
"""


def test_strip_lean_comments_preserves_layout() -> None:
    stripped = strip_lean_comments(_LEAN)

    assert len(stripped) == len(_LEAN)
    assert stripped.count("\n") == _LEAN.count("\n")
    assert "nested" not in stripped
    assert "line comment" not in stripped
    assert "theorem x_add_zero" in stripped


def test_placeholder_and_unsound_counts_are_identifier_bounded() -> None:
    assert count_placeholders(_LEAN) == 1
    assert count_unsound(_LEAN) == 1
    assert count_placeholders("theorem t : p := Nat.sorry") == 0
    assert count_unsound("-- axioms are listed below\ndef axioms := 3") == 0
    assert UNSOUND_TOKENS == ("axiom", "unsafe", "native_decide", "admit")


def test_audit_text_reports_lines_and_signatures() -> None:
    result = audit_text(_LEAN, path="Proofs/X.lean")

    assert [(item.kind, item.line) for item in result.findings] == [
        ("placeholder", 9),
        ("unsound", 15),
    ]
    assert result.findings[1].snippet == "axiom choice_like : False"
    assert [item.snippet for item in result.signatures] == [
        "theorem x_add_zero (n : Nat) : n + 0 = n := by",
        "@[simp] private lemma helper : True := trivial",
        "theorem uses_sorry_lemma : True := sorry_lemma",
    ]
    assert result.summary() == {
        "placeholder_count": 1,
        "unsound_count": 1,
        "theorem_count": 3,
        "scanned_files": 1,
    }


def test_theorem_signatures_ignore_commented_declarations() -> None:
    text = "-- theorem hidden : True := trivial\nlemma shown : True := trivial\n"
    assert theorem_signatures(text) == ("lemma shown : True := trivial",)


@pytest.mark.parametrize(
    "payload",
    [
        "theorem t (n : Nat) : n + 0 = n := by\n  sorry\n",
        "theorem t : p := sorry",
        "lemma a : p := by sorry\nlemma b : q := by\n  sorry -- simp closes this later\n",
        "def helper : Nat := 3\n",
        "structure Point where\n  x : Nat\n",
        "def f : {n : Nat // n = 0} := ⟨0, by omega⟩\n",
        "instance : Inhabited {n : Nat // 0 < n} := ⟨⟨1, by decide⟩⟩\n",
        "theorem t : p := by\n  sorry\n\ndef g : {n : Nat // n = 0} := ⟨0, by simp⟩\n",
        "-- exact h\n",
        "",
    ],
)
def test_placeholders_are_not_real_proofs(payload: str) -> None:
    assert not contains_real_proof(payload)


@pytest.mark.parametrize(
    "payload",
    [
        "theorem t (n : Nat) : n + 0 = n := by\n  simp\n",
        "theorem t : 1 = 1 := rfl",
        "example : True := trivial",
        "lemma a : p := by sorry\nlemma b : q := by exact h\n",
        "  exact Nat.add_zero n\n",
        "theorem t : p := by\n  /- sorry -/ omega\n",
    ],
)
def test_tactic_payloads_are_real_proofs(payload: str) -> None:
    assert contains_real_proof(payload)


def test_run_proof_audit_over_files(tmp_path: Path) -> None:
    proofs = tmp_path / "Proofs"
    proofs.mkdir()
    (proofs / "B.lean").write_text("theorem b : True := sorry\n", encoding="utf-8")
    (proofs / "A.lean").write_text("theorem a : True := trivial\n", encoding="utf-8")

    result = run_proof_audit(
        [proofs / "B.lean", proofs / "A.lean", proofs / "missing.lean"], root=tmp_path
    )

    assert result.scanned_files == ("Proofs/A.lean", "Proofs/B.lean")
    assert [item.path for item in result.signatures] == ["Proofs/A.lean", "Proofs/B.lean"]
    assert result.placeholder_count == 1
    assert format_text(result) == (
        "Proofs/B.lean:1: placeholder: theorem b : True := sorry\n"
        "Summary: placeholders=1 unsound=0 theorems=2 scanned_files=2\n"
    )


def test_run_proof_audit_without_root_uses_full_paths(tmp_path: Path) -> None:
    target = tmp_path / "C.lean"
    target.write_text("axiom c : False\n", encoding="utf-8")

    result = run_proof_audit([target])

    assert result.scanned_files == (target.as_posix(),)
    assert result.unsound_count == 1


if HYPOTHESIS_AVAILABLE:

    @given(
        names=st.lists(
            st.from_regex(r"[a-z][a-z0-9_]{0,8}", fullmatch=True),
            min_size=1,
            max_size=5,
            unique=True,
        )
    )
    @settings(max_examples=40, derandomize=True, deadline=None)
    def test_property_placeholder_files_are_never_real_proofs(names: list[str]) -> None:
        text = "\n".join(f"theorem t_{name} : True := by\n  sorry" for name in names)

        assert not contains_real_proof(text)
        assert count_placeholders(text) == len(names)
        assert len(theorem_signatures(text)) == len(names)

else:

    def test_property_placeholder_files_are_never_real_proofs() -> None:
        pytest.skip("hypothesis is not installed")
