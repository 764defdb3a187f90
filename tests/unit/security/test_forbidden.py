"""
proof-orchestrator — unit tests for forbidden-content rules

File: tests/unit/security/test_forbidden.py
Last updated: 2026-02-12

Purpose
- Pin the identifier-bounded token matching, Unicode normalization, command de-quoting, and
  command-position rules. Known evasions that a textual scan cannot see are recorded as
  strict xfails so a future detector flips them loudly.
"""

from __future__ import annotations

import pytest

from proof_orchestrator.security.forbidden import (
    ForbiddenContentScanner,
    ForbiddenMatch,
    dequote_command,
    normalize_text,
    token_pattern,
)

try:
    from hypothesis import given, settings
    from hypothesis import strategies as st

    HYPOTHESIS_AVAILABLE = True
except ModuleNotFoundError:  # pragma: no cover - fallback path
    HYPOTHESIS_AVAILABLE = False


def _rule_ids(findings: tuple[ForbiddenMatch, ...]) -> list[str]:
    return [item.rule_id for item in findings]


@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ("axiom cheat : 1 = 2", ["axiom"]),
        ("  Axiom big : False", ["axiom"]),
        ("theorem t : p := by admit", ["admit"]),
        ("exact sorryAx _", ["sorry_ax"]),
        ("unsafe def f : Nat := 0", ["unsafe"]),
        ("@[implemented_by fastImpl] def g := 1", ["implemented_by"]),
        ("set_option debug.skipKernelTC true", ["skip_kernel_tc"]),
        ("#exit", ["exit_command"]),
        ("by native_decide", ["native_decide"]),
        ("Lean.ofReduceBool a b h", ["of_reduce_bool"]),
    ],
)
def test_universal_tokens_are_detected(payload: str, expected: list[str]) -> None:
    assert _rule_ids(ForbiddenContentScanner().scan_text(payload)) == expected


@pytest.mark.parametrize(
    "payload",
    [
        "axiomatic set theory",
        "the axioms_used lemma",
        "admits_solution",
        "theorem t : n + 0 = n := by\n  sorry\n",
        "-- an unsafely phrased comment",
        "",
    ],
)
def test_identifier_boundaries_avoid_false_positives(payload: str) -> None:
    assert ForbiddenContentScanner().scan_text(payload) == ()


def test_unicode_evasions_are_normalized() -> None:
    scanner = ForbiddenContentScanner()

    assert _rule_ids(scanner.scan_text("\uff41\uff58\uff49\uff4f\uff4d bad : False")) == ["axiom"]
    assert _rule_ids(scanner.scan_text("ax\u200biom bad : False")) == ["axiom"]
    assert _rule_ids(scanner.scan_text("ad\u00admit")) == ["admit"]
    assert normalize_text("ax\ufeffiom") == "axiom"


def test_commands_are_also_scanned_de_quoted() -> None:
    scanner = ForbiddenContentScanner()

    finding = scanner.scan_command("echo ax''iom bad : False >> Proofs/X.lean")
    assert _rule_ids(finding) == ["axiom"]
    assert _rule_ids(scanner.scan_command('printf "ad\\mit"')) == ["admit"]
    assert dequote_command("'a'\"b\"`c`\\d") == "abcd"

    # Payload text is never de-quoted; quotes are meaningful in Lean sources.
    assert scanner.scan_text("ax''iom") == ()


@pytest.mark.parametrize(
    ("command", "rule_id"),
    [
        ("sudo lake build", "privilege_escalation"),
        ("lake build && doas true", "privilege_escalation"),
        ("ls; chmod 644 specs/X.md", "permission_change"),
        ("x=$(chown me file)", "permission_change"),
        ("git push --force origin main", "force_push"),
        ("git push origin +main", "force_push"),
        ("git reset --hard HEAD~1", "hard_reset"),
        ("git rebase -i main", "rebase"),
        ("git commit -m wip --amend", "amend"),
        ("git commit --no-verify -m x", "no_verify"),
        ("git filter-repo --path x", "filter_branch"),
    ],
)
def test_command_rules(command: str, rule_id: str) -> None:
    assert rule_id in _rule_ids(ForbiddenContentScanner().scan_command(command))


@pytest.mark.parametrize(
    "command",
    [
        "echo sudo is not at command position",
        "grep chmod notes.txt",
        "git push origin main",
        "git log --oneline",
        "lake build",
    ],
)
def test_benign_commands_pass(command: str) -> None:
    assert ForbiddenContentScanner().scan_command(command) == ()


def test_command_only_rules_do_not_apply_to_payloads() -> None:
    assert ForbiddenContentScanner().scan_text("sudo make me a sandwich") == ()


def test_extra_tokens_and_sorted_findings() -> None:
    scanner = ForbiddenContentScanner(["Classical.choice", "  "])

    findings = scanner.scan_text("Classical.choice h\naxiom a : True")

    assert _rule_ids(findings) == ["extra.0", "axiom"]
    assert [item.start for item in findings] == sorted(item.start for item in findings)
    assert findings[0].describe() == (
        "forbidden token 'Classical.choice': matches an operator-configured forbidden pattern"
    )


def test_token_pattern_and_match_validation() -> None:
    with pytest.raises(ValueError, match="token must not be empty"):
        token_pattern("   ")
    assert token_pattern("native  decide").search("native   decide") is not None
    with pytest.raises(ValueError, match="rule_id"):
        ForbiddenMatch(rule_id=" ", reason="r", matched_text="x", start=0)
    with pytest.raises(ValueError, match="matched_text"):
        ForbiddenMatch(rule_id="axiom", reason="r", matched_text="", start=0)


@pytest.mark.xfail(strict=True, reason="encoded payloads are out of reach of a textual scan")
def test_base64_encoded_command_is_not_detected() -> None:
    command = "echo YXhpb20gY2hlYXQgOiBGYWxzZQ== | base64 -d >> Proofs/X.lean"
    assert ForbiddenContentScanner().scan_command(command) != ()


if HYPOTHESIS_AVAILABLE:

    @given(
        token=st.sampled_from(("axiom", "admit", "unsafe", "native_decide")),
        suffix=st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789_", min_size=1, max_size=6),
    )
    @settings(max_examples=60, derandomize=True, deadline=None)
    def test_property_longer_identifiers_are_not_tokens(token: str, suffix: str) -> None:
        scanner = ForbiddenContentScanner()
        assert scanner.scan_text(f"def {token}{suffix} := 0") == ()
        assert scanner.scan_text(f"def x := {token}") != ()

else:

    def test_property_longer_identifiers_are_not_tokens() -> None:
        pytest.skip("hypothesis is not installed")
