"""
proof-orchestrator — forbidden-content rules

File: src/proof_orchestrator/security/forbidden.py
Last updated: 2026-02-11

Purpose
- Detect text that would let an unsound proof pass, or that rewrites history or escalates
  privilege, in agent payloads and command lines.

What should be included in this file
- Universal rules (every phase, payloads and commands): declaring truth without proof,
  disabling kernel checking, forging checked results, bypassing hooks, rewriting history.
- Command-only rules: privilege escalation and permission changes at command position.
- Normalization applied before scanning: NFKC, zero-width stripping, and for commands a
  de-quoted variant so ``ax''iom`` and ``ax\\iom`` still match.

Functional requirements
- Case-insensitive matching with identifier boundaries (``axiomatic`` is not ``axiom``).
- Deterministic, sorted findings.

Non-functional requirements
- Best-effort defense-in-depth: encoded or indirect payloads are out of reach of a textual
  scan; the verification oracle remains the final gate.
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Final

_ZERO_WIDTH: Final[dict[int, None]] = dict.fromkeys(
    (0x00AD, 0x200B, 0x200C, 0x200D, 0x2060, 0xFEFF)
)
_DEQUOTE: Final[dict[int, None]] = dict.fromkeys(map(ord, "'\"\\`"))

_LEFT: Final[str] = r"(?<![A-Za-z0-9_])"
_RIGHT: Final[str] = r"(?![A-Za-z0-9_])"
_COMMAND_START: Final[str] = r"(?:^|[;&|(`]\s*|\$\(\s*|\b(?:then|do|else|exec|xargs)\s+)"
_CMD_FLAGS: Final[re.RegexFlag] = re.IGNORECASE | re.MULTILINE


@dataclass(frozen=True, slots=True)
class ForbiddenMatch:
    """One forbidden-content occurrence."""

    rule_id: str
    reason: str
    matched_text: str
    start: int

    def __post_init__(self) -> None:
        if not self.rule_id.strip():
            raise ValueError("ForbiddenMatch.rule_id must not be empty")
        if not self.matched_text:
            raise ValueError("ForbiddenMatch.matched_text must not be empty")

    def describe(self) -> str:
        return f"forbidden token {self.matched_text.strip()!r}: {self.reason}"


@dataclass(frozen=True, slots=True)
class _DetectionRule:
    rule_id: str
    reason: str
    pattern: re.Pattern[str]


def token_pattern(token: str) -> re.Pattern[str]:
    """Compile a case-insensitive, identifier-bounded pattern for a literal token."""

    words = [re.escape(part) for part in token.split()]
    if not words:
        raise ValueError("token must not be empty")
    body = r"\s+".join(words)
    left = _LEFT if token[0].isalnum() or token[0] == "_" else r"(?<![A-Za-z0-9_-])"
    return re.compile(f"{left}{body}{_RIGHT}", re.IGNORECASE)


_TRUTH_WITHOUT_PROOF = "declares a statement true without proving it"
_SAFETY_DISABLED = "disables kernel safety checking"
_FORGED_RESULT = "trusts an unchecked evaluation as a checked result"
_HISTORY_REWRITE = "rewrites or bypasses version-control history"

UNIVERSAL_RULES: Final[tuple[_DetectionRule, ...]] = (
    _DetectionRule("axiom", _TRUTH_WITHOUT_PROOF, token_pattern("axiom")),
    _DetectionRule("admit", _TRUTH_WITHOUT_PROOF, token_pattern("admit")),
    _DetectionRule("sorry_ax", _TRUTH_WITHOUT_PROOF, token_pattern("sorryAx")),
    _DetectionRule("unsafe", _SAFETY_DISABLED, token_pattern("unsafe")),
    _DetectionRule("implemented_by", _SAFETY_DISABLED, token_pattern("implemented_by")),
    _DetectionRule("skip_kernel_tc", _SAFETY_DISABLED, token_pattern("debug.skipKernelTC")),
    _DetectionRule("exit_command", _SAFETY_DISABLED, token_pattern("#exit")),
    _DetectionRule("native_decide", _FORGED_RESULT, token_pattern("native_decide")),
    _DetectionRule("of_reduce_bool", _FORGED_RESULT, token_pattern("ofReduceBool")),
    _DetectionRule("no_verify", _HISTORY_REWRITE, token_pattern("--no-verify")),
    _DetectionRule(
        "force_push",
        _HISTORY_REWRITE,
        re.compile(
            r"\bgit\s+(?:-\S+\s+)*push\b[^\n;&|]*?"
            r"(?:\s--force(?:-with-lease)?\b|\s-[A-Za-z]*f\b|\s\+\S+)",
            re.IGNORECASE,
        ),
    ),
    _DetectionRule(
        "hard_reset",
        _HISTORY_REWRITE,
        re.compile(r"\bgit\s+(?:-\S+\s+)*reset\b[^\n;&|]*\s--hard\b", re.IGNORECASE),
    ),
    _DetectionRule(
        "rebase",
        _HISTORY_REWRITE,
        re.compile(r"\bgit\s+(?:-\S+\s+)*rebase\b", re.IGNORECASE),
    ),
    _DetectionRule(
        "filter_branch",
        _HISTORY_REWRITE,
        re.compile(r"\bgit\s+(?:-\S+\s+)*(?:filter-branch|filter-repo)\b", re.IGNORECASE),
    ),
    _DetectionRule(
        "amend",
        _HISTORY_REWRITE,
        re.compile(r"\bgit\s+(?:-\S+\s+)*commit\b[^\n;&|]*\s--amend\b", re.IGNORECASE),
    ),
)

COMMAND_RULES: Final[tuple[_DetectionRule, ...]] = (
    _DetectionRule(
        "privilege_escalation",
        "escalates privileges",
        re.compile(_COMMAND_START + r"(?:sudo|doas|su|pkexec)(?=\s|$)", _CMD_FLAGS),
    ),
    _DetectionRule(
        "permission_change",
        "changes file ownership or permission bits",
        re.compile(
            _COMMAND_START + r"(?:chmod|chown|chgrp|chattr|setfacl)(?=\s|$)", _CMD_FLAGS
        ),
    ),
)


def normalize_text(text: str) -> str:
    """NFKC-normalize and drop zero-width characters."""

    return unicodedata.normalize("NFKC", text).translate(_ZERO_WIDTH)


def dequote_command(command: str) -> str:
    """Remove shell quoting characters so split tokens re-join."""

    return normalize_text(command).translate(_DEQUOTE)


class ForbiddenContentScanner:
    """Scan payloads and commands against the universal and command-only rules."""

    __slots__ = ("_universal",)

    def __init__(self, extra_tokens: Sequence[str] = ()) -> None:
        extra = tuple(
            _DetectionRule(
                rule_id=f"extra.{index}",
                reason="matches an operator-configured forbidden pattern",
                pattern=token_pattern(token),
            )
            for index, token in enumerate(item.strip() for item in extra_tokens)
            if token
        )
        self._universal: tuple[_DetectionRule, ...] = UNIVERSAL_RULES + extra

    def scan_text(self, text: str) -> tuple[ForbiddenMatch, ...]:
        """Universal rules over a normalized payload."""

        if not text:
            return ()
        return _run_rules(self._universal, normalize_text(text))

    def scan_command(self, command: str) -> tuple[ForbiddenMatch, ...]:
        """Universal and command-only rules over the command and its de-quoted form."""

        if not command:
            return ()
        rules = self._universal + COMMAND_RULES
        findings: dict[tuple[str, int], ForbiddenMatch] = {}
        for variant in (normalize_text(command), dequote_command(command)):
            for item in _run_rules(rules, variant):
                findings.setdefault((item.rule_id, item.start), item)
        return _sorted(findings.values())


def _run_rules(rules: Sequence[_DetectionRule], text: str) -> tuple[ForbiddenMatch, ...]:
    found: list[ForbiddenMatch] = []
    for rule in rules:
        for match in rule.pattern.finditer(text):
            start, end = match.span()
            if end <= start:
                continue
            found.append(
                ForbiddenMatch(
                    rule_id=rule.rule_id,
                    reason=rule.reason,
                    matched_text=text[start:end],
                    start=start,
                )
            )
    return _sorted(found)


def _sorted(items: Iterable[ForbiddenMatch]) -> tuple[ForbiddenMatch, ...]:
    return tuple(sorted(items, key=lambda item: (item.start, item.rule_id)))


__all__ = [
    "COMMAND_RULES",
    "ForbiddenContentScanner",
    "ForbiddenMatch",
    "UNIVERSAL_RULES",
    "dequote_command",
    "normalize_text",
    "token_pattern",
]
