"""
proof-orchestrator — action policy engine

File: src/proof_orchestrator/security/policy_engine.py
Last updated: 2026-02-17

Purpose
- Decide Allow/Deny for one externally requested action under the current phase, before the
  action is permitted to reach storage.

What should be included in this file
- ``PolicyEngine.evaluate(phase, request)``: universal forbidden-content scan, phase
  category and resource rules, phase content constraints, command scanning.
- Command parsing that finds which paths a command mutates (redirection, ``sed -i``,
  ``tee``, ``cp``, ``mv``, ``rm`` and friends).

Functional requirements
- Pure: no IO, no side effects, deterministic for a given layout and request.
- Deny reasons are surfaced to the requesting actor verbatim.
- Writes to a read-only class are ``lock_conflict`` denials; every other denial is a
  ``policy_violation``.

Non-functional requirements
- Textual scanning is defense-in-depth; the verification oracle is the final gate.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Iterable, Sequence
from typing import Final, Literal

from proof_orchestrator.control_plane.phases import (
    PhaseRules,
    ResourceClass,
    ResourceLayout,
    is_posix_path_like,
    rules_for,
)
from proof_orchestrator.domain.models import (
    ActionCategory,
    ActionRequest,
    PhaseName,
    PolicyDecision,
    ViolationKind,
)
from proof_orchestrator.quality.proof_audit import contains_real_proof
from proof_orchestrator.security.forbidden import ForbiddenContentScanner, ForbiddenMatch

CommandScanMode = Literal["always", "restricted_paths_only"]

# Rules that guard history and privilege; applied to every command in every scan mode.
_DESTRUCTIVE_RULE_IDS: Final[frozenset[str]] = frozenset(
    {
        "no_verify",
        "force_push",
        "hard_reset",
        "rebase",
        "filter_branch",
        "amend",
        "privilege_escalation",
        "permission_change",
    }
)

_SEGMENT_SPLIT_RE: Final[re.Pattern[str]] = re.compile(r"\|\||&&|[;|\n&]")
_REDIRECT_RE: Final[re.Pattern[str]] = re.compile(
    r"(?<![<>&])(?:[0-9]|&)?>{1,2}\|?\s*([^\s;&|<>]+)"
)
_ENV_ASSIGNMENT_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")
_WRAPPERS: Final[frozenset[str]] = frozenset(
    {"sudo", "doas", "env", "nice", "nohup", "time", "command", "exec", "xargs"}
)
_MUTATES_ALL_ARGS: Final[frozenset[str]] = frozenset(
    {"rm", "touch", "truncate", "chmod", "chown", "chgrp", "tee", "mv", "shred", "unlink"}
)
_MUTATES_LAST_ARG: Final[frozenset[str]] = frozenset({"cp", "install", "ln", "rsync"})
_IN_PLACE_EDITORS: Final[frozenset[str]] = frozenset({"sed", "perl", "ruby"})


class PolicyEngine:
    """Phase-aware Allow/Deny decisions for agent actions."""

    def __init__(
        self,
        layout: ResourceLayout,
        *,
        scanner: ForbiddenContentScanner | None = None,
        command_scan_mode: CommandScanMode = "always",
    ) -> None:
        if command_scan_mode not in ("always", "restricted_paths_only"):
            raise ValueError(f"unknown command_scan_mode: {command_scan_mode!r}")
        self._layout = layout
        self._scanner = scanner if scanner is not None else ForbiddenContentScanner()
        self._command_scan_mode = command_scan_mode

    @property
    def layout(self) -> ResourceLayout:
        return self._layout

    def evaluate(self, phase: PhaseName | str, request: ActionRequest) -> PolicyDecision:
        rules = rules_for(phase)
        if request.category is ActionCategory.EXECUTE_COMMAND:
            return self._evaluate_command(rules, request)
        return self._evaluate_write(rules, request)

    def _evaluate_write(self, rules: PhaseRules, request: ActionRequest) -> PolicyDecision:
        findings = self._scanner.scan_text(request.payload)
        if findings:
            return _deny_forbidden(findings[0])

        if not rules.allows(request.category):
            return _deny_category(rules, request.category)

        for target in request.targets:
            resource_class = self._layout.classify(target)
            if rules.is_read_only(resource_class):
                return PolicyDecision.deny(
                    f"{self._layout.key(target)} is a read-only {resource_class.value} "
                    f"resource during {rules.phase.label}",
                    rule_id=f"read_only.{resource_class.value}",
                    violation=ViolationKind.LOCK_CONFLICT,
                )
            if (
                rules.placeholder_only_proofs
                and resource_class is ResourceClass.PROOF
                and contains_real_proof(request.payload)
            ):
                return PolicyDecision.deny(
                    f"{rules.phase.label} only accepts placeholder proofs (`sorry`); "
                    f"{self._layout.key(target)} contains a proof tactic",
                    rule_id="placeholder_only_proofs",
                )
        return PolicyDecision.allow()

    def _evaluate_command(self, rules: PhaseRules, request: ActionRequest) -> PolicyDecision:
        command = request.payload
        if not command.strip():
            return PolicyDecision.deny("empty command", rule_id="empty_command")

        findings = self._scanner.scan_command(command)
        referenced = self._referenced_read_only(rules, command)
        for finding in findings:
            if (
                self._command_scan_mode == "always"
                or finding.rule_id in _DESTRUCTIVE_RULE_IDS
                or referenced
            ):
                return _deny_forbidden(finding)

        if not rules.allows(request.category):
            return _deny_category(rules, request.category)

        for target in mutated_paths(command):
            resource_class = self._layout.classify_pattern(target)
            if rules.is_read_only(resource_class):
                return PolicyDecision.deny(
                    f"command writes to read-only {resource_class.value} resource "
                    f"{target!r} during {rules.phase.label}",
                    rule_id=f"command_write.{resource_class.value}",
                    violation=ViolationKind.LOCK_CONFLICT,
                )
            if (
                rules.placeholder_only_proofs
                and resource_class is ResourceClass.PROOF
                and contains_real_proof(command)
            ):
                return PolicyDecision.deny(
                    f"{rules.phase.label} only accepts placeholder proofs (`sorry`); "
                    f"command writes a proof tactic into {target!r}",
                    rule_id="placeholder_only_proofs",
                )
        return PolicyDecision.allow()

    def _referenced_read_only(self, rules: PhaseRules, command: str) -> tuple[str, ...]:
        found: list[str] = []
        for segment in split_segments(command):
            for token in (*_tokens(segment), *_redirect_targets(segment)):
                if not is_posix_path_like(token):
                    continue
                if rules.is_read_only(self._layout.classify_pattern(token)):
                    found.append(token)
        return tuple(sorted(set(found)))


def split_segments(command: str) -> tuple[str, ...]:
    """Split a shell command line into simple-command segments."""

    return tuple(part.strip() for part in _SEGMENT_SPLIT_RE.split(command) if part.strip())


def mutated_paths(command: str) -> tuple[str, ...]:
    """Best-effort list of paths a command line would write, move, or delete."""

    targets: list[str] = []
    for segment in split_segments(command):
        targets.extend(_redirect_targets(segment))
        argv = _command_words(_tokens(_REDIRECT_RE.sub(" ", segment)))
        if not argv:
            continue
        program = argv[0].rsplit("/", 1)[-1]
        args = argv[1:]
        paths = [item for item in args if is_posix_path_like(item)]
        if program in _MUTATES_ALL_ARGS:
            targets.extend(paths)
        elif program in _MUTATES_LAST_ARG and paths:
            targets.append(paths[-1])
        elif program in _IN_PLACE_EDITORS and _has_in_place_flag(args):
            targets.extend(item for item in paths if not item.startswith("s/"))
        elif program == "dd":
            targets.extend(item[3:] for item in args if item.startswith("of=") and item[3:])
    return tuple(dict.fromkeys(targets))


def _tokens(segment: str) -> list[str]:
    try:
        return shlex.split(segment, comments=False, posix=True)
    except ValueError:
        return segment.split()


def _redirect_targets(segment: str) -> list[str]:
    return [match.group(1).strip("'\"") for match in _REDIRECT_RE.finditer(segment)]


def _command_words(tokens: Sequence[str]) -> list[str]:
    words = list(tokens)
    while words and (_ENV_ASSIGNMENT_RE.match(words[0]) or words[0] in _WRAPPERS):
        words.pop(0)
        while words and words[0].startswith("-"):
            words.pop(0)
    return words


def _has_in_place_flag(args: Iterable[str]) -> bool:
    for item in args:
        if item == "--in-place" or item.startswith("--in-place="):
            return True
        if item.startswith("-") and not item.startswith("--") and "i" in item[1:]:
            return True
    return False


def _deny_forbidden(finding: ForbiddenMatch) -> PolicyDecision:
    return PolicyDecision.deny(finding.describe(), rule_id=f"forbidden.{finding.rule_id}")


def _deny_category(rules: PhaseRules, category: ActionCategory) -> PolicyDecision:
    allowed = ", ".join(sorted(item.value for item in rules.allowed_categories))
    return PolicyDecision.deny(
        f"{rules.phase.label} does not permit {category.value} (allowed: {allowed})",
        rule_id="category_not_allowed",
    )


__all__ = [
    "CommandScanMode",
    "PolicyEngine",
    "mutated_paths",
    "split_segments",
]
