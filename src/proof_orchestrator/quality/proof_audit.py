"""
proof-orchestrator — Lean proof-artifact audit

File: src/proof_orchestrator/quality/proof_audit.py
Last updated: 2026-02-17

Purpose
- Deterministic textual audit of Lean proof artifacts: unproved placeholders, unsound
  declarations, theorem signatures, and whether a payload carries a real proof.

What should be included in this file
- Comment stripping that keeps line numbers stable (nested ``/- -/`` blocks, ``--`` lines).
- Identifier-bounded counting so ``sorry_lemma`` or ``axioms`` are not counted.
- Finding ordering and a text formatter for status output.

Functional requirements
- Placeholder marker: ``sorry``. Unsound declarations: ``axiom``, ``unsafe``,
  ``native_decide``, ``admit``.
- ``contains_real_proof`` is true when any proof body is anything other than a placeholder.

Non-functional requirements
- Offline only; reads files, never executes them.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

_IDENT_CHARS: Final[str] = r"A-Za-z0-9_'"
_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(
    rf"(?<![{_IDENT_CHARS}.])sorry(?![{_IDENT_CHARS}])"
)
UNSOUND_TOKENS: Final[tuple[str, ...]] = ("axiom", "unsafe", "native_decide", "admit")
_UNSOUND_RE: Final[re.Pattern[str]] = re.compile(
    rf"(?<![{_IDENT_CHARS}.])(?:{'|'.join(UNSOUND_TOKENS)})(?![{_IDENT_CHARS}])"
)
_MODIFIERS: Final[str] = r"(?:(?:private|protected|noncomputable|nonrec|partial)\s+)*"
_ATTRIBUTES: Final[str] = r"(?:@\[[^\]]*\]\s*)*"
_SIGNATURE_RE: Final[re.Pattern[str]] = re.compile(
    rf"^\s*{_ATTRIBUTES}{_MODIFIERS}(theorem|lemma|instance)\s+\S.*$", re.MULTILINE
)
_PROOF_DECL_RE: Final[re.Pattern[str]] = re.compile(
    rf"^\s*{_ATTRIBUTES}{_MODIFIERS}(theorem|lemma|example)\b", re.MULTILINE
)
_ANY_DECL_RE: Final[re.Pattern[str]] = re.compile(
    rf"^\s*{_ATTRIBUTES}{_MODIFIERS}"
    r"(theorem|lemma|example|def|abbrev|instance|structure|inductive|class|axiom|opaque|"
    r"namespace|section|end|open|variable|universe|set_option|attribute|#\w+|import|"
    r"noncomputable)\b",
    re.MULTILINE,
)
_BY_RE: Final[re.Pattern[str]] = re.compile(rf"(?<![{_IDENT_CHARS}.])by(?![{_IDENT_CHARS}])")
_ASSIGN_RE: Final[re.Pattern[str]] = re.compile(r":=")
_NEXT_TOKEN_RE: Final[re.Pattern[str]] = re.compile(r"\s*([A-Za-z_][A-Za-z0-9_'.]*|\S)")
_TACTIC_RE: Final[re.Pattern[str]] = re.compile(
    r"(?<![A-Za-z0-9_'.])(?:simp|simp_all|rfl|exact|apply|intro|intros|rw|rwa|omega|linarith|"
    r"nlinarith|norm_num|ring|ring_nf|decide|aesop|induction|cases|rcases|obtain|constructor|"
    r"refine|calc|field_simp|positivity|tauto|trivial|contradiction|exfalso|by_contra|"
    r"push_neg|specialize|unfold|ext|funext|gcongr|use|exists)(?![A-Za-z0-9_'])"
)


@dataclass(frozen=True, slots=True)
class ProofFinding:
    kind: str
    path: str
    line: int
    snippet: str

    def sort_key(self) -> tuple[str, int, str]:
        return (self.path, self.line, self.kind)


@dataclass(frozen=True, slots=True)
class ProofAuditResult:
    findings: tuple[ProofFinding, ...]
    signatures: tuple[ProofFinding, ...]
    scanned_files: tuple[str, ...]

    @property
    def placeholder_count(self) -> int:
        return sum(1 for item in self.findings if item.kind == "placeholder")

    @property
    def unsound_count(self) -> int:
        return sum(1 for item in self.findings if item.kind == "unsound")

    def summary(self) -> dict[str, object]:
        return {
            "placeholder_count": self.placeholder_count,
            "unsound_count": self.unsound_count,
            "theorem_count": len(self.signatures),
            "scanned_files": len(self.scanned_files),
        }


def strip_lean_comments(text: str) -> str:
    """Blank out Lean comments while preserving newlines and column offsets."""

    out: list[str] = []
    depth = 0
    index = 0
    length = len(text)
    in_string = False
    while index < length:
        char = text[index]
        pair = text[index : index + 2]
        if depth == 0 and in_string:
            out.append(char)
            if char == "\\" and index + 1 < length:
                out.append(text[index + 1])
                index += 2
                continue
            if char == '"':
                in_string = False
            index += 1
            continue
        if pair == "/-":
            depth += 1
            out.append("  ")
            index += 2
            continue
        if depth > 0:
            if pair == "-/":
                depth -= 1
                out.append("  ")
                index += 2
                continue
            out.append("\n" if char == "\n" else " ")
            index += 1
            continue
        if pair == "--":
            end = text.find("\n", index)
            end = length if end == -1 else end
            out.append(" " * (end - index))
            index = end
            continue
        if char == '"':
            in_string = True
        out.append(char)
        index += 1
    return "".join(out)


def count_placeholders(text: str) -> int:
    return len(_PLACEHOLDER_RE.findall(strip_lean_comments(text)))


def count_unsound(text: str) -> int:
    return len(_UNSOUND_RE.findall(strip_lean_comments(text)))


def theorem_signatures(text: str) -> tuple[str, ...]:
    stripped = strip_lean_comments(text)
    return tuple(match.group(0).strip() for match in _SIGNATURE_RE.finditer(stripped))


def contains_real_proof(text: str) -> bool:
    """True when ``text`` proves something instead of deferring with ``sorry``.

    Inside a theorem, lemma, or example every ``by`` block must open with ``sorry`` and
    every ``:=`` must be followed by ``sorry`` or ``by``. Terms in ``def`` or ``instance``
    bodies are not proofs. A fragment with no declaration at all is judged by its ``by``
    blocks and whether it contains tactic steps.
    """

    stripped = strip_lean_comments(text)
    blocks = list(_proof_blocks(stripped))
    for block in blocks:
        if _opens_tactic_block(block):
            return True
        for assign in _ASSIGN_RE.finditer(block):
            if _next_token(block, assign.end()) not in {"sorry", "by"}:
                return True
        if ":=" not in block and ("|" in block or " where" in block):
            if _TACTIC_RE.search(_PLACEHOLDER_RE.sub("", block)):
                return True

    if not blocks and _ANY_DECL_RE.search(stripped) is None:
        if _opens_tactic_block(stripped):
            return True
        return _TACTIC_RE.search(_PLACEHOLDER_RE.sub("", stripped)) is not None
    return False


def audit_text(text: str, *, path: str = "<payload>") -> ProofAuditResult:
    stripped = strip_lean_comments(text)
    findings = [
        *_line_findings(stripped, _PLACEHOLDER_RE, "placeholder", path),
        *_line_findings(stripped, _UNSOUND_RE, "unsound", path),
    ]
    signatures = [
        ProofFinding(
            kind="signature",
            path=path,
            line=stripped.count("\n", 0, match.start()) + 1,
            snippet=match.group(0).strip(),
        )
        for match in _SIGNATURE_RE.finditer(stripped)
    ]
    return ProofAuditResult(
        findings=tuple(sorted(findings, key=lambda item: item.sort_key())),
        signatures=tuple(signatures),
        scanned_files=(path,),
    )


def run_proof_audit(files: Iterable[Path], *, root: Path | None = None) -> ProofAuditResult:
    """Audit every readable file in ``files``; paths are reported relative to ``root``."""

    findings: list[ProofFinding] = []
    signatures: list[ProofFinding] = []
    scanned: list[str] = []
    for file_path in sorted(files):
        if not file_path.is_file():
            continue
        rel_path = _relative(file_path, root)
        text = file_path.read_text(encoding="utf-8", errors="replace")
        result = audit_text(text, path=rel_path)
        findings.extend(result.findings)
        signatures.extend(result.signatures)
        scanned.append(rel_path)
    return ProofAuditResult(
        findings=tuple(sorted(findings, key=lambda item: item.sort_key())),
        signatures=tuple(sorted(signatures, key=lambda item: item.sort_key())),
        scanned_files=tuple(sorted(scanned)),
    )


def format_text(result: ProofAuditResult) -> str:
    lines = [f"{item.path}:{item.line}: {item.kind}: {item.snippet}" for item in result.findings]
    summary = result.summary()
    lines.append(
        "Summary: "
        f"placeholders={summary['placeholder_count']} "
        f"unsound={summary['unsound_count']} "
        f"theorems={summary['theorem_count']} "
        f"scanned_files={summary['scanned_files']}"
    )
    return "\n".join(lines) + "\n"


def _proof_blocks(stripped: str) -> Iterable[str]:
    starts = [match.start() for match in _PROOF_DECL_RE.finditer(stripped)]
    boundaries = sorted({match.start() for match in _ANY_DECL_RE.finditer(stripped)})
    for start in starts:
        end = next((item for item in boundaries if item > start), len(stripped))
        yield stripped[start:end]


def _opens_tactic_block(text: str) -> bool:
    return any(
        _next_token(text, match.end()) not in {"sorry", ""} for match in _BY_RE.finditer(text)
    )


def _next_token(text: str, offset: int) -> str:
    match = _NEXT_TOKEN_RE.match(text, offset)
    if match is None:
        return ""
    return match.group(1)


def _line_findings(
    stripped: str, pattern: re.Pattern[str], kind: str, path: str
) -> Sequence[ProofFinding]:
    lines = stripped.splitlines()
    out: list[ProofFinding] = []
    for match in pattern.finditer(stripped):
        line = stripped.count("\n", 0, match.start()) + 1
        snippet = lines[line - 1].strip() if line - 1 < len(lines) else match.group(0)
        out.append(ProofFinding(kind=kind, path=path, line=line, snippet=snippet))
    return out


def _relative(path: Path, root: Path | None) -> str:
    if root is None:
        return path.as_posix()
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


__all__ = [
    "ProofAuditResult",
    "ProofFinding",
    "UNSOUND_TOKENS",
    "audit_text",
    "contains_real_proof",
    "count_placeholders",
    "count_unsound",
    "format_text",
    "run_proof_audit",
    "strip_lean_comments",
    "theorem_signatures",
]
