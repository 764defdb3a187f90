"""
proof-orchestrator — revision file intake

File: src/proof_orchestrator/integration_plane/revision_file.py
Last updated: 2026-02-14

Purpose
- Turn the agent-authored ``REVISION.md`` into a ``RevisionRecord``.

Functional requirements
- Recognized layout::

      ## restart_from: FORMALIZE
      ## problem
      <free text>
      ## evidence
      <free text>

- ``restart_from`` is matched case-insensitively anywhere in the file; a missing or unknown
  phase falls back to Construct.
- A file without a ``problem`` section still yields a record; its whole body becomes the
  problem text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from proof_orchestrator.domain.models import PhaseName, RevisionRecord
from proof_orchestrator.utils.fs import safe_delete

DEFAULT_RESTART_PHASE: Final[PhaseName] = PhaseName.CONSTRUCT

_RESTART_RE: Final[re.Pattern[str]] = re.compile(
    r"^\s*(?:#+\s*)?restart[_ -]from\s*:\s*`?([A-Za-z0-9_-]+)`?", re.IGNORECASE | re.MULTILINE
)
_HEADING_RE: Final[re.Pattern[str]] = re.compile(r"^\s*#{1,6}\s+(.+?)\s*$")


@dataclass(frozen=True, slots=True)
class ParsedRevision:
    problem: str
    evidence: str
    restart_from: PhaseName
    restart_from_recognized: bool


def parse_revision_text(text: str) -> ParsedRevision:
    restart = DEFAULT_RESTART_PHASE
    recognized = False
    match = _RESTART_RE.search(text)
    if match is not None:
        try:
            restart = PhaseName.parse(match.group(1))
            recognized = True
        except ValueError:
            restart = DEFAULT_RESTART_PHASE

    sections = _sections(text)
    problem = sections.get("problem", "").strip()
    evidence = sections.get("evidence", "").strip()
    if not problem:
        body = _RESTART_RE.sub("", text).strip()
        problem = body or "revision requested without a problem description"
    return ParsedRevision(
        problem=problem,
        evidence=evidence,
        restart_from=restart,
        restart_from_recognized=recognized,
    )


def _sections(text: str) -> dict[str, str]:
    sections: dict[str, list[str]] = {}
    current: str | None = None
    for line in text.splitlines():
        heading = _HEADING_RE.match(line)
        if heading is not None:
            title = heading.group(1).strip().lower().rstrip(":")
            if title.startswith(("restart_from", "restart from", "restart-from")):
                current = None
                continue
            current = title.split()[0] if title else None
            if current is not None:
                sections.setdefault(current, [])
            continue
        if current is not None:
            sections[current].append(line)
    return {key: "\n".join(lines) for key, lines in sections.items()}


class RevisionFile:
    """The on-disk revision request the agent leaves behind."""

    def __init__(self, path: Path, *, root: Path) -> None:
        self._path = path
        self._root = root

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def read(self, *, construction_id: str, issued_at: PhaseName) -> RevisionRecord | None:
        if not self.exists():
            return None
        parsed = parse_revision_text(self._path.read_text(encoding="utf-8"))
        return RevisionRecord(
            construction_id=construction_id,
            problem=parsed.problem,
            evidence=parsed.evidence,
            restart_from=parsed.restart_from,
            issued_at=issued_at,
        )

    def remove(self) -> bool:
        return safe_delete(self._path, self._root)


def render_revision_text(record: RevisionRecord) -> str:
    """Inverse of ``parse_revision_text`` for agents that report revisions in-band."""

    return (
        f"## restart_from: {record.restart_from.value.upper()}\n\n"
        f"## problem\n{record.problem}\n\n"
        f"## evidence\n{record.evidence}\n"
    )


__all__ = [
    "DEFAULT_RESTART_PHASE",
    "ParsedRevision",
    "RevisionFile",
    "parse_revision_text",
    "render_revision_text",
]
