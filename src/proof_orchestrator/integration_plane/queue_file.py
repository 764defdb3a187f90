"""
proof-orchestrator — construction queue artifact

File: src/proof_orchestrator/integration_plane/queue_file.py
Last updated: 2026-02-14

Purpose
- Read the ``CONSTRUCTIONS.md`` markdown table (priority, name, specification, status).
- Rewrite only the status column, in place, with an atomic file replace.

Functional requirements
- Rows whose first cell is not a ``P<n>`` label (headers, separators, prose) are ignored.
- Names are unwrapped from markdown emphasis; specification references from backticks.
- Rewrites never touch any cell other than status and leave unrelated lines byte-identical.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from proof_orchestrator.domain.models import (
    ConstructionStatus,
    construction_id_for,
    parse_priority,
)
from proof_orchestrator.utils.fs import atomic_write

_MIN_CELLS = 4


@dataclass(frozen=True, slots=True)
class QueueEntry:
    priority: int
    name: str
    spec_ref: str
    status_text: str
    position: int
    line_number: int

    @property
    def construction_id(self) -> str:
        return construction_id_for(self.spec_ref)

    @property
    def status(self) -> ConstructionStatus | None:
        return ConstructionStatus.from_display(self.status_text)


@dataclass(frozen=True, slots=True)
class _Row:
    cells: tuple[str, ...]
    status_index: int


def _split_row(line: str) -> _Row | None:
    if "|" not in line:
        return None
    raw = line.split("|")
    filled = [index for index, cell in enumerate(raw) if cell.strip()]
    if len(filled) < _MIN_CELLS:
        return None
    if parse_priority(raw[filled[0]]) is None:
        return None
    return _Row(cells=tuple(raw), status_index=filled[3])


def _entry_from_line(line: str, *, position: int, line_number: int) -> QueueEntry | None:
    row = _split_row(line)
    if row is None:
        return None
    filled = [cell.strip() for cell in row.cells if cell.strip()]
    priority = parse_priority(filled[0])
    spec_ref = filled[2].strip("`").strip()
    if priority is None or not spec_ref:
        return None
    try:
        construction_id_for(spec_ref)
    except ValueError:
        return None
    return QueueEntry(
        priority=priority,
        name=filled[1].strip("_*").strip(),
        spec_ref=spec_ref,
        status_text=filled[3],
        position=position,
        line_number=line_number,
    )


def parse_queue_text(text: str) -> tuple[QueueEntry, ...]:
    entries: list[QueueEntry] = []
    for line_number, line in enumerate(text.splitlines(), start=1):
        entry = _entry_from_line(line, position=len(entries), line_number=line_number)
        if entry is not None:
            entries.append(entry)
    return tuple(entries)


def rewrite_status_text(text: str, updates: Mapping[str, ConstructionStatus]) -> tuple[str, int]:
    """Return ``text`` with the status cell of each matching spec reference replaced."""

    changed = 0
    lines = text.splitlines(keepends=True)
    for index, line in enumerate(lines):
        body = line.rstrip("\r\n")
        row = _split_row(body)
        if row is None:
            continue
        filled = [cell.strip() for cell in row.cells if cell.strip()]
        spec_ref = filled[2].strip("`").strip()
        status = updates.get(spec_ref)
        if status is None:
            continue
        cells = list(row.cells)
        replacement = f" {status.display_name} "
        if cells[row.status_index] == replacement:
            continue
        cells[row.status_index] = replacement
        lines[index] = "|".join(cells) + line[len(body) :]
        changed += 1
    return "".join(lines), changed


class ConstructionQueue:
    """File-backed view of the construction queue table."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def entries(self) -> tuple[QueueEntry, ...]:
        if not self.exists():
            return ()
        return parse_queue_text(self._path.read_text(encoding="utf-8"))

    def find(self, reference: str) -> QueueEntry | None:
        wanted = reference.strip().strip("`")
        for entry in self.entries():
            if wanted in {entry.spec_ref, entry.construction_id}:
                return entry
        return None

    def update_status(self, spec_ref: str, status: ConstructionStatus) -> bool:
        return self.update_many({spec_ref: status}) > 0

    def update_many(self, updates: Mapping[str, ConstructionStatus]) -> int:
        if not updates or not self.exists():
            return 0
        original = self._path.read_text(encoding="utf-8")
        rewritten, changed = rewrite_status_text(original, updates)
        if changed:
            atomic_write(self._path, rewritten)
        return changed


__all__ = [
    "ConstructionQueue",
    "QueueEntry",
    "parse_queue_text",
    "rewrite_status_text",
]
