"""Plain-text output for the CLI; outcome labels are colored on a terminal unless NO_COLOR."""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING, Final, TextIO

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from proof_orchestrator.control_plane.controller import PhaseReport

_GREEN, _YELLOW, _RED = "32", "33", "31"
_OUTCOME_COLORS: Final[dict[str, str]] = {
    "completed": _GREEN,
    "done": _GREEN,
    "revision": _YELLOW,
    "failed": _RED,
    "blocked": _RED,
}
_INDENT: Final[str] = "  "


class CLIRenderer:
    def __init__(
        self, *, no_color: bool = False, verbose: bool = False, stream: TextIO | None = None
    ) -> None:
        self.verbose = verbose
        self.stream = stream if stream is not None else sys.stdout
        self.color = not no_color and not os.environ.get("NO_COLOR") and _is_tty(self.stream)

    def text(self, line: str) -> None:
        self._emit(line)

    def kv(self, key: str, value: object) -> None:
        self._emit(f"{key}: {value}")

    def section(self, title: str) -> None:
        self._emit("", title)

    def warning(self, message: str) -> None:
        self._emit(f"{_INDENT}Warning: {message}")

    def items(self, entries: Iterable[str], *, prefix: str = "- ") -> None:
        self._emit(*(f"{_INDENT}{prefix}{entry}" for entry in entries))

    def table(
        self, headers: Sequence[str], rows: Sequence[Sequence[object]], *, title: str | None = None
    ) -> None:
        """Columns are left-aligned to their widest cell; an empty table prints nothing."""

        if not rows:
            return
        grid = [list(headers)] + [
            [str(row[col]) if col < len(row) else "" for col in range(len(headers))]
            for row in rows
        ]
        widths = [max(len(line[col]) for line in grid) for col in range(len(headers))]
        rule = ["-" * width for width in widths]
        if title:
            self.section(title)
        for line in [grid[0], rule, *grid[1:]]:
            self._emit(_INDENT + "  ".join(cell.ljust(w) for cell, w in zip(line, widths)))

    def phase_report(self, report: PhaseReport) -> None:
        outcome = report.outcome.value
        self._emit(
            f"{report.construction_id} {report.phase.label}: {self._paint(outcome)} "
            f"(status {report.status.display_name}, next {report.next_phase.label}, "
            f"attempts {report.attempts})"
        )
        details: list[tuple[str, object]] = [
            ("reason", report.reason),
            ("archived", report.archive_path),
        ]
        if self.verbose:
            details.insert(1, ("policy denials", report.denials or None))
        self._emit(*(f"{_INDENT}{label}: {value}" for label, value in details if value))

    def next_steps(self, steps: Sequence[str]) -> None:
        if steps:
            self.section("Next steps:")
            self._emit(*(f"{_INDENT}$ {step}" for step in steps))

    def _paint(self, outcome: str) -> str:
        code = _OUTCOME_COLORS.get(outcome)
        label = outcome.upper()
        if self.color and code:
            return f"\033[{code}m{label}\033[0m"
        return label

    def _emit(self, *lines: str) -> None:
        for line in lines:
            self.stream.write(line + "\n")


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    return CLIRenderer(no_color=no_color, verbose=verbose)


def _is_tty(stream: TextIO) -> bool:
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


__all__ = ["CLIRenderer", "create_renderer"]
