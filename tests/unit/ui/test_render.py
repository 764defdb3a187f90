"""Plain-text CLI rendering."""

from __future__ import annotations

import io
from pathlib import Path

import pytest

from proof_orchestrator.control_plane.controller import PhaseReport
from proof_orchestrator.domain.models import ConstructionStatus, PhaseName, PhaseOutcome
from proof_orchestrator.ui.render import CLIRenderer


class _Terminal(io.StringIO):
    def isatty(self) -> bool:
        return True


def _report(**overrides: object) -> PhaseReport:
    fields: dict[str, object] = {
        "construction_id": "X",
        "phase": PhaseName.AUDIT,
        "outcome": PhaseOutcome.FAILED,
        "status": ConstructionStatus.PROVED,
        "next_phase": PhaseName.AUDIT,
        "attempts": 2,
        "reason": "unsolved goals",
        "denials": 1,
    }
    fields.update(overrides)
    return PhaseReport(**fields)  # type: ignore[arg-type]


def test_table_aligns_columns_and_skips_empty_tables() -> None:
    out = io.StringIO()
    renderer = CLIRenderer(no_color=True, stream=out)

    renderer.table(["Name", "Status"], [])
    renderer.table(["Name", "Status"], [["Lemma X", "Proved"], ["Y"]], title="Queue:")

    assert out.getvalue().splitlines() == [
        "",
        "Queue:",
        "  Name     Status",
        "  -------  ------",
        "  Lemma X  Proved",
        "  Y              ",
    ]


def test_phase_report_lists_details(tmp_path: Path) -> None:
    out = io.StringIO()
    CLIRenderer(no_color=True, verbose=True, stream=out).phase_report(
        _report(archive_path=tmp_path)
    )

    assert out.getvalue().splitlines() == [
        "X Audit: FAILED (status Proved, next Audit, attempts 2)",
        "  reason: unsolved goals",
        "  policy denials: 1",
        f"  archived: {tmp_path}",
    ]


def test_denials_need_verbose_output() -> None:
    out = io.StringIO()
    CLIRenderer(no_color=True, stream=out).phase_report(_report(reason=None))

    assert out.getvalue() == "X Audit: FAILED (status Proved, next Audit, attempts 2)\n"


def test_outcomes_are_colored_on_a_terminal(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("NO_COLOR", raising=False)
    out = _Terminal()
    CLIRenderer(stream=out).phase_report(_report(outcome=PhaseOutcome.DONE, reason=None))
    assert "\033[32mDONE\033[0m" in out.getvalue()

    monkeypatch.setenv("NO_COLOR", "1")
    plain = _Terminal()
    CLIRenderer(stream=plain).phase_report(_report(outcome=PhaseOutcome.DONE, reason=None))
    assert "\033[" not in plain.getvalue()
