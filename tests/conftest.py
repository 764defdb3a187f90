"""Shared fixtures: a throwaway Lean project tree, a fake build runner, pipeline factory."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from proof_orchestrator.config.schema import default_config, merge_config
from proof_orchestrator.control_plane.pipeline import Pipeline, build_pipeline
from proof_orchestrator.synthesis_plane.agent import ReasoningAgent, ScriptedAgent
from proof_orchestrator.verification_plane.oracle import CommandResult

SPEC_TEXT = (
    "# Lemma X\n\n"
    "For every natural number n, n + 0 = n.\n\n"
    "## Hypotheses\n- n : Nat\n"
)
DOMAIN_TEXT = "# Domain context\n\nNotation: `Nat` is the natural numbers.\n"
QUEUE_TEXT = (
    "# Constructions\n\n"
    "| Priority | Name | Specification | Status |\n"
    "|----------|------|---------------|--------|\n"
    "| P1 | **Lemma X** | `specs/X.md` | Not started |\n"
)

PLACEHOLDER_PROOF = "theorem x_add_zero (n : Nat) : n + 0 = n := by\n  sorry\n"
REAL_PROOF = "theorem x_add_zero (n : Nat) : n + 0 = n := by\n  simp\n"


@dataclass
class FakeBuildRunner:
    """Stands in for ``lake build``; records every invocation."""

    returncode: int = 0
    stdout: str = "Build completed successfully.\n"
    stderr: str = ""
    calls: list[tuple[str, ...]] = field(default_factory=list)

    def __call__(
        self, command: Sequence[str], cwd: Path, timeout_seconds: float
    ) -> CommandResult:
        self.calls.append(tuple(command))
        return CommandResult(
            command=tuple(command),
            cwd=cwd.as_posix(),
            returncode=self.returncode,
            stdout=self.stdout,
            stderr=self.stderr,
        )


def write_file(root: Path, relative: str, text: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    write_file(root, "specs/X.md", SPEC_TEXT)
    write_file(root, "DOMAIN_CONTEXT.md", DOMAIN_TEXT)
    write_file(root, "CONSTRUCTIONS.md", QUEUE_TEXT)
    return root


@pytest.fixture
def build_runner() -> FakeBuildRunner:
    return FakeBuildRunner()


PipelineFactory = Callable[..., Pipeline]


@pytest.fixture
def make_pipeline(
    project_root: Path, build_runner: FakeBuildRunner
) -> Iterator[PipelineFactory]:
    built: list[Pipeline] = []

    def _factory(
        agent: ReasoningAgent | None = None,
        *,
        overrides: Mapping[str, Any] | None = None,
    ) -> Pipeline:
        config = merge_config(default_config(), overrides or {})
        pipeline = build_pipeline(
            config,
            root=project_root,
            agent=agent if agent is not None else ScriptedAgent(),
            runner=build_runner,
        )
        built.append(pipeline)
        return pipeline

    yield _factory
    for pipeline in built:
        pipeline.close()
