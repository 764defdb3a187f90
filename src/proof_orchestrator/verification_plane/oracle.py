"""
proof-orchestrator — verification oracle

File: src/proof_orchestrator/verification_plane/oracle.py
Last updated: 2026-02-11

Purpose
- Decide whether the current proof artifacts are machine-checked: run the configured build
  and audit every proof file for placeholders and unsound declarations.

What should be included in this file
- ``VerificationOracle.verify()`` returning an ``OracleReport``.
- An injectable command runner so tests never need a real Lean toolchain.

Functional requirements
- Pass requires build exit code 0, no ``error:`` lines, zero placeholders, and zero
  unsound declarations.
- A build that times out or cannot start is a failed build, never an exception.
"""

from __future__ import annotations

import os
import re
import shlex
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from proof_orchestrator.quality.proof_audit import ProofAuditResult, run_proof_audit

_ERROR_LINE_RE: Final[re.Pattern[str]] = re.compile(r"^.*\berror:.*$", re.MULTILINE)
_MAX_REPORTED_ERRORS: Final[int] = 20


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Normalized subprocess result."""

    command: tuple[str, ...]
    cwd: str
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False


CommandRunner = Callable[[Sequence[str], Path, float], CommandResult]


def run_command(command: Sequence[str], cwd: Path, timeout_seconds: float) -> CommandResult:
    """Run ``command`` without a shell, capturing text output."""

    argv = tuple(command)
    env = os.environ.copy()
    try:
        completed = subprocess.run(
            argv,
            cwd=cwd,
            env=env,
            text=True,
            capture_output=True,
            timeout=timeout_seconds,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        return CommandResult(
            command=argv,
            cwd=cwd.as_posix(),
            returncode=124,
            stdout=_decode(exc.stdout),
            stderr=_decode(exc.stderr) + f"\nerror: build timed out after {timeout_seconds:g}s",
            timed_out=True,
        )
    except OSError as exc:
        return CommandResult(
            command=argv,
            cwd=cwd.as_posix(),
            returncode=127,
            stdout="",
            stderr=f"error: unable to start {argv[0]!r}: {exc}",
        )
    return CommandResult(
        command=argv,
        cwd=cwd.as_posix(),
        returncode=completed.returncode,
        stdout=completed.stdout,
        stderr=completed.stderr,
    )


@dataclass(frozen=True, slots=True)
class OracleReport:
    """Pass/fail plus the counts the audit gate depends on."""

    passed: bool
    build_passed: bool | None
    placeholder_count: int
    unsound_count: int
    errors: tuple[str, ...]
    audit: ProofAuditResult

    def describe(self) -> str:
        if self.build_passed is None:
            build = "skipped"
        else:
            build = "ok" if self.build_passed else "failed"
        summary = (
            f"build={build} placeholders={self.placeholder_count} "
            f"unsound={self.unsound_count}"
        )
        if not self.errors:
            return summary
        return f"{summary}: " + "; ".join(self.errors[:3])


class VerificationOracle:
    """Build-and-audit gate consulted by Audit and by ``status --build``."""

    def __init__(
        self,
        *,
        lean_dir: Path,
        proof_files: Callable[[], Sequence[Path]],
        build_command: str = "lake build",
        timeout_seconds: float = 1800.0,
        runner: CommandRunner | None = None,
    ) -> None:
        self._lean_dir = lean_dir
        self._proof_files = proof_files
        self._build_argv = tuple(shlex.split(build_command))
        if not self._build_argv:
            raise ValueError("build_command must not be empty")
        self._timeout_seconds = timeout_seconds
        self._runner = runner if runner is not None else run_command

    def audit(self) -> ProofAuditResult:
        return run_proof_audit(self._proof_files(), root=self._lean_dir)

    def build(self) -> CommandResult:
        return self._runner(self._build_argv, self._lean_dir, self._timeout_seconds)

    def verify(self, *, build: bool = True) -> OracleReport:
        audit = self.audit()
        errors: list[str] = []
        build_passed: bool | None = None
        if build:
            result = self.build()
            output = f"{result.stdout}\n{result.stderr}"
            error_lines = [match.group(0).strip() for match in _ERROR_LINE_RE.finditer(output)]
            build_passed = result.returncode == 0 and not error_lines
            if result.returncode != 0 and not error_lines:
                error_lines.append(f"build exited with status {result.returncode}")
            errors.extend(error_lines[:_MAX_REPORTED_ERRORS])

        if audit.placeholder_count:
            errors.append(f"{audit.placeholder_count} unproved placeholder(s) remain")
        if audit.unsound_count:
            errors.append(f"{audit.unsound_count} unsound declaration(s) present")

        passed = (
            build_passed is not False and audit.placeholder_count == 0 and audit.unsound_count == 0
        )
        return OracleReport(
            passed=passed and build,
            build_passed=build_passed,
            placeholder_count=audit.placeholder_count,
            unsound_count=audit.unsound_count,
            errors=tuple(errors),
            audit=audit,
        )


def _decode(value: str | bytes | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


__all__ = [
    "CommandResult",
    "CommandRunner",
    "OracleReport",
    "VerificationOracle",
    "run_command",
]
