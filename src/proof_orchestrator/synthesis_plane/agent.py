"""
proof-orchestrator — reasoning agent boundary

File: src/proof_orchestrator/synthesis_plane/agent.py
Last updated: 2026-02-15

Purpose
- Define what the orchestrator hands an external reasoning agent for one phase attempt, and
  what it accepts back.
- Adapters: ``CommandAgent`` (external process, JSON lines over stdin/stdout) and
  ``ScriptedAgent`` (deterministic replay).

What should be included in this file
- ``PhaseContext`` and ``PhaseContextBuilder``.
- The ``ReasoningAgent`` protocol and the ``PhaseCompletion`` signal.
- The JSON-lines wire protocol spoken by ``CommandAgent``.

Functional requirements
- The agent never touches the project directly through this module: every action goes
  through the ``PhaseSession`` it is handed.
- An agent that exits without completing or requesting a revision is a protocol error.

Wire protocol (one JSON object per line)
- orchestrator -> agent: ``{"type": "phase", "context": {...}}`` once, then one
  ``{"type": "result", "allowed": bool, "reason": str, "rule_id": str|null,
  "violation": str|null, "output": str}`` per action.
- agent -> orchestrator: ``{"type": "action", "category": ..., "targets": [...],
  "payload": ...}``, then finally ``{"type": "complete", "summary": ...}`` or
  ``{"type": "revision", "problem": ..., "evidence": ..., "restart_from": ...}``.
"""

from __future__ import annotations

import contextlib
import json
import os
import shlex
import subprocess
from collections import deque
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, Protocol, TypeAlias

import structlog

from proof_orchestrator.control_plane.phases import ResourceLayout, rules_for
from proof_orchestrator.domain.errors import AgentProtocolError
from proof_orchestrator.domain.models import (
    ActionCategory,
    ActionRequest,
    Construction,
    PhaseName,
    RevisionRecord,
)
from proof_orchestrator.synthesis_plane.prompt_templates import PromptTemplateEngine

if TYPE_CHECKING:
    from proof_orchestrator.control_plane.session import PhaseSession, SubmissionResult

_TERMINATE_GRACE_SECONDS = 5.0


@dataclass(frozen=True, slots=True)
class PhaseCompletion:
    """The agent considers the phase's content work finished."""

    summary: str = ""


AgentOutcome: TypeAlias = PhaseCompletion | RevisionRecord


@dataclass(frozen=True, slots=True)
class PhaseContext:
    construction_id: str
    name: str
    spec_ref: str
    phase: PhaseName
    attempt: int
    prompt: str
    prompt_hash: str
    allowed_categories: tuple[ActionCategory, ...]
    read_only: tuple[str, ...]
    revision_count: int = 0
    last_error: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "construction_id": self.construction_id,
            "name": self.name,
            "spec_ref": self.spec_ref,
            "phase": self.phase.value,
            "attempt": self.attempt,
            "prompt": self.prompt,
            "prompt_hash": self.prompt_hash,
            "allowed_categories": [item.value for item in self.allowed_categories],
            "read_only": list(self.read_only),
            "revision_count": self.revision_count,
            "last_error": self.last_error,
        }


class ReasoningAgent(Protocol):
    def run_phase(self, context: PhaseContext, session: PhaseSession) -> AgentOutcome: ...


class PhaseContextBuilder:
    """Collects project content and renders the phase prompt for one attempt."""

    def __init__(
        self,
        layout: ResourceLayout,
        *,
        templates: PromptTemplateEngine | None = None,
        logger: Any | None = None,
    ) -> None:
        self._layout = layout
        self._templates = templates if templates is not None else PromptTemplateEngine()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def build(
        self,
        construction: Construction,
        phase: PhaseName,
        *,
        attempt: int = 1,
        last_error: str | None = None,
    ) -> PhaseContext:
        rules = rules_for(phase)
        allowed = tuple(sorted(rules.allowed_categories, key=lambda item: item.value))
        read_only = tuple(sorted(item.value for item in rules.read_only))
        variables: dict[str, object] = {
            "construction_id": construction.id,
            "name": construction.name,
            "spec_ref": construction.spec_ref,
            "phase": phase.label,
            "attempt": attempt,
            "revision_count": construction.revision_count,
            "allowed_categories": [item.value for item in allowed],
            "read_only": list(read_only),
            "last_error": last_error or "",
            "specification": _read_optional(self._layout.spec_path(construction.spec_ref)),
            "construction_docs": "\n\n".join(
                f"### {path.name}\n{_read_optional(path)}"
                for path in self._layout.construction_docs(construction.id)
            ),
            "domain_context": _read_optional(self._layout.domain_context),
        }
        rendered = self._templates.render(phase, variables=variables)
        flagged = [name for name, count in rendered.variable_findings if count]
        if flagged:
            self._logger.warning(
                "prompt_hygiene_findings",
                construction_id=construction.id,
                phase=phase.value,
                variables=flagged,
                dropped=list(rendered.dropped_variables),
            )
        return PhaseContext(
            construction_id=construction.id,
            name=construction.name,
            spec_ref=construction.spec_ref,
            phase=phase,
            attempt=attempt,
            prompt=rendered.prompt,
            prompt_hash=rendered.prompt_hash,
            allowed_categories=allowed,
            read_only=read_only,
            revision_count=construction.revision_count,
            last_error=last_error,
        )


def _read_optional(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (FileNotFoundError, IsADirectoryError):
        return ""


@dataclass(frozen=True, slots=True)
class RequestRevision:
    """Scripted step: ask the orchestrator to regress to ``restart_from``."""

    problem: str
    restart_from: PhaseName | str
    evidence: str = ""


ScriptHook: TypeAlias = "Callable[[PhaseContext, PhaseSession], AgentOutcome | None]"
ScriptStep: TypeAlias = "ActionRequest | PhaseCompletion | RequestRevision | ScriptHook"


@dataclass(slots=True)
class ScriptedAgent:
    """
    Replays a fixed script per phase.

    ``script[phase]`` is a list of attempts; each attempt is a sequence of steps. A phase
    with no remaining scripted attempt completes immediately.
    """

    script: Mapping[PhaseName | str, Sequence[Sequence[ScriptStep]]] = field(
        default_factory=dict
    )
    contexts: list[PhaseContext] = field(default_factory=list)
    results: list[SubmissionResult] = field(default_factory=list)
    _pending: dict[PhaseName, deque[Sequence[ScriptStep]]] = field(
        default_factory=dict, init=False, repr=False
    )

    def __post_init__(self) -> None:
        for phase, attempts in self.script.items():
            self._pending[PhaseName.parse(phase)] = deque(attempts)

    def run_phase(self, context: PhaseContext, session: PhaseSession) -> AgentOutcome:
        self.contexts.append(context)
        queue = self._pending.get(context.phase)
        steps = queue.popleft() if queue else ()
        for step in steps:
            if isinstance(step, ActionRequest):
                self.results.append(session.submit(step))
            elif isinstance(step, PhaseCompletion):
                return step
            elif isinstance(step, RequestRevision):
                return session.request_revision(
                    step.problem, restart_from=step.restart_from, evidence=step.evidence
                )
            else:
                outcome = step(context, session)
                if outcome is not None:
                    return outcome
        return PhaseCompletion(summary=f"{context.phase.label} complete")

    def phases_run(self) -> list[PhaseName]:
        return [item.phase for item in self.contexts]


class CommandAgent:
    """Runs an external agent process per phase attempt and relays its actions."""

    def __init__(
        self,
        command: str | Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
        actor: str = "agent",
        logger: Any | None = None,
    ) -> None:
        argv = shlex.split(command) if isinstance(command, str) else list(command)
        if not argv:
            raise ValueError("agent command must not be empty")
        self._argv = argv
        self._cwd = cwd
        self._env = dict(env) if env is not None else None
        self._actor = actor
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def argv(self) -> tuple[str, ...]:
        return tuple(self._argv)

    def run_phase(self, context: PhaseContext, session: PhaseSession) -> AgentOutcome:
        env = {**os.environ, **self._env} if self._env is not None else None
        try:
            process = subprocess.Popen(
                self._argv,
                cwd=self._cwd,
                env=env,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                bufsize=1,
            )
        except OSError as exc:
            raise AgentProtocolError(
                f"cannot start agent {self._argv[0]!r}: {exc}",
                construction_id=context.construction_id,
            ) from exc

        self._logger.info(
            "agent_started",
            construction_id=context.construction_id,
            phase=context.phase.value,
            attempt=context.attempt,
            pid=process.pid,
        )
        try:
            return self._converse(process, context, session)
        finally:
            _shutdown(process)

    def _converse(
        self,
        process: subprocess.Popen[str],
        context: PhaseContext,
        session: PhaseSession,
    ) -> AgentOutcome:
        if process.stdin is None or process.stdout is None:
            raise AgentProtocolError("agent pipes are not available")
        _send(process.stdin, {"type": "phase", "context": context.to_dict()}, context)
        for raw_line in process.stdout:
            line = raw_line.strip()
            if not line:
                continue
            message = _decode_message(line, context)
            kind = message.get("type")
            if kind == "action":
                reply = self._handle_action(message, session)
                _send(process.stdin, reply, context)
            elif kind == "complete":
                return PhaseCompletion(summary=str(message.get("summary") or ""))
            elif kind == "revision":
                try:
                    return session.request_revision(
                        str(message.get("problem") or ""),
                        restart_from=str(message.get("restart_from") or ""),
                        evidence=str(message.get("evidence") or ""),
                    )
                except ValueError as exc:
                    raise AgentProtocolError(
                        f"malformed revision request: {exc}",
                        construction_id=context.construction_id,
                    ) from exc
            else:
                raise AgentProtocolError(
                    f"unknown agent message type {kind!r}",
                    construction_id=context.construction_id,
                )
        returncode = process.wait()
        raise AgentProtocolError(
            f"agent exited (code {returncode}) without completing {context.phase.label}",
            construction_id=context.construction_id,
        )

    def _handle_action(
        self, message: Mapping[str, Any], session: PhaseSession
    ) -> dict[str, Any]:
        raw_targets = message.get("targets") or ()
        try:
            request = ActionRequest(
                actor=str(message.get("actor") or self._actor),
                category=message.get("category"),  # type: ignore[arg-type]
                targets=tuple(str(item) for item in raw_targets),
                payload=str(message.get("payload") or ""),
            )
        except (TypeError, ValueError) as exc:
            return {
                "type": "result",
                "allowed": False,
                "reason": f"malformed action: {exc}",
                "rule_id": "malformed_action",
                "violation": "policy_violation",
                "output": "",
            }
        result = session.submit(request)
        decision = result.decision
        return {
            "type": "result",
            "allowed": decision.allowed,
            "reason": decision.reason,
            "rule_id": decision.rule_id,
            "violation": decision.violation.value if decision.violation else None,
            "output": result.output,
        }


def _decode_message(line: str, context: PhaseContext) -> dict[str, Any]:
    try:
        message = json.loads(line)
    except json.JSONDecodeError as exc:
        raise AgentProtocolError(
            f"agent sent invalid JSON: {exc.msg}", construction_id=context.construction_id
        ) from exc
    if not isinstance(message, dict):
        raise AgentProtocolError(
            "agent messages must be JSON objects", construction_id=context.construction_id
        )
    return message


def _send(stream: IO[str], message: Mapping[str, object], context: PhaseContext) -> None:
    try:
        stream.write(json.dumps(message, sort_keys=True, ensure_ascii=False) + "\n")
        stream.flush()
    except (BrokenPipeError, ValueError) as exc:
        raise AgentProtocolError(
            "agent closed its input before the phase finished",
            construction_id=context.construction_id,
        ) from exc


def _shutdown(process: subprocess.Popen[str]) -> None:
    if process.stdin is not None:
        with contextlib.suppress(OSError):
            process.stdin.close()
    if process.poll() is None:
        process.terminate()
        try:
            process.wait(timeout=_TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
    if process.stdout is not None:
        process.stdout.close()


__all__ = [
    "AgentOutcome",
    "CommandAgent",
    "PhaseCompletion",
    "PhaseContext",
    "PhaseContextBuilder",
    "ReasoningAgent",
    "RequestRevision",
    "ScriptHook",
    "ScriptStep",
    "ScriptedAgent",
]
