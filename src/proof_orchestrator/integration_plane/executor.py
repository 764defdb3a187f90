"""Apply allowed agent actions to the project tree."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from proof_orchestrator.domain.models import ActionCategory, ActionRequest
from proof_orchestrator.utils.fs import atomic_write
from proof_orchestrator.verification_plane.oracle import CommandResult, CommandRunner, run_command

if TYPE_CHECKING:
    from proof_orchestrator.control_plane.phases import ResourceLayout

DEFAULT_COMMAND_TIMEOUT_SECONDS = 600.0


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    applied: bool
    written: tuple[str, ...] = ()
    command: CommandResult | None = None
    error: str | None = None

    @property
    def output(self) -> str:
        if self.error is not None:
            return self.error
        if self.command is not None:
            return (self.command.stdout + self.command.stderr).strip()
        return ""


class ActionExecutor:
    """Performs an already-allowed request; policy is never consulted here."""

    def __init__(
        self,
        layout: ResourceLayout,
        *,
        runner: CommandRunner | None = None,
        shell: str = "bash",
        timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self._layout = layout
        self._runner = runner if runner is not None else run_command
        self._shell = shell
        self._timeout_seconds = timeout_seconds

    def apply(self, request: ActionRequest) -> ActionOutcome:
        if request.category is ActionCategory.EXECUTE_COMMAND:
            return self._execute(request.payload)
        return self._write(request)

    def _write(self, request: ActionRequest) -> ActionOutcome:
        targets = [self._layout.resolve(item) for item in request.targets]
        for target in targets:
            if request.category is ActionCategory.CREATE_RESOURCE and target.exists():
                return ActionOutcome(
                    applied=False, error=f"{self._layout.key(target)} already exists"
                )
            if request.category is ActionCategory.MODIFY_RESOURCE and not target.is_file():
                return ActionOutcome(
                    applied=False, error=f"{self._layout.key(target)} does not exist"
                )
        written: list[str] = []
        for target in targets:
            try:
                atomic_write(target, request.payload)
            except OSError as exc:
                return ActionOutcome(
                    applied=bool(written),
                    written=tuple(written),
                    error=f"failed to write {self._layout.key(target)}: {exc}",
                )
            written.append(self._layout.key(target))
        return ActionOutcome(applied=True, written=tuple(written))

    def _execute(self, command: str) -> ActionOutcome:
        result = self._runner(
            (self._shell, "-c", command), self._layout.root, self._timeout_seconds
        )
        error = None
        if result.timed_out:
            error = f"command timed out after {self._timeout_seconds:g}s"
        return ActionOutcome(applied=True, command=result, error=error)


__all__ = ["ActionExecutor", "ActionOutcome", "DEFAULT_COMMAND_TIMEOUT_SECONDS"]
