"""Console entry point: run the CLI and turn every escaping exception into an exit code."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    PHASE_FAILED = 1
    CONFIG_ERROR = 2
    BLOCKED = 3
    INTERNAL_ERROR = 4
    INTERRUPTED = 130


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    try:
        from proof_orchestrator.ui.cli import run_cli

        code = run_cli(argv)
    except SystemExit as exc:
        # argparse exits 2 on usage errors and 0 after --help.
        code = exc.code if isinstance(exc.code, int) else ExitCode.CONFIG_ERROR
    except BaseException as exc:  # noqa: BLE001 - last line before the shell sees a traceback.
        code = exit_code_for(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            message = "interrupted" if code is ExitCode.INTERRUPTED else str(exc).strip()
            print(message or type(exc).__name__, file=sys.stderr)
    try:
        return int(ExitCode(code))
    except ValueError:
        return int(ExitCode.INTERNAL_ERROR)


def exit_code_for(exc: BaseException) -> ExitCode:
    """First match along the ``__cause__``/``__context__`` chain wins."""

    from proof_orchestrator.config import ConfigLoadError, ConfigValidationError
    from proof_orchestrator.domain.errors import (
        ConstructionBlocked,
        MissingArtifact,
        PipelineError,
        RevisionExhausted,
    )

    routes: tuple[tuple[tuple[type[BaseException], ...], ExitCode], ...] = (
        ((KeyboardInterrupt,), ExitCode.INTERRUPTED),
        ((ConfigLoadError, ConfigValidationError), ExitCode.CONFIG_ERROR),
        ((ConstructionBlocked, RevisionExhausted, MissingArtifact), ExitCode.BLOCKED),
        ((PipelineError,), ExitCode.PHASE_FAILED),
        ((FileNotFoundError, NotADirectoryError, PermissionError), ExitCode.CONFIG_ERROR),
    )
    for item in _chain(exc):
        for types, code in routes:
            if isinstance(item, types):
                return code
    return ExitCode.INTERNAL_ERROR


def _chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


__all__ = ["ExitCode", "cli_entrypoint", "exit_code_for"]
