"""Command-line interface router for proof-orchestrator."""

from __future__ import annotations

import argparse
import json
import signal
import sys
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from pathlib import Path
from types import FrameType
from typing import Any, Final

from proof_orchestrator.config import (
    DEFAULT_CONFIG_FILE,
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from proof_orchestrator.control_plane.controller import PhaseReport
from proof_orchestrator.control_plane.pipeline import Pipeline, StatusSnapshot, build_pipeline
from proof_orchestrator.domain.ids import generate_run_id
from proof_orchestrator.domain.models import (
    PHASE_ORDER,
    ConstructionStatus,
    PhaseName,
    PhaseOutcome,
)
from proof_orchestrator.observability.logging import (
    configure_structlog,
    correlation_scope,
    setup_logging,
    shutdown_logging,
)
from proof_orchestrator.ui.render import CLIRenderer, create_renderer

PHASE_VERBS: Final[tuple[str, ...]] = tuple(phase.value for phase in PHASE_ORDER)

EXIT_OK: Final[int] = 0
EXIT_PHASE_FAILED: Final[int] = 1
EXIT_CONFIG_ERROR: Final[int] = 2
EXIT_BLOCKED: Final[int] = 3


class CLIError(RuntimeError):
    """A command failed in a way the user can fix; carries the exit code to report."""

    def __init__(self, message: str, exit_code: int = EXIT_PHASE_FAILED) -> None:
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


# --- argument parsing ---


def build_parser() -> argparse.ArgumentParser:
    """One subcommand per phase, plus ``full``, ``program``, ``status`` and ``config``."""

    parser = argparse.ArgumentParser(
        prog="proof-orchestrator",
        description=(
            "proof-orchestrator — phase-gated pipeline for Lean formalization work.\n\n"
            "Common workflows:\n"
            "  proof-orchestrator full specs/lemma.md     Drive one construction to Done\n"
            "  proof-orchestrator program --max-cycles 5  Work through CONSTRUCTIONS.md\n"
            "  proof-orchestrator status --build          Placeholders, locks, queue, build\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help=f"Path to orchestrator TOML config (default: ./{DEFAULT_CONFIG_FILE} if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show detailed output and mirror logs to stderr.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Plain output without ANSI colors; setting NO_COLOR has the same effect.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    for verb in PHASE_VERBS:
        phase_parser = subparsers.add_parser(
            verb,
            parents=[common],
            help=f"Run the {verb.capitalize()} phase for one construction",
        )
        phase_parser.add_argument("reference", help="Specification path or construction id.")
        phase_parser.set_defaults(handler=_cmd_phase, phase=verb)

    full_parser = subparsers.add_parser(
        "full",
        parents=[common],
        help="Run phases in order until Done, Blocked, or a phase fails",
    )
    full_parser.add_argument("reference", help="Specification path or construction id.")
    full_parser.add_argument(
        "--max-phases", type=_positive_int, default=None, help="Stop after N phases."
    )
    full_parser.set_defaults(handler=_cmd_full)

    program_parser = subparsers.add_parser(
        "program",
        parents=[common],
        help="Advance every queued construction, highest priority first",
    )
    program_parser.add_argument(
        "--max-cycles",
        type=_positive_int,
        default=None,
        help="Cycle budget (default: pipeline.max_program_cycles).",
    )
    program_parser.set_defaults(handler=_cmd_program)

    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show placeholders, unsound declarations, locks, and queue state",
    )
    status_parser.add_argument(
        "--build", action="store_true", default=False, help="Also run the build command."
    )
    status_parser.add_argument(
        "--json", action="store_true", default=False, help="Emit machine-readable JSON."
    )
    status_parser.set_defaults(handler=_cmd_status)

    ack_parser = subparsers.add_parser(
        "ack", parents=[common], help="Acknowledge a Blocked construction"
    )
    ack_parser.add_argument("reference", help="Specification path or construction id.")
    ack_parser.set_defaults(handler=_cmd_ack)

    unblock_parser = subparsers.add_parser(
        "unblock",
        parents=[common],
        help="Return a Blocked construction to Revision with a fresh revision budget",
    )
    unblock_parser.add_argument("reference", help="Specification path or construction id.")
    unblock_parser.set_defaults(handler=_cmd_unblock)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Print the effective (redacted) configuration"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Dispatch ``argv`` to its subcommand; the return value is the process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_structlog()
    try:
        with _terminate_as_interrupt():
            result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# --- commands ---


def _cmd_phase(args: argparse.Namespace) -> int:
    with _open_pipeline(args) as pipeline:
        report = pipeline.controller.run_phase(args.reference, args.phase)
    renderer = _get_renderer(args)
    renderer.phase_report(report)
    return _exit_code_for(report.outcome)


def _cmd_full(args: argparse.Namespace) -> int:
    with _open_pipeline(args) as pipeline:
        reports = pipeline.controller.run_full(args.reference, max_phases=args.max_phases)
    renderer = _get_renderer(args)
    for report in reports:
        renderer.phase_report(report)
    if not reports:
        renderer.text(f"{args.reference}: nothing to run")
    return _exit_code_for_reports(reports)


def _cmd_program(args: argparse.Namespace) -> int:
    with _open_pipeline(args) as pipeline:
        max_cycles = args.max_cycles or int(pipeline.config["pipeline"]["max_program_cycles"])
        result = pipeline.scheduler.run_program(max_cycles=max_cycles)

    renderer = _get_renderer(args)
    for cycle in result.cycles:
        if cycle.idle:
            renderer.text(f"cycle {cycle.cycle}: queue idle")
            continue
        renderer.section(f"cycle {cycle.cycle}: {cycle.construction_id}")
        for report in cycle.reports:
            renderer.phase_report(report)
    if result.exhausted:
        renderer.warning("cycle budget spent with eligible constructions remaining")
    if result.failed:
        renderer.warning(f"failed this run: {', '.join(sorted(result.failed))}")
    blocked = result.blocked_unacknowledged
    if blocked:
        renderer.warning(f"blocked, awaiting acknowledgement: {', '.join(blocked)}")
        renderer.next_steps(
            [f"proof-orchestrator ack {item}" for item in blocked]
            + [f"proof-orchestrator unblock {item}" for item in blocked]
        )

    if result.failed:
        return EXIT_PHASE_FAILED
    if blocked:
        return EXIT_BLOCKED
    return EXIT_OK


def _cmd_status(args: argparse.Namespace) -> int:
    with _open_pipeline(args, logging_enabled=False, read_only=True) as pipeline:
        snapshot = pipeline.status(build=bool(args.build))

    if args.json:
        _emit_json({"command": "status", **snapshot.to_dict()})
    else:
        _render_status(_get_renderer(args), snapshot)
    if snapshot.oracle is not None and not snapshot.oracle.passed:
        return EXIT_PHASE_FAILED
    return EXIT_OK


def _cmd_ack(args: argparse.Namespace) -> int:
    with _open_pipeline(args) as pipeline:
        construction = pipeline.scheduler.acknowledge(args.reference)
    _get_renderer(args).kv(construction.id, "Blocked (acknowledged)")
    return EXIT_OK


def _cmd_unblock(args: argparse.Namespace) -> int:
    with _open_pipeline(args) as pipeline:
        construction = pipeline.scheduler.unblock(args.reference)
    renderer = _get_renderer(args)
    resume_at = PhaseName(construction.next_phase).label
    renderer.kv(construction.id, f"Revision (resumes at {resume_at})")
    renderer.next_steps([f"proof-orchestrator full {construction.spec_ref}"])
    return EXIT_OK


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    print(dump_effective_config(config))
    return EXIT_OK


# --- shared plumbing ---


@contextmanager
def _open_pipeline(
    args: argparse.Namespace, *, logging_enabled: bool = True, read_only: bool = False
) -> Iterator[Pipeline]:
    config = _load_effective_config(args)
    root = _project_root(args)
    run_id = generate_run_id()
    if logging_enabled:
        setup_logging(config["observability"], run_id=run_id, log_to_stderr=bool(args.verbose))
    pipeline = build_pipeline(config, root=root, read_only=read_only)
    try:
        with correlation_scope(run_id=run_id):
            yield pipeline
    finally:
        pipeline.close()
        if logging_enabled:
            shutdown_logging()


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    try:
        return load_config(args.config_path, profile=args.profile)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=EXIT_CONFIG_ERROR) from exc


def _project_root(args: argparse.Namespace) -> Path:
    if args.config_path:
        return Path(args.config_path).expanduser().resolve().parent
    return Path.cwd().resolve()


def _exit_code_for(outcome: PhaseOutcome) -> int:
    if outcome is PhaseOutcome.FAILED:
        return EXIT_PHASE_FAILED
    if outcome is PhaseOutcome.BLOCKED:
        return EXIT_BLOCKED
    return EXIT_OK


def _exit_code_for_reports(reports: Sequence[PhaseReport]) -> int:
    codes = [_exit_code_for(report.outcome) for report in reports]
    if EXIT_PHASE_FAILED in codes:
        return EXIT_PHASE_FAILED
    if EXIT_BLOCKED in codes:
        return EXIT_BLOCKED
    return EXIT_OK


def _render_status(renderer: CLIRenderer, snapshot: StatusSnapshot) -> None:
    renderer.kv("Unproved placeholders", snapshot.placeholder_count)
    renderer.kv("Unsound declarations", snapshot.unsound_count)
    if snapshot.state_db_issues:
        renderer.kv("State file", "integrity check failed")
        renderer.items(list(snapshot.state_db_issues))
    if snapshot.oracle is not None:
        renderer.kv("Build", "passed" if snapshot.oracle.passed else "failed")
        renderer.items(list(snapshot.oracle.errors))

    renderer.table(
        ("Priority", "Name", "Specification", "Status"),
        [
            (f"P{entry.priority}", entry.name, entry.spec_ref, entry.status_text)
            for entry in snapshot.queue
        ],
        title="Queue:",
    )
    renderer.table(
        ("Construction", "Status", "Next phase", "Revisions"),
        [
            (
                item.id,
                ConstructionStatus(item.status).display_name,
                PhaseName(item.next_phase).label,
                str(item.revision_count),
            )
            for item in snapshot.constructions
        ],
        title="Constructions:",
    )
    renderer.table(
        ("Resource", "Mode", "Phase", "Holder"),
        [
            (
                lock.resource,
                lock.mode.value,
                lock.entered_phase.value if lock.entered_phase else "",
                lock.holder or "",
            )
            for lock in snapshot.locks
        ],
        title="Locks:",
    )
    if snapshot.theorems:
        renderer.section("Theorems:")
        for path, names in snapshot.theorems:
            renderer.text(f"  {path}")
            renderer.items(list(names))
    if snapshot.revision_file_present:
        renderer.section("Pending revision file:")
        if snapshot.pending_revision is not None:
            renderer.kv("  restart_from", snapshot.pending_revision.restart_from.label)
            renderer.kv("  problem", snapshot.pending_revision.problem)
        else:
            renderer.text("  present, but no eligible construction owns it")


def _emit_json(payload: Mapping[str, object]) -> None:
    """One compact line of JSON with sorted keys."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=bool(args.no_color), verbose=bool(args.verbose))


def _positive_int(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"expected an integer, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("must be > 0")
    return value


@contextmanager
def _terminate_as_interrupt() -> Iterator[None]:
    """Turn SIGTERM into KeyboardInterrupt so lock release runs before exit."""

    def _raise_interrupt(signum: int, frame: FrameType | None) -> None:
        raise KeyboardInterrupt(f"signal {signum}")

    previous: Callable[[int, FrameType | None], Any] | int | None
    try:
        previous = signal.signal(signal.SIGTERM, _raise_interrupt)
    except ValueError:  # pragma: no cover - not on the main thread.
        previous = None
    try:
        yield
    finally:
        if previous is not None:
            signal.signal(signal.SIGTERM, previous)


__all__ = ["CLIError", "PHASE_VERBS", "build_parser", "run_cli"]
