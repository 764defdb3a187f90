"""
proof-orchestrator — unit tests for run logs

File: tests/unit/observability/test_logging.py
Last updated: 2026-02-17

Purpose
- Validate the per-run JSON-lines log, structlog routing, correlation scopes, and redaction.

Functional requirements
- Offline operation.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING

import pytest
import structlog

from proof_orchestrator.observability.logging import (
    active_run_log,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    redact_value,
    setup_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    structlog.contextvars.clear_contextvars()
    yield
    shutdown_logging()
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_structlog_events_land_in_the_run_log(tmp_path: Path) -> None:
    handle = setup_logging({"log_dir": str(tmp_path / "logs")}, run_id="run-1")
    log = structlog.get_logger("proof_orchestrator.control_plane.controller")

    with correlation_scope(construction_id="X", phase="prove"):
        log.info("phase_started", attempt=1, name="Lemma X", api_key="sk-live-000")
    log.debug("hidden_below_info")
    handle.shutdown()

    assert handle.log_path == tmp_path / "logs" / "run-1" / "orchestrator.jsonl"
    [record] = _read_json_lines(handle.log_path)
    assert record["event"] == "phase_started"
    assert record["level"] == "INFO"
    assert record["logger"] == "proof_orchestrator.control_plane.controller"
    assert record["run_id"] == "run-1"
    assert record["construction_id"] == "X"
    assert record["phase"] == "prove"
    assert str(record["timestamp"]).endswith("Z")
    assert record["attempt"] == 1
    assert record["name"] == "Lemma X"
    assert record["api_key"] == "***REDACTED***"


def test_stdlib_records_share_the_pipeline(tmp_path: Path) -> None:
    handle = setup_logging(run_id="run-2", log_dir=tmp_path)

    with correlation_scope(phase="audit"):
        logging.getLogger("proof_orchestrator.tests.extras").warning(
            "cycle finished", extra={"cycle": 3, "detail": "sent Bearer abc.def"}
        )
    handle.shutdown()

    [record] = _read_json_lines(handle.log_path)
    assert record["event"] == "cycle finished"
    assert record["level"] == "WARNING"
    assert record["cycle"] == "3"
    assert record["phase"] == "audit"
    assert record["detail"] == "sent Bearer ***REDACTED***"


def test_text_format_and_disabled_redaction(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_format": "text", "redact_secrets": False, "log_level": "DEBUG"},
        run_id="run-3",
        log_dir=tmp_path,
    )

    structlog.get_logger("proof_orchestrator.cli").debug("token_seen", token="plain")
    handle.shutdown()

    line = handle.log_path.read_text(encoding="utf-8").strip()
    assert "level=DEBUG logger=proof_orchestrator.cli event=token_seen" in line
    assert "token=plain" in line
    assert "run_id=run-3" in line


def test_events_without_a_run_log_never_reach_stdout(capsys: pytest.CaptureFixture[str]) -> None:
    configure_structlog()

    structlog.get_logger("proof_orchestrator.control_plane.pipeline").debug("quiet")
    structlog.get_logger("proof_orchestrator.control_plane.pipeline").info("also_quiet")

    assert capsys.readouterr().out == ""


def test_correlation_scopes_nest_and_reset() -> None:
    assert get_correlation_context() == {}
    with correlation_scope(run_id="r", construction_id="X"):
        with correlation_scope(phase="audit", construction_id=None):
            assert get_correlation_context() == {"run_id": "r", "phase": "audit"}
        assert get_correlation_context() == {"run_id": "r", "construction_id": "X"}
    assert get_correlation_context() == {}


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("password=hunter2 rest", "password=***REDACTED*** rest"),
        ("key ghp_abcdefghijklmnop", "key ***REDACTED***"),
        ({"credentials": {"user": "x"}}, {"credentials": "***REDACTED***"}),
        (["token: abc", 3], ["token:***REDACTED***", 3]),
        ("nothing to hide", "nothing to hide"),
    ],
)
def test_redact_value(value: object, expected: object) -> None:
    assert redact_value(value) == expected


@pytest.mark.parametrize(
    ("settings", "run_id", "message"),
    [
        ({"log_level": "LOUD"}, "run-4", "unsupported log level"),
        ({"log_format": "xml"}, "run-4", "log_format"),
        ({}, "  ", "run_id must not be empty"),
    ],
)
def test_invalid_settings_are_rejected(
    tmp_path: Path, settings: dict[str, object], run_id: str, message: str
) -> None:
    with pytest.raises(ValueError, match=message):
        setup_logging(settings, run_id=run_id, log_dir=tmp_path)


def test_new_setup_replaces_the_active_run_log(tmp_path: Path) -> None:
    first = setup_logging(run_id="a", log_dir=tmp_path)
    second = setup_logging(run_id="b", log_dir=tmp_path)

    assert first.is_shutdown
    assert active_run_log() is second
    shutdown_logging()
    shutdown_logging()
    assert second.is_shutdown
    assert active_run_log() is None
