"""
proof-orchestrator — run logs

File: src/proof_orchestrator/observability/logging.py
Last updated: 2026-02-17

Purpose
- Every mutating CLI run writes one log file, ``<log_dir>/<run_id>/orchestrator.jsonl``.
  structlog decision events (``phase_started``, ``policy_denied``, ...) and plain stdlib
  records land in it through the same structlog processor chain.
- Correlation fields (run, construction, phase, cycle) ride on structlog contextvars, so
  any record emitted inside ``correlation_scope`` carries them.
- Secret-looking keys and values are redacted before rendering unless disabled.

Non-functional requirements
- Callers never block on disk: records are rendered on the calling thread and written by a
  queue listener thread.
"""

from __future__ import annotations

import atexit
import logging
import logging.handlers
import queue
import re
import threading
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final

import structlog

LOGGER_NAME: Final[str] = "proof_orchestrator"
LOG_FILENAME: Final[str] = "orchestrator.jsonl"
CORRELATION_KEYS: Final[tuple[str, ...]] = ("run_id", "construction_id", "phase", "cycle")
REDACTED: Final[str] = "***REDACTED***"

_SECRET_KEY_WORDS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "private_key",
)
_SECRET_TEXT_PATTERNS: Final[tuple[tuple[re.Pattern[str], str], ...]] = (
    (
        re.compile(r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*\S+"),
        rf"\1\2{REDACTED}",
    ),
    (re.compile(r"(?i)\bbearer\s+[\w.~+/-]+=*"), f"Bearer {REDACTED}"),
    (re.compile(r"\b(?:sk|ghp|gho|xox[bp])[-_][\w-]{12,}"), REDACTED),
)

_active_lock = threading.Lock()
_active: RunLog | None = None
_atexit_registered = False


class RunLog:
    """Handle for one run's log file; ``shutdown`` drains the queue and closes the file."""

    def __init__(
        self,
        *,
        run_id: str,
        log_path: Path,
        logger: logging.Logger,
        queue_handler: logging.Handler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.run_id = run_id
        self.log_path = log_path
        self._logger = logger
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._closed = False
        self._lock = threading.Lock()

    @property
    def is_shutdown(self) -> bool:
        return self._closed

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._logger.removeHandler(self._queue_handler)
            self._listener.stop()
            for sink in self._sinks:
                sink.close()
            self._closed = True


def setup_logging(
    observability: Mapping[str, object] | None = None,
    *,
    run_id: str,
    log_dir: Path | str | None = None,
    log_to_stderr: bool = False,
) -> RunLog:
    """Open the run log described by the ``[observability]`` section and route structlog."""

    run_id = run_id.strip()
    if not run_id:
        raise ValueError("run_id must not be empty")
    settings = dict(observability or {})
    level = _parse_level(settings.get("log_level", "INFO"))
    log_format = settings.get("log_format", "json")
    if log_format not in ("json", "text"):
        raise ValueError(f"log_format must be 'json' or 'text', got {log_format!r}")
    base_dir = Path(str(log_dir if log_dir is not None else settings.get("log_dir", "logs")))

    shutdown_logging()
    log_path = base_dir / run_id / LOG_FILENAME
    log_path.parent.mkdir(parents=True, exist_ok=True)

    processors: list[Any] = [
        _record_metadata,
        structlog.stdlib.ProcessorFormatter.remove_processors_meta,
        _correlation(run_id),
        structlog.processors.format_exc_info,
    ]
    if settings.get("redact_secrets", True):
        processors.append(redact_event)
    if log_format == "text":
        processors.append(
            structlog.processors.LogfmtRenderer(
                key_order=["timestamp", "level", "logger", "event"], sort_keys=True
            )
        )
    else:
        processors.append(
            structlog.processors.JSONRenderer(
                sort_keys=True, separators=(",", ":"), ensure_ascii=False
            )
        )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=processors,
        foreign_pre_chain=[structlog.contextvars.merge_contextvars, structlog.stdlib.ExtraAdder()],
    )

    # Rendering happens in QueueHandler.prepare on the caller's thread, so sinks only
    # write the finished line.
    queue_handler = logging.handlers.QueueHandler(queue.SimpleQueue())
    queue_handler.setFormatter(formatter)
    sinks: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if log_to_stderr:
        sinks.append(logging.StreamHandler())
    for sink in sinks:
        sink.setFormatter(logging.Formatter("%(message)s"))
    listener = logging.handlers.QueueListener(queue_handler.queue, *sinks)

    logger = logging.getLogger(LOGGER_NAME)
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.setLevel(level)
    logger.propagate = False
    logger.addHandler(queue_handler)
    listener.start()

    handle = RunLog(
        run_id=run_id,
        log_path=log_path,
        logger=logger,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    global _active, _atexit_registered
    with _active_lock:
        _active = handle
        if not _atexit_registered:
            atexit.register(shutdown_logging)
            _atexit_registered = True
    configure_structlog()
    return handle


def configure_structlog() -> None:
    """Send ``structlog.get_logger(__name__)`` events through stdlib logging.

    Without an open run log the events reach stdlib's last-resort handler (stderr, warnings
    and above), never stdout.
    """

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def shutdown_logging() -> None:
    """Close the active run log, if any; safe to call repeatedly."""

    global _active
    with _active_lock:
        handle, _active = _active, None
    if handle is not None:
        handle.shutdown()


def active_run_log() -> RunLog | None:
    with _active_lock:
        return _active


@contextmanager
def correlation_scope(**fields: str | int | None) -> Iterator[None]:
    """Bind correlation fields for the block; ``None`` hides an outer binding."""

    previous = structlog.contextvars.get_contextvars()
    hidden = [key for key, value in fields.items() if value is None]
    structlog.contextvars.unbind_contextvars(*hidden)
    structlog.contextvars.bind_contextvars(
        **{key: str(value) for key, value in fields.items() if value is not None}
    )
    try:
        yield
    finally:
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(**previous)


def get_correlation_context() -> dict[str, Any]:
    return structlog.contextvars.get_contextvars()


def redact_event(
    logger: object, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor: mask secret-looking keys and inline secrets in text."""

    for key in list(event_dict):
        event_dict[key] = redact_value(event_dict[key], key=key)
    return event_dict


def redact_value(value: Any, *, key: str | None = None) -> Any:
    if key is not None and any(word in key.lower() for word in _SECRET_KEY_WORDS):
        return REDACTED
    if isinstance(value, str):
        for pattern, replacement in _SECRET_TEXT_PATTERNS:
            value = pattern.sub(replacement, value)
        return value
    if isinstance(value, Mapping):
        return {name: redact_value(item, key=str(name)) for name, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact_value(item) for item in value]
    return value


def _record_metadata(
    logger: object, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        stamp = datetime.fromtimestamp(record.created, tz=UTC)
        event_dict["timestamp"] = stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        event_dict["level"] = record.levelname
        event_dict["logger"] = record.name
    return event_dict


def _correlation(run_id: str) -> Any:
    def stamp(
        logger: object, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        event_dict.setdefault("run_id", run_id)
        for key in CORRELATION_KEYS:
            if event_dict.get(key) is None:
                event_dict.pop(key, None)
            else:
                event_dict[key] = str(event_dict[key])
        return event_dict

    return stamp


def _parse_level(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    level = logging.getLevelName(str(value).strip().upper())
    if not isinstance(level, int):
        raise ValueError(f"unsupported log level {value!r}")
    return level


__all__ = [
    "CORRELATION_KEYS",
    "LOGGER_NAME",
    "LOG_FILENAME",
    "REDACTED",
    "RunLog",
    "active_run_log",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact_event",
    "redact_value",
    "setup_logging",
    "shutdown_logging",
]
