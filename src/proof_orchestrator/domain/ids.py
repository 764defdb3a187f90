"""Run identifiers ``run-<UTC start>-<suffix>``: they name log directories and sort by start."""

from __future__ import annotations

import re
import secrets
from datetime import UTC, datetime
from typing import Final

RUN_ID_PREFIX: Final[str] = "run-"
_STAMP: Final[str] = "%Y%m%dT%H%M%S"
_SUFFIX_BYTES: Final[int] = 4
_RUN_ID_RE: Final[re.Pattern[str]] = re.compile(
    rf"{RUN_ID_PREFIX}(?P<stamp>\d{{8}}T\d{{6}})(?P<millis>\d{{3}})Z-(?P<suffix>[0-9a-f]{{8}})"
)


def generate_run_id(*, now: datetime | None = None, suffix: str | None = None) -> str:
    started = (now or datetime.now(UTC)).astimezone(UTC)
    token = secrets.token_hex(_SUFFIX_BYTES) if suffix is None else suffix
    run_id = f"{RUN_ID_PREFIX}{started:{_STAMP}}{started.microsecond // 1000:03d}Z-{token}"
    validate_run_id(run_id)
    return run_id


def run_started_at(run_id: str) -> datetime:
    """Start time encoded in ``run_id``, to the millisecond."""

    match = _RUN_ID_RE.fullmatch(run_id)
    if match is None:
        raise ValueError(f"not a run id: {run_id!r}")
    started = datetime.strptime(match["stamp"], _STAMP).replace(tzinfo=UTC)
    return started.replace(microsecond=int(match["millis"]) * 1000)


def validate_run_id(run_id: str) -> None:
    run_started_at(run_id)


__all__ = ["RUN_ID_PREFIX", "generate_run_id", "run_started_at", "validate_run_id"]
