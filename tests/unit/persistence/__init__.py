"""Shared deterministic builders for persistence tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from proof_orchestrator.domain.models import Construction, ConstructionStatus, PhaseName

_EPOCH = datetime(2026, 2, 1, 12, 0, 0, tzinfo=UTC)


def make_construction(
    construction_id: str,
    *,
    priority: int = 1,
    position: int = 0,
    status: ConstructionStatus = ConstructionStatus.NOT_STARTED,
    next_phase: PhaseName = PhaseName.SURVEY,
    minutes: int = 0,
    blocked_reason: str | None = None,
) -> Construction:
    stamp = _EPOCH + timedelta(minutes=minutes)
    return Construction(
        id=construction_id,
        spec_ref=f"specs/{construction_id}.md",
        status=status,
        priority=priority,
        position=position,
        next_phase=next_phase,
        blocked_reason=blocked_reason,
        created_at=stamp,
        updated_at=stamp,
    )
