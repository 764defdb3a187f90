"""
proof-orchestrator — resource lock manager

File: src/proof_orchestrator/control_plane/lock_manager.py
Last updated: 2026-02-12

Purpose
- Grant and revoke write capability on named resource sets, durably, independent of phase
  logic.

What should be included in this file
- ``lock`` / ``unlock`` / ``is_writable`` over ``lock_states`` rows keyed by
  (resource, holder).
- ``phase_scope`` context manager that releases on every exit path.
- ``reconcile`` for crash recovery and ``unlock_all`` for final release.
- Optional file-mode mirroring that clears write bits and restores the exact prior mode.

Functional requirements
- Locking an already-locked resource is idempotent.
- ``lock(R)`` followed by ``unlock(R)`` restores R's pre-lock writability.
- One holder's unlock never releases another holder's lock.
"""

from __future__ import annotations

import os
import stat
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from proof_orchestrator.domain.models import LockMode, LockState, PhaseName
from proof_orchestrator.persistence.repositories import LockRecord, LockRepo

if TYPE_CHECKING:
    from proof_orchestrator.control_plane.phases import ResourceLayout
    from proof_orchestrator.persistence.state_db import StateDB

_WRITE_BITS = stat.S_IWUSR | stat.S_IWGRP | stat.S_IWOTH


class ResourceLockManager:
    """Durable read-only locks over resource keys."""

    def __init__(
        self,
        db: StateDB,
        *,
        layout: ResourceLayout | None = None,
        mirror_file_modes: bool = False,
        logger: Any | None = None,
    ) -> None:
        self._repo = LockRepo(db)
        self._db = db
        self._layout = layout
        self._mirror_file_modes = mirror_file_modes
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def key(self, resource: str | Path) -> str:
        if self._layout is not None:
            return self._layout.key(resource)
        return Path(str(resource)).as_posix()

    def lock(
        self, resources: Iterable[str | Path], phase: PhaseName, *, holder: str
    ) -> tuple[str, ...]:
        """Make ``resources`` read-only for ``holder``; returns the keys newly locked."""

        acquired: list[str] = []
        for resource in sorted({self.key(item) for item in resources}):
            with self._db.transaction() as conn:
                first_holder = not self._repo_holders(resource, conn=conn)
                prior_mode = self._clear_write_bits(resource) if first_holder else None
                if self._repo.acquire(
                    resource,
                    holder=holder,
                    entered_phase=phase,
                    prior_mode=prior_mode,
                    conn=conn,
                ):
                    acquired.append(resource)
        if acquired:
            self._logger.info(
                "resources_locked",
                holder=holder,
                phase=phase.value,
                resources=acquired,
            )
        return tuple(acquired)

    def unlock(self, resources: Iterable[str | Path], *, holder: str) -> tuple[str, ...]:
        """Release ``holder``'s locks on ``resources``; returns the keys released."""

        released: list[str] = []
        for resource in sorted({self.key(item) for item in resources}):
            with self._db.transaction() as conn:
                record = self._repo.release(resource, holder=holder, conn=conn)
                if record is None:
                    continue
                released.append(resource)
                remaining = self._repo_holders(resource, conn=conn)
                if record.prior_mode is None:
                    continue
                if remaining:
                    self._db.execute(
                        """
                        UPDATE lock_states SET prior_mode = ?
                        WHERE resource = ? AND holder = ? AND prior_mode IS NULL
                        """,
                        (record.prior_mode, resource, remaining[0]),
                        conn=conn,
                    )
                else:
                    self._restore_mode(resource, record.prior_mode)
        if released:
            self._logger.info("resources_unlocked", holder=holder, resources=released)
        return tuple(released)

    def unlock_all(self, holder: str) -> tuple[str, ...]:
        held = [record.resource for record in self._repo.list(holder=holder)]
        return self.unlock(held, holder=holder)

    def reconcile(
        self, holder: str, desired: Iterable[str | Path], phase: PhaseName
    ) -> tuple[str, ...]:
        """Bring ``holder``'s rows to exactly ``desired``; stale rows are released."""

        wanted = {self.key(item) for item in desired}
        held = {record.resource for record in self._repo.list(holder=holder)}
        stale = sorted(held - wanted)
        if stale:
            self._logger.info("stale_locks_released", holder=holder, resources=stale)
            self.unlock(stale, holder=holder)
        self.lock(wanted, phase, holder=holder)
        return tuple(sorted(wanted))

    def is_writable(self, resource: str | Path) -> bool:
        return not self._repo.holders(self.key(resource))

    def lock_states(self, *, holder: str | None = None) -> tuple[LockState, ...]:
        """Current read-only rows, for ``status`` introspection."""

        return tuple(_to_lock_state(record) for record in self._repo.list(holder=holder))

    @contextmanager
    def phase_scope(
        self, holder: str, resources: Iterable[str | Path], phase: PhaseName
    ) -> Iterator[tuple[str, ...]]:
        """Hold ``phase``'s locks while the block runs; release them on every exit path."""

        locked = self.reconcile(holder, resources, phase)
        try:
            yield locked
        finally:
            self.unlock_all(holder)

    def _repo_holders(self, resource: str, *, conn: Any) -> tuple[str, ...]:
        rows = self._db.query_all(
            "SELECT holder FROM lock_states WHERE resource = ? ORDER BY holder ASC",
            (resource,),
            conn=conn,
        )
        return tuple(str(row["holder"]) for row in rows)

    def _path_for(self, resource: str) -> Path | None:
        if self._layout is None:
            return None
        path = self._layout.resolve(resource)
        return path if path.is_file() else None

    def _clear_write_bits(self, resource: str) -> int | None:
        if not self._mirror_file_modes:
            return None
        path = self._path_for(resource)
        if path is None:
            return None
        prior = stat.S_IMODE(path.stat().st_mode)
        os.chmod(path, prior & ~_WRITE_BITS)
        return prior

    def _restore_mode(self, resource: str, prior_mode: int) -> None:
        path = self._path_for(resource)
        if path is None:
            return
        os.chmod(path, prior_mode)


def _to_lock_state(record: LockRecord) -> LockState:
    return LockState(
        resource=record.resource,
        mode=LockMode.READ_ONLY,
        entered_phase=record.entered_phase,
        holder=record.holder,
        locked_at=record.locked_at,
    )


__all__ = ["ResourceLockManager"]
