"""
proof-orchestrator — repositories

File: src/proof_orchestrator/persistence/repositories.py
Last updated: 2026-02-12

Purpose
- Repository/DAO interfaces for reading/writing pipeline entities to the state DB.

What should be included in this file
- Repositories: ConstructionRepo, LockRepo, RevisionRepo, PhaseEventRepo.
- Query patterns needed by the scheduler and ``status`` (next eligible construction,
  lock rows by holder, revision history).

Functional requirements
- Must provide atomic updates for status transitions.
- A construction whose stored status is Done never changes status again.
- Revision sequence numbers are assigned by the database, never by callers.
- Phase events are append-only.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Final, cast

from proof_orchestrator.domain.models import (
    Construction,
    ConstructionStatus,
    PhaseName,
    RevisionRecord,
    utc_now,
)
from proof_orchestrator.persistence.state_db import RowValue, SQLParams, StateDB, canonical_json

if TYPE_CHECKING:
    import sqlite3

_MAX_PAGE_SIZE: Final[int] = 1_000

_TERMINAL_STATUSES: Final[tuple[str, ...]] = (
    ConstructionStatus.DONE.value,
    ConstructionStatus.BLOCKED.value,
)

_CONSTRUCTION_COLUMNS: Final[tuple[str, ...]] = (
    "id",
    "spec_ref",
    "name",
    "status",
    "priority",
    "position",
    "revision_count",
    "next_phase",
    "blocked_reason",
    "blocked_acknowledged",
    "last_error",
    "created_at",
    "updated_at",
    "archived_at",
)


class ImmutableConstructionError(ValueError):
    """Raised when a write would change the status of a Done construction."""


@dataclass(frozen=True, slots=True)
class LockRecord:
    """One durable read-only row: ``holder`` locked ``resource`` on entering ``entered_phase``."""

    resource: str
    holder: str
    entered_phase: PhaseName
    prior_mode: int | None
    locked_at: datetime


@dataclass(frozen=True, slots=True)
class PhaseEvent:
    id: int
    construction_id: str
    phase: PhaseName
    outcome: str
    detail: str
    payload: dict[str, object]
    created_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "construction_id": self.construction_id,
            "phase": self.phase.value,
            "outcome": self.outcome,
            "detail": self.detail,
            "payload": self.payload,
            "created_at": _iso8601z(self.created_at),
        }


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.ensure_schema()

    @property
    def db(self) -> StateDB:
        return self._db

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")


class ConstructionRepo(_BaseRepo):
    """Repository for construction state and lifecycle transitions."""

    def add(self, construction: Construction) -> Construction:
        return self._persist(construction, upsert=False)

    def upsert(self, construction: Construction) -> Construction:
        return self._persist(construction, upsert=True)

    def save(self, construction: Construction) -> Construction:
        return self.upsert(construction)

    def get(self, construction_id: str) -> Construction | None:
        row = self._db.query_one(
            f"SELECT {', '.join(_CONSTRUCTION_COLUMNS)} FROM constructions WHERE id = ?",
            (construction_id,),
        )
        return None if row is None else _construction_from_row(row)

    def find(self, reference: str) -> Construction | None:
        """Resolve a construction by id or by its specification reference."""

        text = reference.strip()
        found = self.get(text)
        if found is not None:
            return found
        row = self._db.query_one(
            f"""
            SELECT {', '.join(_CONSTRUCTION_COLUMNS)} FROM constructions
            WHERE spec_ref = ? ORDER BY position ASC LIMIT 1
            """,
            (text,),
        )
        return None if row is None else _construction_from_row(row)

    def list(
        self,
        *,
        statuses: Iterable[ConstructionStatus | str] | None = None,
        limit: int = 500,
        offset: int = 0,
    ) -> list[Construction]:
        self._validate_page(limit, offset)
        sql = f"SELECT {', '.join(_CONSTRUCTION_COLUMNS)} FROM constructions"
        params: list[object] = []
        if statuses is not None:
            values = sorted({ConstructionStatus(item).value for item in statuses})
            if not values:
                return []
            sql += f" WHERE status IN ({', '.join('?' for _ in values)})"
            params.extend(values)
        sql += " ORDER BY priority ASC, position ASC, id ASC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [_construction_from_row(row) for row in rows]

    def next_eligible(self) -> Construction | None:
        """Highest-priority construction that is neither Done nor Blocked."""

        row = self._db.query_one(
            f"""
            SELECT {', '.join(_CONSTRUCTION_COLUMNS)} FROM constructions
            WHERE status NOT IN (?, ?)
            ORDER BY priority ASC, position ASC, id ASC
            LIMIT 1
            """,
            _TERMINAL_STATUSES,
        )
        return None if row is None else _construction_from_row(row)

    def set_status(
        self,
        construction_id: str,
        status: ConstructionStatus | str,
        *,
        blocked_reason: str | None = None,
    ) -> Construction:
        next_status = ConstructionStatus(status)
        with self._db.transaction() as conn:
            row = self._db.query_one(
                f"SELECT {', '.join(_CONSTRUCTION_COLUMNS)} FROM constructions WHERE id = ?",
                (construction_id,),
                conn=conn,
            )
            if row is None:
                raise ValueError(f"construction_id not found: {construction_id}")
            current = _construction_from_row(row)
            current.status = next_status
            if next_status is ConstructionStatus.BLOCKED:
                current.blocked_reason = blocked_reason or current.blocked_reason
                current.blocked_acknowledged = False
            current.updated_at = utc_now()
            updated = Construction(**{name: getattr(current, name) for name in _field_names()})
            self._persist_row(conn, updated, upsert=True)
            return updated

    def _persist(self, construction: Construction, *, upsert: bool) -> Construction:
        with self._db.transaction() as conn:
            self._persist_row(conn, construction, upsert=upsert)
        return construction

    def _persist_row(
        self, conn: sqlite3.Connection, construction: Construction, *, upsert: bool
    ) -> None:
        existing = self._db.query_one(
            "SELECT status FROM constructions WHERE id = ?", (construction.id,), conn=conn
        )
        if existing is not None:
            if not upsert:
                raise ValueError(f"construction already registered: {construction.id}")
            stored = existing.get("status")
            if (
                stored == ConstructionStatus.DONE.value
                and construction.status is not ConstructionStatus.DONE
            ):
                raise ImmutableConstructionError(
                    f"construction {construction.id} is done; its status cannot change"
                )

        params: SQLParams = (
            construction.id,
            construction.spec_ref,
            construction.name,
            ConstructionStatus(construction.status).value,
            construction.priority,
            construction.position,
            construction.revision_count,
            PhaseName(construction.next_phase).value,
            construction.blocked_reason,
            1 if construction.blocked_acknowledged else 0,
            construction.last_error,
            _iso8601z(construction.created_at),
            _iso8601z(construction.updated_at),
            None if construction.archived_at is None else _iso8601z(construction.archived_at),
        )
        placeholders = ", ".join("?" for _ in _CONSTRUCTION_COLUMNS)
        updates = ", ".join(
            f"{column} = excluded.{column}"
            for column in _CONSTRUCTION_COLUMNS
            if column not in {"id", "created_at"}
        )
        self._db.execute(
            f"""
            INSERT INTO constructions ({', '.join(_CONSTRUCTION_COLUMNS)})
            VALUES ({placeholders})
            ON CONFLICT(id) DO UPDATE SET {updates}
            """,
            params,
            conn=conn,
        )


class LockRepo(_BaseRepo):
    """Durable read-only rows keyed by (resource, holder)."""

    def acquire(
        self,
        resource: str,
        *,
        holder: str,
        entered_phase: PhaseName,
        prior_mode: int | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> bool:
        """Insert a lock row; returns ``False`` when the holder already had it."""

        changed = self._db.execute(
            """
            INSERT OR IGNORE INTO lock_states (
                resource, holder, entered_phase, prior_mode, locked_at
            )
            VALUES (?, ?, ?, ?, ?)
            """,
            (resource, holder, entered_phase.value, prior_mode, _iso8601z(utc_now())),
            conn=conn,
        )
        return changed > 0

    def release(
        self,
        resource: str,
        *,
        holder: str,
        conn: sqlite3.Connection | None = None,
    ) -> LockRecord | None:
        """Delete one lock row and return what it held, or ``None`` if absent."""

        if conn is None:
            with self._db.transaction() as tx:
                return self.release(resource, holder=holder, conn=tx)
        row = self._db.query_one(
            """
            SELECT resource, holder, entered_phase, prior_mode, locked_at
            FROM lock_states WHERE resource = ? AND holder = ?
            """,
            (resource, holder),
            conn=conn,
        )
        if row is None:
            return None
        self._db.execute(
            "DELETE FROM lock_states WHERE resource = ? AND holder = ?",
            (resource, holder),
            conn=conn,
        )
        return _lock_from_row(row)

    def get(self, resource: str, *, holder: str) -> LockRecord | None:
        row = self._db.query_one(
            """
            SELECT resource, holder, entered_phase, prior_mode, locked_at
            FROM lock_states WHERE resource = ? AND holder = ?
            """,
            (resource, holder),
        )
        return None if row is None else _lock_from_row(row)

    def holders(self, resource: str) -> tuple[str, ...]:
        rows = self._db.query_all(
            "SELECT holder FROM lock_states WHERE resource = ? ORDER BY holder ASC",
            (resource,),
        )
        return tuple(str(row["holder"]) for row in rows)

    def list(self, *, holder: str | None = None) -> list[LockRecord]:
        sql = "SELECT resource, holder, entered_phase, prior_mode, locked_at FROM lock_states"
        params: tuple[str, ...] = ()
        if holder is not None:
            sql += " WHERE holder = ?"
            params = (holder,)
        sql += " ORDER BY resource ASC, holder ASC"
        return [_lock_from_row(row) for row in self._db.query_all(sql, params)]


class RevisionRepo(_BaseRepo):
    """Archive of processed revision records; sequence numbers are monotonic."""

    def append(self, record: RevisionRecord) -> RevisionRecord:
        sequence = self._db.insert(
            """
            INSERT INTO revisions (
                construction_id, problem, evidence, restart_from, issued_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.construction_id,
                record.problem,
                record.evidence,
                record.restart_from.value,
                record.issued_at.value,
                _iso8601z(record.created_at),
            ),
        )
        return record.with_sequence(sequence)

    def get(self, sequence: int) -> RevisionRecord | None:
        row = self._db.query_one(
            """
            SELECT sequence, construction_id, problem, evidence, restart_from, issued_at,
                   created_at
            FROM revisions WHERE sequence = ?
            """,
            (sequence,),
        )
        return None if row is None else RevisionRecord.from_dict(row)

    def list_for(self, construction_id: str) -> list[RevisionRecord]:
        rows = self._db.query_all(
            """
            SELECT sequence, construction_id, problem, evidence, restart_from, issued_at,
                   created_at
            FROM revisions WHERE construction_id = ?
            ORDER BY sequence ASC
            """,
            (construction_id,),
        )
        return [RevisionRecord.from_dict(row) for row in rows]

    def latest(self, construction_id: str) -> RevisionRecord | None:
        records = self.list_for(construction_id)
        return records[-1] if records else None


class PhaseEventRepo(_BaseRepo):
    """Append-only audit trail of phase outcomes."""

    def append(
        self,
        construction_id: str,
        phase: PhaseName,
        outcome: str,
        *,
        detail: str = "",
        payload: Mapping[str, object] | None = None,
        conn: sqlite3.Connection | None = None,
    ) -> PhaseEvent:
        created_at = utc_now()
        body = dict(payload or {})
        event_id = self._db.insert(
            """
            INSERT INTO phase_events (
                construction_id, phase, outcome, detail, payload_json, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                construction_id,
                phase.value,
                outcome,
                detail,
                canonical_json(body),
                _iso8601z(created_at),
            ),
            conn=conn,
        )
        return PhaseEvent(
            id=event_id,
            construction_id=construction_id,
            phase=phase,
            outcome=outcome,
            detail=detail,
            payload=body,
            created_at=created_at,
        )

    def list_for(
        self, construction_id: str, *, limit: int = 100, offset: int = 0
    ) -> list[PhaseEvent]:
        self._validate_page(limit, offset)
        rows = self._db.query_all(
            """
            SELECT id, construction_id, phase, outcome, detail, payload_json, created_at
            FROM phase_events WHERE construction_id = ?
            ORDER BY id ASC LIMIT ? OFFSET ?
            """,
            (construction_id, limit, offset),
        )
        return [_event_from_row(row) for row in rows]


def _field_names() -> tuple[str, ...]:
    return (*_CONSTRUCTION_COLUMNS, "schema_version")


def _construction_from_row(row: Mapping[str, RowValue]) -> Construction:
    return Construction(
        id=_row_text(row, "id"),
        spec_ref=_row_text(row, "spec_ref"),
        name=_row_text(row, "name"),
        status=_row_text(row, "status"),
        priority=_row_int(row, "priority"),
        position=_row_int(row, "position"),
        revision_count=_row_int(row, "revision_count"),
        next_phase=_row_text(row, "next_phase"),
        blocked_reason=_row_optional_text(row, "blocked_reason"),
        blocked_acknowledged=bool(row.get("blocked_acknowledged")),
        last_error=_row_optional_text(row, "last_error"),
        created_at=_row_text(row, "created_at"),
        updated_at=_row_text(row, "updated_at"),
        archived_at=_row_optional_text(row, "archived_at"),
    )


def _lock_from_row(row: Mapping[str, RowValue]) -> LockRecord:
    prior_mode = row.get("prior_mode")
    return LockRecord(
        resource=_row_text(row, "resource"),
        holder=_row_text(row, "holder"),
        entered_phase=PhaseName(_row_text(row, "entered_phase")),
        prior_mode=prior_mode if isinstance(prior_mode, int) else None,
        locked_at=_parse_iso(_row_text(row, "locked_at")),
    )


def _event_from_row(row: Mapping[str, RowValue]) -> PhaseEvent:
    payload = json.loads(_row_text(row, "payload_json"))
    if not isinstance(payload, dict):
        raise ValueError("phase_events.payload_json must decode to an object")
    return PhaseEvent(
        id=_row_int(row, "id"),
        construction_id=_row_text(row, "construction_id"),
        phase=PhaseName(_row_text(row, "phase")),
        outcome=_row_text(row, "outcome"),
        detail=_row_text(row, "detail"),
        payload=payload,
        created_at=_parse_iso(_row_text(row, "created_at")),
    )


def _row_text(row: Mapping[str, RowValue], key: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise ValueError(f"column {key} must be text, got {type(value).__name__}")
    return value


def _row_optional_text(row: Mapping[str, RowValue], key: str) -> str | None:
    value = row.get(key)
    if value is None:
        return None
    return _row_text(row, key)


def _row_int(row: Mapping[str, RowValue], key: str) -> int:
    value = row.get(key)
    if not isinstance(value, int):
        raise ValueError(f"column {key} must be integer, got {type(value).__name__}")
    return value


def _iso8601z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    return datetime.fromisoformat(text).astimezone(UTC)


__all__ = [
    "ConstructionRepo",
    "ImmutableConstructionError",
    "LockRecord",
    "LockRepo",
    "PhaseEvent",
    "PhaseEventRepo",
    "RevisionRepo",
]
