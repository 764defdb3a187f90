"""State file: migrations, checksums, savepoints, append-only events, read-only handles."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from proof_orchestrator.constants import STATE_DB_SCHEMA_VERSION
from proof_orchestrator.domain.models import PhaseName
from proof_orchestrator.persistence.repositories import ConstructionRepo, PhaseEventRepo
from proof_orchestrator.persistence.state_db import (
    StateDB,
    StateDBError,
    StateDBMigrationError,
)

from . import make_construction

if TYPE_CHECKING:
    from pathlib import Path


def _tables(db: StateDB) -> set[str]:
    rows = db.query_all("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {str(row["name"]) for row in rows}


def test_migrate_creates_tables_once_in_wal_mode(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "state" / "proof.sqlite", busy_timeout_ms=1_234)

    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.migrate() == STATE_DB_SCHEMA_VERSION
    assert db.ensure_schema() == STATE_DB_SCHEMA_VERSION

    assert {"constructions", "lock_states", "revisions", "phase_events"} <= _tables(db)
    with db.connection() as conn:
        assert str(conn.execute("PRAGMA journal_mode").fetchone()[0]).lower() == "wal"
        assert int(conn.execute("PRAGMA busy_timeout").fetchone()[0]) == 1_234
    assert db.query_one("SELECT COUNT(*) AS n FROM schema_versions") == {"n": 1}


def test_edited_migration_is_refused(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "proof.sqlite")
    db.migrate()
    db.execute("UPDATE schema_versions SET checksum = 'deadbeef' WHERE version = 1")

    with pytest.raises(StateDBMigrationError, match="migration 1"):
        StateDB(db.path).migrate()


def test_newer_schema_is_refused(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "proof.sqlite")
    db.migrate()
    db.execute(
        "INSERT INTO schema_versions (version, name, checksum, applied_at) "
        "VALUES (99, 'future', 'x', 'now')"
    )

    with pytest.raises(StateDBMigrationError, match="schema version 99"):
        StateDB(db.path).migrate()


def test_negative_tuning_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="busy_timeout_ms"):
        StateDB(tmp_path / "proof.sqlite", busy_timeout_ms=-1)
    with pytest.raises(ValueError, match="busy_retries"):
        StateDB(tmp_path / "proof.sqlite", busy_retries=-1)


def test_failed_transaction_leaves_no_rows(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "proof.sqlite")
    events = PhaseEventRepo(db)

    with pytest.raises(RuntimeError, match="abort"), db.transaction() as conn:
        events.append("X", PhaseName.SURVEY, "completed", conn=conn)
        raise RuntimeError("abort")

    assert events.list_for("X") == []


def test_nested_transaction_rolls_back_only_the_savepoint(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "proof.sqlite")
    events = PhaseEventRepo(db)

    with db.transaction() as conn:
        events.append("X", PhaseName.SURVEY, "completed", conn=conn)
        with pytest.raises(RuntimeError), db.transaction(conn=conn) as inner:
            events.append("X", PhaseName.SPECIFY, "completed", conn=inner)
            raise RuntimeError("inner")

    assert [event.phase for event in events.list_for("X")] == [PhaseName.SURVEY]


def test_check_constraints_reject_unknown_status(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "proof.sqlite")
    db.migrate()

    with pytest.raises(sqlite3.IntegrityError):
        db.execute(
            "INSERT INTO constructions (id, spec_ref, name, status, priority, position, "
            "next_phase, created_at, updated_at) "
            "VALUES ('X', 'specs/X.md', 'X', 'pending', 1, 0, 'survey', 'now', 'now')"
        )


def test_phase_events_are_append_only(tmp_path: Path) -> None:
    db = StateDB(tmp_path / "proof.sqlite")
    events = PhaseEventRepo(db)
    events.append("X", PhaseName.SURVEY, "completed")

    with pytest.raises(sqlite3.IntegrityError, match="append-only"):
        db.execute("DELETE FROM phase_events")
    with pytest.raises(sqlite3.IntegrityError, match="append-only"):
        db.execute("UPDATE phase_events SET outcome = 'failed'")
    assert len(events.list_for("X")) == 1


def test_read_only_handle_never_creates_the_file(tmp_path: Path) -> None:
    path = tmp_path / "state" / "proof.sqlite"
    db = StateDB(path, read_only=True)

    assert db.ensure_schema() == 0
    assert ConstructionRepo(db).list() == []
    assert db.integrity_check() == ()
    with pytest.raises(StateDBError, match="read-only"):
        ConstructionRepo(db).add(make_construction("X"))
    assert not (tmp_path / "state").exists()


def test_read_only_handle_sees_committed_rows(tmp_path: Path) -> None:
    path = tmp_path / "proof.sqlite"
    ConstructionRepo(StateDB(path)).add(make_construction("X"))

    reader = StateDB(path, read_only=True)

    assert reader.ensure_schema() == STATE_DB_SCHEMA_VERSION
    assert [item.id for item in ConstructionRepo(reader).list()] == ["X"]
    assert reader.integrity_check() == ()
