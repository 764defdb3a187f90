"""
proof-orchestrator — state database

File: src/proof_orchestrator/persistence/state_db.py
Last updated: 2026-02-17

Purpose
- One SQLite file holds the durable pipeline state: constructions, read-only lock rows,
  archived revision records, and the append-only phase event trail.

Functional requirements
- Lock rows and construction status survive process restarts and crashes.
- Schema changes are forward-only migrations; a stored checksum that disagrees with the code
  stops the run instead of guessing.
- A read-only handle never creates the file, its directory, or the schema, so ``status`` can
  introspect a project that has never run.
"""

from __future__ import annotations

import hashlib
import json
import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from proof_orchestrator.constants import STATE_DB_SCHEMA_VERSION
from proof_orchestrator.domain.models import ConstructionStatus, PhaseName

SQLParams = Sequence[str | int | float | bytes | None]
RowValue = str | int | float | bytes | None

_STATUSES: Final[str] = ", ".join(f"'{item.value}'" for item in ConstructionStatus)
_PHASES: Final[str] = ", ".join(f"'{item.value}'" for item in PhaseName)

_PIPELINE_STATE_V1: Final[tuple[str, ...]] = (
    f"""
    CREATE TABLE constructions (
        id TEXT PRIMARY KEY,
        spec_ref TEXT NOT NULL,
        name TEXT NOT NULL,
        status TEXT NOT NULL CHECK (status IN ({_STATUSES})),
        priority INTEGER NOT NULL CHECK (priority >= 0),
        position INTEGER NOT NULL CHECK (position >= 0),
        revision_count INTEGER NOT NULL DEFAULT 0 CHECK (revision_count >= 0),
        next_phase TEXT NOT NULL CHECK (next_phase IN ({_PHASES})),
        blocked_reason TEXT,
        blocked_acknowledged INTEGER NOT NULL DEFAULT 0 CHECK (blocked_acknowledged IN (0, 1)),
        last_error TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        archived_at TEXT
    )
    """,
    "CREATE INDEX idx_constructions_schedule ON constructions(status, priority, position)",
    f"""
    CREATE TABLE lock_states (
        resource TEXT NOT NULL,
        holder TEXT NOT NULL,
        entered_phase TEXT NOT NULL CHECK (entered_phase IN ({_PHASES})),
        prior_mode INTEGER,
        locked_at TEXT NOT NULL,
        PRIMARY KEY (resource, holder)
    )
    """,
    f"""
    CREATE TABLE revisions (
        sequence INTEGER PRIMARY KEY AUTOINCREMENT,
        construction_id TEXT NOT NULL,
        problem TEXT NOT NULL,
        evidence TEXT NOT NULL,
        restart_from TEXT NOT NULL CHECK (restart_from IN ({_PHASES})),
        issued_at TEXT NOT NULL CHECK (issued_at IN ({_PHASES})),
        created_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE phase_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        construction_id TEXT NOT NULL,
        phase TEXT NOT NULL CHECK (phase IN ({_PHASES})),
        outcome TEXT NOT NULL,
        detail TEXT NOT NULL DEFAULT '',
        payload_json TEXT NOT NULL DEFAULT '{{}}',
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TRIGGER phase_events_keep_updates BEFORE UPDATE ON phase_events
    BEGIN SELECT RAISE(ABORT, 'phase_events is append-only'); END
    """,
    """
    CREATE TRIGGER phase_events_keep_deletes BEFORE DELETE ON phase_events
    BEGIN SELECT RAISE(ABORT, 'phase_events is append-only'); END
    """,
)

# (version, name, statements); versions are contiguous from 1.
_MIGRATIONS: Final[tuple[tuple[int, str, tuple[str, ...]], ...]] = (
    (1, "pipeline_state", _PIPELINE_STATE_V1),
)


class StateDBError(RuntimeError):
    """Base class for state database failures."""


class StateDBBusyError(StateDBError):
    """Another process kept the database locked through every retry."""


class StateDBMigrationError(StateDBError):
    """The stored schema cannot be reconciled with this version of the code."""


class StateDBCorruptionError(StateDBError):
    """SQLite reports the file as damaged or not a database."""


def migration_checksum(version: int, name: str, statements: Sequence[str]) -> str:
    """Digest of a migration with layout whitespace removed."""

    digest = hashlib.sha256(f"{version}:{name}".encode())
    for statement in statements:
        digest.update(b"\x00")
        digest.update(" ".join(statement.split()).encode("utf-8"))
    return digest.hexdigest()


class StateDB:
    """Short-lived WAL connections to the pipeline state file."""

    def __init__(
        self,
        path: str | Path,
        *,
        read_only: bool = False,
        busy_timeout_ms: int = 5_000,
        busy_retries: int = 4,
    ) -> None:
        if busy_timeout_ms < 0 or busy_retries < 0:
            raise ValueError("busy_timeout_ms and busy_retries must be >= 0")
        self._path = Path(path).expanduser()
        self._read_only = read_only
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retries = busy_retries
        self._schema_version: int | None = None
        self._savepoints = 0

    @property
    def path(self) -> Path:
        return self._path

    @property
    def read_only(self) -> bool:
        return self._read_only

    def exists(self) -> bool:
        return self._path.is_file()

    def connect(self) -> sqlite3.Connection:
        if self._read_only:
            conn = sqlite3.connect(
                f"{self._path.resolve().as_uri()}?mode=ro",
                uri=True,
                timeout=self._busy_timeout_ms / 1000,
                isolation_level=None,
            )
        else:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                self._path, timeout=self._busy_timeout_ms / 1000, isolation_level=None
            )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        if not self._read_only:
            mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()
            if mode is None or str(mode[0]).lower() != "wal":
                conn.close()
                raise StateDBError(f"{self._path}: WAL journal mode is unavailable")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self, *, conn: sqlite3.Connection | None = None
    ) -> Iterator[sqlite3.Connection]:
        """Atomic unit of work; nests as a savepoint inside an open transaction."""

        self._require_writable()
        if conn is None:
            with self.connection() as owned, self.transaction(conn=owned) as tx:
                yield tx
            return

        if conn.in_transaction:
            self._savepoints += 1
            name = f"sp_{self._savepoints}"
            self._run(conn, f"SAVEPOINT {name}", (), "savepoint")
            try:
                yield conn
            except BaseException:
                self._run(conn, f"ROLLBACK TO SAVEPOINT {name}", (), "rollback to savepoint")
                raise
            finally:
                self._run(conn, f"RELEASE SAVEPOINT {name}", (), "release savepoint")
            return

        self._run(conn, "BEGIN IMMEDIATE", (), "begin")
        try:
            yield conn
        except BaseException:
            self._run(conn, "ROLLBACK", (), "rollback")
            raise
        self._run(conn, "COMMIT", (), "commit")

    def ensure_schema(self) -> int:
        """Migrate once per handle; a read-only handle only reads the stored version."""

        if self._schema_version is None:
            self._schema_version = self._stored_version() if self._read_only else self.migrate()
        return self._schema_version

    def migrate(self) -> int:
        self._require_writable()
        with self.connection() as conn:
            self._run(
                conn,
                "CREATE TABLE IF NOT EXISTS schema_versions (version INTEGER PRIMARY KEY, "
                "name TEXT NOT NULL, checksum TEXT NOT NULL, applied_at TEXT NOT NULL)",
                (),
                "create schema_versions",
            )
            stored = {
                int(row["version"]): str(row["checksum"])
                for row in self._run(
                    conn, "SELECT version, checksum FROM schema_versions", (), "read versions"
                ).fetchall()
            }
            newest = max(stored, default=0)
            if newest > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"{self._path} has schema version {newest}; this release understands "
                    f"up to {STATE_DB_SCHEMA_VERSION}"
                )
            for version, name, statements in _MIGRATIONS:
                checksum = migration_checksum(version, name, statements)
                if version in stored:
                    if stored[version] != checksum:
                        raise StateDBMigrationError(
                            f"migration {version} ({name}) was applied with checksum "
                            f"{stored[version][:12]}, code has {checksum[:12]}"
                        )
                    continue
                with self.transaction(conn=conn) as tx:
                    for statement in statements:
                        self._run(tx, statement, (), f"migration {version}")
                    self._run(
                        tx,
                        "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                        "VALUES (?, ?, ?, ?)",
                        (version, name, checksum, _now()),
                        f"record migration {version}",
                    )
                stored[version] = checksum
        return max(stored, default=0)

    def execute(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> int:
        """Run one write statement and return the affected row count."""

        if conn is not None:
            return self._run(conn, sql, params, "execute").rowcount
        with self.transaction() as tx:
            return self._run(tx, sql, params, "execute").rowcount

    def insert(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> int:
        if conn is not None:
            return int(self._run(conn, sql, params, "insert").lastrowid or 0)
        with self.transaction() as tx:
            return int(self._run(tx, sql, params, "insert").lastrowid or 0)

    def query_all(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> list[dict[str, RowValue]]:
        if conn is not None:
            return [dict(row) for row in self._run(conn, sql, params, "query").fetchall()]
        if self._read_only and not self.exists():
            return []
        with self.connection() as owned:
            return [dict(row) for row in self._run(owned, sql, params, "query").fetchall()]

    def query_one(
        self, sql: str, params: SQLParams = (), *, conn: sqlite3.Connection | None = None
    ) -> dict[str, RowValue] | None:
        rows = self.query_all(sql, params, conn=conn)
        return rows[0] if rows else None

    def integrity_check(self) -> tuple[str, ...]:
        """SQLite's own consistency report; empty means healthy or not yet created."""

        if self._read_only and not self.exists():
            return ()
        rows = self.query_all("PRAGMA integrity_check")
        messages = tuple(str(value) for row in rows for value in row.values())
        return () if messages == ("ok",) else messages

    def close(self) -> None:
        """Connections are per call; nothing stays open between operations."""

    def _stored_version(self) -> int:
        if not self.exists():
            return 0
        found = self.query_one(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_versions'"
        )
        if found is None:
            return 0
        row = self.query_one("SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions")
        return int(row["version"]) if row is not None and row["version"] is not None else 0

    def _require_writable(self) -> None:
        if self._read_only:
            raise StateDBError(f"{self._path} is open read-only")

    def _run(
        self, conn: sqlite3.Connection, sql: str, params: SQLParams, operation: str
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                kind = _classify(exc)
                if kind == "busy" and attempt < self._busy_retries:
                    time.sleep(0.025 * 2**attempt)
                    attempt += 1
                    continue
                if kind == "busy":
                    raise StateDBBusyError(
                        f"{operation} on {self._path}: still locked after {attempt + 1} tries"
                    ) from exc
                if kind == "corrupt":
                    raise StateDBCorruptionError(
                        f"{operation} on {self._path}: {exc}; run `status` to see the "
                        "integrity report"
                    ) from exc
                raise StateDBError(f"{operation} on {self._path}: {exc}") from exc


def _classify(exc: sqlite3.Error) -> str:
    name = str(getattr(exc, "sqlite_errorname", "") or "")
    message = str(exc).lower()
    if name.startswith(("SQLITE_BUSY", "SQLITE_LOCKED")) or "is locked" in message:
        return "busy"
    if name.startswith(("SQLITE_CORRUPT", "SQLITE_NOTADB")) or "malformed" in message:
        return "corrupt"
    if "not a database" in message:
        return "corrupt"
    return "other"


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def canonical_json(value: object) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


__all__ = [
    "RowValue",
    "SQLParams",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "canonical_json",
    "migration_checksum",
]
