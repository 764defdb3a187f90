"""Durable pipeline state: the SQLite state file and its repositories."""

from proof_orchestrator.persistence.repositories import (
    ConstructionRepo,
    ImmutableConstructionError,
    LockRecord,
    LockRepo,
    PhaseEvent,
    PhaseEventRepo,
    RevisionRepo,
)
from proof_orchestrator.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "ConstructionRepo",
    "ImmutableConstructionError",
    "LockRecord",
    "LockRepo",
    "PhaseEvent",
    "PhaseEventRepo",
    "RevisionRepo",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
]
