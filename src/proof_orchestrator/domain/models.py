"""Dataclass domain models with strict validation and canonical serialization."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import UTC, datetime
from enum import Enum, StrEnum
from pathlib import PurePosixPath
from typing import Final, NoReturn, TypeVar, cast

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

TEnum = TypeVar("TEnum", bound=Enum)

_SCHEMA_VERSION = 1
_MAX_TEXT = 16384

_CONSTRUCTION_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")
_PRIORITY_RE = re.compile(r"^[Pp](\d{1,4})$")


class PhaseName(StrEnum):
    SURVEY = "survey"
    SPECIFY = "specify"
    CONSTRUCT = "construct"
    FORMALIZE = "formalize"
    PROVE = "prove"
    AUDIT = "audit"
    LOG = "log"

    @property
    def ordinal(self) -> int:
        return PHASE_ORDER.index(self)

    @property
    def label(self) -> str:
        return self.value.capitalize()

    def successor(self) -> PhaseName | None:
        position = self.ordinal + 1
        if position >= len(PHASE_ORDER):
            return None
        return PHASE_ORDER[position]

    @classmethod
    def parse(cls, value: object) -> PhaseName:
        """Resolve a phase from its name or ordered index; unknown values raise."""

        if isinstance(value, cls):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            if 0 <= value < len(PHASE_ORDER):
                return PHASE_ORDER[value]
            _invalid("PhaseName", f"phase index out of range: {value}")
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        allowed = ", ".join(member.value for member in PHASE_ORDER)
        _invalid("PhaseName", f"unknown phase {value!r}; expected one of: {allowed}")


PHASE_ORDER: Final[tuple[PhaseName, ...]] = (
    PhaseName.SURVEY,
    PhaseName.SPECIFY,
    PhaseName.CONSTRUCT,
    PhaseName.FORMALIZE,
    PhaseName.PROVE,
    PhaseName.AUDIT,
    PhaseName.LOG,
)


class ActionCategory(StrEnum):
    CREATE_RESOURCE = "create_resource"
    MODIFY_RESOURCE = "modify_resource"
    EXECUTE_COMMAND = "execute_command"

    @property
    def is_write(self) -> bool:
        return self is not ActionCategory.EXECUTE_COMMAND


class ConstructionStatus(StrEnum):
    NOT_STARTED = "not_started"
    SPECIFIED = "specified"
    CONSTRUCTED = "constructed"
    FORMALIZED = "formalized"
    PROVED = "proved"
    AUDITED = "audited"
    REVISION = "revision"
    BLOCKED = "blocked"
    DONE = "done"

    @property
    def display_name(self) -> str:
        """Human-facing label used in the construction queue table."""

        return self.value.replace("_", " ").capitalize()

    @property
    def is_terminal(self) -> bool:
        return self in {ConstructionStatus.DONE, ConstructionStatus.BLOCKED}

    @classmethod
    def from_display(cls, text: str) -> ConstructionStatus | None:
        normalized = re.sub(r"[\s_-]+", "_", text.strip().strip("*_`").lower())
        for member in cls:
            if member.value == normalized:
                return member
        return None


STATUS_AFTER_PHASE: Final[dict[PhaseName, ConstructionStatus | None]] = {
    PhaseName.SURVEY: None,
    PhaseName.SPECIFY: ConstructionStatus.SPECIFIED,
    PhaseName.CONSTRUCT: ConstructionStatus.CONSTRUCTED,
    PhaseName.FORMALIZE: ConstructionStatus.FORMALIZED,
    PhaseName.PROVE: ConstructionStatus.PROVED,
    PhaseName.AUDIT: ConstructionStatus.AUDITED,
    PhaseName.LOG: ConstructionStatus.DONE,
}


class ViolationKind(StrEnum):
    POLICY_VIOLATION = "policy_violation"
    LOCK_CONFLICT = "lock_conflict"


class LockMode(StrEnum):
    WRITABLE = "writable"
    READ_ONLY = "read_only"


class PhaseOutcome(StrEnum):
    COMPLETED = "completed"
    REVISION = "revision"
    BLOCKED = "blocked"
    FAILED = "failed"
    DONE = "done"


class CanonicalModel:
    """Plain-JSON form of the records below: enums by value, datetimes as ISO-8601 ``Z``."""

    def to_dict(self) -> dict[str, JSONValue]:
        return cast("dict[str, JSONValue]", _jsonable(self, type(self).__name__))

    def to_json(self) -> str:
        return json.dumps(
            self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )


def utc_now() -> datetime:
    return datetime.now(UTC)


def construction_id_for(spec_ref: str) -> str:
    """Derive the stable construction identity from its specification reference."""

    stem = PurePosixPath(spec_ref.strip().strip("`").replace("\\", "/")).name
    stem = stem.removesuffix(".md")
    return _construction_id(re.sub(r"[^A-Za-z0-9._-]+", "-", stem).strip("-."), "construction_id")


def parse_priority(text: str) -> int | None:
    """Return the numeric rank of a ``P<n>`` priority label, or ``None``."""

    match = _PRIORITY_RE.fullmatch(text.strip())
    return None if match is None else int(match.group(1))


def _invalid(where: str, problem: str) -> NoReturn:
    raise ValueError(f"{where}: {problem}")


def _text(value: object, where: str, *, required: bool = True, limit: int = _MAX_TEXT) -> str:
    if not isinstance(value, str):
        _invalid(where, f"expected a string, not {type(value).__name__}")
    text = value.strip()
    if required and not text:
        _invalid(where, "must not be blank")
    if len(text) > limit:
        _invalid(where, f"longer than {limit} characters")
    return text


def _count(value: object, where: str, *, minimum: int = 0) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        _invalid(where, f"expected an integer, not {type(value).__name__}")
    if value < minimum:
        _invalid(where, f"must be >= {minimum}")
    return value


def _moment(value: object, where: str) -> datetime:
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            _invalid(where, f"not an ISO-8601 timestamp: {value!r}")
    if not isinstance(value, datetime):
        _invalid(where, f"expected a datetime, not {type(value).__name__}")
    if value.utcoffset() is None:
        _invalid(where, "datetime must be timezone-aware")
    return value.astimezone(UTC)


def _maybe_moment(value: object, where: str) -> datetime | None:
    return None if value is None else _moment(value, where)


def _iso_z(value: datetime) -> str:
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _member(enum_type: type[TEnum], value: object, where: str) -> TEnum:
    try:
        return enum_type(value)
    except (TypeError, ValueError):
        choices = ", ".join(sorted(str(item.value) for item in enum_type))
        _invalid(where, f"invalid value {value!r}; choose from {choices}")


def _construction_id(value: object, where: str) -> str:
    text = _text(value, where, required=False)
    if not _CONSTRUCTION_ID_RE.fullmatch(text):
        _invalid(where, f"invalid construction id {text!r}")
    return text


def _jsonable(value: object, where: str) -> JSONValue:
    if isinstance(value, Enum):
        return cast("JSONValue", value.value)
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, datetime):
        return _iso_z(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item, f"{where}[{index}]") for index, item in enumerate(value)]
    if is_dataclass(value) and not isinstance(value, type):
        value = {item.name: getattr(value, item.name) for item in fields(value)}
    if isinstance(value, Mapping):
        if not all(isinstance(key, str) for key in value):
            _invalid(where, "object keys must be strings")
        return {key: _jsonable(item, f"{where}.{key}") for key, item in value.items()}
    _invalid(where, f"{type(value).__name__} has no JSON form")


@dataclass(frozen=True, slots=True)
class ActionRequest(CanonicalModel):
    """One externally requested action, evaluated by the policy engine before it runs."""

    actor: str
    category: ActionCategory
    targets: tuple[str, ...] = ()
    payload: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "actor", _text(self.actor, "ActionRequest.actor", limit=256))
        object.__setattr__(
            self, "category", _member(ActionCategory, self.category, "ActionRequest.category")
        )
        if isinstance(self.targets, str):
            _invalid("ActionRequest.targets", "expected a sequence of paths, got a string")
        targets = tuple(
            _text(item, f"ActionRequest.targets[{index}]", limit=4096)
            for index, item in enumerate(self.targets)
        )
        object.__setattr__(self, "targets", targets)
        if not isinstance(self.payload, str):
            _invalid("ActionRequest.payload", f"expected string, got {type(self.payload).__name__}")
        if self.category.is_write and not targets:
            _invalid("ActionRequest.targets", "create/modify requests need at least one target")


@dataclass(frozen=True, slots=True)
class PolicyDecision(CanonicalModel):
    """Allow, or Deny with a reason surfaced verbatim to the requesting actor."""

    allowed: bool
    reason: str = ""
    rule_id: str | None = None
    violation: ViolationKind | None = None

    def __post_init__(self) -> None:
        if self.allowed and (self.reason or self.violation is not None):
            _invalid("PolicyDecision", "an allow decision carries no reason or violation")
        if not self.allowed and not self.reason.strip():
            _invalid("PolicyDecision.reason", "a deny decision must carry a reason")

    @classmethod
    def allow(cls) -> PolicyDecision:
        return cls(allowed=True)

    @classmethod
    def deny(
        cls,
        reason: str,
        *,
        rule_id: str,
        violation: ViolationKind = ViolationKind.POLICY_VIOLATION,
    ) -> PolicyDecision:
        return cls(allowed=False, reason=reason, rule_id=rule_id, violation=violation)

    @property
    def is_lock_conflict(self) -> bool:
        return self.violation is ViolationKind.LOCK_CONFLICT


@dataclass(frozen=True, slots=True)
class RevisionRecord(CanonicalModel):
    """A request to regress a construction to an earlier phase."""

    construction_id: str
    problem: str
    evidence: str
    restart_from: PhaseName
    issued_at: PhaseName
    sequence: int | None = None
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "construction_id",
            _construction_id(self.construction_id, "RevisionRecord.construction_id"),
        )
        object.__setattr__(self, "problem", _text(self.problem, "RevisionRecord.problem"))
        object.__setattr__(
            self, "evidence", _text(self.evidence, "RevisionRecord.evidence", required=False)
        )
        object.__setattr__(self, "restart_from", PhaseName.parse(self.restart_from))
        object.__setattr__(self, "issued_at", PhaseName.parse(self.issued_at))
        if self.sequence is not None:
            object.__setattr__(
                self, "sequence", _count(self.sequence, "RevisionRecord.sequence", minimum=1)
            )
        object.__setattr__(
            self, "created_at", _moment(self.created_at, "RevisionRecord.created_at")
        )

    @property
    def is_regression(self) -> bool:
        return self.restart_from.ordinal <= self.issued_at.ordinal

    def with_sequence(self, sequence: int) -> RevisionRecord:
        return RevisionRecord(
            construction_id=self.construction_id,
            problem=self.problem,
            evidence=self.evidence,
            restart_from=self.restart_from,
            issued_at=self.issued_at,
            sequence=sequence,
            created_at=self.created_at,
        )

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RevisionRecord:
        return cls(
            construction_id=_text(data.get("construction_id"), "RevisionRecord.construction_id"),
            problem=_text(data.get("problem"), "RevisionRecord.problem"),
            evidence=_text(data.get("evidence", ""), "RevisionRecord.evidence", required=False),
            restart_from=PhaseName.parse(data.get("restart_from")),
            issued_at=PhaseName.parse(data.get("issued_at")),
            sequence=cast("int | None", data.get("sequence")),
            created_at=_moment(
                data.get("created_at") or utc_now(), "RevisionRecord.created_at"
            ),
        )


@dataclass(slots=True)
class Construction(CanonicalModel):
    """One mathematical claim moving through the phase pipeline."""

    id: str
    spec_ref: str
    status: ConstructionStatus | str = ConstructionStatus.NOT_STARTED
    priority: int = 0
    position: int = 0
    name: str = ""
    revision_count: int = 0
    next_phase: PhaseName | str = PhaseName.SURVEY
    blocked_reason: str | None = None
    blocked_acknowledged: bool = False
    last_error: str | None = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    archived_at: datetime | None = None
    schema_version: int = _SCHEMA_VERSION

    def __post_init__(self) -> None:
        self.id = _construction_id(self.id, "Construction.id")
        self.spec_ref = _text(self.spec_ref, "Construction.spec_ref", limit=4096)
        self.status = _member(ConstructionStatus, self.status, "Construction.status")
        self.priority = _count(self.priority, "Construction.priority", minimum=0)
        self.position = _count(self.position, "Construction.position", minimum=0)
        name = self.name.strip() if isinstance(self.name, str) else ""
        self.name = name or self.id
        self.revision_count = _count(
            self.revision_count, "Construction.revision_count", minimum=0
        )
        self.next_phase = PhaseName.parse(self.next_phase)
        if not isinstance(self.blocked_acknowledged, bool):
            _invalid("Construction.blocked_acknowledged", "expected boolean")
        self.created_at = _moment(self.created_at, "Construction.created_at")
        self.updated_at = _moment(self.updated_at, "Construction.updated_at")
        self.archived_at = _maybe_moment(self.archived_at, "Construction.archived_at")
        if self.status is ConstructionStatus.BLOCKED and not self.blocked_reason:
            _invalid("Construction.blocked_reason", "blocked constructions must record a reason")

    @property
    def is_eligible(self) -> bool:
        return not ConstructionStatus(self.status).is_terminal

    @property
    def priority_label(self) -> str:
        return f"P{self.priority}"


@dataclass(frozen=True, slots=True)
class LockState(CanonicalModel):
    """Durable write capability of one resource, as seen by status introspection."""

    resource: str
    mode: LockMode
    entered_phase: PhaseName | None = None
    holder: str | None = None
    locked_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "resource", _text(self.resource, "LockState.resource"))
        object.__setattr__(self, "mode", _member(LockMode, self.mode, "LockState.mode"))
        if self.entered_phase is not None:
            object.__setattr__(self, "entered_phase", PhaseName.parse(self.entered_phase))
        object.__setattr__(
            self, "locked_at", _maybe_moment(self.locked_at, "LockState.locked_at")
        )
        if self.mode is LockMode.READ_ONLY and self.entered_phase is None:
            _invalid("LockState.entered_phase", "read-only locks record the phase that took them")


__all__ = [
    "PHASE_ORDER",
    "STATUS_AFTER_PHASE",
    "ActionCategory",
    "ActionRequest",
    "CanonicalModel",
    "Construction",
    "ConstructionStatus",
    "JSONValue",
    "LockMode",
    "LockState",
    "PhaseName",
    "PhaseOutcome",
    "PolicyDecision",
    "RevisionRecord",
    "ViolationKind",
    "construction_id_for",
    "parse_priority",
    "utc_now",
]
