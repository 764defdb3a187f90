"""
proof-orchestrator — phase registry

File: src/proof_orchestrator/control_plane/phases.py
Last updated: 2026-02-11

Purpose
- Static table of ordered phases: allowed action categories, resource classes that are
  read-only on entry, content constraints, and required predecessor artifacts.
- Map concrete paths onto resource classes for a configured project layout.

What should be included in this file
- ``rules_for(phase)`` lookup; unknown phase names raise instead of defaulting to allow.
- ``ResourceLayout`` path classifier built from the ``paths`` config section.

Functional requirements
- No runtime state; the registry is immutable after import.
"""

from __future__ import annotations

import fnmatch
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path, PurePosixPath
from types import MappingProxyType
from typing import Final

from proof_orchestrator.constants import PROOF_TREE_EXCLUDED_DIRS
from proof_orchestrator.domain.models import PHASE_ORDER, ActionCategory, PhaseName


class ResourceClass(StrEnum):
    SPECIFICATION = "specification"
    CONSTRUCTION_DOC = "construction_doc"
    DOMAIN_CONTEXT = "domain_context"
    PROOF = "proof"
    AUDIT_LOG = "audit_log"
    REVISION = "revision"
    QUEUE = "queue"
    RESULTS = "results"
    OTHER = "other"


# Classes whose read-only state is recorded durably by the lock manager.
LOCKABLE_CLASSES: Final[frozenset[ResourceClass]] = frozenset(
    {
        ResourceClass.SPECIFICATION,
        ResourceClass.CONSTRUCTION_DOC,
        ResourceClass.DOMAIN_CONTEXT,
        ResourceClass.PROOF,
    }
)
ORCHESTRATOR_OWNED: Final[frozenset[ResourceClass]] = frozenset(
    {ResourceClass.QUEUE, ResourceClass.RESULTS}
)

_ALL_CATEGORIES: Final[frozenset[ActionCategory]] = frozenset(ActionCategory)
_EXECUTE_ONLY: Final[frozenset[ActionCategory]] = frozenset({ActionCategory.EXECUTE_COMMAND})
_ALL_MANAGED: Final[frozenset[ResourceClass]] = frozenset(ResourceClass) - {ResourceClass.OTHER}


@dataclass(frozen=True, slots=True)
class PhaseRules:
    """Permission rules applied while one phase is active."""

    phase: PhaseName
    allowed_categories: frozenset[ActionCategory]
    read_only: frozenset[ResourceClass]
    placeholder_only_proofs: bool = False
    requires: frozenset[ResourceClass] = frozenset()
    requires_oracle_pass: bool = False

    def __post_init__(self) -> None:
        if not ORCHESTRATOR_OWNED <= self.read_only:
            raise ValueError(f"{self.phase}: queue and results must stay read-only")
        if ResourceClass.OTHER in self.read_only:
            raise ValueError(f"{self.phase}: unclassified resources cannot be locked")

    @property
    def ordinal(self) -> int:
        return self.phase.ordinal

    @property
    def writable(self) -> frozenset[ResourceClass]:
        return frozenset(ResourceClass) - self.read_only

    @property
    def lockable(self) -> frozenset[ResourceClass]:
        return self.read_only & LOCKABLE_CLASSES

    def is_read_only(self, resource_class: ResourceClass) -> bool:
        return resource_class in self.read_only

    def allows(self, category: ActionCategory) -> bool:
        return category in self.allowed_categories


PHASE_RULES: Final[Mapping[PhaseName, PhaseRules]] = MappingProxyType(
    {
        PhaseName.SURVEY: PhaseRules(
            phase=PhaseName.SURVEY,
            allowed_categories=_EXECUTE_ONLY,
            read_only=_ALL_MANAGED,
            requires=frozenset({ResourceClass.SPECIFICATION}),
        ),
        PhaseName.SPECIFY: PhaseRules(
            phase=PhaseName.SPECIFY,
            allowed_categories=_ALL_CATEGORIES,
            read_only=frozenset(
                {
                    ResourceClass.PROOF,
                    ResourceClass.CONSTRUCTION_DOC,
                    ResourceClass.AUDIT_LOG,
                    ResourceClass.REVISION,
                    *ORCHESTRATOR_OWNED,
                }
            ),
        ),
        PhaseName.CONSTRUCT: PhaseRules(
            phase=PhaseName.CONSTRUCT,
            allowed_categories=_ALL_CATEGORIES,
            read_only=frozenset(
                {
                    ResourceClass.SPECIFICATION,
                    ResourceClass.PROOF,
                    ResourceClass.AUDIT_LOG,
                    ResourceClass.REVISION,
                    *ORCHESTRATOR_OWNED,
                }
            ),
            requires=frozenset({ResourceClass.SPECIFICATION}),
        ),
        PhaseName.FORMALIZE: PhaseRules(
            phase=PhaseName.FORMALIZE,
            allowed_categories=_ALL_CATEGORIES,
            read_only=frozenset(
                {
                    ResourceClass.SPECIFICATION,
                    ResourceClass.CONSTRUCTION_DOC,
                    ResourceClass.DOMAIN_CONTEXT,
                    ResourceClass.AUDIT_LOG,
                    ResourceClass.REVISION,
                    *ORCHESTRATOR_OWNED,
                }
            ),
            placeholder_only_proofs=True,
            requires=frozenset({ResourceClass.SPECIFICATION}),
        ),
        PhaseName.PROVE: PhaseRules(
            phase=PhaseName.PROVE,
            allowed_categories=_ALL_CATEGORIES,
            read_only=frozenset(
                {
                    ResourceClass.SPECIFICATION,
                    ResourceClass.CONSTRUCTION_DOC,
                    ResourceClass.DOMAIN_CONTEXT,
                    ResourceClass.AUDIT_LOG,
                    ResourceClass.REVISION,
                    *ORCHESTRATOR_OWNED,
                }
            ),
            requires=frozenset({ResourceClass.SPECIFICATION, ResourceClass.PROOF}),
        ),
        PhaseName.AUDIT: PhaseRules(
            phase=PhaseName.AUDIT,
            allowed_categories=_ALL_CATEGORIES,
            read_only=frozenset(
                {
                    ResourceClass.SPECIFICATION,
                    ResourceClass.CONSTRUCTION_DOC,
                    ResourceClass.DOMAIN_CONTEXT,
                    ResourceClass.PROOF,
                    *ORCHESTRATOR_OWNED,
                }
            ),
            requires=frozenset({ResourceClass.SPECIFICATION, ResourceClass.PROOF}),
            requires_oracle_pass=True,
        ),
        PhaseName.LOG: PhaseRules(
            phase=PhaseName.LOG,
            allowed_categories=_EXECUTE_ONLY,
            read_only=_ALL_MANAGED,
            requires=frozenset({ResourceClass.SPECIFICATION}),
        ),
    }
)

if set(PHASE_RULES) != set(PhaseName):  # pragma: no cover - import-time table check.
    raise RuntimeError("phase registry must cover every phase exactly once")


def rules_for(phase: PhaseName | str) -> PhaseRules:
    """Return the rules for ``phase``; unknown names raise ``ValueError``."""

    return PHASE_RULES[PhaseName.parse(phase)]


def iter_rules() -> tuple[PhaseRules, ...]:
    return tuple(PHASE_RULES[phase] for phase in PHASE_ORDER)


@dataclass(frozen=True, slots=True)
class ResourceLayout:
    """Project layout used to map concrete paths onto resource classes."""

    root: Path
    lean_dir: Path
    spec_dir: Path
    results_dir: Path
    constructions_file: Path
    domain_context: Path
    audit_log: Path
    revision_file: Path

    @classmethod
    def from_config(cls, config: Mapping[str, object], *, root: Path) -> ResourceLayout:
        paths = config.get("paths")
        if not isinstance(paths, Mapping):
            raise ValueError("config is missing the paths section")
        base = _absolute(root, root)

        def _path(key: str) -> Path:
            raw = paths.get(key)
            if not isinstance(raw, str) or not raw.strip():
                raise ValueError(f"paths.{key} must be a non-empty string")
            return _absolute(Path(raw), base)

        return cls(
            root=base,
            lean_dir=_path("lean_dir"),
            spec_dir=_path("spec_dir"),
            results_dir=_path("results_dir"),
            constructions_file=_path("constructions_file"),
            domain_context=_path("domain_context"),
            audit_log=_path("audit_log"),
            revision_file=_path("revision_file"),
        )

    def resolve(self, path: str | Path) -> Path:
        return _absolute(Path(str(path).strip()), self.root)

    def key(self, path: str | Path) -> str:
        """Stable resource key: root-relative POSIX path when inside the root."""

        resolved = self.resolve(path)
        try:
            return resolved.relative_to(self.root).as_posix()
        except ValueError:
            return resolved.as_posix()

    def classify(self, path: str | Path) -> ResourceClass:
        resolved = self.resolve(path)
        if resolved == self.constructions_file:
            return ResourceClass.QUEUE
        if resolved == self.revision_file:
            return ResourceClass.REVISION
        if resolved == self.audit_log:
            return ResourceClass.AUDIT_LOG
        if resolved == self.domain_context:
            return ResourceClass.DOMAIN_CONTEXT
        if _is_within(resolved, self.results_dir):
            return ResourceClass.RESULTS
        if _is_within(resolved, self.spec_dir):
            if resolved.name.startswith("construction-"):
                return ResourceClass.CONSTRUCTION_DOC
            return ResourceClass.SPECIFICATION
        if resolved.suffix == ".lean" and _is_within(resolved, self.lean_dir):
            relative = resolved.relative_to(self.lean_dir)
            if not any(part in PROOF_TREE_EXCLUDED_DIRS for part in relative.parts):
                return ResourceClass.PROOF
        return ResourceClass.OTHER

    def classify_pattern(self, pattern: str) -> ResourceClass:
        """Classify a shell glob by the class its matches would fall into."""

        if not _has_glob(pattern):
            return self.classify(pattern)
        if pattern.endswith(".lean"):
            return ResourceClass.PROOF
        resolved = self.resolve(pattern)
        spec_prefix = self.spec_dir.as_posix().rstrip("/") + "/"
        if resolved.as_posix().startswith(spec_prefix):
            tail = resolved.as_posix()[len(spec_prefix) :]
            if fnmatch.fnmatch("construction-x", tail.split("/")[-1]):
                return ResourceClass.CONSTRUCTION_DOC
            return ResourceClass.SPECIFICATION
        results_prefix = self.results_dir.as_posix().rstrip("/") + "/"
        if resolved.as_posix().startswith(results_prefix):
            return ResourceClass.RESULTS
        return ResourceClass.OTHER

    def spec_path(self, spec_ref: str) -> Path:
        return self.resolve(spec_ref)

    def construction_docs(self, construction_id: str) -> tuple[Path, ...]:
        if not self.spec_dir.is_dir():
            return ()
        return tuple(sorted(self.spec_dir.glob(f"construction-{construction_id}*")))

    def proof_files(self) -> tuple[Path, ...]:
        if not self.lean_dir.is_dir():
            return ()
        found: list[Path] = []
        for current, dirnames, filenames in os.walk(self.lean_dir):
            dirnames[:] = sorted(
                name
                for name in dirnames
                if name not in PROOF_TREE_EXCLUDED_DIRS
                and Path(current) / name != self.results_dir
            )
            for filename in sorted(filenames):
                if filename.endswith(".lean"):
                    found.append(Path(current) / filename)
        return tuple(found)

    def resources_for(
        self,
        classes: Iterable[ResourceClass],
        *,
        construction_id: str,
        spec_ref: str,
    ) -> tuple[str, ...]:
        """Return the existing resource keys that belong to ``classes``."""

        selected = set(classes)
        keys: set[str] = set()
        if ResourceClass.SPECIFICATION in selected:
            spec = self.spec_path(spec_ref)
            if spec.is_file():
                keys.add(self.key(spec))
        if ResourceClass.CONSTRUCTION_DOC in selected:
            keys.update(self.key(item) for item in self.construction_docs(construction_id))
        if ResourceClass.DOMAIN_CONTEXT in selected and self.domain_context.is_file():
            keys.add(self.key(self.domain_context))
        if ResourceClass.PROOF in selected:
            keys.update(self.key(item) for item in self.proof_files())
        return tuple(sorted(keys))


def _absolute(path: Path, base: Path) -> Path:
    candidate = path.expanduser()
    if not candidate.is_absolute():
        candidate = base / candidate
    return Path(os.path.normpath(str(candidate)))


def _is_within(path: Path, directory: Path) -> bool:
    if path == directory:
        return False
    try:
        path.relative_to(directory)
    except ValueError:
        return False
    return True


def _has_glob(text: str) -> bool:
    return any(char in text for char in "*?[")


def is_posix_path_like(token: str) -> bool:
    """Heuristic used by command scanning: does ``token`` look like a file path?"""

    if not token or token.startswith("-"):
        return False
    pure = PurePosixPath(token)
    return "/" in token or bool(pure.suffix) or token in {".", ".."}


__all__ = [
    "LOCKABLE_CLASSES",
    "ORCHESTRATOR_OWNED",
    "PHASE_RULES",
    "PhaseRules",
    "ResourceClass",
    "ResourceLayout",
    "is_posix_path_like",
    "iter_rules",
    "rules_for",
]
