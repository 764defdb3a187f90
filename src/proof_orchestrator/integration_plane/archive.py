"""
proof-orchestrator — archival sink

File: src/proof_orchestrator/integration_plane/archive.py
Last updated: 2026-02-14

Purpose
- Snapshot a finished construction into ``results/<construction_id>/``.
- Persist every processed revision record as ``results/revisions/revision-<seq>.yaml``.

What should be included in this file
- ``ResultsArchive.archive_construction``: specification, construction documents, audit log,
  proof artifacts and a ``manifest.json`` of SHA-256 digests.
- ``ResultsArchive.archive_revision`` / ``load_revision`` for the YAML revision records.

Functional requirements
- Archival never deletes or moves a source artifact; it only copies.
- Re-archiving the same construction overwrites the previous snapshot deterministically.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from proof_orchestrator.constants import ARCHIVE_MANIFEST_SCHEMA_VERSION, REVISIONS_SUBDIR
from proof_orchestrator.domain.models import Construction, RevisionRecord, utc_now
from proof_orchestrator.utils.fs import atomic_write, copy_artifact
from proof_orchestrator.utils.hashing import create_manifest

if TYPE_CHECKING:
    from proof_orchestrator.control_plane.phases import ResourceLayout

MANIFEST_FILENAME = "manifest.json"


@dataclass(frozen=True, slots=True)
class ArchiveResult:
    construction_id: str
    path: Path
    files: dict[str, str]


class ResultsArchive:
    def __init__(self, layout: ResourceLayout) -> None:
        self._layout = layout

    @property
    def results_dir(self) -> Path:
        return self._layout.results_dir

    def construction_dir(self, construction_id: str) -> Path:
        return self._layout.results_dir / construction_id

    def revision_path(self, sequence: int) -> Path:
        return self._layout.results_dir / REVISIONS_SUBDIR / f"revision-{sequence}.yaml"

    def archive_revision(self, record: RevisionRecord) -> Path:
        if record.sequence is None:
            raise ValueError("only sequenced revision records can be archived")
        target = self.revision_path(record.sequence)
        payload = yaml.safe_dump(record.to_dict(), sort_keys=True, allow_unicode=True)
        atomic_write(target, payload)
        return target

    def load_revision(self, path: Path) -> RevisionRecord:
        loaded: Any = yaml.safe_load(path.read_text(encoding="utf-8"))
        if not isinstance(loaded, dict):
            raise ValueError(f"{path} does not contain a revision record mapping")
        return RevisionRecord.from_dict(loaded)

    def list_revisions(self) -> tuple[Path, ...]:
        directory = self._layout.results_dir / REVISIONS_SUBDIR
        if not directory.is_dir():
            return ()
        return tuple(
            sorted(directory.glob("revision-*.yaml"), key=lambda item: _sequence_of(item.stem))
        )

    def archive_construction(
        self,
        construction: Construction,
        *,
        verification: dict[str, object] | None = None,
    ) -> ArchiveResult:
        layout = self._layout
        destination = self.construction_dir(construction.id)

        spec = layout.spec_path(construction.spec_ref)
        if spec.is_file():
            copy_artifact(spec, destination / "spec.md")
        if layout.audit_log.is_file():
            copy_artifact(layout.audit_log, destination / "audit.md")
        for document in layout.construction_docs(construction.id):
            if document.is_file():
                copy_artifact(document, destination / "construction" / document.name)
        for proof in layout.proof_files():
            relative = proof.relative_to(layout.lean_dir)
            copy_artifact(proof, destination / "lean" / relative)

        files = create_manifest(destination, exclude=(MANIFEST_FILENAME,))
        manifest = {
            "schema_version": ARCHIVE_MANIFEST_SCHEMA_VERSION,
            "construction_id": construction.id,
            "spec_ref": construction.spec_ref,
            "revision_count": construction.revision_count,
            "archived_at": utc_now().isoformat().replace("+00:00", "Z"),
            "files": files,
            "verification": verification or {},
        }
        atomic_write(
            destination / MANIFEST_FILENAME,
            json.dumps(manifest, sort_keys=True, indent=2) + "\n",
        )
        return ArchiveResult(construction_id=construction.id, path=destination, files=files)


def _sequence_of(stem: str) -> int:
    _, _, tail = stem.partition("-")
    return int(tail) if tail.isdigit() else 0


__all__ = ["ArchiveResult", "MANIFEST_FILENAME", "ResultsArchive"]
