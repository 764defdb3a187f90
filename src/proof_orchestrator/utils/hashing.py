"""
proof-orchestrator — digests for archived results

File: src/proof_orchestrator/utils/hashing.py
Last updated: 2026-02-17

Purpose
- SHA-256 of prompt text, rendered templates and archived files.
- The ``files`` map of an archive manifest, and its later re-check.

Functional requirements
- Manifest keys are relative POSIX paths, sorted; symlinks and special files are not listed.
- A re-check names missing and changed entries, each list sorted.
"""

from __future__ import annotations

import hashlib
import os
import re
from collections.abc import Collection, Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

PathLike = str | os.PathLike[str]

_CHUNK = 1 << 20
_DIGEST_RE = re.compile(r"[0-9a-fA-F]{64}")


@dataclass(frozen=True, slots=True)
class ManifestCheck:
    missing: tuple[str, ...]
    corrupted: tuple[str, ...]

    @property
    def ok(self) -> bool:
        return not (self.missing or self.corrupted)


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    return hashlib.sha256(text.encode(encoding)).hexdigest()


def sha256_file(path: PathLike) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as stream:
        while block := stream.read(_CHUNK):
            digest.update(block)
    return digest.hexdigest()


def create_manifest(directory: PathLike, *, exclude: Collection[str] = ()) -> dict[str, str]:
    """Digest every regular file below ``directory``; ``exclude`` holds relative keys to skip."""

    root = Path(directory).resolve(strict=True)
    if not root.is_dir():
        raise NotADirectoryError(f"{root} is not a directory")
    entries = {
        item.relative_to(root).as_posix(): item
        for item in root.rglob("*")
        if item.is_file() and not item.is_symlink()
    }
    return {key: sha256_file(entries[key]) for key in sorted(entries) if key not in exclude}


def verify_manifest(directory: PathLike, manifest: Mapping[str, str]) -> ManifestCheck:
    root = Path(directory).resolve(strict=True)
    missing: list[str] = []
    corrupted: list[str] = []
    for key in sorted(manifest):
        target = root / _manifest_key(key, manifest[key])
        if not target.exists() and not target.is_symlink():
            missing.append(key)
        elif target.is_symlink() or not target.is_file():
            corrupted.append(key)
        elif sha256_file(target) != manifest[key].lower():
            corrupted.append(key)
    return ManifestCheck(missing=tuple(missing), corrupted=tuple(corrupted))


def _manifest_key(key: str, digest: str) -> PurePosixPath:
    relative = PurePosixPath(key)
    if not key or "\\" in key or relative.is_absolute():
        raise ValueError(f"manifest key must be a relative POSIX path: {key!r}")
    if ".." in relative.parts or "." in key.split("/") or "" in key.split("/"):
        raise ValueError(f"manifest key escapes the archive: {key!r}")
    if not _DIGEST_RE.fullmatch(digest):
        raise ValueError(f"manifest entry {key!r} does not carry a SHA-256 digest")
    return relative


__all__ = [
    "ManifestCheck",
    "create_manifest",
    "sha256_file",
    "sha256_text",
    "verify_manifest",
]
