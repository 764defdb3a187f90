"""File and digest helpers shared by the integration plane."""

from proof_orchestrator.utils.fs import atomic_write, copy_artifact, safe_delete
from proof_orchestrator.utils.hashing import (
    ManifestCheck,
    create_manifest,
    sha256_file,
    sha256_text,
    verify_manifest,
)

__all__ = [
    "ManifestCheck",
    "atomic_write",
    "copy_artifact",
    "create_manifest",
    "safe_delete",
    "sha256_file",
    "sha256_text",
    "verify_manifest",
]
