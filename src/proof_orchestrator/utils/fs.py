"""
proof-orchestrator — file helpers for orchestrator-owned artifacts

File: src/proof_orchestrator/utils/fs.py
Last updated: 2026-02-17

Purpose
- Writes of the construction queue and the executor's proof files, copies into the results
  tree, and removal of a consumed REVISION.md.

Functional requirements
- A reader never sees a half-written file; an existing file keeps its permission bits.
- Removal is confined to the project root and never follows a symlink out of it.
- Copies in the results tree stay owner-writable so a later archive can overwrite them.
"""

from __future__ import annotations

import contextlib
import os
import shutil
import stat
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

_NEW_FILE_MODE = 0o644


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    mode = stat.S_IMODE(target.stat().st_mode) if target.is_file() else _NEW_FILE_MODE
    payload = data.encode(encoding) if isinstance(data, str) else data

    staged = tempfile.NamedTemporaryFile(
        "wb", dir=target.parent, prefix=f".{target.name}.", suffix=".tmp", delete=False
    )
    staging = Path(staged.name)
    try:
        with staged:
            staged.write(payload)
            staged.flush()
            os.fsync(staged.fileno())
        staging.chmod(mode)
        staging.replace(target)
    except BaseException:
        staging.unlink(missing_ok=True)
        raise
    _sync_dir(target.parent)


def copy_artifact(source: PathLike, destination: PathLike) -> Path:
    """Copy ``source`` to ``destination``; the copy is readable and writable by its owner."""

    dest = Path(destination)
    dest.parent.mkdir(parents=True, exist_ok=True)
    if dest.is_file():
        dest.chmod(dest.stat().st_mode | stat.S_IWUSR)
    shutil.copyfile(source, dest)
    dest.chmod(stat.S_IMODE(Path(source).stat().st_mode) | stat.S_IRUSR | stat.S_IWUSR)
    return dest


def safe_delete(path: PathLike, root: PathLike) -> bool:
    """Unlink ``path`` if it sits under ``root``; ``False`` when nothing was there."""

    target = Path(path)
    if not (target.exists() or target.is_symlink()):
        return False
    # Resolve the parent only, so a symlink is judged by where it lives.
    located = target.parent.resolve(strict=True) / target.name
    if not located.is_relative_to(Path(root).resolve(strict=True)):
        raise ValueError(f"refusing to delete path outside project root: {target}")
    if located.is_dir() and not located.is_symlink():
        raise IsADirectoryError(f"refusing to delete directory: {target}")
    located.unlink()
    return True


def _sync_dir(directory: Path) -> None:
    if not hasattr(os, "O_DIRECTORY"):
        return
    try:
        handle = os.open(directory, os.O_RDONLY | os.O_DIRECTORY)
    except OSError:
        return
    try:
        with contextlib.suppress(OSError):
            os.fsync(handle)
    finally:
        os.close(handle)


__all__ = ["atomic_write", "copy_artifact", "safe_delete"]
