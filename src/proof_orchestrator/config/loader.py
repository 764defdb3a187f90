"""
proof-orchestrator — effective config loader

File: src/proof_orchestrator/config/loader.py
Last updated: 2026-02-17

Purpose
- Build the effective config from, lowest first: built-in defaults, ``orchestrator.toml``,
  the selected profile, legacy pipeline variables, ``PROOF_*`` variables, CLI overrides.

Functional requirements
- Every scalar setting ``[section] key`` can be set with ``PROOF_SECTION_KEY``.
- The unprefixed variables older pipeline scripts exported (``LEAN_DIR``, ``SPEC_DIR``,
  ``LAKE_BUILD``, ``MAX_REVISIONS`` and friends) still apply, below ``PROOF_*``.
- Relative paths resolve against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from proof_orchestrator.config.schema import (
    FIELDS,
    PATH_FIELDS,
    Field,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "orchestrator.toml"
ENV_PREFIX: Final[str] = "PROOF_"

LEGACY_ENV_ALIASES: Final[dict[str, tuple[str, str]]] = {
    "CONSTRUCTIONS_FILE": ("paths", "constructions_file"),
    "LAKE_BUILD": ("verification", "build_command"),
    "LEAN_DIR": ("paths", "lean_dir"),
    "MAX_PROGRAM_CYCLES": ("pipeline", "max_program_cycles"),
    "MAX_REVISIONS": ("pipeline", "max_revisions"),
    "RESULTS_DIR": ("paths", "results_dir"),
    "SPEC_DIR": ("paths", "spec_dir"),
}

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})


class ConfigLoadError(ValueError):
    """The config file or an override could not be read or coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    if config_path is None:
        path = (Path.cwd() / DEFAULT_CONFIG_FILE).resolve()
    else:
        path = Path(config_path).expanduser().resolve()
    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})

    selected = _selected_profile(profile, overrides, env)
    config = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )
    if selected:
        config = apply_profile_overlay(config, selected)
    config = merge_config(config, env_overrides(env, legacy=True))
    config = merge_config(config, env_overrides(env))
    config = merge_config(config, _dotted_overrides(overrides))
    config = assert_valid_config(config, active_profile=selected)
    return normalize_paths(config, base_dir=path.parent)


def env_overrides(environ: Mapping[str, str], *, legacy: bool = False) -> dict[str, Any]:
    """Overrides taken from ``PROOF_*`` variables, or from the legacy unprefixed names."""

    if legacy:
        bindings = dict(LEGACY_ENV_ALIASES)
    else:
        bindings = {
            f"{ENV_PREFIX}{section}_{key}".upper(): (section, key)
            for section, fields in FIELDS.items()
            for key, spec in fields.items()
            if section != "meta" and spec.kind != "patterns"
        }
    out: dict[str, Any] = {}
    for name in sorted(bindings):
        raw = environ.get(name)
        if raw is None or (legacy and not raw.strip()):
            continue
        section, key = bindings[name]
        value = _coerce(raw, FIELDS[section][key], name, f"{section}.{key}")
        out.setdefault(section, {})[key] = value
    return out


def normalize_paths(config: Mapping[str, Any], *, base_dir: Path) -> dict[str, Any]:
    """Resolve path settings, including those inside profiles, against ``base_dir``."""

    out = merge_config({}, config)
    scopes = [out, *(item for item in out.get("profiles", {}).values() if isinstance(item, dict))]
    for scope in scopes:
        for section, key in PATH_FIELDS:
            value = scope.get(section, {}).get(key)
            if isinstance(value, str):
                scope[section][key] = _resolve_path(value, base_dir)
    return out


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _selected_profile(
    profile: str | None, overrides: Mapping[str, object], environ: Mapping[str, str]
) -> str | None:
    candidate = profile if profile is not None else overrides.get("profile")
    if candidate is None:
        candidate = environ.get(f"{ENV_PREFIX}PROFILE")
    if candidate is None:
        return None
    if not isinstance(candidate, str):
        raise ConfigLoadError("profile must be a string")
    return candidate.strip() or None


def _coerce(raw: str, spec: Field, name: str, target: str) -> object:
    value = raw.strip()
    if spec.kind == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {target} must be an integer") from exc
    if spec.kind == "bool":
        if value.lower() in _TRUE_WORDS:
            return True
        if value.lower() in _FALSE_WORDS:
            return False
        raise ConfigLoadError(
            f"{name} -> {target} must be a boolean (true/false/1/0/yes/no/on/off)"
        )
    return value


def _dotted_overrides(overrides: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for dotted, value in sorted(overrides.items()):
        if dotted == "profile":
            continue
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        cursor = out
        for part in parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[parts[-1]] = value
    return out


def _resolve_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "LEGACY_ENV_ALIASES",
    "dump_effective_config",
    "env_overrides",
    "load_config",
    "normalize_paths",
]
