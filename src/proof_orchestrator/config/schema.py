"""
proof-orchestrator — orchestrator.toml schema

File: src/proof_orchestrator/config/schema.py
Last updated: 2026-02-17

Purpose
- One table, ``FIELDS``, declares every setting: its section, type, default, and bounds.
  Defaults, validation, path normalization, and environment bindings all derive from it.

Functional requirements
- Validation reports every problem at once, each with a dotted field path.
- Profiles (``[profiles.<name>]``) overlay any section except ``meta``.
- Keys that look like credentials are rejected outright; agents read secrets from the
  environment, never from the config file.
"""

from __future__ import annotations

import copy
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal

from proof_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_MAX_PHASE_ATTEMPTS,
    DEFAULT_MAX_PROGRAM_CYCLES,
    DEFAULT_MAX_REVISIONS,
)

FieldKind = Literal["int", "text", "command", "path", "bool", "choice", "patterns"]

COMMAND_SCAN_MODES: Final[tuple[str, ...]] = ("always", "restricted_paths_only")
PROMPT_HYGIENE_MODES: Final[tuple[str, ...]] = ("warn-only", "strict-drop")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

_PROFILE_NAME_RE: Final[re.Pattern[str]] = re.compile(r"^[a-z][a-z0-9_-]*$")
_KEY_WORD_RE: Final[re.Pattern[str]] = re.compile(r"[A-Z]?[a-z0-9]+|[A-Z]+(?![a-z])")
_SECRET_WORDS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials", "auth"}
)
REDACTED: Final[str] = "<redacted>"


@dataclass(frozen=True, slots=True)
class Field:
    kind: FieldKind
    default: object
    minimum: int | None = None
    maximum: int | None = None
    choices: tuple[str, ...] = ()

    def check(self, value: object, path: str) -> tuple[object, list[ConfigValidationIssue]]:
        """Return the normalized value, or the issues that make ``value`` unusable."""

        def fail(message: str) -> tuple[object, list[ConfigValidationIssue]]:
            return None, [ConfigValidationIssue(path, message)]

        if self.kind == "int":
            if isinstance(value, bool) or not isinstance(value, int):
                return fail(f"expected integer, got {type(value).__name__}")
            if self.minimum is not None and value < self.minimum:
                return fail(f"must be >= {self.minimum}")
            if self.maximum is not None and value > self.maximum:
                return fail(f"must be <= {self.maximum}")
            return value, []
        if self.kind == "bool":
            if not isinstance(value, bool):
                return fail(f"expected boolean, got {type(value).__name__}")
            return value, []
        if self.kind == "patterns":
            if not isinstance(value, (list, tuple)):
                return fail(f"expected array, got {type(value).__name__}")
            items: list[str] = []
            issues: list[ConfigValidationIssue] = []
            for index, item in enumerate(value):
                text, problems = Field("text", "").check(item, f"{path}[{index}]")
                issues.extend(problems)
                if not problems:
                    items.append(str(text))
            return (None, issues) if issues else (items, [])

        if not isinstance(value, str):
            return fail(f"expected string, got {type(value).__name__}")
        text = value.strip()
        # An empty agent command means "not configured"; phase verbs report it at run time.
        if self.kind == "command":
            return text, []
        if not text:
            return fail("must not be empty")
        if self.kind == "path" and "\x00" in text:
            return fail("must not contain NUL bytes")
        if self.kind == "choice" and text not in self.choices:
            return fail(f"invalid value {text!r}; expected one of: {', '.join(self.choices)}")
        return text, []


FIELDS: Final[dict[str, dict[str, Field]]] = {
    "meta": {
        "schema_version": Field("int", CONFIG_SCHEMA_VERSION, minimum=1),
    },
    "pipeline": {
        "max_revisions": Field("int", DEFAULT_MAX_REVISIONS, minimum=1),
        "max_program_cycles": Field("int", DEFAULT_MAX_PROGRAM_CYCLES, minimum=1),
        "phases_per_cycle": Field("int", 7, minimum=1, maximum=64),
        "max_phase_attempts": Field("int", DEFAULT_MAX_PHASE_ATTEMPTS, minimum=1),
    },
    "paths": {
        "lean_dir": Field("path", "."),
        "spec_dir": Field("path", "specs"),
        "results_dir": Field("path", "results"),
        "state_db": Field("path", "state/proof-orchestrator.sqlite"),
        "constructions_file": Field("path", "CONSTRUCTIONS.md"),
        "domain_context": Field("path", "DOMAIN_CONTEXT.md"),
        "audit_log": Field("path", "CONSTRUCTION_LOG.md"),
        "revision_file": Field("path", "REVISION.md"),
        "prompt_dir": Field("path", ".claude/prompts"),
    },
    "verification": {
        "build_command": Field("text", "lake build"),
        "timeout_seconds": Field("int", 1800, minimum=1),
    },
    "agent": {
        "command": Field("command", ""),
        "prompt_hygiene": Field("choice", "warn-only", choices=PROMPT_HYGIENE_MODES),
    },
    "policy": {
        "command_scan_mode": Field("choice", "always", choices=COMMAND_SCAN_MODES),
        "extra_forbidden_patterns": Field("patterns", []),
    },
    "locks": {
        "mirror_file_modes": Field("bool", False),
    },
    "observability": {
        "log_level": Field("choice", "INFO", choices=LOG_LEVELS),
        "log_format": Field("choice", "json", choices=LOG_FORMATS),
        "log_dir": Field("path", "logs"),
        "redact_secrets": Field("bool", True),
    },
}

BUILTIN_PROFILES: Final[dict[str, dict[str, dict[str, object]]]] = {
    "strict": {
        "pipeline": {"max_revisions": 2, "max_phase_attempts": 1},
        "locks": {"mirror_file_modes": True},
        "agent": {"prompt_hygiene": "strict-drop"},
    },
    "exploration": {
        "pipeline": {"max_revisions": 6, "max_phase_attempts": 3},
    },
}

PATH_FIELDS: Final[tuple[tuple[str, str], ...]] = tuple(
    (section, key)
    for section, fields in FIELDS.items()
    for key, spec in fields.items()
    if spec.kind == "path"
)
_PROFILE_SECTIONS: Final[tuple[str, ...]] = tuple(name for name in FIELDS if name != "meta")


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ValueError):
    """Raised when the effective config has at least one issue."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered or '- unknown validation failure'}")


def _build_defaults() -> dict[str, Any]:
    config: dict[str, Any] = {
        section: {key: copy.deepcopy(spec.default) for key, spec in fields.items()}
        for section, fields in FIELDS.items()
    }
    config["profiles"] = copy.deepcopy(BUILTIN_PROFILES)
    return config


DEFAULT_CONFIG: Final[dict[str, Any]] = _build_defaults()


def default_config() -> dict[str, Any]:
    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    if found_version < CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is older than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade orchestrator.toml to the current schema"
        )
    if found_version > CONFIG_SCHEMA_VERSION:
        return (
            f"schema version {found_version} is newer than supported {CONFIG_SCHEMA_VERSION}; "
            "upgrade the proof-orchestrator runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto a copy of ``base``; neither input is modified."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        current = merged.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            merged[key] = merge_config(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_profile_overlay(config: Mapping[str, object], profile: str | None) -> dict[str, Any]:
    selected = (profile or "").strip()
    if not selected:
        return merge_config({}, config)
    profiles = config.get("profiles")
    overlay = profiles.get(selected) if isinstance(profiles, Mapping) else None
    if not isinstance(overlay, Mapping):
        raise ConfigValidationError(
            [ConfigValidationIssue("profiles", f"profile {selected!r} is not defined")]
        )
    return assert_valid_config(merge_config(config, overlay), active_profile=selected)


def validate_config(
    config: object, *, active_profile: str | None = None
) -> ConfigValidationResult:
    issues: list[ConfigValidationIssue] = []
    if not isinstance(config, Mapping):
        issues.append(
            ConfigValidationIssue("<root>", f"expected object, got {type(config).__name__}")
        )
        return ConfigValidationResult(config=None, issues=tuple(issues))

    for key in sorted(config):
        if key not in FIELDS and key != "profiles":
            issues.append(_unknown_key(str(key)))
    normalized = _check_sections(config, "", tuple(FIELDS), issues, partial=False)

    version = normalized.get("meta", {}).get("schema_version")
    if isinstance(version, int) and version != CONFIG_SCHEMA_VERSION:
        issues.append(ConfigValidationIssue("meta.schema_version", migration_guidance(version)))

    profiles = config.get("profiles", {})
    if isinstance(profiles, Mapping):
        normalized["profiles"] = _check_profiles(profiles, issues)
    else:
        issues.append(
            ConfigValidationIssue("profiles", f"expected object, got {type(profiles).__name__}")
        )

    selected = (active_profile or "").strip()
    if selected and selected not in normalized.get("profiles", {}):
        issues.append(ConfigValidationIssue("profiles", f"profile {selected!r} is not defined"))

    if issues:
        return ConfigValidationResult(config=None, issues=tuple(issues))
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: object, *, active_profile: str | None = None) -> dict[str, Any]:
    result = validate_config(config, active_profile=active_profile)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: object) -> dict[str, Any]:
    """Copy of ``config`` with credential-looking keys masked, for dumps and logs."""

    if not isinstance(config, Mapping):
        return {}
    return {
        key: REDACTED if looks_sensitive(key) else _redact(value)
        for key, value in sorted(config.items())
    }


def looks_sensitive(key: str) -> bool:
    words = [word.lower() for word in _KEY_WORD_RE.findall(key)]
    if any(word in _SECRET_WORDS for word in words):
        return True
    joined = "_".join(words)
    return any(phrase in joined for phrase in ("api_key", "private_key", "client_secret"))


def _redact(value: object) -> object:
    if isinstance(value, Mapping):
        return redact_config(value)
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


def _check_profiles(
    profiles: Mapping[str, object], issues: list[ConfigValidationIssue]
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sorted(profiles):
        path = f"profiles.{name}"
        overlay = profiles[name]
        if not _PROFILE_NAME_RE.fullmatch(name):
            issues.append(ConfigValidationIssue(path, "profile name must match ^[a-z][a-z0-9_-]*$"))
            continue
        if not isinstance(overlay, Mapping):
            issues.append(
                ConfigValidationIssue(path, f"expected object, got {type(overlay).__name__}")
            )
            continue
        for key in sorted(overlay):
            if key not in _PROFILE_SECTIONS:
                issues.append(_unknown_key(f"{path}.{key}"))
        out[name] = _check_sections(overlay, path, _PROFILE_SECTIONS, issues, partial=True)
    return out


def _check_sections(
    payload: Mapping[str, object],
    path: str,
    sections: Sequence[str],
    issues: list[ConfigValidationIssue],
    *,
    partial: bool,
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name in sections:
        section_path = f"{path}.{name}" if path else name
        if name not in payload:
            if not partial:
                issues.append(ConfigValidationIssue(section_path, "missing required field"))
            continue
        raw = payload[name]
        if not isinstance(raw, Mapping):
            issues.append(
                ConfigValidationIssue(section_path, f"expected object, got {type(raw).__name__}")
            )
            continue
        fields = FIELDS[name]
        section: dict[str, Any] = {}
        for key in sorted(raw):
            if key not in fields:
                issues.append(_unknown_key(f"{section_path}.{key}"))
        for key, spec in fields.items():
            if key not in raw:
                if not partial:
                    issues.append(
                        ConfigValidationIssue(f"{section_path}.{key}", "missing required field")
                    )
                continue
            value, problems = spec.check(raw[key], f"{section_path}.{key}")
            issues.extend(problems)
            if not problems:
                section[key] = value
        out[name] = section
    return out


def _unknown_key(path: str) -> ConfigValidationIssue:
    if looks_sensitive(path.rsplit(".", 1)[-1]):
        return ConfigValidationIssue(
            path, "embedded secret values are forbidden; pass credentials through the environment"
        )
    return ConfigValidationIssue(path, "unknown field")


__all__ = [
    "BUILTIN_PROFILES",
    "COMMAND_SCAN_MODES",
    "DEFAULT_CONFIG",
    "FIELDS",
    "PATH_FIELDS",
    "PROMPT_HYGIENE_MODES",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "Field",
    "apply_profile_overlay",
    "assert_valid_config",
    "default_config",
    "looks_sensitive",
    "merge_config",
    "migration_guidance",
    "redact_config",
    "validate_config",
]
