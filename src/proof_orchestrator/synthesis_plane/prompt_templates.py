"""
proof-orchestrator — phase prompt templates

File: src/proof_orchestrator/synthesis_plane/prompt_templates.py
Last updated: 2026-02-14

Purpose
- Loads and renders phase prompt templates (``<prompt_dir>/math-<phase>.md``) with strict
  placeholders, falling back to a built-in template when the project has none.

What should be included in this file
- Template rendering rules and the whitelist of variables.
- Template and prompt hashing so a phase event can record exactly what the agent saw.

Functional requirements
- Must render prompts deterministically for the same inputs.
- Project content variables pass through prompt hygiene before rendering.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Final

from jinja2 import Environment, StrictUndefined, TemplateError, meta

from proof_orchestrator.domain.errors import PipelineError
from proof_orchestrator.domain.models import PhaseName
from proof_orchestrator.security.prompt_hygiene import (
    DEFAULT_POLICY_MODE,
    HygienePolicyMode,
    sanitize_context,
)
from proof_orchestrator.utils.hashing import sha256_text

TRUSTED_VARIABLES: Final[frozenset[str]] = frozenset(
    {
        "construction_id",
        "name",
        "spec_ref",
        "phase",
        "attempt",
        "revision_count",
        "allowed_categories",
        "read_only",
        "last_error",
    }
)
UNTRUSTED_VARIABLES: Final[Mapping[str, str]] = MappingProxyType(
    {
        "specification": "specification",
        "construction_docs": "construction documents",
        "domain_context": "domain context",
    }
)
ALLOWED_VARIABLES: Final[frozenset[str]] = TRUSTED_VARIABLES | frozenset(UNTRUSTED_VARIABLES)

_COMMON_FOOTER: Final[str] = (
    "\n\nConstruction: {{ name }} (`{{ construction_id }}`, spec `{{ spec_ref }}`)\n"
    "Attempt {{ attempt }}; revisions so far: {{ revision_count }}.\n"
    "Allowed actions: {{ allowed_categories }}. Read-only: {{ read_only }}.\n"
    "{% if last_error %}Previous attempt failed: {{ last_error }}\n{% endif %}"
    "\n## Specification\n{{ specification }}\n"
    "{% if construction_docs %}\n## Construction documents\n{{ construction_docs }}\n{% endif %}"
    "{% if domain_context %}\n## Domain context\n{{ domain_context }}\n{% endif %}"
)

BUILTIN_TEMPLATES: Final[Mapping[PhaseName, str]] = MappingProxyType(
    {
        PhaseName.SURVEY: (
            "# Survey\nRead the specification and the domain context. Report what is "
            "missing or ambiguous. Do not modify any project file." + _COMMON_FOOTER
        ),
        PhaseName.SPECIFY: (
            "# Specify\nTighten the specification until every definition and hypothesis "
            "is explicit. Record shared notation in the domain context." + _COMMON_FOOTER
        ),
        PhaseName.CONSTRUCT: (
            "# Construct\nWrite the informal construction and proof plan as "
            "construction documents next to the specification." + _COMMON_FOOTER
        ),
        PhaseName.FORMALIZE: (
            "# Formalize\nState every definition and theorem in Lean. Every proof body "
            "must be the placeholder `sorry`; proofs come in the next phase."
            + _COMMON_FOOTER
        ),
        PhaseName.PROVE: (
            "# Prove\nReplace every `sorry` with a complete proof. If the statement is "
            "wrong, write REVISION.md naming the phase to restart from." + _COMMON_FOOTER
        ),
        PhaseName.AUDIT: (
            "# Audit\nCheck that the formal statements match the specification and that "
            "the build passes with no placeholders or unsound declarations. Record "
            "findings in the construction log." + _COMMON_FOOTER
        ),
        PhaseName.LOG: (
            "# Log\nSummarize the finished construction. The orchestrator archives the "
            "artifacts; do not modify project files." + _COMMON_FOOTER
        ),
    }
)

if set(BUILTIN_TEMPLATES) != set(PhaseName):  # pragma: no cover - import-time table check.
    raise RuntimeError("every phase needs a built-in prompt template")


class PromptTemplateError(PipelineError):
    """A phase template could not be loaded or rendered."""


@dataclass(frozen=True, slots=True)
class RenderedPrompt:
    prompt: str
    prompt_hash: str
    template_name: str
    template_hash: str
    builtin: bool
    dropped_variables: tuple[str, ...]
    variable_findings: tuple[tuple[str, int], ...]


class PromptTemplateEngine:
    """Deterministic phase prompt loader and renderer."""

    def __init__(
        self,
        prompt_dir: Path | None = None,
        *,
        hygiene_mode: HygienePolicyMode | str = DEFAULT_POLICY_MODE,
    ) -> None:
        self._prompt_dir = prompt_dir
        self._hygiene_mode = HygienePolicyMode(hygiene_mode)
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )

    @property
    def hygiene_mode(self) -> HygienePolicyMode:
        return self._hygiene_mode

    def template_path(self, phase: PhaseName) -> Path | None:
        if self._prompt_dir is None:
            return None
        return self._prompt_dir / f"math-{phase.value}.md"

    def render(self, phase: PhaseName, *, variables: Mapping[str, object]) -> RenderedPrompt:
        path = self.template_path(phase)
        builtin = path is None or not path.is_file()
        if path is not None and not builtin:
            source = _normalize_newlines(path.read_text(encoding="utf-8"))
            template_name = path.name
        else:
            source = BUILTIN_TEMPLATES[phase]
            template_name = f"builtin:{phase.value}"

        unexpected_inputs = sorted(set(variables) - ALLOWED_VARIABLES)
        if unexpected_inputs:
            raise PromptTemplateError(
                "unexpected template variables were provided: " + ", ".join(unexpected_inputs)
            )

        try:
            declared = meta.find_undeclared_variables(self._environment.parse(source))
        except TemplateError as exc:
            raise PromptTemplateError(f"{template_name}: {exc}") from exc
        not_allowed = sorted(declared - ALLOWED_VARIABLES)
        if not_allowed:
            raise PromptTemplateError(
                f"{template_name} uses variables outside the whitelist: " + ", ".join(not_allowed)
            )

        rendered_values: dict[str, str] = {}
        dropped: list[str] = []
        findings: list[tuple[str, int]] = []
        for key in sorted(ALLOWED_VARIABLES):
            value = _serialize_variable_value(variables.get(key, ""))
            if key in UNTRUSTED_VARIABLES and value:
                result = sanitize_context(
                    _normalize_newlines(value),
                    source=UNTRUSTED_VARIABLES[key],
                    mode=self._hygiene_mode,
                )
                value = result.sanitized_text
                findings.append((key, len(result.findings)))
                if result.dropped:
                    dropped.append(key)
            rendered_values[key] = value

        try:
            prompt = _normalize_newlines(
                self._environment.from_string(source).render(**rendered_values)
            )
        except TemplateError as exc:
            raise PromptTemplateError(f"{template_name}: {exc}") from exc

        return RenderedPrompt(
            prompt=prompt,
            prompt_hash=sha256_text(prompt),
            template_name=template_name,
            template_hash=sha256_text(source),
            builtin=builtin,
            dropped_variables=tuple(dropped),
            variable_findings=tuple(findings),
        )


def _serialize_variable_value(value: object) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value)
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"), sort_keys=True)


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


__all__ = [
    "ALLOWED_VARIABLES",
    "BUILTIN_TEMPLATES",
    "PromptTemplateEngine",
    "PromptTemplateError",
    "RenderedPrompt",
    "TRUSTED_VARIABLES",
    "UNTRUSTED_VARIABLES",
]
