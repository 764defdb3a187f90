"""Pipeline error taxonomy shared by the control plane and the CLI boundary."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from proof_orchestrator.domain.models import PolicyDecision, RevisionRecord


class PipelineError(RuntimeError):
    """Base class for failures raised while driving a construction."""

    def __init__(self, reason: str, *, construction_id: str | None = None) -> None:
        self.reason = reason
        self.construction_id = construction_id
        prefix = f"[{construction_id}] " if construction_id else ""
        super().__init__(f"{prefix}{reason}")


class PolicyViolation(PipelineError):
    """An action denied by the policy engine; the actor must retry compliantly."""

    def __init__(
        self,
        decision: PolicyDecision,
        *,
        construction_id: str | None = None,
    ) -> None:
        self.decision = decision
        super().__init__(decision.reason, construction_id=construction_id)


class LockConflict(PolicyViolation):
    """A write attempted against a read-only resource."""


class VerificationFailure(PipelineError):
    """The verification oracle rejected the current proof artifacts."""

    def __init__(
        self,
        reason: str,
        *,
        construction_id: str | None = None,
        errors: tuple[str, ...] = (),
    ) -> None:
        self.errors = errors
        super().__init__(reason, construction_id=construction_id)


class RevisionExhausted(PipelineError):
    """Revision budget reached; the construction is blocked until an operator steps in."""

    def __init__(
        self,
        reason: str,
        *,
        construction_id: str | None = None,
        record: RevisionRecord | None = None,
    ) -> None:
        self.record = record
        super().__init__(reason, construction_id=construction_id)


class MissingArtifact(PipelineError):
    """A phase's required predecessor resource is absent."""

    def __init__(
        self,
        reason: str,
        *,
        construction_id: str | None = None,
        missing: tuple[str, ...] = (),
    ) -> None:
        self.missing = missing
        super().__init__(reason, construction_id=construction_id)


class RevisionRejected(PipelineError):
    """A revision record asked to skip ahead instead of regressing."""


class ConstructionNotFound(PipelineError):
    """A construction reference matched neither a known id nor a queue entry."""


class ConstructionBlocked(PipelineError):
    """The construction is Blocked; automatic progress needs an operator."""


class AgentProtocolError(PipelineError):
    """The reasoning agent broke the phase protocol (bad message, early exit)."""


__all__ = [
    "AgentProtocolError",
    "ConstructionBlocked",
    "ConstructionNotFound",
    "LockConflict",
    "MissingArtifact",
    "PipelineError",
    "PolicyViolation",
    "RevisionExhausted",
    "RevisionRejected",
    "VerificationFailure",
]
