"""Run logs and correlation scopes."""

from proof_orchestrator.observability.logging import (
    CORRELATION_KEYS,
    RunLog,
    active_run_log,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    redact_value,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "CORRELATION_KEYS",
    "RunLog",
    "active_run_log",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "redact_value",
    "setup_logging",
    "shutdown_logging",
]
