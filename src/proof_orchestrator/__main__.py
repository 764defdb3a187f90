"""Module entrypoint for ``python -m proof_orchestrator``."""

from __future__ import annotations

from proof_orchestrator.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
