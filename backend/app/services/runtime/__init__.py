"""Runtime guardrails for the background tick worker."""

from app.services.runtime import migration_gate

__all__ = ["migration_gate"]
