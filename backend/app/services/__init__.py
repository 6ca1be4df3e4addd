"""Domain services for check-ins, delivery, and runtime guardrails."""
