"""Check-in lifecycle: scheduling, escalation, delivery retries, and user actions."""

from app.services.checkins.actions import CheckinActionService, ConfirmResult, SnoozeResult
from app.services.checkins.escalation import EscalationEngine, EscalationSweepResult
from app.services.checkins.retries import DeliveryRetryManager, RetrySweepResult
from app.services.checkins.scheduler import CheckinScheduler, SchedulerSweepResult

__all__ = [
    "CheckinActionService",
    "CheckinScheduler",
    "ConfirmResult",
    "DeliveryRetryManager",
    "EscalationEngine",
    "EscalationSweepResult",
    "RetrySweepResult",
    "SchedulerSweepResult",
    "SnoozeResult",
]
