"""Model exports for SQLAlchemy/SQLModel metadata discovery."""

from app.models.alert_deliveries import AlertDelivery
from app.models.checkin_events import CheckinEvent
from app.models.contacts import Contact
from app.models.event_logs import EventLog
from app.models.users import User

__all__ = [
    "AlertDelivery",
    "CheckinEvent",
    "Contact",
    "EventLog",
    "User",
]
