"""Per-contact, per-channel alert delivery attempts with retry state."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import UniqueConstraint
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class AlertDelivery(QueryModel, table=True):
    """Idempotency unit for alerting one contact over one channel for one event."""

    __tablename__ = "alert_deliveries"  # pyright: ignore[reportAssignmentType]
    __table_args__ = (
        UniqueConstraint(
            "event_id",
            "contact_id",
            "channel",
            name="uq_alert_deliveries_event_contact_channel",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    event_id: UUID = Field(foreign_key="checkin_events.id", index=True)
    contact_id: UUID = Field(foreign_key="contacts.id", index=True)
    channel: str = Field(default="sms")
    status: str = Field(default="pending", index=True)
    provider_ref: str | None = Field(default=None)
    provider_status: str | None = Field(default=None)
    error_message: str | None = Field(default=None)
    retry_count: int = Field(default=0)
    max_retries: int = Field(default=3)
    next_retry_at: datetime | None = Field(default=None, index=True)
    sent_at: datetime | None = Field(default=None)
    delivered_at: datetime | None = Field(default=None)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
