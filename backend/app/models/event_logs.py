"""Append-only audit trail backing the user-facing history view."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class EventLog(QueryModel, table=True):
    """Immutable audit entry; rows are inserted and never updated."""

    __tablename__ = "event_logs"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    event_id: UUID | None = Field(default=None, foreign_key="checkin_events.id", index=True)
    event_type: str = Field(index=True)
    event_time: datetime = Field(index=True)
    result: str = Field(default="ok")
    details: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
