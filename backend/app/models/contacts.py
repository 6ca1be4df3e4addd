"""Emergency contacts notified when a check-in is missed."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field

from app.core.time import utcnow
from app.models.base import QueryModel

RUNTIME_ANNOTATION_TYPES = (datetime,)


class Contact(QueryModel, table=True):
    """A user's emergency contact; the phone number is stored encrypted."""

    __tablename__ = "contacts"  # pyright: ignore[reportAssignmentType]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True)
    phone_enc: str
    level: int = Field(default=1, index=True)
    has_app: bool = Field(default=False)
    push_token: str | None = Field(default=None)
    linked_user_id: UUID | None = Field(default=None, foreign_key="users.id")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def prefers_push(self) -> bool:
        return self.has_app and bool(self.push_token)
