"""User- and contact-facing notification text."""

from __future__ import annotations

from datetime import datetime

CHECKIN_PUSH_TITLE = "Are You Safe?"
CONTACT_PUSH_TITLE = "Safety Alert"
FALLBACK_USER_NAME = "Your contact"


def display_name(user_name: str | None) -> str:
    return (user_name or "").strip() or FALLBACK_USER_NAME


def format_slot_time(scheduled_time: datetime) -> str:
    return scheduled_time.strftime("%H:%M")


def compose_alert_text(*, user_name: str | None, scheduled_time: datetime) -> str:
    """Render the SMS sent to contacts when a check-in is missed."""
    return (
        f"[Are You Safe] {display_name(user_name)} missed their {format_slot_time(scheduled_time)} "
        "safety check-in. Please try to contact them to make sure they're okay. "
        "This is an automated message - do not reply."
    )


def compose_checkin_push_body(*, grace_minutes: int) -> str:
    return f"Please tap 'I'm Safe' to confirm you're okay. [{grace_minutes} min window]"


def compose_contact_push_body(*, user_name: str | None, scheduled_time: datetime) -> str:
    return (
        f"{display_name(user_name)} missed their {format_slot_time(scheduled_time)} check-in. "
        "Please try to contact them."
    )
