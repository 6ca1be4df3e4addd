"""Outbound alert delivery adapters (SMS, push) and their shared contracts."""

from app.services.delivery.types import PushResult, PushSender, SmsResult, SmsSender

__all__ = ["PushResult", "PushSender", "SmsResult", "SmsSender"]
