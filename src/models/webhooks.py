from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel


MessagingEventKind = Literal[
    "consent-revoke",
    "delivered",
    "opened",
    "clicked",
    "status-update",
    "unrecognized",
]
MessagingChannel = Literal["email", "sms"]
MessageEventOutcome = Literal["applied", "duplicate", "not_found", "ignored"]


class NormalizedMessagingEvent(BaseModel):
    kind: MessagingEventKind
    channel: MessagingChannel
    provider_event: str
    recipient: str | None = None
    external_message_id: str | None = None
    occurred_at: datetime
    status: str | None = None


class BrevoWebhookAck(BaseModel):
    success: bool = True
