from __future__ import annotations

import logging
from typing import Any

from src.models.webhooks import MessageEventOutcome, NormalizedMessagingEvent
from src.observability import incr_metric, log_event


MESSAGE_EVENT_TIMESTAMPS: dict[str, str] = {
    "delivered": "delivered_at",
    "opened": "opened_at",
    "clicked": "clicked_at",
}


def _find_campaign_message(db: Any, external_id: str, channel: str) -> dict[str, Any] | None:
    result = (
        db.table("campaign_messages")
        .select("id, campaign_id, delivered_at, opened_at, clicked_at")
        .eq("external_id", external_id)
        .eq("channel", channel)
        .limit(1)
        .execute()
    )
    if not result.data:
        return None
    return result.data[0]


def _record_event_if_first(db: Any, message_id: str, kind: str, occurred_at: str) -> bool:
    # Sets the timestamp only where it is still null and, for opened/clicked,
    # bumps the campaign counter in the same transaction. True when it landed.
    result = db.rpc(
        "record_campaign_message_event",
        {"p_message_id": message_id, "p_event": kind, "p_occurred_at": occurred_at},
    ).execute()
    return bool(result.data)


def apply_message_event(
    db: Any,
    event: NormalizedMessagingEvent,
    *,
    request_id: str | None = None,
) -> MessageEventOutcome:
    """Record a delivered/opened/clicked event on its campaign message.

    Each timestamp is first-write-wins and evaluated per kind. The read is
    only a shortcut for the common redelivery case; the conditional write in
    ``record_campaign_message_event`` is what holds under concurrent retries.
    """
    timestamp_field = MESSAGE_EVENT_TIMESTAMPS.get(event.kind)
    if timestamp_field is None or not event.external_message_id:
        return "ignored"

    message = _find_campaign_message(db, event.external_message_id, event.channel)
    if message is None:
        incr_metric("webhook.message_state", channel=event.channel, kind=event.kind, outcome="not_found")
        log_event(
            "campaign_message_not_found",
            level=logging.WARNING,
            request_id=request_id,
            channel=event.channel,
            kind=event.kind,
            external_message_id=event.external_message_id,
        )
        return "not_found"

    if message.get(timestamp_field) is not None or not _record_event_if_first(
        db, message["id"], event.kind, event.occurred_at.isoformat()
    ):
        incr_metric("webhook.message_state", channel=event.channel, kind=event.kind, outcome="duplicate")
        log_event(
            "campaign_message_event_duplicate",
            request_id=request_id,
            channel=event.channel,
            kind=event.kind,
            campaign_message_id=message["id"],
        )
        return "duplicate"

    incr_metric("webhook.message_state", channel=event.channel, kind=event.kind, outcome="applied")
    log_event(
        "campaign_message_event_applied",
        request_id=request_id,
        channel=event.channel,
        kind=event.kind,
        campaign_message_id=message["id"],
        campaign_id=message.get("campaign_id"),
        occurred_at=event.occurred_at.isoformat(),
    )
    return "applied"
