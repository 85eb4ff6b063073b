from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from src.models.webhooks import MessagingEventKind, NormalizedMessagingEvent


_BREVO_EVENT_KINDS: dict[str, MessagingEventKind] = {
    "bounce": "consent-revoke",
    "hardbounce": "consent-revoke",
    "softbounce": "consent-revoke",
    "unsubscribe": "consent-revoke",
    "blocked": "consent-revoke",
    "invalid": "consent-revoke",
    "delivered": "delivered",
    "opened": "opened",
    "unique_opened": "opened",
    "click": "clicked",
}

_STOP_KEYWORDS = {"STOP", "STOP.", "ARRET", "ARRET."}


def normalize_email(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip().lower()
    return text or None


def normalize_phone(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.startswith("+"):
        text = text[1:]
    return text or None


def is_stop_keyword(body: Any) -> bool:
    if not body:
        return False
    return str(body).strip().upper() in _STOP_KEYWORDS


def normalize_brevo_event_kind(value: Any) -> MessagingEventKind:
    if not value:
        return "unrecognized"
    return _BREVO_EVENT_KINDS.get(str(value).strip().lower(), "unrecognized")


def _parse_date_string(value: str) -> datetime | None:
    text = value.strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_event_time(event: Mapping[str, Any], now: datetime | None = None) -> datetime:
    """Resolve when a provider event happened.

    ``ts_epoch`` is milliseconds since the epoch and wins when present. The
    ``date`` string is tried next; anything unusable falls back to ``now`` so a
    single bad timestamp never fails the batch.
    """
    fallback = now or datetime.now(timezone.utc)
    ts_epoch = event.get("ts_epoch")
    if isinstance(ts_epoch, (int, float)) and not isinstance(ts_epoch, bool):
        try:
            return datetime.fromtimestamp(ts_epoch / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            pass
    date_value = event.get("date")
    if isinstance(date_value, str):
        parsed = _parse_date_string(date_value)
        if parsed is not None:
            return parsed
    return fallback


def _normalize_brevo_event(event: Any, now: datetime) -> NormalizedMessagingEvent:
    if not isinstance(event, Mapping):
        return NormalizedMessagingEvent(
            kind="unrecognized",
            channel="email",
            provider_event="malformed",
            occurred_at=now,
        )
    raw_name = event.get("event")
    message_id = event.get("message-id")
    return NormalizedMessagingEvent(
        kind=normalize_brevo_event_kind(raw_name),
        channel="email",
        provider_event=str(raw_name or "unknown"),
        recipient=normalize_email(event.get("email")),
        external_message_id=str(message_id) if message_id else None,
        occurred_at=parse_event_time(event, now),
    )


def normalize_brevo_payload(payload: Any, now: datetime | None = None) -> list[NormalizedMessagingEvent]:
    """Brevo posts either one event object or an array of them."""
    processed_at = now or datetime.now(timezone.utc)
    events = payload if isinstance(payload, list) else [payload]
    return [_normalize_brevo_event(event, processed_at) for event in events]


def normalize_twilio_payload(
    form: Mapping[str, Any],
    now: datetime | None = None,
) -> list[NormalizedMessagingEvent]:
    processed_at = now or datetime.now(timezone.utc)
    message_sid = form.get("MessageSid") or None
    if is_stop_keyword(form.get("Body")):
        return [
            NormalizedMessagingEvent(
                kind="consent-revoke",
                channel="sms",
                provider_event="stop_reply",
                recipient=normalize_phone(form.get("From")),
                external_message_id=message_sid,
                occurred_at=processed_at,
            )
        ]
    status_value = form.get("MessageStatus")
    if status_value:
        return [
            NormalizedMessagingEvent(
                kind="status-update",
                channel="sms",
                provider_event="status_callback",
                recipient=normalize_phone(form.get("To")),
                external_message_id=message_sid,
                occurred_at=processed_at,
                status=str(status_value).strip().lower(),
            )
        ]
    return [
        NormalizedMessagingEvent(
            kind="unrecognized",
            channel="sms",
            provider_event="inbound_message",
            recipient=normalize_phone(form.get("From")),
            external_message_id=message_sid,
            occurred_at=processed_at,
        )
    ]
