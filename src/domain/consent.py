from __future__ import annotations

import logging
from typing import Any

from src.domain.normalization import normalize_email, normalize_phone
from src.models.webhooks import NormalizedMessagingEvent
from src.observability import incr_metric, log_event, mask_email, mask_phone


# Both functions compare the contact as a plain value in SQL. PostgREST
# like/ilike filters treat `*` as an unescapable wildcard, so contacts coming
# from provider payloads never go through them.
EMAIL_CONSENT_FUNCTION = "revoke_member_email_consent"
SMS_CONSENT_FUNCTION = "revoke_member_sms_consent"


def _rows_updated(result: Any) -> int:
    data = result.data
    if isinstance(data, list):
        data = data[0] if data else 0
    return int(data or 0)


def revoke_email_consent(db: Any, email: str | None, *, request_id: str | None = None) -> int:
    """Turn off email consent for every member whose address equals ``email``.

    Matching is trimmed, case-insensitive equality (``lower(trim(email))``).
    Returns the number of members updated; zero matches is not an error.
    """
    normalized = normalize_email(email)
    if not normalized:
        return 0
    count = _rows_updated(db.rpc(EMAIL_CONSENT_FUNCTION, {"p_email": normalized}).execute())
    incr_metric("consent.revoked", channel="email", matched=count > 0)
    log_event(
        "consent_revoked",
        request_id=request_id,
        channel="email",
        contact=mask_email(normalized),
        members_updated=count,
    )
    return count


def revoke_sms_consent(db: Any, phone: str | None, *, request_id: str | None = None) -> int:
    """Turn off SMS consent for every member whose phone contains ``phone``."""
    normalized = normalize_phone(phone)
    if not normalized:
        return 0
    count = _rows_updated(db.rpc(SMS_CONSENT_FUNCTION, {"p_phone": normalized}).execute())
    incr_metric("consent.revoked", channel="sms", matched=count > 0)
    log_event(
        "consent_revoked",
        request_id=request_id,
        channel="sms",
        contact=mask_phone(normalized),
        members_updated=count,
    )
    return count


def apply_consent_revoke(
    db: Any,
    event: NormalizedMessagingEvent,
    *,
    request_id: str | None = None,
) -> int:
    if not event.recipient:
        incr_metric("consent.revoke_skipped", channel=event.channel, reason="missing_recipient")
        log_event(
            "consent_revoke_missing_recipient",
            level=logging.WARNING,
            request_id=request_id,
            channel=event.channel,
            provider_event=event.provider_event,
        )
        return 0
    if event.channel == "email":
        return revoke_email_consent(db, event.recipient, request_id=request_id)
    return revoke_sms_consent(db, event.recipient, request_id=request_id)
