from __future__ import annotations

import json
import logging
import time
from typing import Any
from urllib.parse import parse_qsl

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from src.config import settings
from src.db import supabase
from src.domain.consent import apply_consent_revoke
from src.domain.message_state import apply_message_event
from src.domain.normalization import normalize_brevo_payload, normalize_twilio_payload
from src.domain.signatures import verify_brevo_request, verify_twilio_signature
from src.models.webhooks import BrevoWebhookAck, NormalizedMessagingEvent
from src.observability import incr_metric, log_event, observe_metric


router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

TWIML_EMPTY_RESPONSE = '<?xml version="1.0" encoding="UTF-8"?><Response></Response>'
_MESSAGE_STATE_KINDS = {"delivered", "opened", "clicked"}


class WebhookBatchError(Exception):
    """Raised when an event in a provider batch fails mid-way."""

    def __init__(self, *, events_total: int, events_processed: int):
        super().__init__(f"webhook batch failed after {events_processed}/{events_total} events")
        self.events_total = events_total
        self.events_processed = events_processed


def _request_id(request: Request | None) -> str | None:
    if not request:
        return None
    return getattr(getattr(request, "state", None), "request_id", None)


def _twilio_signed_url(request: Request) -> str:
    configured = settings.twilio_webhook_public_url
    if configured:
        return configured
    return str(request.url)


def _twiml_ack() -> Response:
    return Response(content=TWIML_EMPTY_RESPONSE, media_type="text/xml")


def _dispatch_event(
    provider_slug: str,
    event: NormalizedMessagingEvent,
    request_id: str | None,
) -> str:
    if event.kind == "consent-revoke":
        apply_consent_revoke(supabase, event, request_id=request_id)
        return "consent_revoked"
    if event.kind in _MESSAGE_STATE_KINDS:
        return apply_message_event(supabase, event, request_id=request_id)
    if event.kind == "status-update":
        # Logged only; there is no SMS delivery status column to project into.
        log_event(
            "sms_status_update_received",
            request_id=request_id,
            provider_slug=provider_slug,
            external_message_id=event.external_message_id,
            message_status=event.status,
        )
        return "status_logged"
    log_event(
        "webhook_event_unrecognized",
        level=logging.DEBUG,
        request_id=request_id,
        provider_slug=provider_slug,
        provider_event=event.provider_event,
    )
    return "ignored"


def _process_events(
    provider_slug: str,
    events: list[NormalizedMessagingEvent],
    request_id: str | None,
) -> int:
    observe_metric("webhook.batch_size", len(events), provider_slug=provider_slug)
    started = time.perf_counter()
    processed = 0
    try:
        for event in events:
            outcome = _dispatch_event(provider_slug, event, request_id)
            incr_metric("webhook.events.processed", provider_slug=provider_slug, kind=event.kind, outcome=outcome)
            if outcome in {"ignored", "not_found", "duplicate"}:
                incr_metric("webhook.events.ignored", provider_slug=provider_slug, reason=outcome)
            processed += 1
    except Exception as exc:
        raise WebhookBatchError(events_total=len(events), events_processed=processed) from exc
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        observe_metric("webhook.processing_ms", elapsed_ms, provider_slug=provider_slug)
    return processed


def _log_failure(provider_slug: str, request_id: str | None, exc: Exception) -> None:
    # Earlier events stay committed; the provider retries the batch and
    # first-write-wins skips what was already applied.
    cause = exc.__cause__ if isinstance(exc, WebhookBatchError) and exc.__cause__ else exc
    incr_metric("webhook.events.failed", provider_slug=provider_slug)
    log_event(
        "webhook_failed",
        level=logging.ERROR,
        request_id=request_id,
        provider_slug=provider_slug,
        events_total=getattr(exc, "events_total", None),
        events_processed=getattr(exc, "events_processed", None),
        error=str(cause),
    )


@router.post("/brevo", response_model=BrevoWebhookAck)
async def ingest_brevo_webhook(request: Request):
    req_id = _request_id(request)
    raw_body = await request.body()
    incr_metric("webhook.events.received", provider_slug="brevo")
    verify_brevo_request(request)

    try:
        payload: Any = json.loads(raw_body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        incr_metric("webhook.events.rejected", provider_slug="brevo", reason="invalid_json")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload") from exc

    try:
        events = normalize_brevo_payload(payload)
        log_event(
            "webhook_received",
            request_id=req_id,
            provider_slug="brevo",
            event_count=len(events),
            kinds=[event.kind for event in events],
        )
        processed = _process_events("brevo", events, req_id)
    except Exception as exc:
        _log_failure("brevo", req_id, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )

    log_event(
        "webhook_processed",
        request_id=req_id,
        provider_slug="brevo",
        events_processed=processed,
    )
    return BrevoWebhookAck(success=True)


@router.post("/twilio")
async def ingest_twilio_webhook(request: Request):
    req_id = _request_id(request)
    raw_body = await request.body()
    incr_metric("webhook.events.received", provider_slug="twilio")

    try:
        params = parse_qsl(raw_body.decode("utf-8"), keep_blank_values=True)
    except UnicodeDecodeError:
        params = []

    signature = request.headers.get("X-Twilio-Signature")
    if not verify_twilio_signature(
        settings.twilio_auth_token,
        signature,
        _twilio_signed_url(request),
        params,
        request_id=req_id,
    ):
        incr_metric(
            "webhook.events.rejected",
            provider_slug="twilio",
            reason="missing_signature" if not signature else "invalid_signature",
        )
        log_event(
            "webhook_signature_rejected",
            level=logging.WARNING,
            request_id=req_id,
            provider_slug="twilio",
            has_signature=bool(signature),
            secret_configured=bool(settings.twilio_auth_token),
        )
        return PlainTextResponse("Invalid signature", status_code=status.HTTP_403_FORBIDDEN)

    try:
        events = normalize_twilio_payload(dict(params))
        log_event(
            "webhook_received",
            request_id=req_id,
            provider_slug="twilio",
            event_count=len(events),
            kinds=[event.kind for event in events],
        )
        processed = _process_events("twilio", events, req_id)
    except Exception as exc:
        _log_failure("twilio", req_id, exc)
        return PlainTextResponse(
            "Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    log_event(
        "webhook_processed",
        request_id=req_id,
        provider_slug="twilio",
        events_processed=processed,
    )
    return _twiml_ack()
