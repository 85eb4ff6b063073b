from datetime import datetime, timezone

from src.domain.normalization import (
    is_stop_keyword,
    normalize_brevo_event_kind,
    normalize_brevo_payload,
    normalize_email,
    normalize_phone,
    normalize_twilio_payload,
    parse_event_time,
)


NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_brevo_event_kind_normalization_contract():
    for name in ("bounce", "hardbounce", "softbounce", "unsubscribe", "blocked", "invalid"):
        assert normalize_brevo_event_kind(name) == "consent-revoke"
    assert normalize_brevo_event_kind("delivered") == "delivered"
    assert normalize_brevo_event_kind("opened") == "opened"
    assert normalize_brevo_event_kind("unique_opened") == "opened"
    assert normalize_brevo_event_kind("click") == "clicked"
    assert normalize_brevo_event_kind(" Click ") == "clicked"
    assert normalize_brevo_event_kind("request") == "unrecognized"
    assert normalize_brevo_event_kind("spam") == "unrecognized"
    assert normalize_brevo_event_kind(None) == "unrecognized"


def test_stop_keyword_contract():
    for body in ("STOP", "stop", "Stop.", " arret ", "ARRET.", "arret."):
        assert is_stop_keyword(body) is True
    for body in ("", None, "STOPPED", "please stop", "ARRÊT", "stop!"):
        assert is_stop_keyword(body) is False


def test_contact_normalization_contract():
    assert normalize_email("  Jane.Doe@Example.COM ") == "jane.doe@example.com"
    assert normalize_email("   ") is None
    assert normalize_phone("+33612345678") == "33612345678"
    assert normalize_phone(" 0612345678 ") == "0612345678"
    assert normalize_phone("") is None


def test_event_time_prefers_epoch_then_date_then_now():
    epoch_ms = int(datetime(2024, 3, 1, 8, 30, tzinfo=timezone.utc).timestamp() * 1000)
    assert parse_event_time({"ts_epoch": epoch_ms, "date": "2020-01-01T00:00:00Z"}, NOW) == datetime(
        2024, 3, 1, 8, 30, tzinfo=timezone.utc
    )
    assert parse_event_time({"date": "2024-01-01T00:00:00Z"}, NOW) == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert parse_event_time({"date": "2024-01-01 10:15:00"}, NOW) == datetime(
        2024, 1, 1, 10, 15, tzinfo=timezone.utc
    )
    assert parse_event_time({"date": "not a date"}, NOW) == NOW
    assert parse_event_time({}, NOW) == NOW


def test_brevo_payload_accepts_single_object_and_preserves_batch_order():
    single = normalize_brevo_payload(
        {"event": "delivered", "message-id": "abc123", "date": "2024-01-01T00:00:00Z"},
        now=NOW,
    )
    assert len(single) == 1
    assert single[0].kind == "delivered"
    assert single[0].channel == "email"
    assert single[0].external_message_id == "abc123"
    assert single[0].occurred_at == datetime(2024, 1, 1, tzinfo=timezone.utc)

    batch = normalize_brevo_payload(
        [
            {"event": "unsubscribe", "email": " Member@Example.com", "date": "bad"},
            "garbage",
            {"event": "click", "message-id": "m-2"},
        ],
        now=NOW,
    )
    assert [event.kind for event in batch] == ["consent-revoke", "unrecognized", "clicked"]
    assert batch[0].recipient == "member@example.com"
    assert batch[0].occurred_at == NOW
    assert batch[1].provider_event == "malformed"


def test_twilio_payload_normalization_contract():
    stop = normalize_twilio_payload({"Body": "stop.", "From": "+33612345678", "MessageSid": "SM1"}, now=NOW)
    assert stop[0].kind == "consent-revoke"
    assert stop[0].channel == "sms"
    assert stop[0].recipient == "33612345678"

    status_update = normalize_twilio_payload({"MessageSid": "SM2", "MessageStatus": "Delivered"}, now=NOW)
    assert status_update[0].kind == "status-update"
    assert status_update[0].status == "delivered"
    assert status_update[0].external_message_id == "SM2"

    other = normalize_twilio_payload({"Body": "Merci !", "From": "+33600000000"}, now=NOW)
    assert other[0].kind == "unrecognized"
