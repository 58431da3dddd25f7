import base64
import hashlib
import hmac

from app.services.webhook_validation import (
    extract_signature,
    is_valid_calendly_signature,
    validate_webhook_payload,
)


def _payload() -> dict[str, object]:
    return {
        "email": "jane@example.com",
        "name": "Jane Doe",
        "scheduled_event": {
            "uri": "https://api.calendly.com/scheduled_events/EVT-1",
            "start_time": "2026-10-20T15:00:00Z",
            "end_time": "2026-10-20T15:30:00Z",
        },
    }


def test_valid_payload_passes() -> None:
    assert validate_webhook_payload(_payload()) is True


def test_payload_must_be_an_object() -> None:
    assert validate_webhook_payload(None) is False
    assert validate_webhook_payload([_payload()]) is False


def test_payload_requires_top_level_fields() -> None:
    for field_name in ("email", "name", "scheduled_event"):
        payload = _payload()
        del payload[field_name]
        assert validate_webhook_payload(payload) is False


def test_payload_email_must_be_a_string() -> None:
    payload = _payload()
    payload["email"] = 42

    assert validate_webhook_payload(payload) is False


def test_payload_requires_scheduled_event_fields() -> None:
    for field_name in ("uri", "start_time", "end_time"):
        payload = _payload()
        scheduled_event = dict(payload["scheduled_event"])  # type: ignore[arg-type]
        del scheduled_event[field_name]
        payload["scheduled_event"] = scheduled_event
        assert validate_webhook_payload(payload) is False


def test_extract_signature_is_case_insensitive() -> None:
    assert extract_signature({"Calendly-Webhook-Signature": "abc"}) == "abc"
    assert extract_signature({"calendly-webhook-signature": ["first", "second"]}) == "first"
    assert extract_signature({"content-type": "application/json"}) is None


def test_signature_matches_base64_hmac_of_body() -> None:
    body = b'{"email": "jane@example.com"}'
    signature = base64.b64encode(hmac.new(b"secret", body, hashlib.sha256).digest()).decode()

    assert is_valid_calendly_signature(body, signature, "secret") is True
    assert is_valid_calendly_signature(body, signature, "other-secret") is False
    assert is_valid_calendly_signature(body, "%%%not-base64", "secret") is False
