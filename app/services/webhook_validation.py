from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from collections.abc import Mapping
from typing import Any

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "calendly-webhook-signature"
_REQUIRED_PAYLOAD_FIELDS = ("email", "name", "scheduled_event")
_REQUIRED_EVENT_FIELDS = ("uri", "start_time", "end_time")


def validate_webhook_payload(payload: Any) -> bool:
    if not isinstance(payload, Mapping):
        return False

    for field_name in _REQUIRED_PAYLOAD_FIELDS:
        if field_name not in payload:
            logger.warning("Missing required field: %s", field_name)
            return False

    if not isinstance(payload["email"], str):
        logger.warning("Email field must be a string")
        return False

    scheduled_event = payload["scheduled_event"]
    if not isinstance(scheduled_event, Mapping):
        logger.warning("scheduled_event field must be an object")
        return False

    for field_name in _REQUIRED_EVENT_FIELDS:
        if field_name not in scheduled_event:
            logger.warning("Missing required field in scheduled_event: %s", field_name)
            return False

    return True


def extract_signature(headers: Mapping[str, Any]) -> str | None:
    signature = None
    for header_name, value in headers.items():
        if header_name.lower() == SIGNATURE_HEADER:
            signature = value
            break

    if isinstance(signature, list):
        signature = signature[0] if signature else None
    if not isinstance(signature, str) or not signature.strip():
        return None
    return signature.strip()


def is_valid_calendly_signature(payload: bytes, signature: str, secret: str) -> bool:
    expected_digest = hmac.new(
        key=secret.encode("utf-8"),
        msg=payload,
        digestmod=hashlib.sha256,
    ).digest()
    try:
        provided_digest = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    return hmac.compare_digest(expected_digest, provided_digest)
